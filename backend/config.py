"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'facturo')

# Les transactions multi-documents exigent un replica set.
# MONGO_TRANSACTIONS=false pour un serveur standalone (dev / tests).
MONGO_TRANSACTIONS = os.environ.get('MONGO_TRANSACTIONS', 'true').lower() in ('1', 'true', 'yes')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# PDF
PDF_STORAGE_DIR = Path(os.environ.get('PDF_STORAGE_DIR', str(ROOT_DIR / 'public')))
PDF_UPLOAD_SUBDIR = "uploads/invoices"

# API
CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() in ('1', 'true', 'yes')

# Auth
SESSION_TTL_HOURS = int(os.environ.get('SESSION_TTL_HOURS', '24'))

# Facturation
DEFAULT_TAUX_URSSAF = 0.246
DEFAULT_TAUX_TVA = 0.0
DEFAULT_PAYMENT_DELAY = 30
DEFAULT_CREDIT_NOTE_PREFIX = "AV-"


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()

def round2(value) -> float:
    """Arrondi monétaire à 2 décimales (demi supérieur)"""
    return float(Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@asynccontextmanager
async def transaction():
    """
    Ouvre une transaction multi-documents.

    Yields la session motor à passer à chaque opération (session=session).
    Toute exception levée dans le bloc annule la transaction.
    Si MONGO_TRANSACTIONS est désactivé, yields None.
    """
    if not MONGO_TRANSACTIONS:
        yield None
        return

    async with await client.start_session() as session:
        async with session.start_transaction():
            yield session
