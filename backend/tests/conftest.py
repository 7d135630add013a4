"""
Fixtures partagées: base MongoDB en mémoire (mongomock-motor), rendu PDF
remplacé par un stub, jeu de données minimal (business info, client,
prestations du mois de mars 2025).

La base est remplacée AVANT tout import des services (from config import db).
"""

import os
import copy
import uuid

os.environ["MONGO_TRANSACTIONS"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest
from mongomock_motor import AsyncMongoMockClient

import config

config.MONGO_TRANSACTIONS = False
config.client = AsyncMongoMockClient()
config.db = config.client["facturo_test"]

from models.business_info import DEFAULT_BUSINESS_INFO  # noqa: E402
from services import pdf_renderer  # noqa: E402
from services.factures import create_invoice  # noqa: E402
from services.prestations import create_prestation  # noqa: E402

from tests.data import USER_ID, FAKE_PDF  # noqa: E402

COLLECTIONS = ["users", "sessions", "clients", "prestations", "factures",
               "business_info", "counters", "event_log"]


@pytest.fixture
def db():
    return config.db


@pytest.fixture(autouse=True)
async def clean_db():
    for name in COLLECTIONS:
        await config.db[name].delete_many({})
    await config.db.factures.create_index([("user_id", 1), ("invoice_number", 1)], unique=True)
    yield


@pytest.fixture(autouse=True)
def stub_pdf(monkeypatch, tmp_path):
    """Pas de WeasyPrint en test: PDF factice écrit dans un dossier temporaire"""
    rendered = []

    def fake_invoice_pdf(invoice, prestations, client, business_info):
        rendered.append(("facture", invoice.get("invoice_number")))
        return FAKE_PDF

    def fake_credit_note_pdf(invoice, client, business_info):
        rendered.append(("avoir", (invoice.get("avoir") or {}).get("numero")))
        return FAKE_PDF

    monkeypatch.setattr(pdf_renderer, "render_invoice_pdf", fake_invoice_pdf)
    monkeypatch.setattr(pdf_renderer, "render_credit_note_pdf", fake_credit_note_pdf)
    monkeypatch.setattr(pdf_renderer, "PDF_STORAGE_DIR", tmp_path)
    return rendered


@pytest.fixture
async def business_info():
    doc = copy.deepcopy(DEFAULT_BUSINESS_INFO)
    doc.update({
        "user_id": USER_ID,
        "name": "Camille Martin EI",
        "address": "12 rue des Lilas",
        "postal_code": "69003",
        "city": "Lyon",
        "email": "camille@martin-dev.fr",
        "siret": "12345678900011",
    })
    await config.db.business_info.insert_one(doc)
    doc.pop("_id", None)
    return doc


@pytest.fixture
async def client_doc():
    doc = {
        "id": str(uuid.uuid4()),
        "user_id": USER_ID,
        "name": "Atelier Lumière SARL",
        "email": "compta@atelier-lumiere.fr",
        "street": "4 quai Saint-Antoine",
        "postal_code": "69002",
        "city": "Lyon",
    }
    await config.db.clients.insert_one(doc)
    doc.pop("_id", None)
    return doc


@pytest.fixture
def add_prestation(client_doc):
    """Crée une prestation horaire (2h à 50€ par défaut) pour le client"""
    async def _add(hours=2, minutes=0, hourly_rate=50.0, date="2025-03-10", description="Développement", **extra):
        data = {
            "client_id": client_doc["id"],
            "description": description,
            "billing_type": "hourly",
            "hours": hours,
            "minutes": minutes,
            "hourly_rate": hourly_rate,
            "date": date,
        }
        data.update(extra)
        return await create_prestation(USER_ID, data)
    return _add


@pytest.fixture
async def invoice(business_info, client_doc, add_prestation):
    """Facture brouillon de mars 2025: 2h@50€ + 1h@50€ = 150.00 HT"""
    await add_prestation(hours=2, date="2025-03-10")
    await add_prestation(hours=1, date="2025-03-12", description="Recette")
    return await create_invoice(USER_ID, client_doc["id"], 2025, 3)
