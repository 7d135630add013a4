"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Numérotation des factures et avoirs                               ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - numéro = max(invoice_number_start, plus haut numéro attribué + 1)         ║
║  - strictement croissant par utilisateur, jamais réutilisé                   ║
║  - compteur atomique (collection counters) dans la transaction appelante     ║
║  - index unique (user_id, invoice_number) en second garde-fou                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Dict, Optional

from pymongo import ReturnDocument

from config import db, now_iso, DEFAULT_CREDIT_NOTE_PREFIX

logger = logging.getLogger("numerotation")

INVOICE_COUNTER = "invoice"
CREDIT_NOTE_COUNTER = "credit_note"


def _counter_id(user_id: str, name: str) -> str:
    return f"{name}:{user_id}"


async def highest_invoice_number(user_id: str, session=None) -> int:
    """Plus haut numéro déjà porté par une facture de l'utilisateur (0 si aucune)"""
    last = await db.factures.find_one(
        {"user_id": user_id},
        {"_id": 0, "invoice_number": 1},
        sort=[("invoice_number", -1)],
        session=session
    )
    return int(last.get("invoice_number") or 0) if last else 0


async def _increment_counter(user_id: str, name: str, floor: int, session=None) -> int:
    """
    Relève le compteur au plancher (compare-and-swap), puis l'incrémente.
    Returns: la nouvelle valeur du compteur
    """
    counter_id = _counter_id(user_id, name)

    await db.counters.update_one(
        {"id": counter_id},
        {"$setOnInsert": {"id": counter_id, "user_id": user_id, "name": name, "value": floor}},
        upsert=True,
        session=session
    )
    # Ne descend jamais: seul un compteur en dessous du plancher est modifié
    await db.counters.update_one(
        {"id": counter_id, "value": {"$lt": floor}},
        {"$set": {"value": floor}},
        session=session
    )

    counter = await db.counters.find_one_and_update(
        {"id": counter_id},
        {"$inc": {"value": 1}, "$set": {"updated_at": now_iso()}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
        session=session
    )
    return int(counter["value"])


async def next_invoice_number(user_id: str, business_info: Optional[Dict], session=None) -> int:
    """
    Attribue le prochain numéro de facture.

    Doit être appelé dans la même transaction que l'insertion de la facture:
    si la transaction est annulée, le compteur l'est aussi.
    """
    start = int((business_info or {}).get("invoice_number_start") or 1)
    highest = await highest_invoice_number(user_id, session=session)
    floor = max(start - 1, highest)

    number = await _increment_counter(user_id, INVOICE_COUNTER, floor, session=session)

    await db.business_info.update_one(
        {"user_id": user_id},
        {"$set": {"current_invoice_number": number, "updated_at": now_iso()}},
        session=session
    )

    logger.info(f"[NUMEROTATION] user={user_id} facture n°{number} (start={start}, max={highest})")
    return number


async def next_credit_note_number(
    user_id: str,
    invoice_number: int,
    business_info: Optional[Dict],
    session=None
) -> str:
    """Numéro d'avoir: {prefix}{numéro facture}-{séquence sur 3 chiffres}"""
    prefix = (business_info or {}).get("credit_note_prefix") or DEFAULT_CREDIT_NOTE_PREFIX
    seq = await _increment_counter(user_id, CREDIT_NOTE_COUNTER, 0, session=session)
    numero = f"{prefix}{invoice_number}-{seq:03d}"
    logger.info(f"[NUMEROTATION] user={user_id} avoir {numero}")
    return numero
