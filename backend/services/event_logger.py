"""
FACTURO - Event Logger

Journal d'audit centralisé:
- log_event: une ligne dans la collection event_log par action sensible
- append_to_invoice_log: seul écrivain des logs embarqués d'une facture
  (historique_paiements, rappels, versions, rectifications), $push uniquement
"""

import uuid
from config import db, now_iso
from models.facture import INVOICE_LOGS


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None,
    session=None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. invoice_create, invoice_rectify, invoice_paid, credit_note_create
        entity_type: facture | prestation | client | business_info
        entity_id: ID of the primary entity
        user: user_id performing the action
        details: free-form dict (reason, old_value, new_value, etc.)
        related: linked entity IDs (original_invoice_id, client_id, etc.)
    """
    await db.event_log.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    }, session=session)


async def append_to_invoice_log(invoice_id: str, log_name: str, entry: dict, session=None):
    """
    Ajoute une entrée à un log embarqué de la facture.
    Les entrées existantes ne sont jamais réécrites.
    """
    if log_name not in INVOICE_LOGS:
        raise ValueError(f"Log de facture inconnu: {log_name}. Valides: {INVOICE_LOGS}")

    await db.factures.update_one(
        {"id": invoice_id},
        {"$push": {log_name: entry}},
        session=session
    )
