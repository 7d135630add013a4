"""
FACTURO - Service Settings

Informations entreprise et paramètres de facturation.
Collection: business_info (un document par user_id)

Paramètres lus par les autres services:
- taux_urssaf / taux_tva: calculs des montants
- invoice_number_start / current_invoice_number: numérotation
- features.invoice_status.payment_delay: date d'échéance
- features.automatic_reminders: seuils des rappels
- credit_note_prefix: numéro des avoirs
"""

import copy
import logging
from typing import Optional, Dict, Any

from config import db, now_iso
from models.business_info import DEFAULT_BUSINESS_INFO
from services.errors import NotFound, ValidationFailed
from services.numerotation import highest_invoice_number

logger = logging.getLogger("settings")


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Fusionne override dans une copie de base (dicts imbriqués inclus)"""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


async def get_business_info(user_id: str, session=None) -> Optional[Dict]:
    """Document brut, ou None si l'utilisateur n'a rien configuré"""
    return await db.business_info.find_one({"user_id": user_id}, {"_id": 0}, session=session)


async def get_business_info_with_defaults(user_id: str, session=None) -> Dict:
    """Retourne les informations entreprise (avec defaults)"""
    doc = await get_business_info(user_id, session=session)
    if not doc:
        return {**copy.deepcopy(DEFAULT_BUSINESS_INFO), "user_id": user_id}
    return _deep_merge(DEFAULT_BUSINESS_INFO, doc)


async def require_business_info(user_id: str, session=None) -> Dict:
    """
    Raises:
        NotFound si aucune information entreprise n'est enregistrée
    """
    doc = await get_business_info(user_id, session=session)
    if not doc:
        raise NotFound("Informations entreprise non trouvées")
    return _deep_merge(DEFAULT_BUSINESS_INFO, doc)


async def upsert_business_info(user_id: str, data: Dict[str, Any]) -> Dict:
    """Crée ou met à jour partiellement les informations entreprise"""
    existing = await get_business_info(user_id)
    now = now_iso()

    if existing:
        merged = _deep_merge(existing, data)
        merged["updated_at"] = now
        await db.business_info.update_one({"user_id": user_id}, {"$set": merged})
    else:
        merged = _deep_merge(DEFAULT_BUSINESS_INFO, data)
        merged.update({"user_id": user_id, "created_at": now, "updated_at": now})
        await db.business_info.insert_one(merged)

    logger.info(f"[SETTINGS] business_info mis à jour user={user_id} champs={list(data.keys())}")
    return await get_business_info_with_defaults(user_id)


async def get_invoice_settings(user_id: str) -> Dict:
    info = await get_business_info_with_defaults(user_id)
    last_number = await highest_invoice_number(user_id)
    start = int(info.get("invoice_number_start") or 1)
    return {
        "invoice_number_start": start,
        "current_invoice_number": info.get("current_invoice_number", 0),
        "last_invoice_number": last_number,
        "next_invoice_number": max(start, last_number + 1),
        "invoice_title": info.get("invoice_title", ""),
    }


async def update_invoice_settings(user_id: str, data: Dict[str, Any]) -> Dict:
    """
    Le numéro de départ doit dépasser le dernier numéro émis:
    un numéro n'est jamais réutilisé.
    """
    start = data.get("invoice_number_start")
    if start is not None:
        last_number = await highest_invoice_number(user_id)
        if last_number and start <= last_number:
            raise ValidationFailed(
                f"Le numéro de départ doit être supérieur au dernier numéro émis ({last_number})"
            )

    await upsert_business_info(user_id, data)
    return await get_invoice_settings(user_id)


# ---- Helpers de lecture ----

def payment_delay(business_info: Optional[Dict]) -> int:
    features = (business_info or {}).get("features") or {}
    delay = (features.get("invoice_status") or {}).get("payment_delay")
    return int(delay or DEFAULT_BUSINESS_INFO["features"]["invoice_status"]["payment_delay"])


def reminder_settings(business_info: Optional[Dict]) -> Dict:
    """Seuils de rappel (jours de retard) fusionnés avec les defaults"""
    defaults = DEFAULT_BUSINESS_INFO["features"]["automatic_reminders"]
    features = (business_info or {}).get("features") or {}
    return {**defaults, **{k: v for k, v in (features.get("automatic_reminders") or {}).items() if v is not None}}
