"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Service Prestations                                               ║
║                                                                              ║
║  GARDE DE CYCLE DE VIE:                                                      ║
║  Une prestation rattachée à une facture payée, verrouillée ou envoyée        ║
║  est immuable (update / delete refusés: PrestationLocked).                   ║
║                                                                              ║
║  Les champs miroirs (invoice_status, invoice_locked, invoice_paid,           ║
║  invoice_is_sent_to_client) sont resynchronisés à chaque transition          ║
║  de la facture via sync_prestations_with_invoice().                          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from typing import Dict, List, Optional

from config import db, now_iso, transaction
from models.facture import PaymentStatus
from services import pdf_renderer
from services.calculs import compute_totals, nombre_heures, normalize_prestation
from services.errors import NotFound, PrestationLocked, ValidationFailed
from services.event_logger import log_event
from services.settings import get_business_info_with_defaults

logger = logging.getLogger("prestations")

MIRROR_DEFAULTS = {
    "invoice_id": None,
    "invoice_status": None,
    "invoice_is_sent_to_client": False,
    "invoice_locked": False,
    "invoice_paid": False,
}


def mirror_fields(invoice: Dict) -> Dict:
    """Champs miroirs d'une prestation pour l'état courant de sa facture"""
    return {
        "invoice_id": invoice["id"],
        "invoice_status": invoice.get("status"),
        "invoice_is_sent_to_client": bool(invoice.get("is_sent_to_client")),
        "invoice_locked": bool(invoice.get("locked")),
        "invoice_paid": invoice.get("status") == PaymentStatus.PAID.value,
    }


def build_prestation_doc(user_id: str, client_id: str, fields: Dict) -> Dict:
    """Document prestation prêt à insérer (total recalculé, non rattaché)"""
    now = now_iso()
    doc = normalize_prestation(fields)
    doc.update({
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "client_id": client_id,
        "is_replaced": False,
        "replaced_by_prestation_id": None,
        "original_prestation_id": None,
        "created_at": now,
        "updated_at": now,
    })
    doc.update(MIRROR_DEFAULTS)
    return doc


def ensure_prestation_mutable(prestation: Dict):
    """
    Raises:
        PrestationLocked si la facture rattachée est payée, verrouillée ou envoyée
    """
    if prestation.get("invoice_paid"):
        raise PrestationLocked("Prestation rattachée à une facture payée: modification interdite")
    if prestation.get("invoice_locked"):
        raise PrestationLocked("Prestation rattachée à une facture verrouillée: modification interdite")
    if prestation.get("invoice_is_sent_to_client"):
        raise PrestationLocked("Prestation rattachée à une facture envoyée au client: modification interdite")


async def get_prestation(user_id: str, prestation_id: str, session=None) -> Dict:
    prestation = await db.prestations.find_one(
        {"id": prestation_id, "user_id": user_id}, {"_id": 0}, session=session
    )
    if not prestation:
        raise NotFound("Prestation non trouvée")
    return prestation


async def get_prestations_by_ids(ids: List[str], session=None) -> List[Dict]:
    """Prestations dans l'ordre de la liste d'ids"""
    if not ids:
        return []
    docs = await db.prestations.find({"id": {"$in": ids}}, {"_id": 0}, session=session).to_list(len(ids))
    by_id = {d["id"]: d for d in docs}
    return [by_id[i] for i in ids if i in by_id]


async def list_prestations(
    user_id: str,
    client_id: Optional[str] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    unbilled_only: bool = False,
    limit: int = 500
) -> List[Dict]:
    query = {"user_id": user_id}
    if client_id:
        query["client_id"] = client_id
    if year and month:
        query["date"] = period_range(year, month)
    if unbilled_only:
        query["invoice_id"] = None

    return await db.prestations.find(query, {"_id": 0}).sort("date", 1).to_list(limit)


def period_range(year: int, month: int) -> Dict:
    """Filtre date ISO (YYYY-MM-DD) couvrant le mois"""
    start = f"{year:04d}-{month:02d}-01"
    end = f"{year + 1:04d}-01-01" if month == 12 else f"{year:04d}-{month + 1:02d}-01"
    return {"$gte": start, "$lt": end}


async def create_prestation(user_id: str, data: Dict) -> Dict:
    client = await db.clients.find_one({"id": data["client_id"], "user_id": user_id}, {"_id": 0})
    if not client:
        raise NotFound("Client non trouvé")

    fields = {k: v for k, v in data.items() if k != "client_id"}
    if not fields.get("date"):
        fields["date"] = now_iso()[:10]

    doc = build_prestation_doc(user_id, data["client_id"], fields)
    await db.prestations.insert_one(doc)
    doc.pop("_id", None)

    logger.info(f"[PRESTATION] Créée {doc['id']} client={doc['client_id']} total={doc['total']}")
    return doc


def ensure_same_invoice_scope(invoice: Dict, client_id: str, date: str):
    """
    Une prestation rattachée reste dans le client et le mois de sa facture.

    Raises:
        ValidationFailed si le client ou la date sortent de la facture
    """
    if client_id != invoice["client_id"]:
        raise ValidationFailed(
            f"Prestation rattachée à la facture n°{invoice.get('invoice_number')}: "
            f"le client ne peut pas être changé"
        )
    period = period_range(invoice["year"], invoice["month"])
    if not (period["$gte"] <= str(date)[:10] < period["$lt"]):
        raise ValidationFailed(
            f"Prestation rattachée à la facture n°{invoice.get('invoice_number')}: "
            f"la date doit rester en {invoice['month']:02d}/{invoice['year']}"
        )


async def update_prestation(user_id: str, prestation_id: str, data: Dict) -> Dict:
    """
    Remplace les champs d'une prestation modifiable.
    Si elle est rattachée à un brouillon, elle reste dans son client et son mois,
    les totaux et le PDF de la facture sont régénérés.
    """
    async with pdf_renderer.pdf_writes() as writes, transaction() as session:
        prestation = await get_prestation(user_id, prestation_id, session=session)
        ensure_prestation_mutable(prestation)

        client_id = data.get("client_id") or prestation["client_id"]
        if client_id != prestation["client_id"]:
            client = await db.clients.find_one(
                {"id": client_id, "user_id": user_id}, {"_id": 0}, session=session
            )
            if not client:
                raise NotFound("Client non trouvé")

        fields = {k: v for k, v in data.items() if k != "client_id"}
        if not fields.get("date"):
            fields["date"] = prestation.get("date")

        update = normalize_prestation(fields)
        update["client_id"] = client_id
        update["updated_at"] = now_iso()

        invoice_id = prestation.get("invoice_id")
        if invoice_id:
            invoice = await db.factures.find_one({"id": invoice_id}, {"_id": 0}, session=session)
            if invoice:
                ensure_same_invoice_scope(invoice, client_id, update.get("date"))

        await db.prestations.update_one({"id": prestation_id}, {"$set": update}, session=session)

        if invoice_id:
            await recompute_invoice_totals(invoice_id, writes, session=session)

    logger.info(f"[PRESTATION] Modifiée {prestation_id} total={update['total']}")
    return await get_prestation(user_id, prestation_id)


async def delete_prestation(user_id: str, prestation_id: str):
    async with pdf_renderer.pdf_writes() as writes, transaction() as session:
        prestation = await get_prestation(user_id, prestation_id, session=session)
        ensure_prestation_mutable(prestation)

        await db.prestations.delete_one({"id": prestation_id}, session=session)

        invoice_id = prestation.get("invoice_id")
        if invoice_id:
            await db.factures.update_one(
                {"id": invoice_id},
                {"$pull": {"prestations": prestation_id}},
                session=session
            )
            await recompute_invoice_totals(invoice_id, writes, session=session)

    await log_event(
        action="prestation_delete",
        entity_type="prestation",
        entity_id=prestation_id,
        user=user_id,
        details={"total": prestation.get("total"), "description": prestation.get("description")},
        related={"invoice_id": prestation.get("invoice_id"), "client_id": prestation.get("client_id")}
    )
    logger.info(f"[PRESTATION] Supprimée {prestation_id}")


async def recompute_invoice_totals(invoice_id: str, writes: pdf_renderer.PdfWrites, session=None):
    """
    Recalcule les montants d'une facture brouillon depuis ses prestations courantes
    et régénère son PDF. L'ancien PDF est supprimé après la transaction.
    """
    invoice = await db.factures.find_one({"id": invoice_id}, {"_id": 0}, session=session)
    if not invoice or invoice.get("locked") or invoice.get("status") != PaymentStatus.DRAFT.value:
        return

    business_info = await get_business_info_with_defaults(invoice["user_id"], session=session)
    client = await db.clients.find_one({"id": invoice["client_id"]}, {"_id": 0}, session=session) or {}
    prestations = await get_prestations_by_ids(invoice.get("prestations", []), session=session)
    totals = compute_totals(prestations, business_info)
    invoice.update(totals)
    invoice["nombre_heures"] = nombre_heures(prestations)

    pdf_path = writes.track(pdf_renderer.store_invoice_pdf(invoice, prestations, client, business_info))
    writes.replace(invoice.get("pdf_path"))

    await db.factures.update_one(
        {"id": invoice_id},
        {"$set": {
            **totals,
            "nombre_heures": invoice["nombre_heures"],
            "pdf_path": pdf_path,
            "updated_at": now_iso()
        }},
        session=session
    )
    logger.info(f"[PRESTATION] Totaux et PDF recalculés facture {invoice_id}: HT={totals['montant_ht']}")


async def sync_prestations_with_invoice(invoice: Dict, session=None) -> int:
    """
    Recopie l'état de la facture sur toutes ses prestations.
    Returns: nombre de prestations mises à jour
    """
    ids = invoice.get("prestations", [])
    if not ids:
        return 0

    result = await db.prestations.update_many(
        {"id": {"$in": ids}},
        {"$set": {**mirror_fields(invoice), "updated_at": now_iso()}},
        session=session
    )
    return result.modified_count


BILLING_FIELDS = [
    "description", "billing_type", "hours", "minutes", "hourly_rate",
    "fixed_price", "quantity", "duration", "duration_unit", "date",
]


def clone_fields(prestation: Dict, overrides: Optional[Dict] = None) -> Dict:
    """Champs facturables d'une prestation, surchargés par overrides"""
    fields = {k: prestation.get(k) for k in BILLING_FIELDS}
    fields.update(overrides or {})
    return fields
