"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Service Factures                                                  ║
║                                                                              ║
║  Création mensuelle, prévisualisation, duplication, lecture, suppression     ║
║  d'un brouillon.                                                             ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - une seule facture non annulée par client et par mois                      ║
║  - seules les prestations non rattachées du mois sont facturées              ║
║  - les montants sont calculés depuis les prestations, jamais saisis          ║
║  - une nouvelle facture est un brouillon (draft, non envoyé)                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from config import db, now_iso, transaction
from models.facture import PaymentStatus, LegalStatus
from services import pdf_renderer
from services.calculs import compute_totals, nombre_heures, jours_retard
from services.errors import NotFound, InvalidState, Conflict
from services.event_logger import log_event
from services.facture_state_machine import load_invoice, refresh_overdue
from services.numerotation import next_invoice_number, highest_invoice_number
from services.prestations import (
    MIRROR_DEFAULTS,
    build_prestation_doc,
    clone_fields,
    get_prestations_by_ids,
    period_range,
    sync_prestations_with_invoice,
)
from services.settings import get_business_info_with_defaults, require_business_info, payment_delay

logger = logging.getLogger("factures")


def build_invoice_doc(
    user_id: str,
    client: Dict,
    year: int,
    month: int,
    prestations: List[Dict],
    business_info: Dict,
    invoice_number: int
) -> Dict:
    """Document facture brouillon, montants recalculés depuis les prestations"""
    now = datetime.now(timezone.utc)
    return {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "client_id": client["id"],
        "client_name": client.get("name", ""),
        "prestations": [p["id"] for p in prestations],
        "date_facture": now.isoformat(),
        "date_echeance": (now + timedelta(days=payment_delay(business_info))).isoformat(),
        "invoice_number": invoice_number,
        "year": year,
        "month": month,
        **compute_totals(prestations, business_info),
        "nombre_heures": nombre_heures(prestations),
        "status": PaymentStatus.DRAFT.value,
        "statut": LegalStatus.VALIDE.value,
        "locked": False,
        "is_sent_to_client": False,
        "date_sent": None,
        "pdf_path": None,
        "date_paiement": None,
        "methode_paiement": None,
        "commentaire_paiement": None,
        "historique_paiements": [],
        "rappels": [],
        "versions": [],
        "rectifications": [],
        "is_rectification": False,
        "rectification_info": None,
        "avoir": None,
        "annulation": None,
        "created_at": now.isoformat(),
        "updated_at": now.isoformat(),
    }


async def insert_invoice(invoice: Dict, session=None):
    """
    Raises:
        Conflict si le numéro est déjà porté par une autre facture de l'utilisateur
    """
    try:
        await db.factures.insert_one(invoice, session=session)
    except DuplicateKeyError as e:
        raise Conflict(f"Numéro de facture {invoice['invoice_number']} déjà utilisé") from e
    invoice.pop("_id", None)


async def _get_client(user_id: str, client_id: str, session=None) -> Dict:
    client = await db.clients.find_one({"id": client_id, "user_id": user_id}, {"_id": 0}, session=session)
    if not client:
        raise NotFound("Client non trouvé")
    return client


async def _unbilled_prestations(user_id: str, client_id: str, year: int, month: int, session=None) -> List[Dict]:
    return await db.prestations.find({
        "user_id": user_id,
        "client_id": client_id,
        "invoice_id": None,
        "date": period_range(year, month)
    }, {"_id": 0}, session=session).sort("date", 1).to_list(1000)


# ==================== CRÉATION ====================

async def create_invoice(user_id: str, client_id: str, year: int, month: int) -> Dict:
    """
    Facture les prestations non rattachées du client pour le mois.

    Raises:
        NotFound: client, informations entreprise ou prestations absents
        Conflict: une facture non annulée existe déjà pour ce client et ce mois
    """
    async with pdf_renderer.pdf_writes() as writes, transaction() as session:
        client = await _get_client(user_id, client_id, session=session)
        business_info = await require_business_info(user_id, session=session)

        existing = await db.factures.find_one({
            "user_id": user_id,
            "client_id": client_id,
            "year": year,
            "month": month,
            "status": {"$ne": PaymentStatus.CANCELLED.value}
        }, {"_id": 0, "id": 1, "invoice_number": 1}, session=session)
        if existing:
            raise Conflict(
                f"Une facture pour ce client et ce mois existe déjà (n°{existing['invoice_number']})"
            )

        prestations = await _unbilled_prestations(user_id, client_id, year, month, session=session)
        if not prestations:
            raise NotFound("Aucune prestation trouvée pour ce client et ce mois")

        number = await next_invoice_number(user_id, business_info, session=session)
        invoice = build_invoice_doc(user_id, client, year, month, prestations, business_info, number)
        invoice["pdf_path"] = writes.track(
            pdf_renderer.store_invoice_pdf(invoice, prestations, client, business_info)
        )

        await insert_invoice(invoice, session=session)
        await sync_prestations_with_invoice(invoice, session=session)

        await log_event(
            action="invoice_create",
            entity_type="facture",
            entity_id=invoice["id"],
            user=user_id,
            details={"invoice_number": number, "year": year, "month": month,
                     "montant_ht": invoice["montant_ht"], "prestations": len(prestations)},
            related={"client_id": client_id},
            session=session
        )

    logger.info(
        f"[FACTURE] Créée n°{number} client={client.get('name')} {month:02d}/{year} "
        f"HT={invoice['montant_ht']} ({len(prestations)} prestations)"
    )
    return invoice


async def preview_invoice_pdf(user_id: str, client_id: str, year: int, month: int) -> bytes:
    """PDF de la facture qui serait créée, sans rien enregistrer ni consommer de numéro"""
    client = await _get_client(user_id, client_id)
    business_info = await require_business_info(user_id)

    prestations = await _unbilled_prestations(user_id, client_id, year, month)
    if not prestations:
        raise NotFound("Aucune prestation trouvée pour ce client et ce mois")

    start = int(business_info.get("invoice_number_start") or 1)
    provisional = max(start, await highest_invoice_number(user_id) + 1)

    invoice = build_invoice_doc(user_id, client, year, month, prestations, business_info, provisional)
    return pdf_renderer.render_invoice_pdf(invoice, prestations, client, business_info)


# ==================== DUPLICATION ====================

async def duplicate_invoice(user_id: str, invoice_id: str) -> Dict:
    """
    Nouvelle facture brouillon avec des copies fraîches des prestations.
    Les copies sont créées non rattachées puis rattachées à la nouvelle facture.
    """
    async with pdf_renderer.pdf_writes() as writes, transaction() as session:
        source = await load_invoice(user_id, invoice_id, session=session)
        client = await _get_client(user_id, source["client_id"], session=session)
        business_info = await get_business_info_with_defaults(user_id, session=session)

        originals = await get_prestations_by_ids(source.get("prestations", []), session=session)
        copies = [build_prestation_doc(user_id, p["client_id"], clone_fields(p)) for p in originals]
        if copies:
            await db.prestations.insert_many(copies, session=session)
            for copy in copies:
                copy.pop("_id", None)

        number = await next_invoice_number(user_id, business_info, session=session)
        invoice = build_invoice_doc(
            user_id, client, source["year"], source["month"], copies, business_info, number
        )
        invoice["pdf_path"] = writes.track(
            pdf_renderer.store_invoice_pdf(invoice, copies, client, business_info)
        )

        await insert_invoice(invoice, session=session)
        await sync_prestations_with_invoice(invoice, session=session)

        await log_event(
            action="invoice_duplicate",
            entity_type="facture",
            entity_id=invoice["id"],
            user=user_id,
            details={"invoice_number": number, "source_invoice_number": source.get("invoice_number")},
            related={"source_invoice_id": invoice_id, "client_id": source["client_id"]},
            session=session
        )

    logger.info(f"[FACTURE] Dupliquée n°{source.get('invoice_number')} -> n°{number}")
    return invoice


# ==================== LECTURE ====================

def with_computed_fields(invoice: Dict) -> Dict:
    invoice["jours_retard"] = (
        jours_retard(invoice.get("date_echeance"))
        if invoice.get("status") in (PaymentStatus.UNPAID.value, PaymentStatus.OVERDUE.value)
        else 0
    )
    return invoice


async def list_invoices(
    user_id: str,
    client_id: Optional[str] = None,
    status: Optional[str] = None,
    statut: Optional[str] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    limit: int = 500
) -> List[Dict]:
    await refresh_overdue(user_id)

    query = {"user_id": user_id}
    if client_id:
        query["client_id"] = client_id
    if status:
        query["status"] = status
    if statut:
        query["statut"] = statut
    if year:
        query["year"] = year
    if month:
        query["month"] = month

    invoices = await db.factures.find(query, {"_id": 0}).sort("invoice_number", -1).to_list(limit)
    return [with_computed_fields(inv) for inv in invoices]


async def get_invoice_detail(user_id: str, invoice_id: str) -> Dict:
    invoice = await load_invoice(user_id, invoice_id)
    invoice["prestations_details"] = await get_prestations_by_ids(invoice.get("prestations", []))
    invoice["client"] = await db.clients.find_one({"id": invoice["client_id"]}, {"_id": 0})
    return with_computed_fields(invoice)


async def get_last_invoice_number(user_id: str) -> int:
    return await highest_invoice_number(user_id)


async def get_invoice_pdf_path(user_id: str, invoice_id: str) -> str:
    """Chemin absolu du PDF; regénéré si le fichier n'existe plus"""
    invoice = await load_invoice(user_id, invoice_id)
    pdf_path = invoice.get("pdf_path")
    if pdf_path and pdf_renderer.resolve_pdf_path(pdf_path).exists():
        return str(pdf_renderer.resolve_pdf_path(pdf_path))

    client = await _get_client(user_id, invoice["client_id"])
    business_info = await get_business_info_with_defaults(user_id)
    prestations = await get_prestations_by_ids(invoice.get("prestations", []))

    pdf_path = pdf_renderer.store_invoice_pdf(invoice, prestations, client, business_info)
    await db.factures.update_one({"id": invoice_id}, {"$set": {"pdf_path": pdf_path}})
    logger.info(f"[FACTURE] PDF regénéré n°{invoice.get('invoice_number')}")
    return str(pdf_renderer.resolve_pdf_path(pdf_path))


# ==================== SUPPRESSION ====================

async def delete_invoice(user_id: str, invoice_id: str):
    """
    Supprime un brouillon non envoyé et non verrouillé.
    Les prestations redeviennent facturables.
    """
    async with transaction() as session:
        invoice = await load_invoice(user_id, invoice_id, session=session)

        if invoice.get("status") != PaymentStatus.DRAFT.value:
            raise InvalidState("Seul un brouillon peut être supprimé")
        if invoice.get("is_sent_to_client"):
            raise InvalidState("Une facture envoyée au client ne peut pas être supprimée")
        if invoice.get("locked"):
            raise InvalidState("Une facture verrouillée ne peut pas être supprimée")

        await db.prestations.update_many(
            {"id": {"$in": invoice.get("prestations", [])}},
            {"$set": {**MIRROR_DEFAULTS, "updated_at": now_iso()}},
            session=session
        )
        await db.factures.delete_one({"id": invoice_id}, session=session)

        await log_event(
            action="invoice_delete",
            entity_type="facture",
            entity_id=invoice_id,
            user=user_id,
            details={"invoice_number": invoice.get("invoice_number")},
            related={"client_id": invoice.get("client_id")},
            session=session
        )

    pdf_renderer.remove_pdf(invoice.get("pdf_path"))
    logger.info(f"[FACTURE] Brouillon n°{invoice.get('invoice_number')} supprimé")
