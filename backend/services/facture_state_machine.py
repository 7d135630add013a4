"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Facture State Machine                                             ║
║                                                                              ║
║  RÈGLES STRICTES DE TRANSITION DE STATUT                                     ║
║                                                                              ║
║  SEUL CE MODULE peut marquer une facture payée, annulée ou envoyée           ║
║  SEUL CE MODULE peut émettre un avoir                                        ║
║  (la rectification passe par services/rectification.py)                      ║
║                                                                              ║
║  INVARIANTS DE SÉCURITÉ:                                                     ║
║  - status="paid" IMPLIQUE locked=True                                        ║
║  - status="cancelled" IMPLIQUE locked=True ET statut="ANNULEE"               ║
║  - statut="RECTIFIEE" IMPLIQUE locked=True                                   ║
║  - avoir IMPLIQUE status="paid", au plus un avoir par facture                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Dict, Any, Optional

from config import db, now_iso, transaction
from models.facture import PaymentStatus, LegalStatus
from services import pdf_renderer
from services.errors import NotFound, InvalidState, ValidationFailed, InternalError
from services.event_logger import log_event, append_to_invoice_log
from services.numerotation import next_credit_note_number
from services.prestations import sync_prestations_with_invoice
from services.settings import get_business_info_with_defaults

logger = logging.getLogger("facture_state_machine")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_PAYMENT_TRANSITIONS = {
    "draft": ["unpaid", "paid", "cancelled"],
    "unpaid": ["overdue", "paid", "cancelled"],
    "overdue": ["paid", "cancelled"],
    "paid": [],  # TERMINAL
    "cancelled": [],  # TERMINAL
}

VALID_LEGAL_TRANSITIONS = {
    "VALIDE": ["RECTIFIEE", "ANNULEE"],
    "RECTIFIEE": ["VALIDE"],  # uniquement quand sa dernière rectification active est annulée
    "ANNULEE": [],  # TERMINAL
}


# ════════════════════════════════════════════════════════════════════════════
# INVARIANT CHECKS
# ════════════════════════════════════════════════════════════════════════════

class FactureInvariantError(InternalError):
    """Raised when an invoice invariant would be violated"""
    pass


def check_invoice_invariants(invoice: Dict) -> bool:
    """
    Vérifie l'état d'une facture AVANT de l'écrire.

    INVARIANTS:
    - paid => locked
    - cancelled => locked et statut ANNULEE
    - RECTIFIEE => locked
    - is_rectification => rectification_info.original_invoice_id
    - avoir => paid
    """
    status = invoice.get("status")
    statut = invoice.get("statut")
    locked = bool(invoice.get("locked"))

    if status == PaymentStatus.PAID.value and not locked:
        raise FactureInvariantError("INVARIANT VIOLATION: status=paid requires locked=True")

    if status == PaymentStatus.CANCELLED.value and (not locked or statut != LegalStatus.ANNULEE.value):
        raise FactureInvariantError("INVARIANT VIOLATION: status=cancelled requires locked=True and statut=ANNULEE")

    if statut == LegalStatus.RECTIFIEE.value and not locked:
        raise FactureInvariantError("INVARIANT VIOLATION: statut=RECTIFIEE requires locked=True")

    if invoice.get("is_rectification") and not (invoice.get("rectification_info") or {}).get("original_invoice_id"):
        raise FactureInvariantError("INVARIANT VIOLATION: is_rectification requires original_invoice_id")

    if (invoice.get("avoir") or {}).get("numero") and status != PaymentStatus.PAID.value:
        raise FactureInvariantError("INVARIANT VIOLATION: avoir requires status=paid")

    return True


def validate_payment_transition(invoice: Dict, to_status: str) -> bool:
    """Valide qu'une transition de statut de paiement est autorisée."""
    from_status = invoice.get("status")
    valid_next = VALID_PAYMENT_TRANSITIONS.get(from_status, [])

    if to_status not in valid_next:
        raise InvalidState(
            f"Transition invalide: facture {invoice.get('invoice_number')} ne peut passer de "
            f"'{from_status}' à '{to_status}'. Transitions valides: {valid_next}"
        )
    return True


def validate_legal_transition(invoice: Dict, to_statut: str) -> bool:
    """Valide qu'une transition de statut légal est autorisée."""
    from_statut = invoice.get("statut")
    valid_next = VALID_LEGAL_TRANSITIONS.get(from_statut, [])

    if to_statut not in valid_next:
        raise InvalidState(
            f"Transition invalide: facture {invoice.get('invoice_number')} ne peut passer de "
            f"'{from_statut}' à '{to_statut}'. Transitions valides: {valid_next}"
        )
    return True


async def load_invoice(user_id: str, invoice_id: str, session=None) -> Dict:
    """
    Raises:
        NotFound si la facture n'existe pas pour cet utilisateur
    """
    invoice = await db.factures.find_one({"id": invoice_id, "user_id": user_id}, {"_id": 0}, session=session)
    if not invoice:
        raise NotFound("Facture non trouvée")
    return invoice


# ════════════════════════════════════════════════════════════════════════════
# SAFE STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

async def mark_paid(
    user_id: str,
    invoice_id: str,
    methode_paiement: str,
    commentaire: Optional[str] = None
) -> Dict[str, Any]:
    """
    🔒 SEULE FONCTION AUTORISÉE pour marquer une facture comme payée

    1. Refuse une facture déjà payée, annulée ou rectifiée
    2. Passe la facture en paid + locked
    3. Ajoute l'encaissement à historique_paiements
    4. Verrouille les prestations (invoice_paid)
    """
    async with transaction() as session:
        invoice = await load_invoice(user_id, invoice_id, session=session)

        if invoice.get("status") == PaymentStatus.PAID.value:
            raise InvalidState("Cette facture est déjà payée")
        if invoice.get("status") == PaymentStatus.CANCELLED.value:
            raise InvalidState("Une facture annulée ne peut pas être payée")
        if invoice.get("statut") == LegalStatus.RECTIFIEE.value:
            raise InvalidState("Une facture rectifiée ne peut pas être payée: régler la facture rectificative")

        validate_payment_transition(invoice, PaymentStatus.PAID.value)

        now = now_iso()
        update_data = {
            "status": PaymentStatus.PAID.value,
            "date_paiement": now,
            "methode_paiement": methode_paiement,
            "commentaire_paiement": commentaire,
            "locked": True,
            "updated_at": now
        }
        updated = {**invoice, **update_data}
        check_invoice_invariants(updated)

        await db.factures.update_one({"id": invoice_id}, {"$set": update_data}, session=session)
        await append_to_invoice_log(invoice_id, "historique_paiements", {
            "date": now,
            "montant": invoice.get("montant_ht", 0),
            "methode": methode_paiement,
            "commentaire": commentaire
        }, session=session)
        await sync_prestations_with_invoice(updated, session=session)

        await log_event(
            action="invoice_paid",
            entity_type="facture",
            entity_id=invoice_id,
            user=user_id,
            details={"invoice_number": invoice.get("invoice_number"), "methode": methode_paiement,
                     "montant_ht": invoice.get("montant_ht")},
            related={"client_id": invoice.get("client_id")},
            session=session
        )

    logger.info(
        f"[STATE_MACHINE] Facture {invoice.get('invoice_number')} {invoice.get('status')} -> paid | "
        f"methode={methode_paiement}"
    )
    return await load_invoice(user_id, invoice_id)


async def cancel_invoice(
    user_id: str,
    invoice_id: str,
    motif: str,
    commentaire: str = ""
) -> Dict[str, Any]:
    """
    🔒 Annule une facture (status cancelled, statut ANNULEE, locked)

    Si la facture annulée est une rectification et qu'aucune autre
    rectification active ne vise la même facture d'origine, l'origine
    redevient VALIDE et modifiable.
    """
    async with transaction() as session:
        invoice = await load_invoice(user_id, invoice_id, session=session)

        if invoice.get("status") == PaymentStatus.PAID.value:
            raise InvalidState("Une facture payée ne peut pas être annulée: émettre un avoir")
        if invoice.get("locked"):
            raise InvalidState("Une facture verrouillée ne peut pas être annulée")

        if invoice.get("is_rectification"):
            active_descendant = await db.factures.find_one({
                "user_id": user_id,
                "rectification_info.rectification_chain": invoice_id,
                "status": {"$ne": PaymentStatus.CANCELLED.value}
            }, {"_id": 0, "id": 1}, session=session)
            if active_descendant:
                raise InvalidState("Cette rectification a elle-même été rectifiée: annuler d'abord la plus récente")

        validate_payment_transition(invoice, PaymentStatus.CANCELLED.value)
        validate_legal_transition(invoice, LegalStatus.ANNULEE.value)

        now = now_iso()
        update_data = {
            "status": PaymentStatus.CANCELLED.value,
            "statut": LegalStatus.ANNULEE.value,
            "locked": True,
            "annulation": {
                "date": now,
                "motif": motif,
                "commentaire": commentaire,
                "cancelled_by": user_id
            },
            "updated_at": now
        }
        updated = {**invoice, **update_data}
        check_invoice_invariants(updated)

        await db.factures.update_one({"id": invoice_id}, {"$set": update_data}, session=session)
        await sync_prestations_with_invoice(updated, session=session)

        reverted_original = None
        if invoice.get("is_rectification"):
            reverted_original = await _revert_original_if_last(user_id, invoice, session=session)

        await log_event(
            action="invoice_cancel",
            entity_type="facture",
            entity_id=invoice_id,
            user=user_id,
            details={"invoice_number": invoice.get("invoice_number"), "motif": motif,
                     "commentaire": commentaire},
            related={"client_id": invoice.get("client_id"), "reverted_original_id": reverted_original},
            session=session
        )

    logger.info(
        f"[STATE_MACHINE] Facture {invoice.get('invoice_number')} {invoice.get('status')} -> cancelled | "
        f"motif={motif}" + (f" | origine {reverted_original} -> VALIDE" if reverted_original else "")
    )
    return await load_invoice(user_id, invoice_id)


async def _revert_original_if_last(user_id: str, cancelled: Dict, session=None) -> Optional[str]:
    """
    Repasse la facture d'origine en VALIDE si plus aucune rectification active ne la vise.
    Returns: id de l'origine si elle a été rétablie
    """
    original_id = (cancelled.get("rectification_info") or {}).get("original_invoice_id")
    other_active = await db.factures.find_one({
        "user_id": user_id,
        "id": {"$ne": cancelled["id"]},
        "rectification_info.original_invoice_id": original_id,
        "status": {"$ne": PaymentStatus.CANCELLED.value}
    }, {"_id": 0, "id": 1}, session=session)
    if other_active:
        return None

    original = await db.factures.find_one({"id": original_id}, {"_id": 0}, session=session)
    if not original or original.get("statut") != LegalStatus.RECTIFIEE.value:
        return None

    validate_legal_transition(original, LegalStatus.VALIDE.value)

    now = now_iso()
    update_data = {"statut": LegalStatus.VALIDE.value, "locked": False, "updated_at": now}
    reverted = {**original, **update_data}
    check_invoice_invariants(reverted)

    await db.factures.update_one({"id": original_id}, {"$set": update_data}, session=session)
    await append_to_invoice_log(original_id, "versions", {
        "date": now,
        "action": "rectification_annulee",
        "rectification_invoice_id": cancelled["id"],
        "rectification_invoice_number": cancelled.get("invoice_number"),
        "montant_ht": original.get("montant_ht"),
        "montant_ttc": original.get("montant_ttc")
    }, session=session)

    # Les prestations d'origine ne sont plus remplacées par celles de la rectification annulée
    await db.prestations.update_many(
        {
            "id": {"$in": original.get("prestations", [])},
            "replaced_by_prestation_id": {"$in": cancelled.get("prestations", [])}
        },
        {"$set": {"is_replaced": False, "replaced_by_prestation_id": None, "updated_at": now}},
        session=session
    )
    await sync_prestations_with_invoice(reverted, session=session)
    return original_id


async def create_credit_note(
    user_id: str,
    invoice_id: str,
    motif: str,
    montant: float,
    remboursement: bool = False,
    methode_remboursement: Optional[str] = None
) -> Dict[str, Any]:
    """
    🔒 SEULE FONCTION AUTORISÉE pour émettre un avoir

    - facture payée uniquement, un seul avoir par facture
    - 0 < montant <= montant_ttc
    - le statut de paiement reste "paid"
    """
    async with pdf_renderer.pdf_writes() as writes, transaction() as session:
        invoice = await load_invoice(user_id, invoice_id, session=session)

        if invoice.get("status") != PaymentStatus.PAID.value:
            raise InvalidState("Un avoir ne peut être émis que sur une facture payée")

        existing = invoice.get("avoir") or {}
        if existing.get("numero") and existing.get("montant"):
            raise InvalidState(f"Un avoir existe déjà pour cette facture ({existing['numero']})")

        if montant is None or montant <= 0:
            raise ValidationFailed("Le montant de l'avoir doit être positif")
        if montant > (invoice.get("montant_ttc") or 0):
            raise ValidationFailed(
                f"Le montant de l'avoir ({montant}) dépasse le montant TTC de la facture ({invoice.get('montant_ttc')})"
            )

        business_info = await get_business_info_with_defaults(user_id, session=session)
        numero = await next_credit_note_number(
            user_id, invoice["invoice_number"], business_info, session=session
        )

        now = now_iso()
        avoir = {
            "date": now,
            "numero": numero,
            "montant": montant,
            "motif": motif,
            "remboursement": bool(remboursement),
            "methode_remboursement": methode_remboursement if remboursement else None,
            "date_remboursement": now if remboursement else None,
            "pdf_path": None
        }
        updated = {**invoice, "avoir": avoir}
        check_invoice_invariants(updated)

        client = await db.clients.find_one({"id": invoice["client_id"]}, {"_id": 0}, session=session) or {}
        content = pdf_renderer.render_credit_note_pdf(updated, client, business_info)
        avoir["pdf_path"] = writes.track(pdf_renderer.store_pdf(
            content, pdf_renderer.credit_note_pdf_filename(updated, client.get("name", ""))
        ))

        await db.factures.update_one(
            {"id": invoice_id},
            {"$set": {"avoir": avoir, "updated_at": now}},
            session=session
        )

        await log_event(
            action="credit_note_create",
            entity_type="facture",
            entity_id=invoice_id,
            user=user_id,
            details={"numero": numero, "montant": montant, "motif": motif, "remboursement": bool(remboursement)},
            related={"client_id": invoice.get("client_id")},
            session=session
        )

    logger.info(f"[STATE_MACHINE] Facture {invoice.get('invoice_number')} avoir {numero} montant={montant}")
    return await load_invoice(user_id, invoice_id)


async def mark_sent(user_id: str, invoice_id: str) -> Dict[str, Any]:
    """
    🔒 Marque une facture comme envoyée au client (draft -> unpaid)

    Les prestations deviennent immuables (invoice_is_sent_to_client).
    """
    async with transaction() as session:
        invoice = await load_invoice(user_id, invoice_id, session=session)

        if invoice.get("is_sent_to_client"):
            raise InvalidState("Cette facture a déjà été envoyée au client")
        if invoice.get("status") == PaymentStatus.CANCELLED.value:
            raise InvalidState("Une facture annulée ne peut pas être envoyée")

        now = now_iso()
        update_data = {"is_sent_to_client": True, "date_sent": now, "updated_at": now}
        if invoice.get("status") == PaymentStatus.DRAFT.value:
            validate_payment_transition(invoice, PaymentStatus.UNPAID.value)
            update_data["status"] = PaymentStatus.UNPAID.value

        updated = {**invoice, **update_data}
        check_invoice_invariants(updated)

        await db.factures.update_one({"id": invoice_id}, {"$set": update_data}, session=session)
        await sync_prestations_with_invoice(updated, session=session)

        await log_event(
            action="invoice_sent",
            entity_type="facture",
            entity_id=invoice_id,
            user=user_id,
            details={"invoice_number": invoice.get("invoice_number")},
            related={"client_id": invoice.get("client_id")},
            session=session
        )

    logger.info(
        f"[STATE_MACHINE] Facture {invoice.get('invoice_number')} -> sent | status={updated['status']}"
    )
    return await load_invoice(user_id, invoice_id)


async def refresh_overdue(user_id: Optional[str] = None) -> int:
    """
    Passe en overdue les factures unpaid dont l'échéance est dépassée.
    Returns: nombre de factures passées en overdue
    """
    now = now_iso()
    query = {"status": PaymentStatus.UNPAID.value, "date_echeance": {"$lt": now}}
    if user_id:
        query["user_id"] = user_id

    invoices = await db.factures.find(query, {"_id": 0}).to_list(5000)
    count = 0
    for invoice in invoices:
        validate_payment_transition(invoice, PaymentStatus.OVERDUE.value)
        async with transaction() as session:
            result = await db.factures.update_one(
                {"id": invoice["id"], "status": PaymentStatus.UNPAID.value},
                {"$set": {"status": PaymentStatus.OVERDUE.value, "updated_at": now}},
                session=session
            )
            if result.modified_count:
                await sync_prestations_with_invoice(
                    {**invoice, "status": PaymentStatus.OVERDUE.value}, session=session
                )
                count += 1

    if count:
        logger.info(f"[STATE_MACHINE] {count} facture(s) unpaid -> overdue")
    return count
