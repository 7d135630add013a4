"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Moteur de rectification                                           ║
║                                                                              ║
║  Une facture émise n'est jamais modifiée: on émet une facture                ║
║  rectificative chaînée à l'originale.                                        ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - refusée si la facture est payée ou verrouillée                            ║
║  - les prestations d'origine ne sont jamais modifiées: elles sont            ║
║    clonées, l'originale reçoit seulement is_replaced + replaced_by           ║
║  - chaque ligne produit un diff MODIFIEE / AJOUTEE / SUPPRIMEE               ║
║  - montants recalculés depuis les nouvelles prestations                      ║
║  - l'originale passe RECTIFIEE + locked, snapshot dans versions              ║
║  - tout se fait dans UNE transaction                                         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Dict, List

from config import db, now_iso, transaction
from models.facture import PaymentStatus, LegalStatus, DiffKind
from models.prestation import RectificationLine
from services import pdf_renderer
from services.calculs import compute_deltas
from services.errors import NotFound, InvalidState, ValidationFailed
from services.event_logger import log_event, append_to_invoice_log
from services.facture_state_machine import (
    load_invoice,
    check_invoice_invariants,
    validate_legal_transition,
)
from services.factures import build_invoice_doc, insert_invoice
from services.numerotation import next_invoice_number
from services.prestations import (
    BILLING_FIELDS,
    build_prestation_doc,
    clone_fields,
    get_prestations_by_ids,
    sync_prestations_with_invoice,
)
from services.settings import get_business_info_with_defaults

logger = logging.getLogger("rectification")

SNAPSHOT_FIELDS = BILLING_FIELDS + ["total"]

CHAIN_SUMMARY_FIELDS = [
    "id", "invoice_number", "status", "statut", "locked", "is_rectification",
    "montant_ht", "montant_ttc", "date_facture", "year", "month",
]


def prestation_snapshot(prestation: Dict) -> Dict:
    return {"id": prestation["id"], **{k: prestation.get(k) for k in SNAPSHOT_FIELDS}}


def changed_fields(before: Dict, after: Dict) -> List[str]:
    return [k for k in SNAPSHOT_FIELDS if before.get(k) != after.get(k)]


def build_replacement_set(
    user_id: str,
    client_id: str,
    original_prestations: List[Dict],
    lines: List[RectificationLine],
    default_date: str
):
    """
    Construit les nouvelles prestations et les diffs de la rectification.

    Returns:
        (nouvelles prestations, diffs, {id origine: id remplaçante})

    Raises:
        ValidationFailed: id inconnu de la facture, id en double, champs invalides
    """
    by_id = {p["id"]: p for p in original_prestations}
    new_prestations, diffs, replaced = [], [], {}

    for line in lines:
        if line.is_new():
            fields = line.overrides()
            fields.setdefault("date", default_date)
            doc = build_prestation_doc(user_id, client_id, fields)
            diffs.append({
                "type": DiffKind.AJOUTEE.value,
                "prestation_id": doc["id"],
                "original_prestation_id": None,
                "before": None,
                "after": prestation_snapshot(doc),
                "changes": [],
            })
        else:
            source = by_id.get(line.id)
            if not source:
                raise ValidationFailed(f"La prestation {line.id} n'appartient pas à cette facture")
            if line.id in replaced:
                raise ValidationFailed(f"La prestation {line.id} est présente plusieurs fois")

            doc = build_prestation_doc(user_id, source["client_id"], clone_fields(source, line.overrides()))
            doc["original_prestation_id"] = source["id"]
            before, after = prestation_snapshot(source), prestation_snapshot(doc)
            diffs.append({
                "type": DiffKind.MODIFIEE.value,
                "prestation_id": doc["id"],
                "original_prestation_id": source["id"],
                "before": before,
                "after": after,
                "changes": changed_fields(before, after),
            })
            replaced[source["id"]] = doc["id"]

        new_prestations.append(doc)

    for prestation in original_prestations:
        if prestation["id"] not in replaced:
            diffs.append({
                "type": DiffKind.SUPPRIMEE.value,
                "prestation_id": None,
                "original_prestation_id": prestation["id"],
                "before": prestation_snapshot(prestation),
                "after": None,
                "changes": [],
            })

    return new_prestations, diffs, replaced


async def rectify_invoice(
    user_id: str,
    invoice_id: str,
    reason: str,
    reason_detail: str,
    lines: List[RectificationLine]
) -> Dict:
    """
    🔒 SEULE FONCTION AUTORISÉE pour rectifier une facture

    Raises:
        NotFound: facture absente
        InvalidState: facture payée ou verrouillée
        ValidationFailed: liste vide, id étranger à la facture, champs invalides
    """
    if not lines:
        raise ValidationFailed("Une rectification exige au moins une prestation")

    async with pdf_renderer.pdf_writes() as writes, transaction() as session:
        original = await load_invoice(user_id, invoice_id, session=session)

        if original.get("status") == PaymentStatus.PAID.value:
            raise InvalidState("Une facture payée ne peut pas être rectifiée: émettre un avoir")
        if original.get("locked"):
            raise InvalidState("Une facture verrouillée ne peut pas être rectifiée")
        validate_legal_transition(original, LegalStatus.RECTIFIEE.value)

        client = await db.clients.find_one({"id": original["client_id"]}, {"_id": 0}, session=session)
        if not client:
            raise NotFound("Client non trouvé")
        business_info = await get_business_info_with_defaults(user_id, session=session)

        original_prestations = await get_prestations_by_ids(original.get("prestations", []), session=session)
        new_prestations, diffs, replaced = build_replacement_set(
            user_id, original["client_id"], original_prestations, lines,
            default_date=original["date_facture"][:10]
        )

        await db.prestations.insert_many(new_prestations, session=session)
        for doc in new_prestations:
            doc.pop("_id", None)

        now = now_iso()
        for original_id, new_id in replaced.items():
            await db.prestations.update_one(
                {"id": original_id},
                {"$set": {"is_replaced": True, "replaced_by_prestation_id": new_id, "updated_at": now}},
                session=session
            )

        number = await next_invoice_number(user_id, business_info, session=session)
        invoice = build_invoice_doc(
            user_id, client, original["year"], original["month"], new_prestations, business_info, number
        )

        previous_chain = (original.get("rectification_info") or {}).get("rectification_chain") or []
        invoice["is_rectification"] = True
        invoice["rectification_info"] = {
            "original_invoice_id": original["id"],
            "original_invoice_number": original["invoice_number"],
            "rectification_chain": previous_chain + [original["id"]],
            "reason": reason,
            "reason_detail": reason_detail,
            "prestations_modifiees": diffs,
            **compute_deltas(invoice, original),
        }
        check_invoice_invariants(invoice)

        invoice["pdf_path"] = writes.track(
            pdf_renderer.store_invoice_pdf(invoice, new_prestations, client, business_info)
        )
        await insert_invoice(invoice, session=session)
        await sync_prestations_with_invoice(invoice, session=session)

        original_update = {"statut": LegalStatus.RECTIFIEE.value, "locked": True, "updated_at": now}
        rectified = {**original, **original_update}
        check_invoice_invariants(rectified)

        await db.factures.update_one({"id": original["id"]}, {"$set": original_update}, session=session)
        await append_to_invoice_log(original["id"], "rectifications", {
            "invoice_id": invoice["id"],
            "invoice_number": number,
            "date": now,
            "reason": reason,
            "reason_detail": reason_detail
        }, session=session)
        await append_to_invoice_log(original["id"], "versions", {
            "date": now,
            "action": "rectification",
            "montant_ht": original.get("montant_ht"),
            "taxe_urssaf": original.get("taxe_urssaf"),
            "montant_net": original.get("montant_net"),
            "montant_tva": original.get("montant_tva"),
            "montant_ttc": original.get("montant_ttc"),
            "nombre_heures": original.get("nombre_heures"),
            "prestations": original.get("prestations", []),
            "reason": reason,
            "reason_detail": reason_detail,
            "rectification_invoice_id": invoice["id"]
        }, session=session)
        await sync_prestations_with_invoice(rectified, session=session)

        await log_event(
            action="invoice_rectify",
            entity_type="facture",
            entity_id=invoice["id"],
            user=user_id,
            details={
                "invoice_number": number,
                "original_invoice_number": original["invoice_number"],
                "reason": reason,
                "difference_montant_ht": invoice["rectification_info"]["difference_montant_ht"],
                "diffs": len(diffs)
            },
            related={"original_invoice_id": original["id"], "client_id": original["client_id"]},
            session=session
        )

    logger.info(
        f"[STATE_MACHINE] Facture {original['invoice_number']} VALIDE -> RECTIFIEE | "
        f"rectificative n°{number} reason={reason} "
        f"delta_ht={invoice['rectification_info']['difference_montant_ht']}"
    )
    return invoice


def _summary(invoice: Dict) -> Dict:
    return {k: invoice.get(k) for k in CHAIN_SUMMARY_FIELDS}


async def get_rectification_chain(user_id: str, invoice_id: str) -> Dict:
    """
    Returns:
        ancestors: factures d'origine, de la plus ancienne à la plus récente
        descendants: rectifications issues de cette facture, par numéro croissant
    """
    invoice = await load_invoice(user_id, invoice_id)
    chain = (invoice.get("rectification_info") or {}).get("rectification_chain") or []

    ancestors = []
    if chain:
        docs = await db.factures.find(
            {"user_id": user_id, "id": {"$in": chain}}, {"_id": 0}
        ).to_list(len(chain))
        by_id = {d["id"]: d for d in docs}
        ancestors = [_summary(by_id[i]) for i in chain if i in by_id]

    descendants = await db.factures.find(
        {"user_id": user_id, "rectification_info.rectification_chain": invoice_id}, {"_id": 0}
    ).sort("invoice_number", 1).to_list(500)

    return {
        "invoice": _summary(invoice),
        "ancestors": ancestors,
        "descendants": [_summary(d) for d in descendants],
    }
