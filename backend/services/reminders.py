"""
FACTURO - Rappels de paiement automatiques

Chaque jour (scheduler, 9h Europe/Paris) ou à la demande:
- factures unpaid / overdue dont l'échéance est dépassée
- utilisateurs ayant activé features.automatic_reminders
- rappel premier / deuxieme / troisieme selon les jours de retard
- un rappel déjà envoyé n'est jamais renvoyé
- résultat ajouté au log rappels (status sent / failed)
"""

import logging
from typing import Dict, List, Optional

from config import db, now_iso
from models.facture import PaymentStatus, ReminderType
from services.calculs import jours_retard
from services.event_logger import log_event, append_to_invoice_log
from services.facture_state_machine import refresh_overdue
from services.settings import get_business_info_with_defaults, reminder_settings

logger = logging.getLogger("reminders")

REMINDER_STATUS_SENT = "sent"
REMINDER_STATUS_FAILED = "failed"

# Du plus grave au moins grave: le premier seuil atteint l'emporte
REMINDER_THRESHOLDS = [
    (ReminderType.TROISIEME.value, "third_reminder"),
    (ReminderType.DEUXIEME.value, "second_reminder"),
    (ReminderType.PREMIER.value, "first_reminder"),
]


def get_prochain_rappel(retard: int, settings: Dict, rappels: Optional[List[Dict]] = None) -> Optional[str]:
    """
    Type de rappel à envoyer pour ce retard, ou None.

    Le seuil le plus élevé atteint est retenu; rien n'est envoyé
    s'il a déjà été envoyé avec succès.
    """
    already_sent = {
        r.get("type") for r in (rappels or []) if r.get("status") == REMINDER_STATUS_SENT
    }
    for reminder_type, key in REMINDER_THRESHOLDS:
        threshold = settings.get(key)
        if threshold and retard >= threshold:
            return None if reminder_type in already_sent else reminder_type
    return None


def format_montant(value) -> str:
    formatted = f"{float(value or 0):,.2f}".replace(",", " ").replace(".", ",")
    return f"{formatted} €"


def build_reminder_message(reminder_type: str, invoice: Dict, client: Dict, business_info: Dict) -> Dict:
    """Sujet et corps texte du rappel"""
    number = invoice.get("invoice_number")
    montant = format_montant(invoice.get("montant_ttc"))
    signature = f"\n\nCordialement,\n{business_info.get('name', '')}"
    greeting = f"Cher {client.get('name', '')},\n\n"

    if reminder_type == ReminderType.PREMIER.value:
        subject = f"Premier rappel - Facture {number}"
        body = (f"Votre facture {number} d'un montant de {montant} est arrivée à échéance.\n"
                f"Merci de procéder au règlement dans les plus brefs délais.")
    elif reminder_type == ReminderType.DEUXIEME.value:
        subject = f"Second rappel - Facture {number}"
        body = (f"Nous n'avons toujours pas reçu le règlement de la facture {number} "
                f"d'un montant de {montant}.\nMerci de régulariser la situation rapidement.")
    else:
        subject = f"Dernier rappel - Facture {number}"
        body = (f"Ceci est notre dernier rappel concernant la facture {number} "
                f"d'un montant de {montant}.\nSans règlement de votre part sous 48 heures, "
                f"nous serons contraints de prendre des mesures complémentaires.")

    return {"subject": subject, "text": greeting + body + signature}


async def process_factures(user_id: Optional[str] = None) -> Dict:
    """
    Envoie les rappels dus.
    Returns: {"checked": n, "sent": n, "failed": n}
    """
    from email_service import email_service

    await refresh_overdue(user_id)

    query = {"status": {"$in": [PaymentStatus.UNPAID.value, PaymentStatus.OVERDUE.value]},
             "date_echeance": {"$ne": None}}
    if user_id:
        query["user_id"] = user_id

    invoices = await db.factures.find(query, {"_id": 0}).to_list(5000)
    stats = {"checked": 0, "sent": 0, "failed": 0}
    settings_cache: Dict[str, Dict] = {}

    for invoice in invoices:
        owner = invoice["user_id"]
        if owner not in settings_cache:
            settings_cache[owner] = await get_business_info_with_defaults(owner)
        business_info = settings_cache[owner]

        settings = reminder_settings(business_info)
        if not settings.get("enabled"):
            continue

        stats["checked"] += 1
        retard = jours_retard(invoice.get("date_echeance"))
        reminder_type = get_prochain_rappel(retard, settings, invoice.get("rappels"))
        if not reminder_type:
            continue

        client = await db.clients.find_one({"id": invoice["client_id"]}, {"_id": 0}) or {}
        message = build_reminder_message(reminder_type, invoice, client, business_info)

        sent = False
        if client.get("email"):
            sent = email_service.send_payment_reminder(
                to_email=client["email"],
                subject=message["subject"],
                text=message["text"],
                reply_to=business_info.get("email") or None
            )
        else:
            logger.warning(f"[REMINDER] Facture {invoice.get('invoice_number')}: client sans email")

        status = REMINDER_STATUS_SENT if sent else REMINDER_STATUS_FAILED
        await append_to_invoice_log(invoice["id"], "rappels", {
            "type": reminder_type,
            "date": now_iso(),
            "status": status,
            "jours_retard": retard
        })
        await log_event(
            action="invoice_reminder",
            entity_type="facture",
            entity_id=invoice["id"],
            user=owner,
            details={"invoice_number": invoice.get("invoice_number"), "type": reminder_type,
                     "status": status, "jours_retard": retard},
            related={"client_id": invoice.get("client_id")}
        )

        stats["sent" if sent else "failed"] += 1
        logger.info(
            f"[REMINDER] Facture {invoice.get('invoice_number')} rappel {reminder_type} "
            f"({retard}j de retard) -> {status}"
        )

    logger.info(f"[REMINDER] Traitement terminé: {stats}")
    return stats
