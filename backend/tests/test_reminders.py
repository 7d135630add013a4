"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Rappels de paiement                                               ║
║                                                                              ║
║  1. Choix du rappel selon les jours de retard (fonction pure)                ║
║  2. process_factures: envoi, échec, pas de renvoi, feature désactivée        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest
from datetime import datetime, timezone, timedelta

from tests.data import USER_ID
from email_service import email_service
from services.facture_state_machine import mark_sent
from services.reminders import get_prochain_rappel, build_reminder_message, format_montant, process_factures

SETTINGS = {"enabled": True, "first_reminder": 7, "second_reminder": 15, "third_reminder": 30}


class TestProchainRappel:

    def test_not_late_enough(self):
        assert get_prochain_rappel(3, SETTINGS) is None

    def test_thresholds(self):
        assert get_prochain_rappel(7, SETTINGS) == "premier"
        assert get_prochain_rappel(20, SETTINGS) == "deuxieme"
        assert get_prochain_rappel(45, SETTINGS) == "troisieme"

    def test_already_sent_is_not_resent(self):
        rappels = [{"type": "premier", "status": "sent"}]
        assert get_prochain_rappel(10, SETTINGS, rappels) is None

    def test_failed_reminder_is_retried(self):
        rappels = [{"type": "premier", "status": "failed"}]
        assert get_prochain_rappel(10, SETTINGS, rappels) == "premier"

    def test_higher_threshold_after_lower_sent(self):
        rappels = [{"type": "premier", "status": "sent"}]
        assert get_prochain_rappel(16, SETTINGS, rappels) == "deuxieme"


class TestMessage:

    def test_format_montant(self):
        assert format_montant(1234.5) == "1 234,50 €"

    def test_last_reminder_wording(self):
        message = build_reminder_message(
            "troisieme", {"invoice_number": 12, "montant_ttc": 150}, {"name": "Atelier"}, {"name": "Camille"}
        )
        assert message["subject"] == "Dernier rappel - Facture 12"
        assert "150,00 €" in message["text"]
        assert message["text"].endswith("Camille")


@pytest.fixture
def sent_emails(monkeypatch):
    calls = []

    def fake_send(to_email, subject, text, reply_to=None):
        calls.append({"to": to_email, "subject": subject, "reply_to": reply_to})
        return True

    monkeypatch.setattr(email_service, "send_payment_reminder", fake_send)
    return calls


async def _make_late(db, invoice, days):
    await mark_sent(USER_ID, invoice["id"])
    echeance = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    await db.factures.update_one({"id": invoice["id"]}, {"$set": {"date_echeance": echeance}})


async def _enable_reminders(db):
    await db.business_info.update_one(
        {"user_id": USER_ID}, {"$set": {"features.automatic_reminders.enabled": True}}
    )


class TestProcessFactures:

    @pytest.mark.asyncio
    async def test_disabled_feature_sends_nothing(self, db, invoice, sent_emails):
        await _make_late(db, invoice, 10)

        stats = await process_factures(USER_ID)

        assert stats == {"checked": 0, "sent": 0, "failed": 0}
        assert sent_emails == []

    @pytest.mark.asyncio
    async def test_first_reminder_sent_once(self, db, invoice, client_doc, sent_emails):
        await _enable_reminders(db)
        await _make_late(db, invoice, 10)

        stats = await process_factures(USER_ID)

        assert stats["sent"] == 1
        assert sent_emails[0]["to"] == client_doc["email"]
        assert sent_emails[0]["subject"] == f"Premier rappel - Facture {invoice['invoice_number']}"
        assert sent_emails[0]["reply_to"] == "camille@martin-dev.fr"

        stored = await db.factures.find_one({"id": invoice["id"]}, {"_id": 0})
        assert stored["status"] == "overdue"
        assert stored["rappels"][-1]["type"] == "premier"
        assert stored["rappels"][-1]["status"] == "sent"
        assert stored["rappels"][-1]["jours_retard"] >= 9

        again = await process_factures(USER_ID)
        assert again["sent"] == 0
        assert len(sent_emails) == 1

    @pytest.mark.asyncio
    async def test_failed_send_is_logged(self, db, invoice, monkeypatch):
        monkeypatch.setattr(email_service, "send_payment_reminder", lambda **kwargs: False)
        await _enable_reminders(db)
        await _make_late(db, invoice, 31)

        stats = await process_factures(USER_ID)

        assert stats["failed"] == 1
        stored = await db.factures.find_one({"id": invoice["id"]}, {"_id": 0})
        assert stored["rappels"][-1]["type"] == "troisieme"
        assert stored["rappels"][-1]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_draft_is_ignored(self, db, invoice, sent_emails):
        await _enable_reminders(db)
        echeance = (datetime.now(timezone.utc) - timedelta(days=10)).isoformat()
        await db.factures.update_one({"id": invoice["id"]}, {"$set": {"date_echeance": echeance}})

        stats = await process_factures(USER_ID)

        assert stats["checked"] == 0
        assert sent_emails == []
