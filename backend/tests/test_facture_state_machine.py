"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Facture State Machine Testing                                     ║
║                                                                              ║
║  1. Transition maps (paiement / légal)                                       ║
║  2. Invariants vérifiés avant écriture                                       ║
║  3. mark_paid, mark_sent, cancel_invoice, refresh_overdue                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest
from datetime import datetime, timezone, timedelta

from tests.data import USER_ID
from services.errors import InvalidState, NotFound
from services.facture_state_machine import (
    VALID_PAYMENT_TRANSITIONS,
    VALID_LEGAL_TRANSITIONS,
    FactureInvariantError,
    check_invoice_invariants,
    validate_payment_transition,
    mark_paid,
    mark_sent,
    cancel_invoice,
    refresh_overdue,
)
from services.prestations import get_prestation


class TestTransitionMaps:

    def test_paid_and_cancelled_are_terminal(self):
        assert VALID_PAYMENT_TRANSITIONS["paid"] == []
        assert VALID_PAYMENT_TRANSITIONS["cancelled"] == []

    def test_overdue_never_goes_back_to_unpaid(self):
        assert "unpaid" not in VALID_PAYMENT_TRANSITIONS["overdue"]
        assert "draft" not in VALID_PAYMENT_TRANSITIONS["unpaid"]

    def test_legal_annulee_is_terminal(self):
        assert VALID_LEGAL_TRANSITIONS["ANNULEE"] == []
        assert "RECTIFIEE" in VALID_LEGAL_TRANSITIONS["VALIDE"]

    def test_invalid_payment_transition(self):
        with pytest.raises(InvalidState):
            validate_payment_transition({"status": "paid", "invoice_number": 1}, "unpaid")


class TestInvariants:

    def test_paid_requires_locked(self):
        with pytest.raises(FactureInvariantError):
            check_invoice_invariants({"status": "paid", "statut": "VALIDE", "locked": False})

    def test_rectifiee_requires_locked(self):
        with pytest.raises(FactureInvariantError):
            check_invoice_invariants({"status": "draft", "statut": "RECTIFIEE", "locked": False})

    def test_cancelled_requires_annulee(self):
        with pytest.raises(FactureInvariantError):
            check_invoice_invariants({"status": "cancelled", "statut": "VALIDE", "locked": True})

    def test_rectification_requires_original(self):
        with pytest.raises(FactureInvariantError):
            check_invoice_invariants({"status": "draft", "statut": "VALIDE", "is_rectification": True,
                                      "rectification_info": {}})

    def test_consistent_invoice_passes(self):
        assert check_invoice_invariants({"status": "paid", "statut": "VALIDE", "locked": True})


class TestMarkPaid:

    @pytest.mark.asyncio
    async def test_simple_lifecycle(self, db, invoice):
        assert invoice["montant_ht"] == 150.0
        assert invoice["status"] == "draft"

        paid = await mark_paid(USER_ID, invoice["id"], "transfer", "reçu le 02/04")

        assert paid["status"] == "paid"
        assert paid["locked"] is True
        assert paid["methode_paiement"] == "transfer"
        assert paid["historique_paiements"][-1]["montant"] == 150.0
        for pid in invoice["prestations"]:
            p = await get_prestation(USER_ID, pid)
            assert p["invoice_paid"] is True
            assert p["invoice_locked"] is True

    @pytest.mark.asyncio
    async def test_double_payment_refused(self, invoice):
        await mark_paid(USER_ID, invoice["id"], "transfer")
        with pytest.raises(InvalidState):
            await mark_paid(USER_ID, invoice["id"], "cheque")

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, invoice):
        with pytest.raises(NotFound):
            await mark_paid(USER_ID, "does-not-exist", "transfer")

    @pytest.mark.asyncio
    async def test_cancelled_invoice_not_payable(self, invoice):
        await cancel_invoice(USER_ID, invoice["id"], "erreur de saisie")
        with pytest.raises(InvalidState):
            await mark_paid(USER_ID, invoice["id"], "transfer")


class TestMarkSent:

    @pytest.mark.asyncio
    async def test_draft_becomes_unpaid(self, invoice):
        sent = await mark_sent(USER_ID, invoice["id"])

        assert sent["status"] == "unpaid"
        assert sent["is_sent_to_client"] is True
        assert sent["date_sent"]
        p = await get_prestation(USER_ID, invoice["prestations"][0])
        assert p["invoice_is_sent_to_client"] is True
        assert p["invoice_status"] == "unpaid"

    @pytest.mark.asyncio
    async def test_already_sent_refused(self, invoice):
        await mark_sent(USER_ID, invoice["id"])
        with pytest.raises(InvalidState):
            await mark_sent(USER_ID, invoice["id"])


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_draft(self, invoice):
        cancelled = await cancel_invoice(USER_ID, invoice["id"], "doublon", "créée par erreur")

        assert cancelled["status"] == "cancelled"
        assert cancelled["statut"] == "ANNULEE"
        assert cancelled["locked"] is True
        assert cancelled["annulation"]["motif"] == "doublon"
        assert cancelled["annulation"]["cancelled_by"] == USER_ID
        p = await get_prestation(USER_ID, invoice["prestations"][0])
        assert p["invoice_status"] == "cancelled"
        assert p["invoice_locked"] is True

    @pytest.mark.asyncio
    async def test_cancel_paid_refused(self, db, invoice):
        await mark_paid(USER_ID, invoice["id"], "transfer")
        with pytest.raises(InvalidState):
            await cancel_invoice(USER_ID, invoice["id"], "trop tard")

        stored = await db.factures.find_one({"id": invoice["id"]}, {"_id": 0})
        assert stored["status"] == "paid"
        assert stored["annulation"] is None


class TestOverdue:

    @pytest.mark.asyncio
    async def test_unpaid_past_due_becomes_overdue(self, db, invoice):
        await mark_sent(USER_ID, invoice["id"])
        past = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
        await db.factures.update_one({"id": invoice["id"]}, {"$set": {"date_echeance": past}})

        assert await refresh_overdue(USER_ID) == 1

        stored = await db.factures.find_one({"id": invoice["id"]}, {"_id": 0})
        assert stored["status"] == "overdue"
        p = await get_prestation(USER_ID, invoice["prestations"][0])
        assert p["invoice_status"] == "overdue"

    @pytest.mark.asyncio
    async def test_draft_is_never_overdue(self, db, invoice):
        past = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat()
        await db.factures.update_one({"id": invoice["id"]}, {"$set": {"date_echeance": past}})

        assert await refresh_overdue(USER_ID) == 0
