"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Moteur de rectification                                           ║
║                                                                              ║
║  1. Rectification: nouvelle facture chaînée, écarts, diffs                   ║
║  2. Prestations d'origine conservées (seulement is_replaced)                 ║
║  3. Refus: payée, déjà rectifiée, annulée, id étranger, liste vide          ║
║  4. Chaîne A -> B -> C et annulations en cascade                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest

from tests.data import USER_ID
from models.prestation import RectificationLine
from services.errors import InvalidState, ValidationFailed, NotFound
from services.facture_state_machine import mark_paid, cancel_invoice, load_invoice
from services.prestations import get_prestation
from services.rectification import rectify_invoice, get_rectification_chain


def _lines(*items):
    return [RectificationLine(**item) for item in items]


async def _count_invoices(db):
    return len(await db.factures.find({"user_id": USER_ID}, {"_id": 0, "id": 1}).to_list(100))


async def _count_prestations(db):
    return len(await db.prestations.find({"user_id": USER_ID}, {"_id": 0, "id": 1}).to_list(100))


class TestRectify:

    @pytest.mark.asyncio
    async def test_amount_correction_delta(self, invoice):
        p1, p2 = invoice["prestations"]

        rectified = await rectify_invoice(
            USER_ID, invoice["id"], "erreur_montant", "3h au lieu de 2h",
            _lines({"id": p1, "hours": 3}, {"id": p2})
        )

        assert rectified["is_rectification"] is True
        assert rectified["montant_ht"] == 200.0
        assert rectified["invoice_number"] == invoice["invoice_number"] + 1
        info = rectified["rectification_info"]
        assert info["original_invoice_id"] == invoice["id"]
        assert info["original_invoice_number"] == invoice["invoice_number"]
        assert info["rectification_chain"] == [invoice["id"]]
        assert info["difference_montant_ht"] == 50.0
        assert info["difference_taxe_urssaf"] == 12.3
        assert info["difference_montant_net"] == 37.7
        assert info["difference_montant_ttc"] == 50.0
        assert rectified["pdf_path"].startswith("uploads/invoices/Facture_")

    @pytest.mark.asyncio
    async def test_original_becomes_rectifiee_and_locked(self, invoice):
        p1, p2 = invoice["prestations"]
        rectified = await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "",
                                          _lines({"id": p1, "hours": 3}, {"id": p2}))

        original = await load_invoice(USER_ID, invoice["id"])
        assert original["statut"] == "RECTIFIEE"
        assert original["locked"] is True
        assert original["montant_ht"] == 150.0
        assert original["prestations"] == invoice["prestations"]
        assert original["rectifications"][-1]["invoice_id"] == rectified["id"]
        assert original["versions"][-1]["montant_ht"] == 150.0
        assert original["versions"][-1]["reason"] == "erreur_montant"

    @pytest.mark.asyncio
    async def test_original_prestations_preserved(self, invoice):
        p1, p2 = invoice["prestations"]
        rectified = await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "",
                                          _lines({"id": p1, "hours": 3}, {"id": p2}))

        old = await get_prestation(USER_ID, p1)
        assert old["hours"] == 2.0
        assert old["total"] == 100.0
        assert old["is_replaced"] is True
        assert old["replaced_by_prestation_id"] == rectified["prestations"][0]
        assert old["invoice_id"] == invoice["id"]
        assert old["invoice_locked"] is True

        new = await get_prestation(USER_ID, rectified["prestations"][0])
        assert new["original_prestation_id"] == p1
        assert new["total"] == 150.0
        assert new["invoice_id"] == rectified["id"]

    @pytest.mark.asyncio
    async def test_diff_records(self, invoice):
        p1, p2 = invoice["prestations"]
        rectified = await rectify_invoice(
            USER_ID, invoice["id"], "erreur_prestation", "",
            _lines(
                {"id": p1, "hours": 3},
                {"id": "temp-1", "billing_type": "fixed", "description": "Licence", "fixed_price": 80},
            )
        )

        diffs = {d["type"]: d for d in rectified["rectification_info"]["prestations_modifiees"]}
        assert set(diffs) == {"MODIFIEE", "AJOUTEE", "SUPPRIMEE"}
        assert {"hours", "duration", "total"} <= set(diffs["MODIFIEE"]["changes"])
        assert diffs["MODIFIEE"]["before"]["total"] == 100.0
        assert diffs["MODIFIEE"]["after"]["total"] == 150.0
        assert diffs["AJOUTEE"]["before"] is None
        assert diffs["AJOUTEE"]["after"]["total"] == 80.0
        assert diffs["SUPPRIMEE"]["original_prestation_id"] == p2
        assert diffs["SUPPRIMEE"]["after"] is None
        assert rectified["montant_ht"] == 230.0

    @pytest.mark.asyncio
    async def test_paid_invoice_blocked(self, db, invoice):
        await mark_paid(USER_ID, invoice["id"], "transfer")
        before = await _count_invoices(db)

        with pytest.raises(InvalidState):
            await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "",
                                  _lines({"id": invoice["prestations"][0], "hours": 5}))

        assert await _count_invoices(db) == before
        original = await load_invoice(USER_ID, invoice["id"])
        assert original["statut"] == "VALIDE"
        assert original["rectifications"] == []

    @pytest.mark.asyncio
    async def test_already_rectified_original_blocked(self, db, invoice):
        first = invoice["prestations"][0]
        await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "", _lines({"id": first, "hours": 3}))
        invoices, prestations = await _count_invoices(db), await _count_prestations(db)

        with pytest.raises(InvalidState):
            await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "",
                                  _lines({"id": first, "hours": 4},
                                         {"billing_type": "fixed", "description": "Licence", "fixed_price": 80}))

        assert await _count_invoices(db) == invoices
        assert await _count_prestations(db) == prestations
        original = await load_invoice(USER_ID, invoice["id"])
        assert original["statut"] == "RECTIFIEE"
        assert len(original["rectifications"]) == 1

    @pytest.mark.asyncio
    async def test_cancelled_invoice_blocked(self, db, invoice):
        await cancel_invoice(USER_ID, invoice["id"], "erreur")
        invoices, prestations = await _count_invoices(db), await _count_prestations(db)

        with pytest.raises(InvalidState):
            await rectify_invoice(USER_ID, invoice["id"], "autre", "",
                                  _lines({"id": invoice["prestations"][0], "hours": 4},
                                         {"billing_type": "fixed", "description": "Licence", "fixed_price": 80}))

        assert await _count_invoices(db) == invoices
        assert await _count_prestations(db) == prestations
        cancelled = await load_invoice(USER_ID, invoice["id"])
        assert cancelled["statut"] == "ANNULEE"
        assert cancelled["rectifications"] == []

    @pytest.mark.asyncio
    async def test_foreign_prestation_id_rejected(self, db, invoice, add_prestation):
        stranger = await add_prestation(date="2025-04-02")
        before = await _count_invoices(db)

        with pytest.raises(ValidationFailed):
            await rectify_invoice(USER_ID, invoice["id"], "autre", "", _lines({"id": stranger["id"]}))

        assert await _count_invoices(db) == before
        assert (await load_invoice(USER_ID, invoice["id"]))["locked"] is False

    @pytest.mark.asyncio
    async def test_invalid_new_prestation_rejected(self, invoice):
        with pytest.raises(ValidationFailed):
            await rectify_invoice(USER_ID, invoice["id"], "autre", "",
                                  _lines({"billing_type": "hourly", "description": "Sans taux", "hours": 2}))

    @pytest.mark.asyncio
    async def test_empty_lines_rejected(self, invoice):
        with pytest.raises(ValidationFailed):
            await rectify_invoice(USER_ID, invoice["id"], "autre", "", [])

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, invoice):
        with pytest.raises(NotFound):
            await rectify_invoice(USER_ID, "nope", "autre", "", _lines({"id": "temp-x"}))


class TestChain:

    async def _rectify_twice(self, invoice):
        b = await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "",
                                  _lines({"id": invoice["prestations"][0], "hours": 3}))
        c = await rectify_invoice(USER_ID, b["id"], "remise_commerciale", "geste",
                                  _lines({"id": b["prestations"][0], "hourly_rate": 45}))
        return b, c

    @pytest.mark.asyncio
    async def test_chain_ordering(self, invoice):
        b, c = await self._rectify_twice(invoice)

        assert c["rectification_info"]["rectification_chain"] == [invoice["id"], b["id"]]

        chain_c = await get_rectification_chain(USER_ID, c["id"])
        assert [a["id"] for a in chain_c["ancestors"]] == [invoice["id"], b["id"]]
        assert chain_c["descendants"] == []

        chain_a = await get_rectification_chain(USER_ID, invoice["id"])
        assert chain_a["ancestors"] == []
        assert [d["id"] for d in chain_a["descendants"]] == [b["id"], c["id"]]

    @pytest.mark.asyncio
    async def test_cancel_original_while_rectification_active(self, invoice):
        await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "",
                              _lines({"id": invoice["prestations"][0], "hours": 3}))

        with pytest.raises(InvalidState):
            await cancel_invoice(USER_ID, invoice["id"], "annulation")

    @pytest.mark.asyncio
    async def test_rectified_original_not_payable(self, invoice):
        await rectify_invoice(USER_ID, invoice["id"], "erreur_montant", "",
                              _lines({"id": invoice["prestations"][0], "hours": 3}))

        with pytest.raises(InvalidState):
            await mark_paid(USER_ID, invoice["id"], "transfer")

    @pytest.mark.asyncio
    async def test_cancel_cascade_from_newest(self, invoice):
        b, c = await self._rectify_twice(invoice)

        with pytest.raises(InvalidState):
            await cancel_invoice(USER_ID, b["id"], "annulation")

        await cancel_invoice(USER_ID, c["id"], "geste refusé")
        b_after = await load_invoice(USER_ID, b["id"])
        assert b_after["statut"] == "VALIDE"
        assert b_after["locked"] is False
        b_first = await get_prestation(USER_ID, b["prestations"][0])
        assert b_first["is_replaced"] is False
        assert b_first["replaced_by_prestation_id"] is None
        assert b_first["invoice_locked"] is False

        await cancel_invoice(USER_ID, b["id"], "retour à l'original")
        a_after = await load_invoice(USER_ID, invoice["id"])
        assert a_after["statut"] == "VALIDE"
        assert a_after["locked"] is False
        assert a_after["versions"][-1]["action"] == "rectification_annulee"
