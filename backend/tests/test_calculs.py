"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Calculs monétaires                                                ║
║                                                                              ║
║  1. Totaux facture (URSSAF, net, TVA, TTC) arrondis au centime               ║
║  2. Total d'une prestation selon son mode de facturation                     ║
║  3. Champs incohérents refusés                                               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import pytest
from datetime import datetime, timezone, timedelta

from config import round2
from services.calculs import (
    compute_totals,
    compute_deltas,
    nombre_heures,
    normalize_prestation,
    jours_retard,
)
from services.errors import ValidationFailed


class TestRound2:

    def test_half_up(self):
        assert round2(0.125) == 0.13
        assert round2(2.675) == 2.68

    def test_none_is_zero(self):
        assert round2(None) == 0.0


class TestComputeTotals:

    def test_default_urssaf_rate_without_vat(self):
        totals = compute_totals([{"total": 100.0}, {"total": 50.0}], {"taux_urssaf": 0.246, "taux_tva": 0})
        assert totals == {
            "montant_ht": 150.0,
            "taxe_urssaf": 36.9,
            "montant_net": 113.1,
            "montant_tva": 0.0,
            "montant_ttc": 150.0,
        }

    def test_defaults_when_no_business_info(self):
        totals = compute_totals([{"total": 200.0}], None)
        assert totals["taxe_urssaf"] == 49.2
        assert totals["montant_tva"] == 0.0
        assert totals["montant_ttc"] == 200.0

    def test_with_vat(self):
        totals = compute_totals([{"total": 123.45}], {"taux_urssaf": 0.22, "taux_tva": 0.2})
        assert totals["montant_ht"] == 123.45
        assert totals["taxe_urssaf"] == 27.16
        assert totals["montant_net"] == 96.29
        assert totals["montant_tva"] == 24.69
        assert totals["montant_ttc"] == 148.14

    def test_empty_set(self):
        totals = compute_totals([], None)
        assert all(v == 0 for v in totals.values())

    def test_deltas_rounded_independently(self):
        new = compute_totals([{"total": 200.0}], None)
        old = compute_totals([{"total": 150.0}], None)
        deltas = compute_deltas(new, old)
        assert deltas["difference_montant_ht"] == 50.0
        assert deltas["difference_taxe_urssaf"] == 12.3
        assert deltas["difference_montant_net"] == 37.7
        assert deltas["difference_montant_ttc"] == 50.0


class TestNormalizePrestation:

    def test_hourly_total_and_duration(self):
        p = normalize_prestation({"billing_type": "hourly", "hours": 1, "minutes": 30, "hourly_rate": 40})
        assert p["total"] == 60.0
        assert p["duration"] == 90
        assert p["duration_unit"] == "minutes"

    def test_fixed_total(self):
        p = normalize_prestation({"billing_type": "fixed", "fixed_price": 100, "quantity": 3})
        assert p["total"] == 300.0
        assert p["quantity"] == 3

    def test_daily_half_day(self):
        p = normalize_prestation({"billing_type": "daily", "fixed_price": 400, "duration": 720})
        assert p["total"] == 200.0
        assert p["duration_unit"] == "days"

    def test_client_supplied_total_is_ignored(self):
        p = normalize_prestation({"billing_type": "fixed", "fixed_price": 10, "quantity": 2, "total": 9999})
        assert p["total"] == 20.0

    @pytest.mark.parametrize("fields", [
        {"billing_type": "hourly", "hours": 1, "minutes": 60, "hourly_rate": 50},
        {"billing_type": "hourly", "hours": 0, "minutes": 0, "hourly_rate": 50},
        {"billing_type": "hourly", "hours": 2},
        {"billing_type": "fixed", "quantity": 2},
        {"billing_type": "daily", "fixed_price": 400},
        {"billing_type": "hourly", "hours": -1, "hourly_rate": 50},
        {"billing_type": "weekly", "fixed_price": 10},
    ])
    def test_invalid_combinations(self, fields):
        with pytest.raises(ValidationFailed):
            normalize_prestation(fields)


class TestHeuresEtRetard:

    def test_nombre_heures_from_minutes(self):
        assert nombre_heures([{"duration": 90}, {"duration": 30}]) == 2.0
        assert nombre_heures([{"duration": 720}]) == 12.0

    def test_jours_retard(self):
        echeance = (datetime.now(timezone.utc) - timedelta(days=10, hours=1)).isoformat()
        assert jours_retard(echeance) == 10

    def test_jours_retard_not_due(self):
        echeance = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
        assert jours_retard(echeance) == 0
        assert jours_retard(None) == 0
