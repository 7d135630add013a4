"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Calculs monétaires                                                ║
║                                                                              ║
║  Fonctions pures. Aucune lecture DB.                                         ║
║                                                                              ║
║  montant_ht  = somme des totals des prestations                              ║
║  taxe_urssaf = round2(montant_ht × taux_urssaf)   (défaut 0.246)             ║
║  montant_net = round2(montant_ht − taxe_urssaf)                              ║
║  montant_tva = round2(montant_ht × taux_tva)      (0 si TVA non applicable)  ║
║  montant_ttc = round2(montant_ht + montant_tva)                              ║
║                                                                              ║
║  Les totaux d'une facture sont TOUJOURS recalculés à partir de ses           ║
║  prestations courantes, jamais édités à la main.                             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import round2, DEFAULT_TAUX_URSSAF, DEFAULT_TAUX_TVA
from models.prestation import BillingType, DurationUnit, MINUTES_PER_DAY, check_billing_fields
from services.errors import ValidationFailed


TOTAL_FIELDS = ["montant_ht", "taxe_urssaf", "montant_net", "montant_tva", "montant_ttc"]


def _rate(business_info: Optional[Dict], key: str, default: float) -> float:
    if not business_info:
        return default
    value = business_info.get(key)
    return default if value is None else float(value)


def compute_totals(prestations: List[Dict], business_info: Optional[Dict]) -> Dict[str, float]:
    """Calcule les montants d'une facture à partir de ses prestations."""
    taux_urssaf = _rate(business_info, "taux_urssaf", DEFAULT_TAUX_URSSAF)
    taux_tva = _rate(business_info, "taux_tva", DEFAULT_TAUX_TVA)

    montant_ht = round2(sum(p.get("total", 0) or 0 for p in prestations))
    taxe_urssaf = round2(montant_ht * taux_urssaf)
    montant_net = round2(montant_ht - taxe_urssaf)
    montant_tva = round2(montant_ht * taux_tva)
    montant_ttc = round2(montant_ht + montant_tva)

    return {
        "montant_ht": montant_ht,
        "taxe_urssaf": taxe_urssaf,
        "montant_net": montant_net,
        "montant_tva": montant_tva,
        "montant_ttc": montant_ttc,
    }


def compute_deltas(new_totals: Dict, old_totals: Dict) -> Dict[str, float]:
    """Écarts nouvelle − ancienne facture, chacun arrondi indépendamment."""
    return {
        f"difference_{key}": round2((new_totals.get(key) or 0) - (old_totals.get(key) or 0))
        for key in TOTAL_FIELDS
    }


def nombre_heures(prestations: List[Dict]) -> float:
    """Heures facturées: durée en minutes / 60, quel que soit le mode."""
    return round2(sum((p.get("duration") or 0) for p in prestations) / 60)


def normalize_prestation(fields: Dict) -> Dict:
    """
    Valide les champs d'un mode de facturation et calcule duration + total.

    - hourly: duration = heures×60 + minutes, total = (h + m/60) × taux
    - fixed:  total = prix × quantité, duration informative
    - daily:  duration en minutes, total = prix × (duration / 1440)

    Raises:
        ValidationFailed si la combinaison de champs est incohérente
    """
    error = check_billing_fields(fields)
    if error:
        raise ValidationFailed(error)

    data = dict(fields)
    billing_type = data.get("billing_type") or BillingType.HOURLY.value
    if isinstance(billing_type, BillingType):
        billing_type = billing_type.value
    data["billing_type"] = billing_type

    if billing_type == BillingType.HOURLY.value:
        hours = float(data.get("hours") or 0)
        minutes = float(data.get("minutes") or 0)
        hourly_rate = float(data.get("hourly_rate") or 0)
        data.update({
            "hours": hours,
            "minutes": minutes,
            "hourly_rate": hourly_rate,
            "fixed_price": 0.0,
            "quantity": 1,
            "duration": int(round(hours * 60 + minutes)),
            "duration_unit": DurationUnit.MINUTES.value,
        })
        total = (hours + minutes / 60) * hourly_rate

    elif billing_type == BillingType.FIXED.value:
        fixed_price = float(data.get("fixed_price") or 0)
        quantity = int(data.get("quantity") or 1)
        data.update({
            "hours": 0.0,
            "minutes": 0.0,
            "hourly_rate": 0.0,
            "fixed_price": fixed_price,
            "quantity": quantity,
            "duration": int(data.get("duration") or 0),
            "duration_unit": _unit(data.get("duration_unit"), DurationUnit.MINUTES),
        })
        total = fixed_price * quantity

    else:
        fixed_price = float(data.get("fixed_price") or 0)
        duration = int(data.get("duration") or 0)
        data.update({
            "hours": 0.0,
            "minutes": 0.0,
            "hourly_rate": 0.0,
            "fixed_price": fixed_price,
            "quantity": 1,
            "duration": duration,
            "duration_unit": DurationUnit.DAYS.value,
        })
        total = fixed_price * (duration / MINUTES_PER_DAY)

    data["total"] = round2(total)
    return data


def _unit(value, default: DurationUnit) -> str:
    if value is None:
        return default.value
    if isinstance(value, DurationUnit):
        return value.value
    return value


def jours_retard(date_echeance: Optional[str], now: Optional[datetime] = None) -> int:
    """Jours écoulés depuis l'échéance (0 si non échue)"""
    if not date_echeance:
        return 0
    echeance = datetime.fromisoformat(date_echeance)
    if echeance.tzinfo is None:
        echeance = echeance.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, (now - echeance).days)
