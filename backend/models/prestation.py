"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Modèle Prestation (ligne facturable)                              ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  - total = f(champs du mode de facturation), JAMAIS fourni par le client     ║
║  - hourly: heures + minutes × taux horaire                                   ║
║  - fixed: prix × quantité                                                    ║
║  - daily: prix × durée en jours (durée stockée en minutes, 1 jour = 1440)    ║
║  - Rattachée à une facture verrouillée/payée/envoyée = immuable              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import date as date_type
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator


MINUTES_PER_DAY = 1440


class BillingType(str, Enum):
    HOURLY = "hourly"
    FIXED = "fixed"
    DAILY = "daily"


class DurationUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


VALID_BILLING_TYPES = [b.value for b in BillingType]


def check_billing_fields(fields: dict) -> Optional[str]:
    """
    Vérifie la cohérence entre billing_type et les champs du mode.
    Returns: message d'erreur, ou None si valide
    """
    billing_type = fields.get("billing_type") or BillingType.HOURLY.value
    if isinstance(billing_type, BillingType):
        billing_type = billing_type.value

    if billing_type not in VALID_BILLING_TYPES:
        return f"billing_type invalide: {billing_type}. Valides: {VALID_BILLING_TYPES}"

    for key in ("hours", "minutes", "hourly_rate", "fixed_price", "duration"):
        value = fields.get(key)
        if value is not None and value < 0:
            return f"{key} doit être un nombre positif"

    if billing_type == BillingType.HOURLY.value:
        hours = fields.get("hours") or 0
        minutes = fields.get("minutes") or 0
        if minutes >= 60:
            return "minutes doit être compris entre 0 et 59"
        if hours == 0 and minutes == 0:
            return "Une prestation horaire exige des heures ou des minutes"
        if fields.get("hourly_rate") is None:
            return "hourly_rate requis pour une prestation horaire"

    elif billing_type == BillingType.FIXED.value:
        if fields.get("fixed_price") is None:
            return "fixed_price requis pour une prestation forfaitaire"
        quantity = fields.get("quantity")
        if quantity is not None and quantity < 1:
            return "quantity doit être un entier >= 1"

    elif billing_type == BillingType.DAILY.value:
        if fields.get("fixed_price") is None:
            return "fixed_price requis pour une prestation journalière"
        if not fields.get("duration"):
            return "duration (en minutes, 720 = ½ journée) requise pour une prestation journalière"

    return None


class PrestationCreate(BaseModel):
    """Création / remplacement complet d'une prestation"""
    client_id: str
    description: str = Field(..., min_length=1)
    billing_type: BillingType = BillingType.HOURLY

    # hourly
    hours: Optional[float] = Field(None, ge=0)
    minutes: Optional[float] = Field(None, ge=0)
    hourly_rate: Optional[float] = Field(None, ge=0)

    # fixed / daily
    fixed_price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=1)
    duration: Optional[int] = Field(None, ge=0)
    duration_unit: Optional[DurationUnit] = None

    date: Optional[date_type] = None

    @model_validator(mode="after")
    def validate_billing_fields(self):
        error = check_billing_fields(self.model_dump())
        if error:
            raise ValueError(error)
        return self


class RectificationLine(BaseModel):
    """
    Ligne d'une demande de rectification.

    - id d'une prestation de la facture: clone + surcharge des champs fournis
    - id absent ou "temp-...": nouvelle prestation (champs du mode obligatoires)
    """
    id: Optional[str] = None
    description: Optional[str] = None
    billing_type: Optional[BillingType] = None
    hours: Optional[float] = Field(None, ge=0)
    minutes: Optional[float] = Field(None, ge=0)
    hourly_rate: Optional[float] = Field(None, ge=0)
    fixed_price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=1)
    duration: Optional[int] = Field(None, ge=0)
    duration_unit: Optional[DurationUnit] = None
    date: Optional[date_type] = None

    def is_new(self) -> bool:
        return not self.id or self.id.startswith("temp-")

    def overrides(self) -> dict:
        """Champs explicitement fournis (hors id), prêts pour MongoDB"""
        data = self.model_dump(exclude_none=True, exclude={"id"}, mode="json")
        return data
