"""
FACTURO - Informations entreprise & paramètres de facturation (un document par utilisateur)
Lu par les calculs (taux URSSAF / TVA), la numérotation et les rappels.
"""

from typing import Optional
from pydantic import BaseModel, Field

from config import (
    DEFAULT_TAUX_URSSAF,
    DEFAULT_TAUX_TVA,
    DEFAULT_PAYMENT_DELAY,
    DEFAULT_CREDIT_NOTE_PREFIX,
)


LATE_PAYMENT_TEXT = (
    "Tout retard de paiement entraînera une indemnité forfaitaire pour frais de "
    "recouvrement de 40 euros (Article L441-10 du Code de commerce)."
)

DEFAULT_BUSINESS_INFO = {
    "name": "",
    "address": "",
    "postal_code": "",
    "city": "",
    "phone": "",
    "email": "",
    "siret": "",
    "company_type": "",
    "invoice_title": "",
    "taux_urssaf": DEFAULT_TAUX_URSSAF,
    "taux_tva": DEFAULT_TAUX_TVA,
    "invoice_number_start": 1,
    "current_invoice_number": 0,
    "credit_note_prefix": DEFAULT_CREDIT_NOTE_PREFIX,
    "features": {
        "invoice_status": {"enabled": False, "payment_delay": DEFAULT_PAYMENT_DELAY},
        "automatic_reminders": {
            "enabled": False,
            "first_reminder": 7,
            "second_reminder": 15,
            "third_reminder": 30,
        },
    },
    "display_options": {
        "show_due_date_on_invoice": True,
        "show_due_date_in_history": True,
        "show_tva_comment": True,
    },
    "legal_messages": {
        "enable_late_payment_comment": False,
        "late_payment_text": LATE_PAYMENT_TEXT,
        "enable_custom_comment": False,
        "custom_comment_text": "",
    },
}


class InvoiceStatusFeature(BaseModel):
    enabled: Optional[bool] = None
    payment_delay: Optional[int] = Field(None, ge=1)


class AutomaticRemindersFeature(BaseModel):
    enabled: Optional[bool] = None
    first_reminder: Optional[int] = Field(None, ge=1)
    second_reminder: Optional[int] = Field(None, ge=1)
    third_reminder: Optional[int] = Field(None, ge=1)


class Features(BaseModel):
    invoice_status: Optional[InvoiceStatusFeature] = None
    automatic_reminders: Optional[AutomaticRemindersFeature] = None


class DisplayOptions(BaseModel):
    show_due_date_on_invoice: Optional[bool] = None
    show_due_date_in_history: Optional[bool] = None
    show_tva_comment: Optional[bool] = None


class LegalMessages(BaseModel):
    enable_late_payment_comment: Optional[bool] = None
    late_payment_text: Optional[str] = None
    enable_custom_comment: Optional[bool] = None
    custom_comment_text: Optional[str] = None


class BusinessInfoUpdate(BaseModel):
    """Mise à jour partielle: seuls les champs fournis sont modifiés"""
    name: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    siret: Optional[str] = None
    company_type: Optional[str] = None
    invoice_title: Optional[str] = None
    taux_urssaf: Optional[float] = Field(None, ge=0, le=1)
    taux_tva: Optional[float] = Field(None, ge=0, le=1)
    credit_note_prefix: Optional[str] = None
    features: Optional[Features] = None
    display_options: Optional[DisplayOptions] = None
    legal_messages: Optional[LegalMessages] = None


class InvoiceSettingsUpdate(BaseModel):
    invoice_number_start: Optional[int] = Field(None, ge=1)
    invoice_title: Optional[str] = None
