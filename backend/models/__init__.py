"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Models Package                                                    ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import PaymentStatus, PrestationCreate, RectifyRequest, etc.    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import UserLogin, UserCreate

# Client
from .client import ClientCreate, ClientUpdate, is_valid_email_format

# Prestation
from .prestation import (
    BillingType,
    DurationUnit,
    MINUTES_PER_DAY,
    PrestationCreate,
    RectificationLine,
    check_billing_fields,
)

# Facture
from .facture import (
    PaymentStatus,
    LegalStatus,
    DiffKind,
    RectificationReason,
    ReminderType,
    INVOICE_LOGS,
    InvoiceCreate,
    RectifyRequest,
    PaymentRequest,
    CancelRequest,
    CreditNoteRequest,
)

# Business info
from .business_info import (
    DEFAULT_BUSINESS_INFO,
    BusinessInfoUpdate,
    InvoiceSettingsUpdate,
)

__all__ = [
    # Auth
    "UserLogin",
    "UserCreate",
    # Client
    "ClientCreate",
    "ClientUpdate",
    "is_valid_email_format",
    # Prestation
    "BillingType",
    "DurationUnit",
    "MINUTES_PER_DAY",
    "PrestationCreate",
    "RectificationLine",
    "check_billing_fields",
    # Facture
    "PaymentStatus",
    "LegalStatus",
    "DiffKind",
    "RectificationReason",
    "ReminderType",
    "INVOICE_LOGS",
    "InvoiceCreate",
    "RectifyRequest",
    "PaymentRequest",
    "CancelRequest",
    "CreditNoteRequest",
    # Business info
    "DEFAULT_BUSINESS_INFO",
    "BusinessInfoUpdate",
    "InvoiceSettingsUpdate",
]
