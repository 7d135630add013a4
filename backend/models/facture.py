"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Modèle Facture                                                    ║
║                                                                              ║
║  DEUX STATUTS ORTHOGONAUX:                                                   ║
║  - status  (paiement): draft, unpaid, paid, overdue, cancelled               ║
║  - statut  (légal):    VALIDE, RECTIFIEE, ANNULEE                            ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - statut=RECTIFIEE IMPLIQUE locked=True                                     ║
║  - status=paid IMPLIQUE locked=True                                          ║
║  - status=cancelled IMPLIQUE locked=True et statut=ANNULEE                   ║
║  - is_rectification IMPLIQUE rectification_info.original_invoice_id          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field

from .prestation import RectificationLine


class PaymentStatus(str, Enum):
    DRAFT = "draft"
    UNPAID = "unpaid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class LegalStatus(str, Enum):
    VALIDE = "VALIDE"
    RECTIFIEE = "RECTIFIEE"
    ANNULEE = "ANNULEE"


class DiffKind(str, Enum):
    """Nature d'une ligne dans prestations_modifiees"""
    MODIFIEE = "MODIFIEE"
    AJOUTEE = "AJOUTEE"
    SUPPRIMEE = "SUPPRIMEE"


class RectificationReason(str, Enum):
    """Motifs légaux de rectification"""
    ERREUR_MONTANT = "erreur_montant"
    ERREUR_PRESTATION = "erreur_prestation"
    ERREUR_CLIENT = "erreur_client"
    ERREUR_TVA = "erreur_tva"
    REMISE_COMMERCIALE = "remise_commerciale"
    AUTRE = "autre"


class ReminderType(str, Enum):
    PREMIER = "premier"
    DEUXIEME = "deuxieme"
    TROISIEME = "troisieme"


# Logs append-only embarqués dans la facture
INVOICE_LOGS = ["historique_paiements", "rappels", "versions", "rectifications"]


class InvoiceCreate(BaseModel):
    client_id: str
    year: int = Field(..., ge=1900)
    month: int = Field(..., ge=1, le=12)


class RectifyRequest(BaseModel):
    reason: RectificationReason
    reason_detail: str = ""
    prestations: List[RectificationLine] = Field(..., min_length=1)


class PaymentRequest(BaseModel):
    methode_paiement: str = Field(..., min_length=1)
    commentaire: Optional[str] = None


class CancelRequest(BaseModel):
    motif: str = Field(..., min_length=1)
    commentaire: str = ""


class CreditNoteRequest(BaseModel):
    motif: str = Field(..., min_length=1)
    montant: float = Field(..., gt=0)
    remboursement: bool = False
    methode_remboursement: Optional[str] = None
