"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Modèle Client                                                     ║
║                                                                              ║
║  RÈGLE: email unique par utilisateur                                         ║
║  Un client référencé par une facture ne peut plus être supprimé              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator
import re


def is_valid_email_format(email: str) -> bool:
    """Vérifie le format email basique"""
    if not email:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


class ClientCreate(BaseModel):
    """Création d'un client facturé"""
    name: str = Field(..., min_length=1)
    email: str
    street: Optional[str] = ""
    postal_code: Optional[str] = ""
    city: Optional[str] = ""

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        if not is_valid_email_format(v):
            raise ValueError(f"Format email invalide: {v}")
        return v.lower().strip()


class ClientUpdate(BaseModel):
    """Mise à jour des coordonnées d'un client"""
    name: Optional[str] = None
    email: Optional[str] = None
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        if v is not None and not is_valid_email_format(v):
            raise ValueError(f"Format email invalide: {v}")
        return v.lower().strip() if v else v
