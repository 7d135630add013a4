"""
FACTURO - Modeles Auth & Utilisateurs
Un utilisateur = un freelance; toutes les données sont scopées par user_id.
"""

from pydantic import BaseModel, field_validator

from .client import is_valid_email_format


class UserLogin(BaseModel):
    email: str
    password: str


class UserCreate(BaseModel):
    email: str
    password: str
    nom: str = ""

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if not is_valid_email_format(v):
            raise ValueError(f"Format email invalide: {v}")
        return v.lower().strip()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError("Le mot de passe doit contenir au moins 8 caractères")
        return v
