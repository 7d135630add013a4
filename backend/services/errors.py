"""
FACTURO - Erreurs métier

Levées par les services, traduites en réponses HTTP par server.py.
Toute erreur levée dans une transaction l'annule entièrement.
"""


class FacturationError(Exception):
    """Base de toutes les erreurs métier"""
    kind = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(FacturationError):
    """Entité absente ou n'appartenant pas à l'utilisateur"""
    kind = "not_found"
    status_code = 404


class InvalidState(FacturationError):
    """Opération interdite pour le statut / verrou actuel"""
    kind = "invalid_state"
    status_code = 409


class PrestationLocked(InvalidState):
    """Prestation rattachée à une facture payée, verrouillée ou envoyée"""
    kind = "locked"
    status_code = 403


class Conflict(FacturationError):
    """Doublon: facture déjà existante pour la période, numéro déjà utilisé"""
    kind = "conflict"
    status_code = 409


class ValidationFailed(FacturationError):
    """Données d'entrée invalides"""
    kind = "validation"
    status_code = 400


class InternalError(FacturationError):
    """Échec stockage / transaction / rendu PDF"""
    kind = "internal"
    status_code = 500
