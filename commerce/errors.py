"""
Erreurs métier du service commandes.
Chaque erreur porte son code HTTP; la traduction en réponse JSON est faite par
commerce.app_setup.exceptions.register_exception_handlers.
"""


class CommerceError(Exception):
    status_code = 500
    default_detail = "Erreur interne"

    def __init__(self, detail: str = ""):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(CommerceError):
    status_code = 400
    default_detail = "Requête invalide"


class AuthorizationError(CommerceError):
    status_code = 403
    default_detail = "Accès interdit"


class NotFoundError(CommerceError):
    status_code = 404
    default_detail = "Ressource introuvable"


class ConflictError(CommerceError):
    """Transition d'état refusée ou course perdue sur la version d'une commande."""
    status_code = 409
    default_detail = "Conflit"


class SecurityError(CommerceError):
    """Signature webhook invalide."""
    status_code = 400
    default_detail = "invalid signature"


class ExternalServiceError(CommerceError):
    """Passerelle de paiement (ou autre dépendance) indisponible."""
    status_code = 502
    default_detail = "Service externe indisponible"
