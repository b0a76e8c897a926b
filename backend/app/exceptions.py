"""
Taxonomie des erreurs métier.

Toutes les erreurs dérivent de ValueError : les services lèvent, le handler
enregistré dans app.main les traduit en réponse HTTP {detail, kind, code}.
DependencyFailure n'est jamais propagée hors du service qui l'a attrapée.
"""

from typing import Optional


class ServiceError(ValueError):
    """Erreur métier avec un type stable (kind) et un code machine."""

    kind = "ServiceError"
    status_code = 400
    default_code = "SERVICE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind, "code": self.code}


class ValidationError(ServiceError):
    """Entrée absente ou mal formée."""
    kind = "ValidationError"
    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(ServiceError):
    kind = "NotFoundError"
    status_code = 404
    default_code = "NOT_FOUND"


class ForbiddenError(ServiceError):
    kind = "ForbiddenError"
    status_code = 403
    default_code = "FORBIDDEN"


class ConflictError(ServiceError):
    """Précondition d'état non respectée (déjà enregistré, déjà sorti, ...)."""
    kind = "ConflictError"
    status_code = 409
    default_code = "CONFLICT"


class BusinessRuleError(ServiceError):
    kind = "BusinessRuleError"
    status_code = 422
    default_code = "BUSINESS_RULE"


class DependencyFailure(ServiceError):
    """Échec d'un collaborateur externe (email, SMS, PDF). Toujours attrapée sur place."""
    kind = "DependencyFailure"
    status_code = 502
    default_code = "DEPENDENCY_FAILURE"


# --- Erreurs spécifiques au moteur de pass ---

class MissingVisitor(ValidationError):
    default_code = "MISSING_VISITOR"

    def __init__(self, message: str = "Un visiteur est requis pour émettre un pass (rendez-vous, visitor_id ou profil lié)."):
        super().__init__(message)


class MissingHost(ValidationError):
    default_code = "MISSING_HOST"

    def __init__(self, message: str = "Un hôte est requis pour émettre un pass (host_id ou hôte du rendez-vous)."):
        super().__init__(message)


class InvalidVerificationInput(ValidationError):
    default_code = "INVALID_VERIFICATION_INPUT"

    def __init__(self, message: str = "Valeur à vérifier invalide."):
        super().__init__(message)


class MissingReference(ValidationError):
    default_code = "MISSING_REFERENCE"

    def __init__(self, message: str = "pass_id (ou appointment_id avec un pass actif) et visitor_id sont requis."):
        super().__init__(message)


class PassNotFound(NotFoundError):
    default_code = "PASS_NOT_FOUND"

    def __init__(self, message: str = "Pass introuvable."):
        super().__init__(message)


class LogNotFound(NotFoundError):
    default_code = "LOG_NOT_FOUND"

    def __init__(self, message: str = "Enregistrement d'entrée introuvable."):
        super().__init__(message)


class PassNotActive(ConflictError):
    default_code = "PASS_NOT_ACTIVE"

    def __init__(self, status: str):
        super().__init__(f"Le pass est {status}.")
        self.status = status


class AlreadyCheckedIn(ConflictError):
    default_code = "ALREADY_CHECKED_IN"

    def __init__(self, message: str = "Le visiteur est déjà enregistré sur ce pass."):
        super().__init__(message)


class AlreadyCheckedOut(ConflictError):
    default_code = "ALREADY_CHECKED_OUT"

    def __init__(self, message: str = "Le visiteur est déjà sorti."):
        super().__init__(message)


class InvalidTransition(ConflictError):
    default_code = "INVALID_TRANSITION"


class PassOutsideValidWindow(BusinessRuleError):
    default_code = "PASS_OUTSIDE_VALID_WINDOW"

    def __init__(self, message: str = "Le pass n'est pas valide à cet instant."):
        super().__init__(message)


class VisitorBlacklisted(BusinessRuleError):
    default_code = "VISITOR_BLACKLISTED"

    def __init__(self, message: str = "Le visiteur est sur liste noire."):
        super().__init__(message)
