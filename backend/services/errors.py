"""
Portail Citoyen - Erreurs métier

Chaque erreur porte un code stable et un statut HTTP.
Les routes ne traduisent rien elles-mêmes: server.py installe un handler unique.

    Forbidden           -> "vous n'avez pas le droit"
    InvalidTransition   -> "ce changement n'est pas possible maintenant"
    ValidationError     -> "il manque quelque chose (motif, date, rapport...)"
"""

from typing import Any, Dict, Optional


class PortailError(Exception):
    """Base de toutes les erreurs remontées par les services"""

    code = "ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class Forbidden(PortailError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidTransition(PortailError):
    code = "INVALID_TRANSITION"
    status_code = 400


class ValidationError(PortailError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(PortailError):
    code = "NOT_FOUND"
    status_code = 404


class NoJurisdictionBound(PortailError):
    """Le compte n'a jamais été rattaché à une commune (erreur de configuration)"""
    code = "NO_JURISDICTION_BOUND"
    status_code = 422


class InvalidAssignee(PortailError):
    code = "INVALID_ASSIGNEE"
    status_code = 400


class Conflict(PortailError):
    """Un autre écrivain a modifié le document en premier"""
    code = "CONFLICT"
    status_code = 409


class MaintenanceMode(PortailError):
    code = "MAINTENANCE"
    status_code = 503
