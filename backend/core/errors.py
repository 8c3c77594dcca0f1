"""
Domain errors for procurement and receiving.

Every error carries a stable ``code`` and an HTTP ``status_code`` so the
API layer can render a typed body instead of an opaque 500.
"""

from typing import Any


class DomainError(Exception):
    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(DomainError):
    """Malformed or out-of-range input. Raised before any mutation."""

    code = "VALIDATION_ERROR"
    status_code = 422


class InvalidStateError(DomainError):
    """Operation attempted against an aggregate in the wrong lifecycle state."""

    code = "INVALID_STATE"
    status_code = 409


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} with ID '{entity_id}' not found" if entity_id is not None else f"{entity} not found"
        super().__init__(message, {"entity": entity})


class ForbiddenError(DomainError):
    code = "FORBIDDEN"
    status_code = 403


class DependencyFailure(DomainError):
    """
    A collaborator call failed.

    ``critical`` failures (stock increments) abort the enclosing transaction;
    best-effort ones are logged by the caller and never raised.
    """

    code = "DEPENDENCY_FAILURE"
    status_code = 502

    def __init__(self, message: str, dependency: str, critical: bool = True, details: dict[str, Any] | None = None):
        super().__init__(message, {"dependency": dependency, **(details or {})})
        self.dependency = dependency
        self.critical = critical
