"""
Error taxonomy shared by the gateway, the entity services and the HTTP
layer.

Every error carries enough context (entity kind, identifier, violated
constraint) for the caller to build a user-visible response.  None of
them is retried by the service layer; ``TransientStorageError`` is the
only one a caller may retry.
"""
from typing import Any


class ServiceError(Exception):
    status_code: int = 500
    kind: str = "service_error"

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        identifier: Any = None,
        constraint: str | None = None,
        details: list | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.identifier = identifier
        self.constraint = constraint
        self.details = details or []

    def to_dict(self) -> dict:
        data = {
            "error": self.kind,
            "detail": self.message,
            "entity": self.entity,
            "identifier": self.identifier,
            "constraint": self.constraint,
        }
        if self.details:
            data["errors"] = self.details
        return data


class ValidationError(ServiceError):
    """Malformed or missing input."""

    status_code = 422
    kind = "validation_error"


class NotFoundError(ServiceError):
    """A referenced identifier does not exist."""

    status_code = 404
    kind = "not_found"


class ConflictError(ServiceError):
    """Uniqueness or referential-integrity violation."""

    status_code = 409
    kind = "conflict"


class TransientStorageError(ServiceError):
    """Storage timeout or connection failure; safe for the caller to retry."""

    status_code = 503
    kind = "storage_unavailable"
