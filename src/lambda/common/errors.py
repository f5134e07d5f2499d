"""Domain error kinds for the club data-access and authorization layer.

A single exception type carries a kind tag; transport status codes are assigned
by common.response at the API boundary.
"""
from enum import Enum


class ErrorKind(Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"
    AUTHORIZATION = "authorization"


class ServiceError(Exception):
    """Domain failure with a kind, a message and optional structured details."""

    def __init__(self, kind, message, code=None, **details):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code or kind.name
        self.details = details

    def __repr__(self):
        return f"ServiceError({self.kind.name}, {self.message!r}, code={self.code!r})"

    def to_dict(self):
        out = {"error": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


def validation_error(message, **details):
    return ServiceError(ErrorKind.VALIDATION, message, **details)


def not_found(message, **details):
    return ServiceError(ErrorKind.NOT_FOUND, message, **details)


def conflict(message, **details):
    return ServiceError(ErrorKind.CONFLICT, message, **details)


def internal_error(message="Internal server error", **details):
    return ServiceError(ErrorKind.INTERNAL, message, **details)


def authorization_error(capability, resource=None, message=None):
    """Denied capability; keeps capability and resource for logs and responses."""
    msg = message or f"Insufficient privileges: {capability} required"
    return ServiceError(ErrorKind.AUTHORIZATION, msg, capability=capability, resource=resource)


def invalid_cursor(message="Invalid pagination cursor"):
    return ServiceError(ErrorKind.VALIDATION, message, code="INVALID_CURSOR")
