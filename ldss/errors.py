"""
Domain errors shared by the LDSS services.
"""

from __future__ import annotations


class LdssError(Exception):
    """Base class for errors raised by the service layer."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LdssError):
    """Malformed or missing input. The caller must fix the request."""


class NotFoundError(LdssError):
    """The project does not exist or is not owned by the caller."""


class AuthenticationError(LdssError):
    """Unknown credentials or an unknown/expired session token."""


class BackendConnectionError(LdssError):
    """An external provider was unreachable or rejected the binding."""


class DurableStoreError(LdssError):
    """The schema store failed to read or write."""
