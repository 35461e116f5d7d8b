from __future__ import annotations

from typing import Optional


class FieldOpsError(Exception):
    """Base of every error raised by the client library."""


class InvalidInputError(FieldOpsError):
    pass


class NotAuthenticatedError(FieldOpsError):
    pass


class RemoteError(FieldOpsError):
    """The backend rejected the call; message is its detail, verbatim."""

    def __init__(self, status_code: int, code: Optional[str], message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"RemoteError({self.status_code}, {self.code!r}, {self.message!r})"


class TransportError(FieldOpsError):
    pass


class SchemaMismatchError(FieldOpsError):
    pass
