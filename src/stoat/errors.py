"""Error taxonomy shared by the resource layer, the HTTP API and the gateway.

Every error carries a stable ``code`` that clients can branch on, plus a
human-readable message.  ``NotFound`` is used both for absent resources and for
resources the principal cannot see, so the two are indistinguishable.
"""

from __future__ import annotations

from typing import Any


class StoatError(Exception):
    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFound(StoatError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(StoatError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidArgument(StoatError):
    code = "INVALID_ARGUMENT"
    status_code = 422

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["fields"] = self.fields
        return d


class Conflict(StoatError):
    code = "CONFLICT"
    status_code = 409


class Unauthenticated(StoatError):
    code = "UNAUTHENTICATED"
    status_code = 401
