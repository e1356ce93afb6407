from __future__ import annotations

from typing import Any, Optional


class PosError(ValueError):
    """Base error for every rejected POS operation.

    Subclasses ValueError so page handlers that catch ValueError/Exception
    and show ``str(e)`` keep working.
    """

    code = 400

    def __init__(self, message: str, code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.payload = payload or {}

    def to_dict(self) -> dict[str, Any]:
        rv = dict(self.payload)
        rv["error"] = type(self).__name__
        rv["message"] = self.message
        rv["code"] = self.code
        return rv


class ValidationError(PosError):
    code = 400


class NotFoundError(PosError):
    code = 404


class ConflictError(PosError):
    code = 409


class InsufficientStockError(PosError):
    code = 409


class HasSalesError(PosError):
    code = 409


class ExhaustedError(PosError):
    code = 409
