"""
Service-layer exceptions shared across apps.

Views translate these into HTTP responses (see ``madrasa.core.api``):
``ValidationError`` becomes 400 and ``NotFoundError`` becomes 404. Anything
else reaching a view is treated as a 500.
"""

from __future__ import annotations

from typing import Any


class MadrasaError(Exception):
    """Base exception for service errors that carry a client-safe message."""

    def __init__(self, detail: str, code: str = "error"):
        self.detail = detail
        self.code = code
        super().__init__(detail)


class ValidationError(MadrasaError):
    """Raised when input fails a business rule."""

    def __init__(self, detail: str, details: Any = None):
        self.details = details
        super().__init__(detail, code="validation_error")


class NotFoundError(MadrasaError):
    """Raised when a referenced record does not exist."""

    def __init__(self, detail: str = "Not found"):
        super().__init__(detail, code="not_found")
