"""
Helpers shared by the DRF views.

Every endpoint answers errors with the same envelope: ``{"error": message}``
plus ``details`` for validation failures.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from rest_framework import status
from rest_framework.response import Response

from madrasa.core.exceptions import MadrasaError
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

MISSING_CODES = {"required", "null", "blank"}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def error_response(
    message: str,
    status_code: int = status.HTTP_400_BAD_REQUEST,
    details: Any = None,
) -> Response:
    payload: dict[str, Any] = {"error": message}
    if details is not None:
        payload["details"] = details
    return Response(payload, status=status_code)


def service_error_response(exc: MadrasaError) -> Response:
    """
    Map a service exception onto a 400 or 404 response.
    """
    if isinstance(exc, NotFoundError):
        return error_response(exc.detail, status.HTTP_404_NOT_FOUND)
    if isinstance(exc, ValidationError):
        return error_response(exc.detail, details=exc.details)
    return error_response(exc.detail)


def serializer_error_response(errors: dict, data: Any = None) -> Response:
    """
    Answer a failed request serializer.

    Required fields that are absent, null or blank give "Missing required
    fields" naming them; any other problem is "Invalid request" with the
    serializer errors as details. Pass the submitted ``data`` so that empty
    strings sent to choice or number fields also count as missing.
    """
    submitted = data if isinstance(data, Mapping) else {}
    missing = [
        name
        for name, messages in errors.items()
        if _is_blank(submitted.get(name, "present"))
        or any(getattr(message, "code", None) in MISSING_CODES for message in messages)
    ]
    if missing:
        return error_response("Missing required fields", details={"fields": missing})
    return error_response("Invalid request", details=errors)
