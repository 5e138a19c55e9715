"""Unified API error response helpers."""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.exceptions import CRMError
from app.core.logging import get_logger

logger = get_logger(__name__)


def build_error_payload(
    *,
    code: str,
    message: str,
    detail: Any = None,
    context: dict[str, Any] | None = None,
    request: Request | None = None,
) -> dict[str, Any]:
    payload_context = context.copy() if context else {}
    if request is not None:
        payload_context.setdefault("request_id", getattr(request.state, "request_id", None))
        payload_context.setdefault("correlation_id", getattr(request.state, "correlation_id", None))
        payload_context.setdefault("path", request.url.path)
        payload_context.setdefault("method", request.method)

    return {
        "error": code,
        "message": message,
        "detail": detail,
        "context": payload_context,
    }


async def crm_error_handler(request: Request, exc: CRMError) -> JSONResponse:
    """Render any domain error as ``{error, message, detail, context}``."""
    if exc.status_code >= 500:
        logger.error("request_failed", code=exc.code, message=exc.message, path=request.url.path)
    else:
        logger.info("request_rejected", code=exc.code, message=exc.message, path=request.url.path)

    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_payload(
            code=exc.code,
            message=exc.message,
            detail=exc.detail,
            context=exc.context,
            request=request,
        ),
    )
