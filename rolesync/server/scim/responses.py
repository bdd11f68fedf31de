"""SCIM response envelopes.

Every SCIM response, success or error, goes out as ``application/scim+json``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from rolesync.server.scim.errors import ScimApiError
from rolesync.server.scim.errors import ScimErrorKind
from rolesync.server.scim.models import ScimError
from rolesync.server.scim.models import ScimGroupResource
from rolesync.server.scim.models import ScimListResponse
from rolesync.server.scim.models import ScimUserResource
from rolesync.utils.logger import setup_logger

logger = setup_logger()

SCIM_CONTENT_TYPE = "application/scim+json"
INTERNAL_ERROR_DETAIL = "Internal server error"


class ScimJSONResponse(JSONResponse):
    media_type = SCIM_CONTENT_TYPE


def scim_response(
    body: BaseModel | dict[str, Any], status: int = 200
) -> ScimJSONResponse:
    """Success envelope around an arbitrary resource."""
    content = (
        body.model_dump(mode="json", by_alias=True, exclude_none=True)
        if isinstance(body, BaseModel)
        else body
    )
    return ScimJSONResponse(status_code=status, content=content)


def scim_error_response(
    status: int,
    detail: str,
    scim_type: str | None = None,
) -> ScimJSONResponse:
    """Build a SCIM-compliant error response (RFC 7644 §3.12)."""
    body = ScimError(status=str(status), detail=detail, scimType=scim_type)
    return scim_response(body, status=status)


def scim_error_for(kind: ScimErrorKind, detail: str) -> ScimJSONResponse:
    return scim_error_response(kind.status_code, detail, kind.scim_type)


def scim_list_response(
    resources: list[ScimUserResource] | list[ScimGroupResource],
    total_results: int,
    start_index: int = 1,
    items_per_page: int | None = None,
) -> ScimJSONResponse:
    """List envelope (RFC 7644 §3.4.2)."""
    body = ScimListResponse(
        totalResults=total_results,
        startIndex=start_index,
        itemsPerPage=len(resources) if items_per_page is None else items_per_page,
        Resources=list(resources),
    )
    return scim_response(body)


# ---------------------------------------------------------------------------
# Exception handlers (registered in ``rolesync.main.create_app``)
# ---------------------------------------------------------------------------


def scim_api_error_handler(
    request: Request,  # noqa: ARG001
    exc: ScimApiError,
) -> ScimJSONResponse:
    """Render a ``ScimApiError`` raised by a request dependency."""
    return scim_error_for(exc.kind, exc.detail)


def _format_validation_error(error: Any) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    msg = str(error.get("msg", "Invalid value"))
    return f"{loc}: {msg}" if loc else msg


def format_validation_errors(errors: Sequence[Any]) -> str:
    """Join pydantic error entries as ``"loc: msg"`` pairs."""
    return "; ".join(_format_validation_error(e) for e in errors)


def request_validation_error_handler(
    request: Request,  # noqa: ARG001
    exc: RequestValidationError,
) -> ScimJSONResponse:
    """Render body and query validation failures as a SCIM 400."""
    errors = list(exc.errors())
    if any(e.get("type") == "json_invalid" for e in errors):
        detail = "Invalid JSON"
    else:
        detail = format_validation_errors(errors)
    return scim_error_for(ScimErrorKind.INVALID_REQUEST, detail or "Invalid request")


def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> ScimJSONResponse:
    """Last resort for anything the endpoints did not turn into an envelope."""
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return scim_error_response(500, INTERNAL_ERROR_DETAIL)
