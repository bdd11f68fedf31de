"""JSON request bodies for SCIM write endpoints.

Bodies are decoded inside dependencies that depend on
``require_scim_context``, so a caller is authenticated and counted against
the rate limit before its payload is even read.
"""

from __future__ import annotations

from typing import Any
from typing import TypeVar

from fastapi import Depends
from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError

from rolesync.server.scim.auth import require_scim_context
from rolesync.server.scim.auth import ScimAuthContext
from rolesync.server.scim.errors import ScimApiError
from rolesync.server.scim.errors import ScimErrorKind
from rolesync.server.scim.models import ScimGroupRequest
from rolesync.server.scim.models import ScimPatchRequest
from rolesync.server.scim.models import ScimUserRequest
from rolesync.server.scim.responses import format_validation_errors

ModelT = TypeVar("ModelT", bound=BaseModel)

INVALID_JSON_DETAIL = "Invalid JSON"


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        raise ScimApiError(ScimErrorKind.INVALID_REQUEST, INVALID_JSON_DETAIL) from e


def _validate(model: type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        detail = format_validation_errors(e.errors()) or "Invalid request"
        raise ScimApiError(ScimErrorKind.INVALID_REQUEST, detail) from e


async def scim_user_body(
    request: Request,
    context: ScimAuthContext = Depends(require_scim_context),  # noqa: ARG001
) -> ScimUserRequest:
    return _validate(ScimUserRequest, await _read_json(request))


async def scim_group_body(
    request: Request,
    context: ScimAuthContext = Depends(require_scim_context),  # noqa: ARG001
) -> ScimGroupRequest:
    return _validate(ScimGroupRequest, await _read_json(request))


async def scim_patch_body(
    request: Request,
    context: ScimAuthContext = Depends(require_scim_context),  # noqa: ARG001
) -> ScimPatchRequest:
    return _validate(ScimPatchRequest, await _read_json(request))
