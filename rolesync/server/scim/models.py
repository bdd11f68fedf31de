"""Pydantic schemas for SCIM 2.0 provisioning (RFC 7643 / RFC 7644).

SCIM protocol schemas follow the wire format defined in:
  - Core Schema: https://datatracker.ietf.org/doc/html/rfc7643
  - Protocol:    https://datatracker.ietf.org/doc/html/rfc7644

Request models validate what IdPs send; resource models are what we render.
Field names use camelCase to match the SCIM wire format.
"""

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator


# ---------------------------------------------------------------------------
# SCIM Schema URIs (RFC 7643 §8)
# ---------------------------------------------------------------------------

SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
SCIM_LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_PATCH_OP_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"

MAX_USER_NAME_LENGTH = 254
MAX_EXTERNAL_ID_LENGTH = 255
MAX_DISPLAY_NAME_LENGTH = 255
MAX_PATCH_OPERATIONS = 100
MAX_GROUP_MEMBERS = 1000

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _require_schema(schemas: list[str], expected: str) -> list[str]:
    if expected not in schemas:
        raise ValueError(f"schemas must include {expected}")
    return schemas


# ---------------------------------------------------------------------------
# Shared sub-attributes
# ---------------------------------------------------------------------------


class ScimName(BaseModel):
    """User name components (RFC 7643 §4.1.1)."""

    givenName: str | None = None
    familyName: str | None = None
    formatted: str | None = None


class ScimEmail(BaseModel):
    """Email sub-attribute (RFC 7643 §4.1.2)."""

    value: str
    type: str | None = None
    primary: bool = False


class ScimMeta(BaseModel):
    """Resource metadata (RFC 7643 §3.1)."""

    resourceType: str | None = None
    location: str | None = None


# ---------------------------------------------------------------------------
# Resources (responses)
# ---------------------------------------------------------------------------


class ScimUserResource(BaseModel):
    """SCIM User resource representation (RFC 7643 §4.1)."""

    schemas: list[str] = Field(default_factory=lambda: [SCIM_USER_SCHEMA])
    id: str
    externalId: str | None = None
    userName: str
    name: ScimName
    emails: list[ScimEmail] = Field(default_factory=list)
    active: bool = True
    meta: ScimMeta | None = None


class ScimGroupMember(BaseModel):
    """Group member reference (RFC 7643 §4.2). ``value`` is the user id."""

    model_config = ConfigDict(populate_by_name=True)

    value: str
    display: str | None = None
    ref: str | None = Field(default=None, alias="$ref")


class ScimGroupResource(BaseModel):
    """SCIM Group resource representation (RFC 7643 §4.2)."""

    schemas: list[str] = Field(default_factory=lambda: [SCIM_GROUP_SCHEMA])
    id: str
    displayName: str
    members: list[ScimGroupMember] = Field(default_factory=list)
    meta: ScimMeta | None = None


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ScimUserRequest(BaseModel):
    """Body of ``PUT /Users/{id}``."""

    schemas: list[str]
    userName: str = Field(min_length=3, max_length=MAX_USER_NAME_LENGTH)
    externalId: str | None = Field(default=None, max_length=MAX_EXTERNAL_ID_LENGTH)
    name: ScimName | None = None
    active: bool = True

    @field_validator("schemas")
    @classmethod
    def _check_schemas(cls, value: list[str]) -> list[str]:
        return _require_schema(value, SCIM_USER_SCHEMA)

    @field_validator("userName")
    @classmethod
    def _normalize_user_name(cls, value: str) -> str:
        value = value.strip().lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("userName must be an email address")
        return value


class ScimGroupMemberRequest(BaseModel):
    value: str = Field(min_length=1, max_length=MAX_EXTERNAL_ID_LENGTH)
    display: str | None = None


class ScimGroupRequest(BaseModel):
    """Body of ``PUT /Groups/{id}``."""

    schemas: list[str]
    displayName: str = Field(min_length=1, max_length=MAX_DISPLAY_NAME_LENGTH)
    externalId: str | None = Field(default=None, max_length=MAX_EXTERNAL_ID_LENGTH)
    members: list[ScimGroupMemberRequest] = Field(
        default_factory=list, max_length=MAX_GROUP_MEMBERS
    )

    @field_validator("schemas")
    @classmethod
    def _check_schemas(cls, value: list[str]) -> list[str]:
        return _require_schema(value, SCIM_GROUP_SCHEMA)


class ScimPatchOperationType(str, Enum):
    """PATCH operations (RFC 7644 §3.5.2)."""

    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


class ScimPatchOperation(BaseModel):
    """Single PATCH operation as submitted.

    ``value`` is left untyped here; the patch parser narrows it immediately.
    """

    op: ScimPatchOperationType
    path: str | None = None
    value: Any = None

    @field_validator("op", mode="before")
    @classmethod
    def _lowercase_op(cls, value: Any) -> Any:
        # Entra ID sends "Add" / "Replace" / "Remove"
        if isinstance(value, str):
            return value.lower()
        return value


class ScimPatchRequest(BaseModel):
    """PATCH request body (RFC 7644 §3.5.2)."""

    schemas: list[str]
    Operations: list[ScimPatchOperation] = Field(
        min_length=1, max_length=MAX_PATCH_OPERATIONS
    )

    @field_validator("schemas")
    @classmethod
    def _check_schemas(cls, value: list[str]) -> list[str]:
        return _require_schema(value, SCIM_PATCH_OP_SCHEMA)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ScimListResponse(BaseModel):
    """Paginated list response (RFC 7644 §3.4.2)."""

    schemas: list[str] = Field(default_factory=lambda: [SCIM_LIST_RESPONSE_SCHEMA])
    totalResults: int
    startIndex: int = 1
    itemsPerPage: int
    Resources: list[ScimUserResource | ScimGroupResource] = Field(default_factory=list)


class ScimError(BaseModel):
    """SCIM error response (RFC 7644 §3.12)."""

    schemas: list[str] = Field(default_factory=lambda: [SCIM_ERROR_SCHEMA])
    status: str
    detail: str | None = None
    scimType: str | None = None
