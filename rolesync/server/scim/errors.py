"""Error taxonomy for the SCIM surface.

Every failure a client can observe maps to one ``ScimErrorKind``; the kind
fixes the HTTP status and the optional RFC 7644 §3.12 ``scimType``.
"""

from enum import Enum


class ScimErrorKind(str, Enum):
    AUTH_INVALID = "auth_invalid"
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    INVALID_FILTER = "invalid_filter"
    INVALID_PATH = "invalid_path"
    NO_SUCH_MEMBER = "no_such_member"
    OWNER_PROTECTED = "owner_protected"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def scim_type(self) -> str | None:
        return _SCIM_TYPES.get(self)


_STATUS_CODES: dict[ScimErrorKind, int] = {
    ScimErrorKind.AUTH_INVALID: 401,
    ScimErrorKind.RATE_LIMITED: 429,
    ScimErrorKind.INVALID_REQUEST: 400,
    ScimErrorKind.INVALID_FILTER: 400,
    ScimErrorKind.INVALID_PATH: 400,
    ScimErrorKind.NO_SUCH_MEMBER: 400,
    ScimErrorKind.OWNER_PROTECTED: 403,
    ScimErrorKind.NOT_FOUND: 404,
    ScimErrorKind.METHOD_NOT_ALLOWED: 405,
}

_SCIM_TYPES: dict[ScimErrorKind, str] = {
    ScimErrorKind.INVALID_FILTER: "invalidFilter",
    ScimErrorKind.INVALID_PATH: "invalidPath",
    ScimErrorKind.NO_SUCH_MEMBER: "invalidValue",
    ScimErrorKind.OWNER_PROTECTED: "mutability",
}

RATE_LIMITED_DETAIL = "Too many requests"
OWNER_PROTECTED_DETAIL = "Cannot modify the owner role through SCIM"
NO_SUCH_MEMBER_DETAIL = "Referenced member does not exist"


class ScimApiError(Exception):
    """Raised from request dependencies; rendered as a SCIM error envelope."""

    def __init__(self, kind: ScimErrorKind, detail: str) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(detail)
