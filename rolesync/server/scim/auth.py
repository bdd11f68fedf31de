"""SCIM request authentication and admission.

Bearer tokens are issued and validated by the host application. It plugs a
``ScimAuthResolver`` into ``app.state``; this module turns its answer into
a ``ScimAuthContext`` and applies the per-scope rate limit before any
endpoint touches the directory store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from fastapi import Depends
from fastapi import Request

from rolesync.server.metrics import SCIM_RATE_LIMITED_TOTAL
from rolesync.server.scim.errors import RATE_LIMITED_DETAIL
from rolesync.server.scim.errors import ScimApiError
from rolesync.server.scim.errors import ScimErrorKind
from rolesync.server.scim.rate_limit import RateLimiter
from rolesync.server.scim.rate_limit import scim_rate_limit_key
from rolesync.utils.logger import setup_logger

logger = setup_logger()


@dataclass(frozen=True)
class ScimAuthContext:
    """Who is calling: the scope the token is bound to, its tenant, and the
    user audit records are attributed to."""

    scope_id: str
    tenant_id: str
    audit_user_id: str


@dataclass(frozen=True)
class AuthResult:
    ok: bool
    data: ScimAuthContext | None = None
    error: str | None = None


class ScimAuthResolver(Protocol):
    def resolve(self, request: Request) -> AuthResult: ...


_AUTH_ERROR_MESSAGES = {
    "SCIM_TOKEN_INVALID": "Invalid SCIM token",
    "SCIM_TOKEN_REVOKED": "SCIM token has been revoked",
    "SCIM_TOKEN_EXPIRED": "SCIM token has expired",
}


def get_scim_auth_resolver(request: Request) -> ScimAuthResolver:
    return request.app.state.scim_auth_resolver


def get_scim_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.scim_rate_limiter


def require_scim_context(
    request: Request,
    resolver: ScimAuthResolver = Depends(get_scim_auth_resolver),
    rate_limiter: RateLimiter = Depends(get_scim_rate_limiter),
) -> ScimAuthContext:
    """FastAPI dependency guarding every authenticated SCIM endpoint.

    Raises:
        ScimApiError(AUTH_INVALID): The resolver rejected the request.
        ScimApiError(RATE_LIMITED): The scope is over its request budget.
    """
    result = resolver.resolve(request)
    if not result.ok or result.data is None:
        error = result.error or "SCIM_TOKEN_INVALID"
        raise ScimApiError(
            ScimErrorKind.AUTH_INVALID, _AUTH_ERROR_MESSAGES.get(error, error)
        )

    context = result.data
    if not rate_limiter.check(scim_rate_limit_key(context.scope_id)):
        SCIM_RATE_LIMITED_TOTAL.inc()
        logger.warning("SCIM rate limit exceeded for scope %s", context.scope_id)
        raise ScimApiError(ScimErrorKind.RATE_LIMITED, RATE_LIMITED_DETAIL)

    return context
