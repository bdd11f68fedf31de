"""Application factory for the rolesync SCIM service.

Token validation belongs to the host application, so there is no module
level app: the host builds one with its ``ScimAuthResolver``::

    app = create_app(auth_resolver=MyTokenResolver())
"""

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from rolesync.server.metrics import setup_prometheus_metrics
from rolesync.server.scim.api import scim_router
from rolesync.server.scim.audit import AuditSink
from rolesync.server.scim.audit import LoggingAuditSink
from rolesync.server.scim.auth import ScimAuthResolver
from rolesync.server.scim.errors import ScimApiError
from rolesync.server.scim.rate_limit import build_rate_limiter
from rolesync.server.scim.rate_limit import RateLimiter
from rolesync.server.scim.responses import request_validation_error_handler
from rolesync.server.scim.responses import scim_api_error_handler
from rolesync.server.scim.responses import unhandled_exception_handler
from rolesync.utils.logger import setup_logger

logger = setup_logger()


def health() -> dict[str, str]:
    return {"status": "ok"}


def create_app(
    auth_resolver: ScimAuthResolver,
    rate_limiter: RateLimiter | None = None,
    audit_sink: AuditSink | None = None,
    enable_metrics: bool = True,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        auth_resolver: Validates SCIM bearer tokens for every request.
        rate_limiter: Per-scope admission control. Defaults to the backend
            selected by ``SCIM_RATE_LIMIT_BACKEND``.
        audit_sink: Receives audit records. Defaults to structured log lines.
        enable_metrics: Instrument requests and expose ``/metrics``.
    """
    app = FastAPI(title="rolesync", version="0.1.0")

    app.state.scim_auth_resolver = auth_resolver
    app.state.scim_rate_limiter = rate_limiter or build_rate_limiter()
    app.state.scim_audit_sink = audit_sink or LoggingAuditSink()

    app.add_exception_handler(ScimApiError, scim_api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_api_route("/health", health, methods=["GET"], tags=["health"])
    app.include_router(scim_router)

    if enable_metrics:
        setup_prometheus_metrics(app)

    logger.info("rolesync application created")
    return app
