"""Prometheus metrics for the rolesync API server.

Domain counters for the SCIM surface plus HTTP request instrumentation via
``prometheus-fastapi-instrumentator`` (request counts, latency histograms,
in-progress gauges), exposed on ``/metrics``.
"""

from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.applications import Starlette

SCIM_RATE_LIMITED_TOTAL = Counter(
    "rolesync_scim_rate_limited_total",
    "SCIM requests rejected by the per-scope rate limiter",
)

SCIM_RECONCILE_TOTAL = Counter(
    "rolesync_scim_reconcile_total",
    "Role-group reconciliations by mode and outcome",
    ["mode", "outcome"],
)

_EXCLUDED_HANDLERS = [
    "/health",
    "/metrics",
    "/openapi.json",
]

_LATENCY_BUCKETS = (
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
)


def setup_prometheus_metrics(app: Starlette) -> None:
    """Instrument HTTP requests and expose ``/metrics``.

    Must be called before the app starts, because the instrumentator adds
    middleware via ``app.add_middleware()``.
    """
    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=False,
        should_group_untemplated=True,
        should_instrument_requests_inprogress=True,
        inprogress_labels=True,
        excluded_handlers=_EXCLUDED_HANDLERS,
    )
    instrumentator.instrument(app, latency_lowr_buckets=_LATENCY_BUCKETS).expose(app)
