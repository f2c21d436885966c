"""Observability setup: logging, tracing, metrics, and error tracking."""

import logging
import time
import uuid
from contextvars import ContextVar

import sentry_sdk
import structlog
from fastapi import FastAPI, Request, Response
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Gauge, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from linkhop.core.config import get_settings

settings = get_settings()

# Context variable for request ID (accessible throughout the request lifecycle)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# Paths served by the application itself; everything else is a slug
SERVICE_PATHS = frozenset({"/health", "/stats", "/metrics"})

# Prometheus metrics - HTTP requests
REQUEST_COUNT = Counter(
    "linkhop_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "linkhop_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

REDIRECT_COUNT = Counter(
    "linkhop_redirects_total",
    "Redirect responses by status code",
    ["status_code"],
)

CACHE_LOOKUPS = Counter(
    "linkhop_link_cache_lookups_total",
    "Redirect cache lookups",
    ["result"],  # hit, miss
)

# Prometheus metrics - Click collection
CLICKS_PUSHED = Counter(
    "linkhop_clicks_pushed_total",
    "Click events accepted into the analytics buffer",
)

CLICKS_DROPPED = Counter(
    "linkhop_clicks_dropped_total",
    "Click events dropped because the buffer was full or closed",
)

CLICKS_FILTERED = Counter(
    "linkhop_clicks_filtered_total",
    "Click events not recorded because they looked automated",
    ["reason"],  # bot, threat_ip
)

PENDING_CLICKS = Gauge(
    "linkhop_pending_clicks",
    "Click events waiting in the analytics buffer",
)

# Prometheus metrics - Batch storage
BATCH_SIZE = Histogram(
    "linkhop_click_batch_size",
    "Number of clicks per batch insert",
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000],
)

BATCH_INSERT_LATENCY = Histogram(
    "linkhop_click_batch_insert_duration_seconds",
    "Time to perform batch insert",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

FLUSH_FAILURES = Counter(
    "linkhop_click_flush_failures_total",
    "Click batches dropped after a failed insert",
)

# Prometheus metrics - Threat feeds
THREAT_RANGES = Gauge(
    "linkhop_threat_ranges",
    "CIDR ranges in the live threat index",
)

THREAT_IPS = Gauge(
    "linkhop_threat_blocked_ips",
    "Individual addresses in the live threat index",
)

THREAT_FEED_ERRORS = Counter(
    "linkhop_threat_feed_errors_total",
    "Failed threat feed fetches",
    ["source"],
)

THREAT_REFRESH_DURATION = Histogram(
    "linkhop_threat_refresh_duration_seconds",
    "Time to refresh all threat feeds",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add a unique request ID to each request.

    The request ID is:
    - Generated if not provided in X-Request-ID header
    - Stored in context variable for access throughout the request
    - Added to response headers
    - Bound to structlog context for all log messages
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_ctx.reset(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests with timing information."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        logger = structlog.get_logger()
        start_time = time.perf_counter()

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        # Every slug is its own path, so collapse them into one label
        endpoint = request.url.path
        if endpoint not in SERVICE_PATHS:
            endpoint = "/{slug}"

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


def configure_structlog() -> None:
    """Configure structlog for JSON logging with context variables."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=logging.INFO if not settings.debug else logging.DEBUG,
    )


def setup_opentelemetry(app: FastAPI) -> None:
    """Set up OpenTelemetry tracing."""
    if not settings.otlp_endpoint:
        structlog.get_logger().info("OpenTelemetry disabled (no OTLP endpoint configured)")
        return

    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: "linkhop"}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics")

    structlog.get_logger().info(
        "OpenTelemetry configured",
        otlp_endpoint=settings.otlp_endpoint,
    )


def setup_sentry() -> None:
    """Set up Sentry for error tracking."""
    if not settings.sentry_dsn:
        structlog.get_logger().info("Sentry disabled (no DSN configured)")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
        traces_sample_rate=0.01,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        # Click data carries visitor IPs
        send_default_pii=False,
    )

    structlog.get_logger().info("Sentry configured")


def get_prometheus_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def setup_observability(app: FastAPI) -> None:
    """Set up logging, error tracking, tracing and the metrics endpoint."""
    configure_structlog()
    setup_sentry()
    setup_opentelemetry(app)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(
            content=get_prometheus_metrics(),
            media_type="text/plain; charset=utf-8",
        )

    structlog.get_logger().info("Observability setup complete")


# Helper functions to record custom metrics
def record_redirect(status_code: int) -> None:
    """Record a redirect response."""
    REDIRECT_COUNT.labels(status_code=status_code).inc()


def record_cache_lookup(hit: bool) -> None:
    """Record a redirect cache hit or miss."""
    CACHE_LOOKUPS.labels(result="hit" if hit else "miss").inc()


def record_click_pushed() -> None:
    """Record a click accepted into the buffer."""
    CLICKS_PUSHED.inc()


def record_click_dropped() -> None:
    """Record a click dropped at the buffer."""
    CLICKS_DROPPED.inc()


def record_click_filtered(reason: str) -> None:
    """Record a click skipped as automated traffic."""
    CLICKS_FILTERED.labels(reason=reason).inc()


def record_batch_insert(batch_size: int, duration: float) -> None:
    """Record a batch insert operation."""
    BATCH_SIZE.observe(batch_size)
    BATCH_INSERT_LATENCY.observe(duration)


def record_flush_failed() -> None:
    """Record a dropped batch."""
    FLUSH_FAILURES.inc()


def set_pending_clicks(count: int) -> None:
    """Set the number of pending clicks."""
    PENDING_CLICKS.set(count)


def record_feed_error(source: str) -> None:
    """Record a failed threat feed fetch."""
    THREAT_FEED_ERRORS.labels(source=source).inc()


def record_threat_refresh(duration: float, ranges: int, ips: int) -> None:
    """Record a completed threat refresh and the live index size."""
    THREAT_REFRESH_DURATION.observe(duration)
    THREAT_RANGES.set(ranges)
    THREAT_IPS.set(ips)
