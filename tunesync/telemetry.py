"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the like path and the sync worker

Tracing is initialised once per process (API or worker). Until then the
module-level tracers used across the package are OTel no-ops.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Gauge, Histogram

from tunesync.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
LIKE_MUTATIONS_TOTAL = Counter(
    "like_mutations_total",
    "Like / unlike requests applied to Redis LikeSets",
    ["kind", "action", "changed"],   # changed = 'true' if membership changed
)

FLUSH_KEYS_TOTAL = Counter(
    "like_flush_keys_total",
    "LikeSet keys processed by the sync worker",
    ["kind", "outcome"],  # succeeded | failed | skipped | changed | deferred | orphaned
)

FLUSH_TICK_LATENCY = Histogram(
    "like_flush_tick_seconds",
    "Duration of one sync tick for one entity kind",
    ["kind"],
    buckets=[0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0],
)

PENDING_KEYS = Gauge(
    "like_pending_keys",
    "LikeSet keys discovered at the start of the latest tick",
    ["kind"],
)

TICKS_SKIPPED_TOTAL = Counter(
    "like_sync_ticks_skipped_total",
    "Ticks skipped because the previous tick for the kind was still draining",
    ["kind"],
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing(service_name: str | None = None) -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.otel_enabled:
        logger.info("OTel tracing disabled")
        return

    resource = Resource.create(
        {
            "service.name": service_name or settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument the store clients so their spans appear in traces
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
