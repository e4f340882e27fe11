"""
TuneSync API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create tables if not present
  3. Connect to Redis
  4. Wire the like coordinator onto app.state
  5. Expose Prometheus /metrics endpoint

The like sync worker runs as a separate process (tunesync.worker).
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from tunesync.clients.redis_client import MembershipStore, close_redis, init_redis
from tunesync.config import settings
from tunesync.database import AsyncSessionLocal, init_db
from tunesync.errors import FastStoreUnavailable, InvalidLikeRequest, NotFoundError
from tunesync.likes import LikeCoordinator
from tunesync.routers import comments, songs
from tunesync.stores.records import DurableRecordStore
from tunesync.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


def attach_stores(app: FastAPI, membership: MembershipStore, records: DurableRecordStore) -> None:
    app.state.membership = membership
    app.state.records = records
    app.state.coordinator = LikeCoordinator(membership, records)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting TuneSync API (env=%s)", settings.environment)

    await init_db()
    redis = await init_redis()
    attach_stores(app, MembershipStore(redis), DurableRecordStore(AsyncSessionLocal))

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await close_redis()


async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": f"{exc.kind.capitalize()} not found"},
    )


async def fast_store_unavailable_handler(request: Request, exc: FastStoreUnavailable):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Likes are temporarily unavailable"},
    )


async def invalid_like_request_handler(request: Request, exc: InvalidLikeRequest):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(
        title="TuneSync API",
        description=(
            "Music-sharing likes with write-behind synchronization: "
            "Redis LikeSets flushed to the database by a scheduled worker."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # ── Routers ────────────────────────────────────────────────────────────
    app.include_router(songs.router, prefix="/songs", tags=["Songs"])
    app.include_router(comments.router, prefix="/comments", tags=["Comments"])

    # ── Domain errors ──────────────────────────────────────────────────────
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(FastStoreUnavailable, fast_store_unavailable_handler)
    app.add_exception_handler(InvalidLikeRequest, invalid_like_request_handler)

    # ── Prometheus metrics endpoint ────────────────────────────────────────
    app.mount("/metrics", make_asgi_app())

    # ── OTel FastAPI instrumentation ──────────────────────────────────────
    instrument_app(app)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": settings.service_name}

    return app


app = create_app()
