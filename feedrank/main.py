"""
Feed ranking API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB) and create tables if not present
  3. Connect to Redis (content score cache)
  4. Start Kafka producer (interaction events), when enabled
  5. Start the reverse-geocoding client, when an API key is configured
  6. Wire the ranking service and expose Prometheus /metrics
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from feedrank.clients.geocoder import GeocoderClient
from feedrank.clients.kafka_producer import KafkaInteractionPublisher
from feedrank.clients.redis_client import create_redis, init_redis
from feedrank.config import settings
from feedrank.database import create_engine, create_session_factory, init_db
from feedrank.routers import feed, interactions, preferences
from feedrank.service import build_service
from feedrank.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting feed ranking API (env=%s)", settings.environment)
    setup_tracing()

    engine = create_engine(settings.database_url)
    await init_db(engine)

    redis = create_redis(settings.redis_host, settings.redis_port)
    await init_redis(redis)

    publisher = None
    if settings.kafka_enabled:
        publisher = KafkaInteractionPublisher(
            settings.kafka_bootstrap_servers, settings.kafka_topic_interactions
        )
        await publisher.start()

    geocoder = None
    if settings.geocoder_api_key:
        geocoder = GeocoderClient(
            settings.geocoder_url, settings.geocoder_api_key, settings.geocoder_timeout
        )
        await geocoder.start()

    app.state.service = build_service(
        settings,
        create_session_factory(engine),
        redis,
        publisher=publisher,
        geocoder=geocoder,
    )

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    # Let in-flight learning tasks finish before the connections go away
    await app.state.service.background.drain()
    if publisher:
        await publisher.stop()
    if geocoder:
        await geocoder.stop()
    await redis.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Feed Ranking API",
        description=(
            "Personalized feed ranking: multi-source candidate retrieval, "
            "multi-signal scoring, author diversity and online preference learning."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # ── Routers ────────────────────────────────────────────────────────────
    app.include_router(feed.router, prefix="/feed", tags=["Feed"])
    app.include_router(interactions.router, prefix="/interactions", tags=["Interactions"])
    app.include_router(preferences.router, prefix="/preferences", tags=["Preferences"])

    # ── Prometheus metrics endpoint ────────────────────────────────────────
    app.mount("/metrics", make_asgi_app())

    # ── OTel FastAPI instrumentation ───────────────────────────────────────
    instrument_app(app)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": settings.service_name}

    return app


app = create_app()
