from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from shared import RequestIDMiddleware, register_exception_handlers

from .alembic_helper import run_alembic_migrations
from .db.session import build_engine, build_session_factory
from .errors import MilesError, miles_error_handler
from .routes import register_routes
from .settings import miles_settings
from .startup import setup_instrumentation, setup_logging, shutdown_instrumentation


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = miles_settings()
    logger.info(f"Starting {settings.service_name} ({settings.environment})")
    for key, value in settings.safe_dict().items():
        logger.info(f"    {key}: {value}")

    if settings.run_migrations_on_startup:
        await run_alembic_migrations(settings.sync_db_url)

    engine = build_engine()
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    try:
        yield
    finally:
        await engine.dispose()
        shutdown_instrumentation(app)
        logger.info(f"{settings.service_name} stopped")


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Service Miles", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)
    app.add_exception_handler(MilesError, miles_error_handler)
    register_routes(app)
    setup_instrumentation(app)
    return app
