"""Headshot API application: service wiring, lifespan and router mounting."""

from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from headshot.api.routes import credits, generations, health, styles, webhooks
from headshot.core import timezone  # noqa: F401  # sets TZ=UTC on import
from headshot.core.config import Settings, configure_logging
from headshot.core.database import setup_db_session
from headshot.services.generation import GenerationService
from headshot.services.ledger import LedgerService
from headshot.services.providers.factory import build_provider
from headshot.services.storage.object_storage import ObjectStorage
from headshot.services.styles import StyleCatalog
from headshot.uow import create_uow_factory
from headshot.workers.stale_job_sweeper import run_stale_job_sweeper
from headshot.workers.supervisor import WorkerSupervisor

logger = structlog.get_logger()


def build_services(app: FastAPI, settings: Settings, session_factory) -> GenerationService:
    """Construct services once and expose them on app.state for the route dependencies."""
    uow_factory = create_uow_factory(session_factory)
    ledger = LedgerService(
        signup_bonus_credits=settings.signup_bonus_credits,
        signup_bonus_description=settings.signup_bonus_description,
    )
    styles = StyleCatalog()
    generation_service = GenerationService(
        uow_factory=uow_factory,
        provider=build_provider(settings, uow_factory),
        ledger=ledger,
        settings=settings,
        styles=styles,
        storage=ObjectStorage(settings),
    )

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.ledger = ledger
    app.state.styles = styles
    app.state.generation_service = generation_service
    return generation_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire services and run the stale job sweeper for the life of the process.

    On shutdown the sweeper stops first, then in-flight generations are
    cancelled; the next sweep after restart fails and refunds them.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    generation_service = build_services(app, settings, session_factory)

    if not generation_service.provider.is_configured():
        logger.warning("startup.provider_not_configured", provider=settings.generation_provider)
    if generation_service.storage is not None and not generation_service.storage.is_configured():
        logger.info("startup.rehosting_disabled")

    sweeper = WorkerSupervisor(
        "stale_job_sweeper", partial(run_stale_job_sweeper, generation_service, settings)
    )
    sweeper.start()

    logger.info(
        "application.startup",
        db_host=settings.database_url.rsplit("@", 1)[-1],
        provider=settings.generation_provider,
        cost=settings.generation_cost_credits,
    )

    yield

    logger.info("application.shutdown")
    await sweeper.stop()
    await generation_service.shutdown()


def create_app() -> FastAPI:
    """Build the FastAPI application; services are attached in the lifespan."""
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Headshot Backend API",
        description="AI headshot generation with prepaid credits",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(generations.router)  # prefix="/api/generations" in definition
    app.include_router(credits.router)
    app.include_router(styles.router)
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
    return app


# uvicorn headshot.app:app
app = create_app()
