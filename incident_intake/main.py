import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from incident_intake.api.routes import incidents, intake, ping, users
from incident_intake.assistant.gemini import GeminiAssistant
from incident_intake.core.config import get_settings
from incident_intake.core.logging import configure_logging, init_tracer, shutdown_tracer
from incident_intake.incidents.reconciler import IncidentReconciler
from incident_intake.incidents.repository import IncidentRepository
from incident_intake.intake.controller import IntakeContext
from incident_intake.intake.registry import SessionRegistry
from incident_intake.services.postgres import PostgresConnectionTester
from incident_intake.users.repository import UserRepository

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    postgres_tester = PostgresConnectionTester(dsn=settings.postgres_dsn)
    assistant = GeminiAssistant.from_settings(settings)
    registry = SessionRegistry(
        idle_timeout=settings.intake_session_idle_seconds,
        max_per_owner=settings.intake_sessions_per_user,
    )
    app.state.postgres_tester = postgres_tester
    app.state.session_registry = registry
    app.state.incident_repository = None
    app.state.user_repository = None
    app.state.intake_context = None
    try:
        pool = await postgres_tester.get_pool()
        incident_repository = IncidentRepository(pool)
        user_repository = UserRepository(pool)
        await incident_repository.ensure_schema()
        await user_repository.ensure_schema()
        app.state.incident_repository = incident_repository
        app.state.user_repository = user_repository
        app.state.intake_context = IntakeContext(
            assistant=assistant,
            reconciler=IncidentReconciler(incident_repository, timeout=settings.persistence_timeout_seconds),
            turn_timeout=settings.assistant_timeout_seconds,
            max_attachment_bytes=settings.max_attachment_bytes,
        )
    except Exception:
        logger.exception("Database initialisation failed; incident endpoints are disabled")
    if not assistant.available:
        logger.warning("GEMINI_API_KEY is not set; new intake sessions will be unavailable")
    try:
        yield
    finally:
        await registry.close_all()
        await assistant.aclose()
        await postgres_tester.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(intake.router)
    app.include_router(incidents.router)
    app.include_router(users.router)
    return app


app = create_app()
