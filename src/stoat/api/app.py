import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from stoat.auth.service import cleanup_expired_sessions
from stoat.config import config, load_config
from stoat.db.engine import get_engine, get_session_factory, init_engine
from stoat.db.models import Base
from stoat.errors import StoatError
from stoat.gateway.bus import EventBus
from stoat.gateway.connection import CLOSE_GOING_AWAY, Connection
from stoat.gateway.dispatcher import Dispatcher
from stoat.gateway.registry import SessionRegistry
from stoat.models.errors import ErrorEnvelope
from stoat.resources.base import Repository

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///stoat.db"
CLEANUP_INTERVAL_S = 3600


def _configure_logging() -> None:
    """Configure structured JSON logging (or plain text for dev)."""
    log_format = os.environ.get("STOAT_LOG_FORMAT", "json")
    root = logging.getLogger()
    root.setLevel(os.environ.get("STOAT_LOG_LEVEL", "INFO").upper())
    for h in root.handlers[:]:
        root.removeHandler(h)
    handler = logging.StreamHandler()
    if log_format == "json":
        import json as _json

        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                d = {
                    "timestamp": self.formatTime(record),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                }
                if record.exc_info:
                    d["exception"] = self.formatException(record.exc_info)
                return _json.dumps(d)

        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


async def _periodic_cleanup(db_factory):
    """Background task: purge expired auth sessions hourly."""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_S)
        try:
            async with db_factory() as db:
                await cleanup_expired_sessions(db)
        except Exception:
            logger.error("Periodic cleanup: session cleanup failed", exc_info=True)


# --- Health and readiness endpoints ---
_health_router = APIRouter(tags=["health"])


@_health_router.get("/health")
async def health():
    return {"status": "ok"}


@_health_router.get("/ready")
async def ready():
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception:
        return JSONResponse(status_code=503, content={"status": "unavailable"})


def _validation_fields(exc: RequestValidationError) -> list[str]:
    fields = []
    for err in exc.errors():
        # Drop the "body"/"query"/"path" prefix
        loc = [str(p) for p in err.get("loc", ())[1:]]
        if loc and ".".join(loc) not in fields:
            fields.append(".".join(loc))
    return fields


def create_app(database_url: str | None = None) -> FastAPI:
    if database_url is None:
        database_url = os.environ.get("STOAT_DATABASE_URL", DEFAULT_DATABASE_URL)
    init_engine(database_url)

    # Runtime objects live on app.state; one set per app.
    registry = SessionRegistry(
        max_total_connections=config.limits.max_total_connections,
        max_sessions_per_user=config.limits.max_sessions_per_user,
    )
    bus = EventBus(backlog=config.gateway.bus_backlog_max)
    bus.attach(Dispatcher(registry, bus))
    repo = Repository(get_session_factory(), bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging()

        engine = get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with get_session_factory()() as db:
            await load_config(db)
        registry.max_total_connections = config.limits.max_total_connections
        registry.max_sessions_per_user = config.limits.max_sessions_per_user

        logger.warning(
            "Stoat keeps gateway sessions and the event bus in memory. "
            "Run with a single worker process only."
        )

        cleanup_task = asyncio.create_task(_periodic_cleanup(get_session_factory()))
        yield
        # Graceful WebSocket shutdown
        await registry.close_all(CLOSE_GOING_AWAY, "Server restarting")
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        await bus.close()
        await engine.dispose()

    app = FastAPI(
        title="Stoat",
        version="0.1.0",
        description="Stoat chat server API",
        lifespan=lifespan,
        responses={
            401: {"model": ErrorEnvelope},
            403: {"model": ErrorEnvelope},
            404: {"model": ErrorEnvelope},
            409: {"model": ErrorEnvelope},
            422: {"model": ErrorEnvelope},
        },
    )
    app.state.registry = registry
    app.state.bus = bus
    app.state.repo = repo

    @app.exception_handler(StoatError)
    async def stoat_error_handler(request: Request, exc: StoatError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"error": {
                "code": "INVALID_ARGUMENT",
                "message": "Request validation failed.",
                "fields": _validation_fields(exc),
            }},
        )

    from stoat.api.auth import router as auth_router
    from stoat.api.users import router as users_router
    from stoat.api.servers import router as servers_router
    from stoat.api.channels import router as channels_router
    from stoat.api.messages import router as messages_router
    from stoat.api.invites import router as invites_router
    from stoat.api.members import router as members_router

    app.include_router(_health_router)
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(servers_router)
    app.include_router(channels_router)
    app.include_router(messages_router)
    app.include_router(invites_router)
    app.include_router(members_router)

    @app.websocket("/gateway")
    async def gateway_websocket(ws: WebSocket):
        conn = Connection(ws, registry, repo)
        await conn.run()

    return app
