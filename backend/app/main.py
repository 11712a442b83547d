import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.errors import status_for_error
from .api.routes import router as api_router
from .core.config import Settings, get_settings
from .core.errors import ConnectorError
from .core.logging import RequestContextMiddleware, configure_logging
from .services.snapshot_scheduler import schedule_daily_snapshots, stop_daily_snapshots

settings = get_settings()

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

BACKEND_ROOT = Path(__file__).resolve().parents[1]


def _should_migrate(cfg: Settings) -> bool:
    if "pytest" in sys.modules:
        return False
    if cfg.auto_migrate is not None:
        return cfg.auto_migrate
    return cfg.database_url.startswith("sqlite")


def _run_migrations_if_needed() -> None:
    """Bring the database to the latest Alembic revision before serving."""

    if not _should_migrate(settings):
        return

    alembic_ini = BACKEND_ROOT / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning(
            "alembic.ini not found; skipping migrations",
            extra={"extra": {"path": str(alembic_ini)}},
        )
        return

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(alembic_ini))
    cfg.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    try:
        command.upgrade(cfg, "head")
    except Exception:
        logger.exception("Failed to run Alembic migrations on startup.")
        raise


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    _run_migrations_if_needed()
    logger.info(
        "PortfolioBlend API starting",
        extra={"extra": settings.dict_for_logging()},
    )
    schedule_daily_snapshots()
    try:
        yield
    finally:
        stop_daily_snapshots()
        logger.info("PortfolioBlend API stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=_lifespan,
)


@app.exception_handler(ConnectorError)
async def _connector_error_handler(request: Request, exc: ConnectorError) -> JSONResponse:
    """Connector errors a router did not translate itself."""

    logger.warning(
        "Unhandled connector error",
        extra={"extra": {"path": request.url.path, "kind": exc.error_kind, "error": str(exc)}},
    )
    return JSONResponse(status_code=status_for_error(exc), content={"detail": str(exc)})


app.add_middleware(RequestContextMiddleware)
app.include_router(api_router)


__all__ = ["app"]
