"""FastAPI service exposing the nomination board, poll views and cron tasks."""

from __future__ import annotations

import logging
from typing import Final, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from backend.database import Database
from routes.cron import router as cron_router
from routes.dao import router as dao_router
from routes.polls import router as polls_router
from routes.security import CronUnauthorized
from veiledcasts import __version__
from veiledcasts.config import Settings, get_settings
from veiledcasts.ledger.client import LedgerClient
from veiledcasts.metrics import CONTENT_TYPE_LATEST, render_latest
from veiledcasts.runtime import build_runtime

LOGGER: Final[logging.Logger] = logging.getLogger("veiledcasts.api")


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
    LOGGER.info("Poll API logging configured", extra={"level": level})


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    ledger: Optional[LedgerClient] = None,
) -> FastAPI:
    """Build the application around one store handle and one ledger client."""

    settings = settings or get_settings()
    _configure_logging(settings.log_level)
    runtime = build_runtime(settings, database=database, ledger=ledger)

    app = FastAPI(title="Veiledcasts Poll API", version=__version__, docs_url="/docs")
    app.state.runtime = runtime

    app.include_router(dao_router)
    app.include_router(polls_router)
    app.include_router(cron_router)

    @app.exception_handler(CronUnauthorized)
    async def _unauthorized(request: Request, exc: CronUnauthorized) -> JSONResponse:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - FastAPI lifecycle wiring
        await runtime.aclose()
        runtime.close()

    @app.get("/healthz", tags=["health"])
    def root_health() -> dict[str, object]:
        return {"ok": True, "ledger": settings.ledger_mode, "authority": str(runtime.ledger.payer)}

    @app.get("/metrics", tags=["health"])
    def metrics() -> Response:
        return Response(render_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
