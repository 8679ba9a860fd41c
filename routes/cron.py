"""Scheduled lifecycle endpoints, triggered by an external cron."""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from veiledcasts.metrics import CRON_RUNS, CRON_SECONDS
from veiledcasts.runtime import Runtime
from veiledcasts.workflows.scheduler import TaskAlreadyRunning

from .common import get_runtime
from .security import CronContext, require_cron_secret

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


async def _run(name: str, task: Callable[[], Awaitable[Dict[str, Any]]]) -> JSONResponse:
    LOGGER.info("[CRON] Starting %s", name)
    started = time.perf_counter()
    try:
        summary = await task()
        response = JSONResponse(summary)
    except TaskAlreadyRunning as exc:
        response = JSONResponse({"error": str(exc)}, status_code=409)
    except Exception as exc:
        LOGGER.exception("[CRON] %s failed", name)
        response = JSONResponse({"error": str(exc) or "Internal server error"}, status_code=500)
    CRON_RUNS.labels(task=name, http_status=str(response.status_code)).inc()
    CRON_SECONDS.labels(task=name).observe(time.perf_counter() - started)
    return response


@router.get("/archive-nominations")
async def archive_nominations(
    _: CronContext = Depends(require_cron_secret),
    runtime: Runtime = Depends(get_runtime),
) -> JSONResponse:
    return await _run("archive-nominations", runtime.scheduler.archive_nominations)


@router.get("/promote-polls")
async def promote_polls(
    _: CronContext = Depends(require_cron_secret),
    runtime: Runtime = Depends(get_runtime),
) -> JSONResponse:
    return await _run("promote-polls", runtime.scheduler.promote_polls)


@router.get("/auto-reveal")
async def auto_reveal(
    _: CronContext = Depends(require_cron_secret),
    runtime: Runtime = Depends(get_runtime),
) -> JSONResponse:
    return await _run("auto-reveal", runtime.scheduler.auto_reveal)


__all__ = ["router"]
