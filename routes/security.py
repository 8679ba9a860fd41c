"""Bearer-secret authentication for the scheduled lifecycle endpoints."""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

_AUDIT_LOGGER = logging.getLogger("veiledcasts.audit")


class CronUnauthorized(Exception):
    """Missing or incorrect scheduler credential."""


@dataclass(frozen=True)
class CronContext:
    """An authenticated scheduler call."""

    path: str
    token_hash: str


def verify_bearer(authorization: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time check of ``Authorization: Bearer <secret>``.

    An unset secret rejects every caller.
    """

    if not secret or not authorization or not authorization.startswith("Bearer "):
        return False
    token = authorization.split(" ", 1)[1].strip()
    return hmac.compare_digest(token.encode(), secret.encode())


async def require_cron_secret(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CronContext:
    secret = request.app.state.runtime.settings.cron_secret
    path = request.url.path
    if not verify_bearer(authorization, secret):
        _AUDIT_LOGGER.warning(
            "cron.rejected",
            extra={"path": path, "client": request.client.host if request.client else None},
        )
        raise CronUnauthorized()
    token = authorization.split(" ", 1)[1].strip() if authorization else ""
    context = CronContext(path=path, token_hash=hashlib.sha256(token.encode()).hexdigest()[:16])
    _AUDIT_LOGGER.info("cron.authenticated", extra={"path": path, "token_hash": context.token_hash})
    return context


__all__ = ["CronContext", "CronUnauthorized", "require_cron_secret", "verify_bearer"]
