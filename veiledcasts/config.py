"""Runtime settings resolved from the environment, JSON config and fallbacks."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

from config import load_config

T = TypeVar("T")


def _lookup(payload: Dict[str, Any], path: str) -> Any:
    node: Any = payload
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _from_sources(
    env_keys: Iterable[str],
    json_path: Optional[str],
    payload: Dict[str, Any],
    fallback: T,
    coerce: Callable[[Any], T],
) -> T:
    for key in env_keys:
        raw = os.getenv(key)
        if raw is None or not raw.strip():
            continue
        try:
            return coerce(raw.strip())
        except (TypeError, ValueError):
            continue
    if json_path:
        raw = _lookup(payload, json_path)
        if raw not in (None, ""):
            try:
                return coerce(raw)
            except (TypeError, ValueError):
                pass
    return fallback


@dataclass(frozen=True)
class Settings:
    database_url: str
    cron_secret: Optional[str]
    log_level: str

    ledger_mode: str
    ledger_rpc_url: str
    commitment: str
    voting_program_id: str
    arcium_program_id: str
    fee_pool_account: str
    clock_account: str
    cluster_offset: int
    compute_unit_limit: int
    compute_unit_price: int
    authority_keypair: Optional[str]

    mpc_gateway_url: Optional[str]
    mxe_key_attempts: int
    mxe_key_retry_delay: float

    create_poll_timeout: float
    reveal_timeout: float
    auto_reveal_timeout: float
    poll_interval: float

    promotion_count: int
    voting_window_days: int
    staleness_days: int

    points_poll_created: int
    points_selection_made: int
    points_vote_cast: int
    points_poll_promoted: int

    min_question_length: int
    max_question_length: int
    max_binary_question_length: int
    max_option_length: int
    min_options: int
    max_options: int


def load_settings(payload: Optional[Dict[str, Any]] = None) -> Settings:
    """Build settings; environment variables win over ``config/voting.json``."""

    data = payload if payload is not None else load_config("voting")

    def text(env: Iterable[str], path: Optional[str], fallback: str) -> str:
        return _from_sources(env, path, data, fallback, str)

    def optional(env: Iterable[str], path: Optional[str]) -> Optional[str]:
        value = _from_sources(env, path, data, "", str)
        return value or None

    def integer(env: Iterable[str], path: Optional[str], fallback: int) -> int:
        return _from_sources(env, path, data, fallback, int)

    def number(env: Iterable[str], path: Optional[str], fallback: float) -> float:
        return _from_sources(env, path, data, fallback, float)

    return Settings(
        database_url=text(("DATABASE_URL",), None, "sqlite:///storage/veiledcasts.db"),
        cron_secret=optional(("CRON_SECRET",), None),
        log_level=text(("LOG_LEVEL",), None, "INFO").upper(),
        ledger_mode=text(("LEDGER_MODE",), "ledger.mode", "local").lower(),
        ledger_rpc_url=text(("LEDGER_RPC_URL", "SOLANA_RPC_URL"), "ledger.rpcUrl", "https://api.devnet.solana.com"),
        commitment=text(("LEDGER_COMMITMENT",), "ledger.commitment", "confirmed"),
        voting_program_id=text(
            ("VOTING_PROGRAM_ID",), "ledger.votingProgramId", "FHuabcvigE645KXLy4KCFCLkLx1jLxi1nwFYs8ajWyYd"
        ),
        arcium_program_id=text(
            ("ARCIUM_PROGRAM_ID",), "ledger.arciumProgramId", "BKck65TgoKRokMjQM3datB9oRwJ8rAj2jxPXvHXUvcL6"
        ),
        fee_pool_account=text(
            ("ARCIUM_FEE_POOL_ACCOUNT",), "ledger.feePoolAccount", "7MGSS4iKNM4sVib7bDZDJhVqB6EcchPwVnTKenCY1jt3"
        ),
        clock_account=text(
            ("ARCIUM_CLOCK_ACCOUNT",), "ledger.clockAccount", "FHriyvoZotYiFnbUzKFjzRSb2NiaC8RPWY7jtKuKhg65"
        ),
        cluster_offset=integer(("CLUSTER_OFFSET",), "ledger.clusterOffset", 1078779259),
        compute_unit_limit=integer(("COMPUTE_UNIT_LIMIT",), "ledger.computeUnitLimit", 200_000),
        compute_unit_price=integer(("COMPUTE_UNIT_PRICE",), "ledger.computeUnitPriceMicroLamports", 1_000_000),
        authority_keypair=optional(("AUTHORITY_KEYPAIR",), None),
        mpc_gateway_url=optional(("MPC_GATEWAY_URL",), "mpc.gatewayUrl"),
        mxe_key_attempts=integer(("MXE_KEY_ATTEMPTS",), "mpc.keyAttempts", 10),
        mxe_key_retry_delay=number(("MXE_KEY_RETRY_DELAY",), "mpc.keyRetryDelaySeconds", 0.5),
        create_poll_timeout=number(("CREATE_POLL_TIMEOUT",), "timeouts.createPollSeconds", 180.0),
        reveal_timeout=number(("REVEAL_TIMEOUT",), "timeouts.revealSeconds", 30.0),
        auto_reveal_timeout=number(("AUTO_REVEAL_TIMEOUT",), "timeouts.autoRevealSeconds", 120.0),
        poll_interval=number(("LEDGER_POLL_INTERVAL",), "timeouts.pollIntervalSeconds", 2.0),
        promotion_count=integer(("PROMOTION_COUNT",), "lifecycle.promotionCount", 5),
        voting_window_days=integer(("VOTING_WINDOW_DAYS",), "lifecycle.votingWindowDays", 7),
        staleness_days=integer(("STALENESS_DAYS",), "lifecycle.stalenessDays", 30),
        points_poll_created=integer((), "points.pollCreated", 5),
        points_selection_made=integer((), "points.selectionMade", 1),
        points_vote_cast=integer((), "points.voteCast", 3),
        points_poll_promoted=integer((), "points.pollPromoted", 10),
        min_question_length=integer((), "limits.minQuestionLength", 10),
        max_question_length=integer((), "limits.maxQuestionLength", 100),
        max_binary_question_length=integer((), "limits.maxBinaryQuestionLength", 50),
        max_option_length=integer((), "limits.maxOptionLength", 50),
        min_options=integer((), "limits.minOptions", 2),
        max_options=integer((), "limits.maxOptions", 4),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings snapshot."""

    return load_settings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "load_settings", "reset_settings"]
