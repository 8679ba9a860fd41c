"""ISO week identifiers used to partition nominations and selections."""

from __future__ import annotations

from datetime import datetime, timezone


def week_id(moment: datetime | float | None = None) -> str:
    """Return the ISO week of ``moment`` as ``YYYY-Www`` (UTC)."""

    if moment is None:
        moment = datetime.now(timezone.utc)
    elif isinstance(moment, (int, float)):
        moment = datetime.fromtimestamp(moment, tz=timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    year, week, _ = moment.astimezone(timezone.utc).isocalendar()
    return f"{year:04d}-W{week:02d}"


__all__ = ["week_id"]
