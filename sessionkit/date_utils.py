"""Timestamp helpers for ordering sessions."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def parse_timestamp(token: Any) -> datetime | None:
    if not isinstance(token, str):
        return None
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def iso_to_epoch(value: Any) -> float:
    parsed = parse_timestamp(value)
    if parsed is None:
        return 0.0
    return parsed.astimezone(timezone.utc).timestamp()
