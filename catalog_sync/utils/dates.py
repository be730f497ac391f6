"""Datetime helpers."""

from __future__ import annotations

import os
from datetime import datetime

import pendulum

DEFAULT_TZ = "UTC"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return pendulum.now("UTC").naive()


def seconds_since(value: datetime | None, *, now: datetime | None = None) -> float | None:
    if value is None:
        return None
    current = now or utcnow()
    return (current - value).total_seconds()


def backup_suffix(value: datetime | None = None) -> str:
    return (value or utcnow()).strftime("%Y%m%d_%H%M%S")


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    localized = pendulum.instance(value, tz="UTC").in_timezone(timezone_name())
    return localized.to_iso8601_string()
