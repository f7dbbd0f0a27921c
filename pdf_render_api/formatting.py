"""Formatting helpers for API responses and render options."""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, List

from dateutil.relativedelta import relativedelta

_CSS_LENGTH = re.compile(r"^\d+(\.\d+)?(px|in|cm|mm)?$")
_DURATION_UNITS = ("days", "hours", "minutes", "seconds")


def safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except Exception:
        return default


def fmt_timestamp(moment: datetime) -> str:
    """Render an aware datetime as ISO-8601 UTC with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def fmt_duration(seconds: float) -> str:
    """Describe a duration the way a person would say it: '1 hour', '7 days'."""
    total = int(seconds)
    if total <= 0:
        return "0 seconds"

    # Seconds carry up into days; days never fold into months.
    delta = relativedelta(seconds=total).normalized()
    parts: List[str] = []
    for unit in _DURATION_UNITS:
        amount = getattr(delta, unit)
        if not amount:
            continue
        label = unit if amount != 1 else unit[:-1]
        parts.append(f"{amount} {label}")
    return " ".join(parts[:2])


def fmt_margin(value: Any) -> str:
    """Normalize a margin value into a CSS length Playwright accepts."""
    if isinstance(value, bool):
        raise ValueError("margin must be a number or CSS length")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            raise ValueError("margin must be a finite, non-negative number")
        return f"{value:g}px"
    text = str(value).strip().lower()
    if not _CSS_LENGTH.match(text):
        raise ValueError(f"invalid margin {value!r}")
    if text[-1].isdigit():
        text += "px"
    return text
