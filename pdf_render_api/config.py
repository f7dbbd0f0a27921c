"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field, fields
from typing import Optional


def env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def env_float(name: str, default: float, minimum: float = 0.0, maximum: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value < minimum or (maximum is not None and value > maximum):
        return default
    return value


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class ReadinessPolicy:
    """Per-phase time bounds, in seconds."""

    images_timeout: float = 8.0
    fonts_timeout: float = 5.0
    chart_detect_timeout: float = 5.0
    chart_render_timeout: float = 10.0
    scroll_timeout: float = 10.0
    settle_delay: float = 2.0
    poll_interval: float = 0.25
    scroll_step_px: int = 200
    detect_charts: bool = True
    confirm_charts: bool = True
    auto_scroll: bool = True

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{item.name} must be a finite, non-negative number")
        if self.poll_interval <= 0 or self.scroll_step_px <= 0:
            raise ValueError("poll_interval and scroll_step_px must be positive")

    def max_wait(self) -> float:
        total = self.images_timeout + self.fonts_timeout + self.settle_delay
        if self.detect_charts:
            total += self.chart_detect_timeout
        if self.confirm_charts:
            total += self.chart_render_timeout
        if self.auto_scroll:
            total += self.scroll_timeout
        return total


def readiness_from_env() -> ReadinessPolicy:
    return ReadinessPolicy(
        images_timeout=env_int("PDF_READY_IMAGES_MS", 8000, minimum=0) / 1000.0,
        fonts_timeout=env_int("PDF_READY_FONTS_MS", 5000, minimum=0) / 1000.0,
        chart_detect_timeout=env_int("PDF_READY_CHART_DETECT_MS", 5000, minimum=0) / 1000.0,
        chart_render_timeout=env_int("PDF_READY_CHART_RENDER_MS", 10000, minimum=0) / 1000.0,
        scroll_timeout=env_int("PDF_READY_SCROLL_MS", 10000, minimum=0) / 1000.0,
        settle_delay=env_int("PDF_READY_SETTLE_MS", 2000, minimum=0) / 1000.0,
        detect_charts=env_bool("PDF_READY_DETECT_CHARTS", True),
        confirm_charts=env_bool("PDF_READY_CONFIRM_CHARTS", True),
        auto_scroll=env_bool("PDF_READY_AUTO_SCROLL", True),
    )


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    api_key: Optional[str] = None
    public_base_url: Optional[str] = None
    output_dir: str = "./generated-pdfs"
    file_ttl_seconds: int = 3600
    cleanup_interval_seconds: int = 900
    render_timeout_ms: int = 120000
    navigation_timeout_ms: int = 60000
    max_body_bytes: int = 10 * 1024 * 1024
    listen_backlog: int = 128
    default_format: str = "A4"
    default_margin: str = "10mm"
    default_scale: float = 0.9
    default_landscape: bool = True
    environment: str = "production"
    readiness: ReadinessPolicy = field(default_factory=ReadinessPolicy)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=env_str("PDF_API_HOST", "0.0.0.0") or "0.0.0.0",
            port=env_int("PDF_API_PORT", 3000, minimum=1),
            api_key=env_str("API_KEY"),
            public_base_url=(env_str("PUBLIC_BASE_URL") or "").rstrip("/") or None,
            output_dir=env_str("PDF_OUTPUT_DIR", "./generated-pdfs") or "./generated-pdfs",
            file_ttl_seconds=env_int("PDF_FILE_TTL_SECONDS", 3600, minimum=1),
            cleanup_interval_seconds=env_int("PDF_CLEANUP_INTERVAL_SECONDS", 900, minimum=1),
            render_timeout_ms=env_int("PDF_RENDER_TIMEOUT_MS", 120000, minimum=1000),
            navigation_timeout_ms=env_int("PDF_NAVIGATION_TIMEOUT_MS", 60000, minimum=1000),
            max_body_bytes=env_int("PDF_MAX_BODY_BYTES", 10 * 1024 * 1024, minimum=1024),
            listen_backlog=env_int("PDF_LISTEN_BACKLOG", 128, minimum=1),
            default_format=env_str("PDF_DEFAULT_FORMAT", "A4") or "A4",
            default_margin=env_str("PDF_DEFAULT_MARGIN", "10mm") or "10mm",
            default_scale=env_float("PDF_DEFAULT_SCALE", 0.9, minimum=0.1, maximum=2.0),
            default_landscape=env_bool("PDF_DEFAULT_LANDSCAPE", True),
            environment=env_str("PDF_APP_ENV", "production") or "production",
            readiness=readiness_from_env(),
        )

    @property
    def render_timeout(self) -> float:
        return self.render_timeout_ms / 1000.0
