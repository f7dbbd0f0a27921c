"""Render request options: page source and PDF layout."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from .config import Settings
from .errors import ValidationError
from .formatting import fmt_margin, safe_float
from .net import is_http_url

PAGE_FORMATS = ("Letter", "Legal", "Tabloid", "Ledger", "A0", "A1", "A2", "A3", "A4", "A5", "A6")
MARGIN_SIDES = ("top", "right", "bottom", "left")
MIN_SCALE = 0.1
MAX_SCALE = 2.0


@dataclass(frozen=True)
class Viewport:
    width: int = 1200
    height: int = 1697
    device_scale_factor: float = 2.0


@dataclass(frozen=True)
class RenderOptions:
    format: str = "A4"
    landscape: bool = True
    margin: Tuple[str, str, str, str] = ("10mm", "10mm", "10mm", "10mm")
    scale: float = 0.9
    print_background: bool = True
    emulate_media: str = "screen"
    prefer_css_page_size: bool = True
    print_stylesheet: bool = False
    viewport: Viewport = field(default_factory=Viewport)

    @classmethod
    def defaults(cls, settings: Settings) -> "RenderOptions":
        margin = fmt_margin(settings.default_margin)
        return cls(
            format=_page_format(settings.default_format),
            landscape=settings.default_landscape,
            margin=(margin, margin, margin, margin),
            scale=settings.default_scale,
        )

    @classmethod
    def from_payload(
        cls,
        options: Optional[Mapping[str, Any]],
        landscape: Any,
        settings: Settings,
    ) -> "RenderOptions":
        base = cls.defaults(settings)
        options = options or {}
        if not isinstance(options, Mapping):
            raise ValidationError("'options' must be an object.")

        page_format = base.format
        if options.get("format") is not None:
            page_format = _page_format(options["format"])

        scale = base.scale
        if options.get("scale") is not None:
            scale = safe_float(options["scale"], -1.0)
            if not (math.isfinite(scale) and MIN_SCALE <= scale <= MAX_SCALE):
                raise ValidationError(f"'scale' must be between {MIN_SCALE} and {MAX_SCALE}.")

        if landscape is None:
            landscape = options.get("landscape", base.landscape)
        if not isinstance(landscape, bool):
            raise ValidationError("'landscape' must be a boolean.")

        print_stylesheet = options.get("printStylesheet", base.print_stylesheet)
        if not isinstance(print_stylesheet, bool):
            raise ValidationError("'printStylesheet' must be a boolean.")

        return cls(
            format=page_format,
            landscape=landscape,
            margin=_margins(options, base.margin),
            scale=scale,
            print_stylesheet=print_stylesheet,
            viewport=_viewport(options.get("viewport"), base.viewport),
        )

    def pdf_kwargs(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "landscape": self.landscape,
            "print_background": self.print_background,
            "margin": dict(zip(MARGIN_SIDES, self.margin)),
            "scale": self.scale,
            "prefer_css_page_size": self.prefer_css_page_size,
        }


@dataclass(frozen=True)
class RenderSource:
    url: Optional[str] = None
    html: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.url is None) == (self.html is None):
            raise ValidationError("Provide exactly one of 'url' or 'html'.")
        if self.url is not None and not is_http_url(self.url):
            raise ValidationError("Invalid URL format provided.")
        if self.html is not None and not self.html.strip():
            raise ValidationError("'html' cannot be empty.")

    def describe(self) -> str:
        if self.url is not None:
            return self.url
        return f"<html {len(self.html or '')} chars>"


def _page_format(value: Any) -> str:
    wanted = str(value).strip().lower()
    for page_format in PAGE_FORMATS:
        if page_format.lower() == wanted:
            return page_format
    raise ValidationError(f"Unsupported page format {value!r}.", details=", ".join(PAGE_FORMATS))


def _margins(options: Mapping[str, Any], default: Tuple[str, str, str, str]) -> Tuple[str, str, str, str]:
    sides = dict(zip(MARGIN_SIDES, default))
    margin = options.get("margin")
    margins = options.get("margins")
    if isinstance(margin, Mapping) and margins is None:
        margin, margins = None, margin
    try:
        if margin is not None:
            sides = dict.fromkeys(MARGIN_SIDES, fmt_margin(margin))

        if margins is not None:
            if not isinstance(margins, Mapping):
                raise ValidationError("'margins' must be an object.")
            for side in MARGIN_SIDES:
                if margins.get(side) is not None:
                    sides[side] = fmt_margin(margins[side])

        for side in MARGIN_SIDES:
            legacy = options.get(f"margin{side.capitalize()}")
            if legacy is not None:
                sides[side] = fmt_margin(legacy)
    except ValueError as exc:
        raise ValidationError("Invalid margin.", details=str(exc)) from exc
    return sides["top"], sides["right"], sides["bottom"], sides["left"]


def _viewport(value: Any, default: Viewport) -> Viewport:
    if value is None:
        return default
    if not isinstance(value, Mapping):
        raise ValidationError("'viewport' must be an object.")
    width = safe_float(value.get("width", default.width), 0)
    height = safe_float(value.get("height", default.height), 0)
    factor = safe_float(value.get("deviceScaleFactor", default.device_scale_factor), 0)
    # Comparisons are false for NaN, so non-finite values fail here too.
    if not (100 <= width <= 10000 and 100 <= height <= 20000 and 0 < factor <= 4):
        raise ValidationError("Invalid viewport dimensions.")
    return Viewport(int(width), int(height), factor)


