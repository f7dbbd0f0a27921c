"""Public package API for URL/HTML to PDF rendering."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .config import Settings

__version__ = "1.2.0"


def render_pdf(
    url: Optional[str] = None,
    html: Optional[str] = None,
    options: Optional[Dict[str, Any]] = None,
    landscape: Optional[bool] = None,
    settings: Optional["Settings"] = None,
) -> bytes:
    from .config import Settings
    from .options import RenderOptions, RenderSource
    from .rendering import BrowserRenderer

    settings = settings or Settings.from_env()
    source = RenderSource(url=url, html=html)
    render_options = RenderOptions.from_payload(options, landscape, settings)
    return BrowserRenderer(settings).render_pdf(source, render_options)


def run(host: Optional[str] = None, port: Optional[int] = None) -> None:
    from .server import run as _run

    _run(host=host, port=port)


__all__ = ["__version__", "render_pdf", "run"]
