"""Best-effort wait for a rendered page to settle before PDF export.

Pages give no reliable "done drawing" signal, so readiness is a sequence of
bounded phases: images, fonts, chart library detection, chart render
confirmation, lazy-content scrolling and a fixed settle delay. Every phase
races its condition against its own timeout and reports a ``PhaseOutcome``;
a phase that times out or whose script fails is recorded as unsettled and the
waiter moves on. Nothing in here raises into the render request.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Tuple

from playwright.async_api import Error as PlaywrightError

from .config import ReadinessPolicy

logger = logging.getLogger(__name__)

PhaseResult = Tuple[bool, str]

IMAGES_SCRIPT = """() => Promise.all(
    Array.from(document.images)
        .filter((img) => !img.complete)
        .map((img) => new Promise((resolve) => {
            img.addEventListener("load", resolve, { once: true });
            img.addEventListener("error", resolve, { once: true });
        }))
).then((waited) => waited.length)"""

FONTS_SCRIPT = """() => document.fonts
    ? document.fonts.ready.then(() => document.fonts.status)
    : "unsupported"
"""

CHART_CONTAINER_SELECTOR = (
    ".apexcharts-canvas, .echarts, [_echarts_instance_], .highcharts-container, "
    "[data-chart], canvas"
)

CHART_LIBRARY_SCRIPT = """(selector) => {
    const names = ["ApexCharts", "echarts", "Chart", "Highcharts"];
    const library = names.find((name) => typeof window[name] !== "undefined") || null;
    return {
        library,
        containers: document.querySelectorAll(selector).length,
        loaded: document.readyState === "complete",
    };
}"""

CHART_INIT_SCRIPT = """() => {
    const called = [];
    for (const hook of ["initCharts", "renderCharts", "initializeCharts"]) {
        if (typeof window[hook] === "function") {
            window[hook]();
            called.push(hook);
        }
    }
    return called;
}"""

CHART_RENDERED_SCRIPT = """(selector) => Array.from(document.querySelectorAll(selector))
    .some((el) => el.tagName === "CANVAS" || el.querySelector("path, rect, canvas") !== null)"""

SCROLL_TICK_MS = 100
CLEANUP_TIMEOUT = 2.0

SCROLL_SCRIPT = """async ({ distance, maxTicks, tickMs }) => {
    await new Promise((resolve) => {
        let scrolled = 0;
        let ticks = 0;
        const timer = setInterval(() => {
            window.scrollBy(0, distance);
            scrolled += distance;
            ticks += 1;
            if (scrolled >= document.body.scrollHeight || ticks >= maxTicks) {
                clearInterval(timer);
                window.__pdfAutoScroll = null;
                resolve();
            }
        }, tickMs);
        window.__pdfAutoScroll = timer;
    });
    window.scrollTo(0, 0);
    return document.body.scrollHeight;
}"""

STOP_SCROLL_SCRIPT = """() => {
    if (window.__pdfAutoScroll) {
        clearInterval(window.__pdfAutoScroll);
        window.__pdfAutoScroll = null;
    }
    window.scrollTo(0, 0);
}"""

LAZY_ELEMENTS_SCRIPT = """() => Array.from(document.querySelectorAll('[data-src], [loading="lazy"], .lazy'))
    .every((el) => Boolean(el.src || el.style.backgroundImage || el.complete))"""


class EvaluatingPage(Protocol):
    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        ...


@dataclass(frozen=True)
class PhaseOutcome:
    phase: str
    settled: bool
    reason: str
    elapsed: float = 0.0


class ReadinessWaiter:
    def __init__(self, policy: Optional[ReadinessPolicy] = None) -> None:
        self.policy = policy or ReadinessPolicy()

    async def wait_until_ready(self, page: EvaluatingPage) -> List[PhaseOutcome]:
        policy = self.policy
        outcomes: List[PhaseOutcome] = [
            await self._run_phase("images", policy.images_timeout, lambda: self._images(page)),
            await self._run_phase("fonts", policy.fonts_timeout, lambda: self._fonts(page)),
        ]

        charts_present = True
        if policy.detect_charts:
            detected = await self._run_phase(
                "chart_library",
                policy.chart_detect_timeout,
                lambda: self._chart_library(page),
                timeout_reason="no chart library detected",
            )
            outcomes.append(detected)
            charts_present = detected.settled

        if policy.confirm_charts:
            if charts_present:
                outcomes.append(
                    await self._run_phase(
                        "chart_render",
                        policy.chart_render_timeout,
                        lambda: self._chart_render(page),
                        timeout_reason="no drawn chart elements before timeout",
                    )
                )
            else:
                outcomes.append(PhaseOutcome("chart_render", False, "skipped: no charts on page"))

        if policy.auto_scroll:
            outcomes.append(
                await self._run_phase(
                    "lazy_content",
                    policy.scroll_timeout,
                    lambda: self._scroll(page),
                    on_timeout=lambda: page.evaluate(STOP_SCROLL_SCRIPT),
                )
            )

        started = time.monotonic()
        await asyncio.sleep(policy.settle_delay)
        outcomes.append(
            PhaseOutcome("settle", True, f"waited {policy.settle_delay:g}s", time.monotonic() - started)
        )

        unsettled = [outcome.phase for outcome in outcomes if not outcome.settled]
        logger.info(
            "Page readiness finished in %.2fs (unsettled phases: %s)",
            sum(outcome.elapsed for outcome in outcomes),
            ", ".join(unsettled) or "none",
        )
        return outcomes

    async def _run_phase(
        self,
        name: str,
        timeout: float,
        phase: Callable[[], Awaitable[PhaseResult]],
        timeout_reason: Optional[str] = None,
        on_timeout: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> PhaseOutcome:
        if timeout <= 0:
            return PhaseOutcome(name, False, "disabled")

        started = time.monotonic()
        try:
            settled, reason = await asyncio.wait_for(phase(), timeout)
        except asyncio.TimeoutError:
            settled, reason = False, timeout_reason or f"timed out after {timeout:g}s"
            if on_timeout is not None:
                await self._stop_abandoned(name, on_timeout)
        except PlaywrightError as exc:
            settled, reason = False, f"script failed: {exc}"
        outcome = PhaseOutcome(name, settled, reason, time.monotonic() - started)
        logger.debug("Readiness phase %s: settled=%s (%s)", name, settled, reason)
        return outcome

    async def _stop_abandoned(self, name: str, stop: Callable[[], Awaitable[Any]]) -> None:
        # The page keeps running whatever the timed-out phase started.
        try:
            await asyncio.wait_for(stop(), CLEANUP_TIMEOUT)
        except (asyncio.TimeoutError, PlaywrightError) as exc:
            logger.warning("Could not stop %s in the page: %s", name, str(exc) or "timed out")

    async def _poll(self, page: EvaluatingPage, script: str, arg: Any = None) -> Any:
        while True:
            result = await page.evaluate(script, arg)
            if result:
                return result
            await asyncio.sleep(self.policy.poll_interval)

    async def _images(self, page: EvaluatingPage) -> PhaseResult:
        waited = await page.evaluate(IMAGES_SCRIPT)
        return True, f"{waited or 0} pending image(s) settled"

    async def _fonts(self, page: EvaluatingPage) -> PhaseResult:
        status = await page.evaluate(FONTS_SCRIPT)
        return True, f"fonts {status}"

    async def _chart_library(self, page: EvaluatingPage) -> PhaseResult:
        while True:
            probe = await page.evaluate(CHART_LIBRARY_SCRIPT, CHART_CONTAINER_SELECTOR) or {}
            library = probe.get("library")
            if library:
                hooks = await page.evaluate(CHART_INIT_SCRIPT) or []
                suffix = f", called {', '.join(hooks)}" if hooks else ""
                return True, f"found {library}{suffix}"
            if probe.get("containers"):
                return True, "chart containers present"
            if probe.get("loaded"):
                return False, "no chart library detected"
            await asyncio.sleep(self.policy.poll_interval)

    async def _chart_render(self, page: EvaluatingPage) -> PhaseResult:
        await self._poll(page, CHART_RENDERED_SCRIPT, CHART_CONTAINER_SELECTOR)
        return True, "chart elements drawn"

    async def _scroll(self, page: EvaluatingPage) -> PhaseResult:
        max_ticks = max(1, math.ceil(self.policy.scroll_timeout * 1000 / SCROLL_TICK_MS))
        height = await page.evaluate(
            SCROLL_SCRIPT,
            {"distance": self.policy.scroll_step_px, "maxTicks": max_ticks, "tickMs": SCROLL_TICK_MS},
        )
        await self._poll(page, LAZY_ELEMENTS_SCRIPT)
        return True, f"scrolled {height or 0}px, lazy elements loaded"
