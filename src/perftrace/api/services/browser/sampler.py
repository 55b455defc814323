"""Fixed-interval sampling loops that run while a session records."""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from perftrace.api.services.browser.collectors import read_heap_and_dom, read_snapshot
from perftrace.api.services.capture import PerfSample, Screenshot
from perftrace.core.config import Config

if TYPE_CHECKING:
    from perftrace.api.services.recording_service import RecordingSession

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

# Performance.getMetrics counters (seconds, cumulative)
TASK_DURATION = "TaskDuration"
SCRIPT_DURATION = "ScriptDuration"
LAYOUT_DURATION = "LayoutDuration"


class LiveSampler:
    """Runs the metrics, screenshot and viewport loops for one session.

    Every loop checks ``session.is_active`` each tick and re-checks it after
    every await, so nothing is appended once stop has begun draining.
    """

    def __init__(self, session: "RecordingSession", config: Config):
        """Initialize the sampler.

        Args:
            session: Session whose page, channel and sample lists are used
            config: Loop intervals and limits
        """
        self._session = session
        self._config = config
        self._tasks: list[asyncio.Task] = []
        self._previous: Optional[dict[str, float]] = None

    def start(self) -> None:
        """Start all loops as background tasks."""
        self._tasks = [
            asyncio.create_task(self._metrics_loop(), name="perftrace-metrics"),
            asyncio.create_task(self._screenshot_loop(), name="perftrace-screenshots"),
            asyncio.create_task(self._viewport_loop(), name="perftrace-viewport"),
        ]

    async def stop(self) -> None:
        """Cancel all loops and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.warning(f"Sampler loop ended with error: {result}")
        self._tasks = []

    def reset_baseline(self) -> None:
        """Forget the previous counter reading (a new tab has new counters)."""
        self._previous = None

    # Metrics

    async def sample_once(self) -> Optional[PerfSample]:
        """Take one counter reading and append the resulting sample.

        Returns:
            The appended sample, or None if nothing was recorded
        """
        session = self._session
        channel = session.live_channel
        try:
            counters = await channel.get_metrics()
        except Exception as e:
            logger.warning(f"Performance.getMetrics failed: {e}")
            return None

        in_page_heap, in_page_nodes = await read_heap_and_dom(session.page)
        if not session.is_active:
            return None

        previous = self._previous
        self._previous = counters

        def delta_ms(name: str) -> float:
            if previous is None:
                return 0.0
            return max(0.0, counters.get(name, 0.0) - previous.get(name, 0.0)) * 1000

        heap = counters.get("JSHeapUsedSize")
        nodes = counters.get("Nodes")
        sample = PerfSample(
            time_sec=session.elapsed_sec(),
            cpu_busy_ms=delta_ms(TASK_DURATION),
            script_ms=delta_ms(SCRIPT_DURATION),
            layout_ms=delta_ms(LAYOUT_DURATION),
            js_heap_mb=in_page_heap if in_page_heap else (heap / BYTES_PER_MB if heap is not None else None),
            dom_nodes=in_page_nodes if in_page_nodes else nodes,
        )
        session.samples.append(sample)
        return sample

    async def refresh_snapshots(self) -> None:
        """Read the collector of every open tab so a navigation loses little."""
        session = self._session
        for tracked in list(session.pages):
            page = tracked.page
            if page.is_closed() or not page.url.startswith(("http://", "https://")):
                continue
            document = tracked.document
            snapshot = await read_snapshot(page)
            if not session.is_active:
                return
            if snapshot is not None:
                tracked.remember(snapshot, document)

    async def _metrics_loop(self) -> None:
        while self._session.is_active:
            await self.sample_once()
            await self.refresh_snapshots()
            await asyncio.sleep(self._config.metrics_interval_sec)

    # Screenshots

    async def capture_screenshot(self) -> Optional[Screenshot]:
        session = self._session
        if len(session.screenshots) >= self._config.max_screenshots:
            return None
        try:
            data = await session.page.screenshot(type="jpeg", quality=60)
        except Exception as e:
            logger.debug(f"Screenshot failed: {e}")
            return None
        if not session.is_active:
            return None
        shot = Screenshot(time_sec=session.elapsed_sec(), data=data)
        session.screenshots.append(shot)
        return shot

    async def _screenshot_loop(self) -> None:
        while self._session.is_active and len(self._session.screenshots) < self._config.max_screenshots:
            await self.capture_screenshot()
            await asyncio.sleep(self._config.screenshot_interval_sec)

    # Viewport

    async def _viewport_loop(self) -> None:
        while self._session.is_active:
            try:
                await self._session.page.set_viewport_size(self._config.viewport)
            except Exception as e:
                logger.debug(f"Viewport reset failed: {e}")
            await asyncio.sleep(self._config.viewport_interval_sec)
