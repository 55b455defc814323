"""Recording session management service."""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from playwright.async_api import Browser, BrowserContext, Frame, Page, Request, async_playwright

from perftrace.api.schemas.record import LiveMetrics, SessionStatus
from perftrace.api.schemas.report import AnimationRecord, NetworkRequest, PerfReport, VideoRef
from perftrace.api.services.browser.collectors import (
    install_collectors,
    read_live_fps,
    read_snapshot,
    register_collectors,
)
from perftrace.api.services.browser.control_channel import ControlChannel
from perftrace.api.services.browser.sampler import LiveSampler
from perftrace.api.services.capture import (
    CollectorSnapshot,
    PerfSample,
    Screenshot,
    SessionCapture,
)
from perftrace.api.services.trace.decoder import TraceEvent, decode_trace_stream
from perftrace.api.services.trace.report_builder import build_report
from perftrace.core.config import ALLOWED_THROTTLE_RATES, Config
from perftrace.utils.errors import (
    AlreadyRecordingError,
    InvalidInputError,
    NoActiveSessionError,
    NotAvailableError,
    PerfTraceError,
    RecordingStartError,
)

logger = logging.getLogger(__name__)

VIDEO_URL = "/api/v1/record/video"
VIDEO_MIME_TYPE = "video/webm"


def validate_url(value: str) -> str:
    """Check that ``value`` is an absolute http(s) URL.

    Raises:
        InvalidInputError: If the URL is unparsable or uses another scheme
    """
    try:
        parsed = urlsplit((value or "").strip())
    except ValueError:
        raise InvalidInputError(value, "Enter a valid URL including http:// or https://")

    if not parsed.scheme or not parsed.netloc:
        raise InvalidInputError(value, "Enter a valid URL including http:// or https://")
    if parsed.scheme.lower() not in ("http", "https"):
        raise InvalidInputError(value, "Only http and https URLs are supported.")
    return parsed.geturl()


def validate_throttle_rate(rate: Any) -> int:
    """Check the CPU throttle rate is one of the supported multipliers."""
    if isinstance(rate, bool) or rate not in ALLOWED_THROTTLE_RATES:
        raise InvalidInputError(
            rate, f"CPU throttle rate must be one of {', '.join(map(str, ALLOWED_THROTTLE_RATES))}."
        )
    return int(rate)


@dataclass
class BrowserHandle:
    """Playwright objects owned by one session."""

    playwright: Any
    browser: Browser
    context: BrowserContext


class PlaywrightLauncher:
    """Launches a Chromium instance with video recording enabled."""

    async def launch(self, config: Config) -> BrowserHandle:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=config.headless,
                args=["--disable-dev-shm-usage"],
            )
            Path(config.video_dir).mkdir(parents=True, exist_ok=True)
            context = await browser.new_context(
                viewport=config.viewport,
                record_video_dir=config.video_dir,
                record_video_size=config.viewport,
            )
        except Exception:
            await playwright.stop()
            raise
        return BrowserHandle(playwright=playwright, browser=browser, context=context)


class SessionState(enum.Enum):
    ACTIVE = "active"
    DRAINING = "draining"


@dataclass
class TrackedPage:
    """A tab of the session and where its page clock sits on the session clock.

    Each main-frame navigation starts a new document with a fresh collector
    and a fresh page clock. The last snapshot read from the old document is
    kept in ``retained`` (already on the session clock) and ``offset_sec``
    moves to the navigation time.

    Attributes:
        page: The Playwright page
        offset_sec: Session time at which the current document started
        document: Counter bumped on every navigation
        latest: Most recent snapshot of the current document (page clock)
        retained: Snapshots of earlier documents (session clock)
    """

    page: Page
    offset_sec: float = 0.0
    document: int = 0
    latest: Optional[CollectorSnapshot] = None
    retained: list[CollectorSnapshot] = field(default_factory=list)

    def remember(self, snapshot: CollectorSnapshot, document: int) -> None:
        """Keep ``snapshot`` unless the page navigated while it was read."""
        if document == self.document:
            self.latest = snapshot

    def navigated(self, now_sec: float) -> None:
        if self.latest is not None:
            self.retained.append(self.latest.shifted(self.offset_sec))
        self.latest = None
        self.document += 1
        self.offset_sec = now_sec

    def snapshots(self, current: Optional[CollectorSnapshot]) -> list[CollectorSnapshot]:
        """All documents of this tab on the session clock, oldest first.

        Args:
            current: A fresh read of the current document, or None to use
                the last one the sampler saw
        """
        snapshot = current if current is not None else self.latest
        if snapshot is None:
            return list(self.retained)
        return [*self.retained, snapshot.shifted(self.offset_sec)]


@dataclass
class RecordingSession:
    """In-memory state of the active recording."""

    url: str
    cpu_throttle_rate: int
    started_at: float
    handle: BrowserHandle
    page: Page
    trace_channel: ControlChannel
    live_channel: ControlChannel
    clock: Callable[[], float] = time.time
    state: SessionState = SessionState.ACTIVE
    pages: list[TrackedPage] = field(default_factory=list)
    channels: list[ControlChannel] = field(default_factory=list)
    samples: list[PerfSample] = field(default_factory=list)
    screenshots: list[Screenshot] = field(default_factory=list)
    animations: list[AnimationRecord] = field(default_factory=list)
    network_log: list[NetworkRequest] = field(default_factory=list)
    listeners: list[tuple[Any, str, Callable]] = field(default_factory=list)
    sampler: Optional[LiveSampler] = None

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def elapsed_sec(self) -> float:
        return max(0.0, self.clock() - self.started_at)


class RecordingService:
    """Service owning the single recording slot.

    The slot is either empty or holds one RecordingSession. Start and stop
    transitions are serialized by one asyncio lock.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        launcher: Optional[PlaywrightLauncher] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize recording service.

        Args:
            config: Engine configuration (read from environment if omitted)
            launcher: Browser launcher, replaceable in tests
            clock: Wall-clock source in epoch seconds
        """
        self._config = config or Config.from_env()
        self._launcher = launcher or PlaywrightLauncher()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._session: Optional[RecordingSession] = None
        self._latest_video: Optional[Path] = None

    @property
    def is_recording(self) -> bool:
        return self._session is not None

    # =========================================================================
    # Start
    # =========================================================================

    async def start_session(self, url: str, cpu_throttle_rate: int = 1) -> SessionStatus:
        """Launch a browser on ``url`` and begin recording.

        Args:
            url: Page to record (http or https)
            cpu_throttle_rate: CPU slowdown multiplier (1, 4 or 6)

        Returns:
            SessionStatus with the normalized URL

        Raises:
            InvalidInputError: If the URL or rate is invalid
            AlreadyRecordingError: If a session is already active
            RecordingStartError: If the browser could not be started
        """
        safe_url = validate_url(url)
        rate = validate_throttle_rate(cpu_throttle_rate)

        async with self._lock:
            if self._session is not None:
                raise AlreadyRecordingError(self._session.url)
            try:
                session = await self._launch(safe_url, rate)
            except PerfTraceError:
                raise
            except Exception as e:
                logger.error(f"Failed to start recording for {safe_url}: {e}")
                raise RecordingStartError(safe_url, e) from e
            self._session = session

        logger.info(f"Recording started: {safe_url} (CPU throttle {rate}x)")
        return SessionStatus(status="recording", url=safe_url)

    async def _launch(self, url: str, rate: int) -> RecordingSession:
        handle = await self._launcher.launch(self._config)
        session: Optional[RecordingSession] = None
        try:
            context = handle.context
            await register_collectors(context)
            page = await context.new_page()
            channel = await ControlChannel.open(context, page)
            session = RecordingSession(
                url=url,
                cpu_throttle_rate=rate,
                started_at=self._clock(),
                handle=handle,
                page=page,
                trace_channel=channel,
                live_channel=channel,
                clock=self._clock,
            )
            tracked = TrackedPage(page=page)
            session.pages.append(tracked)
            session.channels.append(channel)

            await self._prepare_channel(session, channel, tracked)
            self._attach_context_handlers(session)
            self._watch_navigation(session, tracked)
            await channel.start_tracing()

            session.sampler = LiveSampler(session, self._config)
            session.sampler.start()

            tracked.offset_sec = session.elapsed_sec()
            await page.goto(url, wait_until="domcontentloaded")
            await install_collectors(page)
            return session
        except Exception:
            if session is not None:
                session.state = SessionState.DRAINING
                if session.sampler is not None:
                    await session.sampler.stop()
                self._detach_handlers(session)
            await self._teardown(handle, session)
            raise

    async def _prepare_channel(
        self, session: RecordingSession, channel: ControlChannel, tracked: TrackedPage
    ) -> None:
        await channel.enable_performance()
        if session.cpu_throttle_rate > 1:
            await channel.set_cpu_throttle(session.cpu_throttle_rate)
        await channel.enable_animations(
            lambda params: self._on_animation_started(session, tracked, params)
        )

    # =========================================================================
    # Push notifications
    # =========================================================================

    def _attach_context_handlers(self, session: RecordingSession) -> None:
        context = session.handle.context

        async def on_page(page: Page) -> None:
            await self._on_new_page(session, page)

        async def on_request_finished(request: Request) -> None:
            await self._on_request_done(session, request, failed=False)

        async def on_request_failed(request: Request) -> None:
            await self._on_request_done(session, request, failed=True)

        for event, handler in (
            ("page", on_page),
            ("requestfinished", on_request_finished),
            ("requestfailed", on_request_failed),
        ):
            context.on(event, handler)
            session.listeners.append((context, event, handler))

    def _watch_navigation(self, session: RecordingSession, tracked: TrackedPage) -> None:
        page = tracked.page

        # Sub-frame navigations keep the document and its clock
        def on_frame_navigated(frame: Frame) -> None:
            if not session.is_active or frame.parent_frame is not None:
                return
            tracked.navigated(session.elapsed_sec())
            logger.debug(f"Tab navigated to {frame.url} at {tracked.offset_sec:.1f}s")

        page.on("framenavigated", on_frame_navigated)
        session.listeners.append((page, "framenavigated", on_frame_navigated))

    def _detach_handlers(self, session: RecordingSession) -> None:
        for emitter, event, handler in session.listeners:
            try:
                emitter.remove_listener(event, handler)
            except Exception as e:
                logger.debug(f"Failed to remove {event} listener: {e}")
        session.listeners.clear()
        for channel in session.channels:
            channel.detach_handlers()

    async def _on_new_page(self, session: RecordingSession, page: Page) -> None:
        """Instrument a tab opened mid-session and make it the active page."""
        if not session.is_active or any(t.page is page for t in session.pages):
            return

        tracked = TrackedPage(page=page, offset_sec=session.elapsed_sec())
        try:
            channel = await ControlChannel.open(session.handle.context, page)
            await self._prepare_channel(session, channel, tracked)
            self._watch_navigation(session, tracked)
            await page.wait_for_load_state("domcontentloaded")
        except Exception as e:
            logger.warning(f"Could not instrument new tab {page.url}: {e}")
            return
        await install_collectors(page)

        if not session.is_active:
            await channel.close()
            return
        session.pages.append(tracked)
        session.channels.append(channel)
        session.page = page
        session.live_channel = channel
        if session.sampler is not None:
            session.sampler.reset_baseline()
        logger.info(f"Switched live metrics to new tab {page.url}")

    def _on_animation_started(
        self, session: RecordingSession, tracked: TrackedPage, params: dict[str, Any]
    ) -> None:
        if not session.is_active:
            return
        anim = params.get("animation") or {}
        source = anim.get("source") or {}
        name = anim.get("name") or ""
        kind = anim.get("type") or "unknown"
        start = anim.get("startTime")
        start_sec = (
            tracked.offset_sec + start / 1000
            if isinstance(start, (int, float))
            else session.elapsed_sec()
        )
        session.animations.append(AnimationRecord(
            id=str(anim.get("id") or len(session.animations)),
            name=name,
            kind=kind,
            start_time_sec=start_sec,
            duration_ms=source.get("duration"),
            delay_ms=source.get("delay"),
            # Transitions are named after the property they animate
            animated_properties=[name] if kind == "CSSTransition" and name else None,
        ))

    async def _on_request_done(self, session: RecordingSession, request: Request, failed: bool) -> None:
        if not session.is_active:
            return
        status = None
        transfer = None
        if not failed:
            try:
                response = await request.response()
                status = response.status if response else None
                sizes = await request.sizes()
                transfer = sizes.get("responseBodySize", 0) + sizes.get("responseHeadersSize", 0)
            except Exception as e:
                logger.debug(f"Could not read response details for {request.url}: {e}")

        timing = request.timing or {}
        response_end = timing.get("responseEnd", -1)
        duration = response_end if isinstance(response_end, (int, float)) and response_end >= 0 else None

        if not session.is_active:
            return
        session.network_log.append(NetworkRequest(
            url=request.url,
            method=request.method,
            status=status,
            resource_type=request.resource_type,
            transfer_bytes=transfer,
            duration_ms=duration,
        ))

    # =========================================================================
    # Stop
    # =========================================================================

    async def stop_session(self) -> PerfReport:
        """Stop the active session and build its report.

        Returns:
            The finished PerfReport

        Raises:
            NoActiveSessionError: If no session is active
        """
        async with self._lock:
            session = self._session
            if session is None:
                raise NoActiveSessionError()
            self._session = None
            session.state = SessionState.DRAINING
            stopped_at = self._clock()
            logger.info(f"Stopping recording of {session.url} after {stopped_at - session.started_at:.1f}s")

            capture = await self._drain(session, stopped_at)
            return self._build_report(capture)

    def _build_report(self, capture: SessionCapture) -> PerfReport:
        """Build the report, degrading to less input until the pipeline succeeds."""
        settings = self._config.reconcile
        try:
            return build_report(capture, settings)
        except Exception as e:
            logger.error(f"Report pipeline failed, retrying without trace: {e}")
        try:
            return build_report(replace(capture, events=[]), settings)
        except Exception as e:
            logger.error(f"Report pipeline failed again, reporting session timing only: {e}")
        return build_report(SessionCapture(
            started_at=capture.started_at,
            stopped_at=capture.stopped_at,
            video=capture.video,
        ), settings)

    async def _drain(self, session: RecordingSession, stopped_at: float) -> SessionCapture:
        snapshots: list[CollectorSnapshot] = []
        events: list[TraceEvent] = []
        video_path: Optional[Path] = None
        try:
            # Phase 1: nothing may append after this
            if session.sampler is not None:
                await session.sampler.stop()
            self._detach_handlers(session)

            # Phase 2: sequential drains while the browser is still alive
            snapshots = await self._collect_snapshots(session)
            events = await self._collect_trace(session)
        except Exception as e:
            logger.error(f"Drain failed, continuing with partial data: {e}")
        finally:
            video_path = await self._teardown(session.handle, session)

        video = None
        if video_path is not None:
            self._set_latest_video(video_path)
            video = VideoRef(url=VIDEO_URL, format="webm")

        return SessionCapture(
            started_at=session.started_at,
            stopped_at=stopped_at,
            events=events,
            samples=list(session.samples),
            snapshots=snapshots,
            screenshots=list(session.screenshots),
            network_requests=list(session.network_log),
            animations=list(session.animations),
            video=video,
        )

    async def _collect_snapshots(self, session: RecordingSession) -> list[CollectorSnapshot]:
        snapshots = []
        for tracked in session.pages:
            current = None
            if not tracked.page.is_closed():
                current = await read_snapshot(tracked.page)
            snapshots.extend(tracked.snapshots(current))
        return snapshots

    async def _collect_trace(self, session: RecordingSession) -> list[TraceEvent]:
        try:
            handle = await session.trace_channel.end_tracing()
            return await decode_trace_stream(session.trace_channel, handle)
        except Exception as e:
            logger.error(f"Trace collection failed: {e}")
            return []

    async def _teardown(self, handle: BrowserHandle, session: Optional[RecordingSession]) -> Optional[Path]:
        """Close channels, context, browser and Playwright; return the video path."""
        if session is not None:
            for channel in session.channels:
                await channel.close()

        try:
            await handle.context.close()
        except Exception as e:
            logger.warning(f"Context close failed: {e}")

        video_path = None
        if session is not None and session.pages:
            video = session.pages[0].page.video
            if video is not None:
                try:
                    video_path = Path(await video.path())
                except Exception as e:
                    logger.warning(f"Session video unavailable: {e}")

        try:
            await handle.browser.close()
        except Exception as e:
            logger.warning(f"Browser close failed: {e}")
        try:
            await handle.playwright.stop()
        except Exception as e:
            logger.warning(f"Playwright stop failed: {e}")
        return video_path

    # =========================================================================
    # Live metrics and video
    # =========================================================================

    async def get_live_metrics(self) -> Optional[LiveMetrics]:
        """Latest sample plus a fresh frame-rate read, or None when idle."""
        session = self._session
        if session is None or not session.is_active:
            return None

        latest = session.samples[-1] if session.samples else None
        fps = await read_live_fps(session.page)
        return LiveMetrics(
            recording=True,
            elapsed_sec=session.elapsed_sec(),
            fps=fps,
            cpu_busy_ms=latest.cpu_busy_ms if latest else None,
            js_heap_mb=latest.js_heap_mb if latest else None,
            dom_nodes=latest.dom_nodes if latest else None,
        )

    def _set_latest_video(self, path: Path) -> None:
        previous = self._latest_video
        self._latest_video = path
        if previous is not None and previous != path:
            try:
                previous.unlink(missing_ok=True)
            except OSError as e:
                logger.debug(f"Could not remove old video {previous}: {e}")

    def get_latest_video(self) -> tuple[bytes, str]:
        """Bytes and MIME type of the most recently finalized session video.

        Raises:
            NotAvailableError: If no video exists
        """
        path = self._latest_video
        if path is None or not path.exists():
            raise NotAvailableError("video", "No session video available.")
        return path.read_bytes(), VIDEO_MIME_TYPE

    async def shutdown(self) -> None:
        """Tear down an active session without building a report."""
        async with self._lock:
            session = self._session
            if session is None:
                return
            self._session = None
            session.state = SessionState.DRAINING
            if session.sampler is not None:
                await session.sampler.stop()
            self._detach_handlers(session)
            await self._teardown(session.handle, session)
            logger.info(f"Recording of {session.url} aborted on shutdown")
