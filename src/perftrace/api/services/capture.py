"""Data captured from a recording session.

These are the plain records the browser side produces and the report
pipeline consumes: polling samples, screenshots, in-page collector
snapshots and the bundle drained at stop time.
"""

import base64
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from perftrace.api.schemas.report import AnimationRecord, NetworkRequest, VideoRef
from perftrace.api.services.trace.decoder import TraceEvent

Point = tuple[float, float]


@dataclass
class PerfSample:
    """One polling-interval observation."""

    time_sec: float
    cpu_busy_ms: float
    script_ms: float
    layout_ms: float
    js_heap_mb: Optional[float] = None
    dom_nodes: Optional[float] = None


@dataclass
class Screenshot:
    """A JPEG captured by the sampler."""

    time_sec: float
    data: bytes
    mime_type: str = "image/jpeg"

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass
class InPageLongTask:
    """A long task reported by the in-page PerformanceObserver."""

    start_ms: float
    duration_ms: float


@dataclass
class InPageAnimation:
    """An animationstart/transitionstart event seen by the page."""

    name: str
    kind: str
    time_sec: float
    property: Optional[str] = None


def _float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _points(raw: Any, key: str) -> list[Point]:
    points = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        t = _float(item.get("timeSec"))
        v = _float(item.get(key))
        if t is not None and v is not None:
            points.append((t, v))
    return points


@dataclass
class CollectorSnapshot:
    """State read back from the in-page collector of one page.

    Times are seconds relative to that page's load until ``shifted`` moves
    them onto the session clock.
    """

    fps_points: list[Point] = field(default_factory=list)
    long_tasks: list[InPageLongTask] = field(default_factory=list)
    fcp_ms: Optional[float] = None
    lcp_ms: Optional[float] = None
    cls: float = 0.0
    heap_points: list[Point] = field(default_factory=list)
    dom_points: list[Point] = field(default_factory=list)
    animations: list[InPageAnimation] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict) -> "CollectorSnapshot":
        """Parse the object returned by the snapshot script, tolerating gaps."""
        long_tasks = []
        for task in payload.get("longTasks") or []:
            if not isinstance(task, dict):
                continue
            start = _float(task.get("startMs"))
            duration = _float(task.get("durationMs"))
            if duration is not None:
                long_tasks.append(InPageLongTask(start_ms=start or 0.0, duration_ms=duration))

        animations = []
        for anim in payload.get("animations") or []:
            if not isinstance(anim, dict):
                continue
            animations.append(InPageAnimation(
                name=str(anim.get("name") or ""),
                kind=str(anim.get("kind") or "unknown"),
                time_sec=_float(anim.get("timeSec")) or 0.0,
                property=anim.get("property") or None,
            ))

        return cls(
            fps_points=_points(payload.get("fps"), "frames"),
            long_tasks=long_tasks,
            fcp_ms=_float(payload.get("fcp")),
            lcp_ms=_float(payload.get("lcp")),
            cls=_float(payload.get("cls")) or 0.0,
            heap_points=_points(payload.get("heap"), "mb"),
            dom_points=_points(payload.get("dom"), "nodes"),
            animations=animations,
        )

    def shifted(self, offset_sec: float) -> "CollectorSnapshot":
        """Copy with all timestamps moved by ``offset_sec``."""
        if not offset_sec:
            return self

        def move(points: list[Point]) -> list[Point]:
            return [(t + offset_sec, v) for t, v in points]

        return replace(
            self,
            fps_points=move(self.fps_points),
            long_tasks=[replace(t, start_ms=t.start_ms + offset_sec * 1000) for t in self.long_tasks],
            heap_points=move(self.heap_points),
            dom_points=move(self.dom_points),
            animations=[replace(a, time_sec=a.time_sec + offset_sec) for a in self.animations],
        )


@dataclass
class SessionCapture:
    """Everything drained from a session; the input of the report pipeline.

    Attributes:
        started_at: Wall-clock start (epoch seconds)
        stopped_at: Wall-clock stop (epoch seconds)
        events: Decoded trace events (empty if tracing failed)
        samples: Polling samples in order
        snapshots: In-page snapshots already on the session clock; the first
            one belongs to the page the session navigated to
        screenshots: Captured screenshots
        network_requests: Records from the browser driver's request events
        animations: Animations reported by the control channel
        video: Reference to the finalized recording, if any
    """

    started_at: float
    stopped_at: float
    events: list[TraceEvent] = field(default_factory=list)
    samples: list[PerfSample] = field(default_factory=list)
    snapshots: list[CollectorSnapshot] = field(default_factory=list)
    screenshots: list[Screenshot] = field(default_factory=list)
    network_requests: list[NetworkRequest] = field(default_factory=list)
    animations: list[AnimationRecord] = field(default_factory=list)
    video: Optional[VideoRef] = None

    @property
    def duration_ms(self) -> float:
        return max(0.0, (self.stopped_at - self.started_at) * 1000)

    @property
    def primary_snapshot(self) -> Optional[CollectorSnapshot]:
        return self.snapshots[0] if self.snapshots else None
