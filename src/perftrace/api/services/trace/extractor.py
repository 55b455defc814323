"""Turn decoded trace events into per-second series and scalar totals."""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from perftrace.api.schemas.report import LongTask, NetworkRequest
from perftrace.api.services.trace.decoder import TraceEvent

logger = logging.getLogger(__name__)

FRAME_EVENT_NAMES = frozenset({
    "DrawFrame",
    "BeginFrame",
    "SwapBuffers",
    "CompositeLayers",
})

SCRIPT_EVENT_NAMES = frozenset({
    "EvaluateScript",
    "V8.Execute",
    "CompileScript",
    "V8.Compile",
    "FunctionCall",
})

RASTER_EVENT_NAMES = frozenset({"Rasterize", "RasterTask", "GPUTask"})

COMPOSITE_EVENT_NAMES = frozenset({"CompositeLayers", "UpdateLayerTree"})

LAYOUT_EVENT_NAMES = frozenset({"Layout", "UpdateLayoutTree"})

PAINT_EVENT_NAMES = frozenset({"Paint", "PaintImage"})

ANIMATION_FRAME_EVENT_NAMES = frozenset({
    "FireAnimationFrame",
    "RequestAnimationFrame",
    "Animation",
    "AnimationFrame",
})

WEBGL_EVENT_HINTS = ("WebGL", "glDraw", "GL.Draw", "DrawElements")

MAIN_THREAD_TASK = "RunTask"
LONG_TASK_THRESHOLD_MS = 50.0

# Spans above this many native units can only be microsecond timestamps
MICROSECOND_SPAN_THRESHOLD = 1_000_000
MICROSECONDS = 1_000_000.0
MILLISECONDS = 1_000.0

BYTES_PER_MB = 1024 * 1024

Point = tuple[float, float]


@dataclass
class TraceExtraction:
    """Everything derived from one trace."""

    event_count: int = 0
    unit_divisor: float = MICROSECONDS
    start_ts: float = 0.0
    span_sec: float = 0.0
    fps_buckets: dict[int, float] = field(default_factory=dict)
    cpu_buckets: dict[int, float] = field(default_factory=dict)
    gpu_buckets: dict[int, float] = field(default_factory=dict)
    animation_frame_buckets: dict[int, float] = field(default_factory=dict)
    memory_points: list[Point] = field(default_factory=list)
    dom_points: list[Point] = field(default_factory=list)
    layout_count: int = 0
    paint_count: int = 0
    layout_time_ms: float = 0.0
    paint_time_ms: float = 0.0
    script_ms: float = 0.0
    layout_ms: float = 0.0
    raster_ms: float = 0.0
    composite_ms: float = 0.0
    webgl_draw_calls: int = 0
    webgl_shader_compiles: int = 0
    webgl_other_events: int = 0
    long_tasks: list[LongTask] = field(default_factory=list)
    network_requests: list[NetworkRequest] = field(default_factory=list)

    @property
    def has_events(self) -> bool:
        return self.event_count > 0


def infer_unit_divisor(events: list[TraceEvent]) -> float:
    """Decide whether trace timestamps are microseconds or milliseconds.

    Args:
        events: Decoded trace events

    Returns:
        Native units per second (1e6 for microseconds, 1e3 for milliseconds)
    """
    timestamps = [e.ts for e in events if e.ts]
    if not timestamps:
        return MICROSECONDS
    span = max(timestamps) - min(timestamps)
    return MICROSECONDS if span > MICROSECOND_SPAN_THRESHOLD else MILLISECONDS


def classify_webgl_event(name: str) -> Optional[str]:
    """Classify a WebGL-related event name as shader, draw or other."""
    if not any(hint in name for hint in WEBGL_EVENT_HINTS):
        return None
    lowered = name.lower()
    if "shader" in lowered:
        return "shader"
    if "draw" in lowered:
        return "draw"
    return "other"


class _NetworkCorrelator:
    """Joins ResourceSendRequest / ResourceReceiveResponse / ResourceFinish by request id."""

    def __init__(self, to_ms):
        self._to_ms = to_ms
        self._requests: dict[str, dict] = {}

    def add(self, e: TraceEvent) -> None:
        data = e.data
        req_id = data.get("requestId") or data.get("url") or f"{e.name}-{e.ts}"

        if e.name == "ResourceSendRequest":
            self._requests[req_id] = {
                "url": data.get("url") or "unknown",
                "method": data.get("requestMethod") or "GET",
                "start_ts": e.ts,
            }

        elif e.name == "ResourceReceiveResponse":
            entry = self._requests.get(req_id)
            if entry is not None:
                entry["status"] = data.get("statusCode")
                entry["type"] = data.get("mimeType")

        elif e.name == "ResourceFinish":
            entry = self._requests.get(req_id)
            if entry is not None:
                entry["end_ts"] = e.ts
                size = data.get("encodedDataLength")
                if isinstance(size, (int, float)):
                    entry["transfer"] = float(size)
                # Duration
                entry["duration_ms"] = self._to_ms(e.ts - entry["start_ts"])

    def records(self) -> list[NetworkRequest]:
        return [
            NetworkRequest(
                url=r["url"],
                method=r["method"],
                status=r.get("status") if isinstance(r.get("status"), int) else None,
                resource_type=r.get("type"),
                transfer_bytes=r.get("transfer"),
                duration_ms=r.get("duration_ms"),
            )
            for r in self._requests.values()
        ]


def extract_trace(events: list[TraceEvent]) -> TraceExtraction:
    """Classify events and accumulate series and totals.

    Args:
        events: Decoded trace events (any order)

    Returns:
        TraceExtraction; an empty one when there are no events
    """
    timestamps = [e.ts for e in events if e.ts]
    if not timestamps:
        return TraceExtraction(event_count=len(events))

    divisor = infer_unit_divisor(events)
    start_ts = min(timestamps)
    units_per_ms = divisor / 1000

    def to_ms(raw: float) -> float:
        return raw / units_per_ms

    def offset_sec(ts: float) -> float:
        return max(0.0, (ts - start_ts) / divisor)

    def add_to_bucket(bucket: dict[int, float], ts: float, value: float) -> None:
        second = max(0, math.floor((ts - start_ts) / divisor))
        bucket[second] = bucket.get(second, 0.0) + value

    out = TraceExtraction(
        event_count=len(events),
        unit_divisor=divisor,
        start_ts=start_ts,
        span_sec=(max(timestamps) - start_ts) / divisor,
    )
    network = _NetworkCorrelator(to_ms)

    for e in events:
        name = e.name
        cat = e.cat
        ts = e.ts
        dur_ms = to_ms(e.dur) if e.dur else 0.0

        if name in FRAME_EVENT_NAMES:
            add_to_bucket(out.fps_buckets, ts, 1)

        if name in ANIMATION_FRAME_EVENT_NAMES:
            add_to_bucket(out.animation_frame_buckets, ts, 1)

        if e.ph == "X" and dur_ms > 0:
            if "toplevel" in cat or name == MAIN_THREAD_TASK:
                add_to_bucket(out.cpu_buckets, ts, dur_ms)
            if "gpu" in cat or "GPU" in name:
                add_to_bucket(out.gpu_buckets, ts, dur_ms)
            if name == MAIN_THREAD_TASK and dur_ms > LONG_TASK_THRESHOLD_MS:
                out.long_tasks.append(
                    LongTask(name=name, duration_ms=dur_ms, start_sec=offset_sec(ts))
                )

        if name in LAYOUT_EVENT_NAMES:
            out.layout_count += 1
            out.layout_time_ms += dur_ms
            out.layout_ms += dur_ms

        if name in PAINT_EVENT_NAMES:
            out.paint_count += 1
            out.paint_time_ms += dur_ms

        if name in SCRIPT_EVENT_NAMES:
            out.script_ms += dur_ms

        if name in RASTER_EVENT_NAMES:
            out.raster_ms += dur_ms

        if name in COMPOSITE_EVENT_NAMES:
            out.composite_ms += dur_ms

        if name == "UpdateCounters":
            data = e.data
            heap = data.get("jsHeapSizeUsed", data.get("jsHeapSize", data.get("usedJSHeapSize")))
            nodes = data.get("nodes", data.get("documentCount"))
            if isinstance(heap, (int, float)):
                out.memory_points.append((offset_sec(ts), heap / BYTES_PER_MB))
            if isinstance(nodes, (int, float)):
                out.dom_points.append((offset_sec(ts), float(nodes)))

        if name.startswith("Resource"):
            network.add(e)

        kind = classify_webgl_event(name)
        if kind == "shader":
            out.webgl_shader_compiles += 1
        elif kind == "draw":
            out.webgl_draw_calls += 1
        elif kind == "other":
            out.webgl_other_events += 1

    out.memory_points.sort(key=lambda p: p[0])
    out.dom_points.sort(key=lambda p: p[0])
    out.network_requests = network.records()

    unit = "us" if divisor == MICROSECONDS else "ms"
    logger.info(
        f"Extracted trace: {len(events)} events, span {out.span_sec:.1f}s ({unit}), "
        f"{len(out.long_tasks)} long tasks, {len(out.network_requests)} requests"
    )
    return out


def buckets_to_points(bucket: dict[int, float]) -> list[Point]:
    """Sort a per-second bucket map into (timeSec, value) points."""
    return [(float(second), value) for second, value in sorted(bucket.items())]
