"""Choose between trace-derived and sampled series, then normalize time.

Each metric has up to two sources: the trace (dense, but its clock and unit
are guessed) and the polling/in-page fallback (sparse, but on the session's
own clock). Selection is decided per metric by ``select_source``; the
result is then rescaled, clamped and extended to the full session span by
``normalize_points`` and ``extend_points``. Trace points past the end of the
session are dropped first by ``trim_to_session``.
"""

import logging
from dataclasses import dataclass
from typing import Literal, Optional

from perftrace.api.schemas.report import MetricPoint, MetricSeries
from perftrace.core.config import ReconcileSettings

logger = logging.getLogger(__name__)

Point = tuple[float, float]
MergeMode = Literal["sum", "last"]


@dataclass(frozen=True)
class SeriesSource:
    """Outcome of one data source for one metric: present points or unavailable."""

    points: Optional[tuple[Point, ...]] = None

    @classmethod
    def present(cls, points) -> "SeriesSource":
        return cls(points=tuple((float(t), float(v)) for t, v in points))

    @classmethod
    def unavailable(cls) -> "SeriesSource":
        return cls(points=None)

    @property
    def available(self) -> bool:
        return self.points is not None and len(self.points) > 0


@dataclass(frozen=True)
class SourceDecision:
    """Which source was picked for a metric and why."""

    source: Literal["trace", "fallback", "none"]
    points: tuple[Point, ...]
    reason: str


def trace_span_is_plausible(trace_span_sec: float, duration_sec: float, settings: ReconcileSettings) -> bool:
    """Check the trace's own span is not wildly out of proportion with the wall clock."""
    if duration_sec <= 0 or trace_span_sec <= 0:
        return False
    ratio = settings.max_span_ratio
    return duration_sec / ratio <= trace_span_sec <= duration_sec * ratio


def _reject_reason(
    trace: SeriesSource,
    trace_span_sec: float,
    duration_sec: float,
    settings: ReconcileSettings,
    frame_cap: bool,
) -> Optional[str]:
    if not trace.available:
        return "trace series unavailable"
    if not trace_span_is_plausible(trace_span_sec, duration_sec, settings):
        return f"trace span {trace_span_sec:.1f}s implausible for {duration_sec:.1f}s session"

    times = sorted({t for t, _ in trace.points})
    if len(times) <= settings.min_buckets:
        return f"only {len(times)} trace buckets"

    covered = times[-1] - times[0]
    if covered < duration_sec * settings.min_coverage_ratio:
        return f"trace covers {covered:.1f}s of {duration_sec:.1f}s"

    if frame_cap:
        peak = max(v for _, v in trace.points)
        if peak > settings.max_fps_per_bucket:
            return f"frame bucket {peak:.0f} exceeds cap {settings.max_fps_per_bucket:.0f}"
    return None


def select_source(
    trace: SeriesSource,
    fallback: SeriesSource,
    *,
    trace_span_sec: float,
    duration_sec: float,
    settings: ReconcileSettings,
    frame_cap: bool = False,
) -> SourceDecision:
    """Pick the authoritative source for one metric.

    The trace wins only when its span is plausible, it has more than
    ``min_buckets`` distinct points, it covers enough of the session and
    (for frame rates) no bucket exceeds the per-second frame cap.

    Args:
        trace: Trace-derived points
        fallback: Polling or in-page points
        trace_span_sec: Span of the whole trace in seconds
        duration_sec: Wall-clock session duration in seconds
        settings: Heuristic thresholds
        frame_cap: Apply the frame-rate cap check

    Returns:
        The decision with the chosen points
    """
    reason = _reject_reason(trace, trace_span_sec, duration_sec, settings, frame_cap)
    if reason is None:
        return SourceDecision("trace", trace.points, "trace accepted")

    if fallback.available:
        return SourceDecision("fallback", fallback.points, reason)

    # Nothing to fall back to: a doubtful trace beats an empty chart
    if trace.available:
        return SourceDecision("trace", trace.points, f"{reason}; no fallback available")
    return SourceDecision("none", (), reason)


def trim_to_session(points, duration_sec: float) -> list[Point]:
    """Drop trace points that fall after the session ended.

    Trace times are already in seconds, so anything past the wall-clock
    duration is trace free-run, not a millisecond timestamp to rescale.
    """
    return [(t, v) for t, v in points if t <= duration_sec]


def normalize_points(
    points, duration_sec: float, settings: ReconcileSettings, merge: MergeMode = "last"
) -> list[Point]:
    """Rescale millisecond timestamps, clamp to the session and sort.

    Args:
        points: (timeSec, value) pairs in any order
        duration_sec: Session duration in seconds
        settings: Heuristic thresholds
        merge: How to combine points sharing a timestamp

    Returns:
        Sorted points with 0 <= timeSec <= duration_sec
    """
    ms_threshold = duration_sec * settings.ms_rescale_factor
    rescaled = []
    for t, v in points:
        if t > ms_threshold:
            t = t / 1000
        rescaled.append((min(max(t, 0.0), max(duration_sec, 0.0)), v))

    rescaled.sort(key=lambda p: p[0])

    merged: list[Point] = []
    for t, v in rescaled:
        if merged and merged[-1][0] == t:
            prev = merged[-1][1]
            merged[-1] = (t, prev + v if merge == "sum" else v)
        else:
            merged.append((t, v))
    return merged


def extend_points(points: list[Point], duration_sec: float, settings: ReconcileSettings) -> list[Point]:
    """Extend a sorted series so it starts at t=0 and ends at t=duration.

    Args:
        points: Sorted, clamped points
        duration_sec: Session duration in seconds
        settings: Heuristic thresholds

    Returns:
        Extended copy of the points (empty input stays empty)
    """
    if not points:
        return []

    extended = list(points)
    first_t, first_v = extended[0]
    if first_t > settings.extend_lead_sec:
        extended.insert(0, (0.0, first_v))

    last_t, last_v = extended[-1]
    step = settings.extend_step_sec
    while duration_sec - last_t > 1e-9:
        last_t = min(last_t + step, duration_sec)
        extended.append((last_t, last_v))
    return extended


def reconcile_metric(
    label: str,
    unit: str,
    trace: SeriesSource,
    fallback: SeriesSource,
    *,
    trace_span_sec: float,
    duration_sec: float,
    settings: ReconcileSettings,
    merge: MergeMode = "last",
    frame_cap: bool = False,
) -> tuple[MetricSeries, SourceDecision]:
    """Select, normalize and extend one metric into a MetricSeries.

    Returns:
        Tuple of (series, decision)
    """
    decision = select_source(
        trace,
        fallback,
        trace_span_sec=trace_span_sec,
        duration_sec=duration_sec,
        settings=settings,
        frame_cap=frame_cap,
    )
    if decision.source == "fallback":
        logger.info(f"{label}: using fallback series ({decision.reason})")
    else:
        logger.debug(f"{label}: {decision.source} ({decision.reason})")

    points = decision.points
    if decision.source == "trace":
        points = trim_to_session(points, duration_sec)
    points = normalize_points(points, duration_sec, settings, merge=merge)
    points = extend_points(points, duration_sec, settings)
    series = MetricSeries(
        label=label,
        unit=unit,
        points=[MetricPoint(time_sec=t, value=v) for t, v in points],
    )
    return series, decision
