"""Derived diagnostics: Web Vitals, animation bottlenecks, spike frames, suggestions."""

import logging
import re
from typing import Optional, Sequence

from perftrace.api.schemas.report import (
    AnimationRecord,
    BottleneckHint,
    LongTask,
    MetricPoint,
    MetricSeries,
    PerfReport,
    SpikeFrame,
    Suggestion,
    WebVitals,
)
from perftrace.api.services.capture import InPageLongTask, Screenshot

logger = logging.getLogger(__name__)

LONG_TASK_BLOCKING_THRESHOLD_MS = 50.0
SPIKE_FRAME_COUNT = 5

LAYOUT_PROPERTIES = frozenset({
    "width", "height", "min-width", "min-height", "max-width", "max-height",
    "top", "left", "right", "bottom", "position", "display",
    "font-size", "font-weight", "line-height",
    "border", "border-width", "border-top-width", "border-right-width",
    "border-bottom-width", "border-left-width",
})
LAYOUT_PREFIXES = ("margin", "padding")

PAINT_PROPERTIES = frozenset({
    "color", "background", "background-color", "background-image",
    "background-position", "box-shadow", "text-shadow", "filter",
    "border-radius", "border-color", "outline", "outline-color", "visibility",
})

COMPOSITOR_PROPERTIES = frozenset({"transform", "opacity", "translate", "scale", "rotate"})

COMPOSITOR_NAME_HINTS = ("fade", "opacity", "transform", "slide", "scale", "rotate", "translate")


# =============================================================================
# Web Vitals
# =============================================================================

def total_blocking_time(durations_ms: Sequence[float]) -> float:
    """Sum of the time each long task spent beyond the 50ms threshold."""
    return sum(max(0.0, d - LONG_TASK_BLOCKING_THRESHOLD_MS) for d in durations_ms)


def compute_web_vitals(
    in_page_long_tasks: Optional[Sequence[InPageLongTask]],
    trace_long_tasks: Sequence[LongTask],
    *,
    fcp_ms: Optional[float] = None,
    lcp_ms: Optional[float] = None,
    cls: Optional[float] = None,
) -> WebVitals:
    """Compute Web Vitals from in-page collector state.

    Args:
        in_page_long_tasks: Long tasks from the collector, or None if no
            snapshot could be read
        trace_long_tasks: Long tasks derived from the trace
        fcp_ms: First contentful paint
        lcp_ms: Largest contentful paint
        cls: Cumulative layout shift

    Returns:
        WebVitals; TBT is zero when no in-page snapshot exists
    """
    if in_page_long_tasks is None:
        return WebVitals(
            fcp_ms=fcp_ms,
            lcp_ms=lcp_ms,
            cls=cls,
            tbt_ms=0.0,
            long_task_count=len(trace_long_tasks),
            long_task_total_ms=sum(t.duration_ms for t in trace_long_tasks),
        )

    durations = [t.duration_ms for t in in_page_long_tasks]
    return WebVitals(
        fcp_ms=fcp_ms,
        lcp_ms=lcp_ms,
        cls=cls,
        tbt_ms=total_blocking_time(durations),
        long_task_count=len(durations),
        long_task_total_ms=sum(durations),
    )


# =============================================================================
# Animation bottlenecks
# =============================================================================

def _normalize_property(prop: str) -> str:
    # backgroundColor -> background-color
    return re.sub(r"(?<!^)([A-Z])", r"-\1", prop.strip()).lower()


def _is_layout_property(prop: str) -> bool:
    return prop in LAYOUT_PROPERTIES or prop.startswith(LAYOUT_PREFIXES)


def infer_bottleneck(
    name: Optional[str], properties: Optional[Sequence[str]] = None
) -> Optional[BottleneckHint]:
    """Infer which rendering stage an animation stresses.

    Property data wins over the name: layout beats paint beats compositor.
    Without properties, name prefixes and keywords are used.

    Args:
        name: Animation name
        properties: Animated CSS properties, if known

    Returns:
        "layout", "paint", "compositor" or None when nothing matches
    """
    props = [_normalize_property(p) for p in properties or [] if p]
    if props:
        if any(_is_layout_property(p) for p in props):
            return "layout"
        if any(p in PAINT_PROPERTIES or p.startswith("background") or "shadow" in p for p in props):
            return "paint"
        if any(p in COMPOSITOR_PROPERTIES for p in props):
            return "compositor"

    lowered = (name or "").lower()
    if lowered.startswith("cc-"):
        return "compositor"
    if lowered.startswith("blink-") or "style" in lowered:
        return "layout"
    if any(hint in lowered for hint in COMPOSITOR_NAME_HINTS):
        return "compositor"
    return None


def annotate_animations(animations: Sequence[AnimationRecord]) -> list[AnimationRecord]:
    """Attach a bottleneck hint to every animation."""
    return [
        a.model_copy(update={"bottleneck_hint": infer_bottleneck(a.name, a.animated_properties)})
        for a in animations
    ]


# =============================================================================
# Spike frames
# =============================================================================

def select_spike_frames(
    fps_series: MetricSeries,
    screenshots: Sequence[Screenshot],
    count: int = SPIKE_FRAME_COUNT,
) -> list[SpikeFrame]:
    """Match the lowest frame-rate points to their nearest screenshots.

    Args:
        fps_series: Reconciled frame-rate series
        screenshots: Screenshots captured during the session
        count: Number of spike frames to return

    Returns:
        Spike frames ordered by time
    """
    if not screenshots or not fps_series.points:
        return []

    lowest = sorted(fps_series.points, key=lambda p: (p.value, p.time_sec))[:count]
    frames = []
    for point in sorted(lowest, key=lambda p: p.time_sec):
        shot = min(screenshots, key=lambda s: abs(s.time_sec - point.time_sec))
        frames.append(
            SpikeFrame(
                time_sec=point.time_sec,
                value=point.value,
                screenshot_time_sec=shot.time_sec,
                image_data_url=shot.to_data_url(),
            )
        )
    return frames


# =============================================================================
# Suggestions
# =============================================================================

def _average(values: Sequence[float]) -> float:
    return sum(values) / max(1, len(values))


def build_suggestions(report: PerfReport, sustained_cpu_ms: Optional[float] = None) -> list[Suggestion]:
    """Evaluate the fixed rule set against a finished report.

    Args:
        report: The assembled report
        sustained_cpu_ms: Total sampled CPU busy time, only passed when the
            report was built without a usable trace

    Returns:
        One suggestion per rule that fired
    """
    suggestions: list[Suggestion] = []

    fps_values = report.fps_series.point_values
    avg_fps = _average(fps_values)
    if any(v > 0 for v in fps_values) and avg_fps < 50:
        suggestions.append(Suggestion(
            title="Low frame rate",
            detail=f"Average FPS is {avg_fps:.0f}, below 50. Reduce main-thread work or optimize animations.",
            severity="warning",
        ))

    if report.long_tasks.count > 10:
        suggestions.append(Suggestion(
            title="Long tasks detected",
            detail=f"{report.long_tasks.count} tasks exceeded 50ms. Split heavy work or debounce handlers.",
            severity="warning",
        ))

    layout = report.layout_metrics
    if layout.layout_count > 100 or layout.layout_time_ms > report.duration_ms * 0.15:
        suggestions.append(Suggestion(
            title="High layout cost",
            detail="Layout time is high. Audit layout thrashing and reduce forced reflows.",
            severity="warning",
        ))

    if layout.paint_count > 150:
        suggestions.append(Suggestion(
            title="Frequent repaints",
            detail="High paint count. Consider batching visual updates or simplifying effects.",
            severity="info",
        ))

    memory = report.memory_series.points
    if len(memory) >= 2:
        start_mem = memory[0].value
        end_mem = memory[-1].value
        if end_mem > start_mem * 1.2:
            suggestions.append(Suggestion(
                title="Memory growth",
                detail=f"Heap grew from {start_mem:.1f} MB to {end_mem:.1f} MB. Check for retained objects or leaks.",
                severity="warning",
            ))

    layout_animations = [
        a for a in report.animation_metrics.animations if a.bottleneck_hint == "layout"
    ]
    if layout_animations:
        suggestions.append(Suggestion(
            title="Layout-triggering animations",
            detail=(
                f"{len(layout_animations)} animation(s) animate layout properties. "
                "Animate transform and opacity instead."
            ),
            severity="warning",
        ))

    vitals = report.web_vitals
    if vitals.cls is not None and vitals.cls > 0.1:
        suggestions.append(Suggestion(
            title="Layout shifts",
            detail=f"CLS is {vitals.cls:.3f}. Reserve space for images, ads and late content.",
            severity="warning",
        ))

    if vitals.tbt_ms > 300:
        suggestions.append(Suggestion(
            title="High total blocking time",
            detail=f"TBT is {vitals.tbt_ms:.0f}ms. Break up long tasks to keep input responsive.",
            severity="critical",
        ))

    if sustained_cpu_ms is not None and report.duration_ms > 0:
        busy_ratio = sustained_cpu_ms / report.duration_ms
        if busy_ratio > 0.7:
            suggestions.append(Suggestion(
                title="High CPU usage",
                detail=f"Main thread was busy {busy_ratio:.0%} of the session.",
                severity="warning",
            ))

    logger.debug(f"Suggestion rules fired: {[s.title for s in suggestions]}")
    return suggestions


# =============================================================================
# Timeline lookups
# =============================================================================

def _nearest_value(points: Sequence[MetricPoint], time_sec: float) -> Optional[float]:
    if not points:
        return None
    return min(points, key=lambda p: abs(p.time_sec - time_sec)).value


def vitals_at_time(report: PerfReport, time_sec: float) -> dict[str, Optional[float]]:
    """Read every series at the point nearest to ``time_sec``."""
    return {
        "fps": _nearest_value(report.fps_series.points, time_sec),
        "cpu_busy_ms": _nearest_value(report.cpu_series.points, time_sec),
        "gpu_busy_ms": _nearest_value(report.gpu_series.points, time_sec),
        "js_heap_mb": _nearest_value(report.memory_series.points, time_sec),
        "dom_nodes": _nearest_value(report.dom_nodes_series.points, time_sec),
    }


def closest_spike_frame(report: PerfReport, time_sec: float) -> Optional[SpikeFrame]:
    """Spike frame nearest to ``time_sec``, if any were captured."""
    if not report.spike_frames:
        return None
    return min(report.spike_frames, key=lambda f: abs(f.time_sec - time_sec))
