"""Assemble a PerfReport from everything a session captured."""

import logging
from datetime import datetime, timezone
from typing import Optional

from perftrace.api.schemas.report import (
    AnimationMetrics,
    AnimationRecord,
    LayoutMetrics,
    LongTask,
    LongTaskSummary,
    NetworkRequest,
    NetworkSummary,
    PerfReport,
    RenderBreakdown,
    WebglMetrics,
)
from perftrace.api.services.capture import SessionCapture
from perftrace.api.services.trace.diagnostics import (
    annotate_animations,
    build_suggestions,
    compute_web_vitals,
    select_spike_frames,
)
from perftrace.api.services.trace.extractor import (
    TraceExtraction,
    buckets_to_points,
    extract_trace,
)
from perftrace.api.services.trace.reconciler import SeriesSource, reconcile_metric
from perftrace.core.config import ReconcileSettings

logger = logging.getLogger(__name__)

TOP_LONG_TASKS = 5


def _iso(epoch_sec: float) -> str:
    return datetime.fromtimestamp(epoch_sec, tz=timezone.utc).isoformat()


def _source(points) -> SeriesSource:
    points = list(points)
    return SeriesSource.present(points) if points else SeriesSource.unavailable()


def _safe_extract(capture: SessionCapture) -> TraceExtraction:
    try:
        return extract_trace(capture.events)
    except Exception as e:
        logger.error(f"Trace extraction failed, building fallback report: {e}")
        return TraceExtraction()


def _long_tasks(capture: SessionCapture, extraction: TraceExtraction) -> list[LongTask]:
    if extraction.has_events:
        return list(extraction.long_tasks)
    return [
        LongTask(name="longtask", duration_ms=t.duration_ms, start_sec=t.start_ms / 1000)
        for snapshot in capture.snapshots
        for t in snapshot.long_tasks
    ]


def _network(capture: SessionCapture, extraction: TraceExtraction) -> tuple[list[NetworkRequest], NetworkSummary]:
    requests = capture.network_requests or extraction.network_requests
    durations = [r.duration_ms for r in requests if r.duration_ms is not None]
    summary = NetworkSummary(
        requests=len(requests),
        total_bytes=sum(r.transfer_bytes or 0 for r in requests),
        average_latency_ms=sum(durations) / len(requests) if requests else 0.0,
    )
    return list(requests), summary


def _animations(capture: SessionCapture) -> list[AnimationRecord]:
    animations = list(capture.animations)
    if not animations:
        # Control channel reported nothing; use what the pages saw
        for snapshot in capture.snapshots:
            for anim in snapshot.animations:
                animations.append(AnimationRecord(
                    id=f"page-{len(animations)}",
                    name=anim.name,
                    kind=anim.kind,
                    start_time_sec=anim.time_sec,
                    animated_properties=[anim.property] if anim.property else None,
                ))
    return annotate_animations(animations)


def build_report(capture: SessionCapture, settings: Optional[ReconcileSettings] = None) -> PerfReport:
    """Run extraction, reconciliation and diagnostics over a session capture.

    Args:
        capture: Data drained from the session
        settings: Source selection thresholds (defaults if omitted)

    Returns:
        The finished, immutable report
    """
    settings = settings or ReconcileSettings()
    duration_ms = capture.duration_ms
    duration_sec = duration_ms / 1000
    extraction = _safe_extract(capture)
    span = extraction.span_sec

    in_page_fps = [p for s in capture.snapshots for p in s.fps_points]
    heap_fallback = [(s.time_sec, s.js_heap_mb) for s in capture.samples if s.js_heap_mb is not None]
    if not heap_fallback:
        heap_fallback = [p for s in capture.snapshots for p in s.heap_points]
    dom_fallback = [(s.time_sec, s.dom_nodes) for s in capture.samples if s.dom_nodes is not None]
    if not dom_fallback:
        dom_fallback = [p for s in capture.snapshots for p in s.dom_points]

    common = dict(trace_span_sec=span, duration_sec=duration_sec, settings=settings)
    fps_series, _ = reconcile_metric(
        "FPS", "fps",
        _source(buckets_to_points(extraction.fps_buckets)),
        _source(in_page_fps),
        merge="sum", frame_cap=True, **common,
    )
    cpu_series, cpu_decision = reconcile_metric(
        "CPU Busy", "ms",
        _source(buckets_to_points(extraction.cpu_buckets)),
        _source((s.time_sec, s.cpu_busy_ms) for s in capture.samples),
        merge="sum", **common,
    )
    gpu_series, _ = reconcile_metric(
        "GPU Busy", "ms",
        _source(buckets_to_points(extraction.gpu_buckets)),
        SeriesSource.unavailable(),
        merge="sum", **common,
    )
    memory_series, _ = reconcile_metric(
        "JS Heap", "MB",
        _source(extraction.memory_points),
        _source(heap_fallback),
        **common,
    )
    dom_series, _ = reconcile_metric(
        "DOM Nodes", "count",
        _source(extraction.dom_points),
        _source(dom_fallback),
        **common,
    )
    frame_events, _ = reconcile_metric(
        "Frame Events", "events/s",
        _source(buckets_to_points(extraction.animation_frame_buckets)),
        _source(in_page_fps),
        merge="sum", frame_cap=True, **common,
    )

    if extraction.has_events:
        layout_metrics = LayoutMetrics(
            layout_count=extraction.layout_count,
            paint_count=extraction.paint_count,
            layout_time_ms=extraction.layout_time_ms,
            paint_time_ms=extraction.paint_time_ms,
        )
        render = RenderBreakdown(
            script_ms=extraction.script_ms,
            layout_ms=extraction.layout_ms,
            raster_ms=extraction.raster_ms,
            composite_ms=extraction.composite_ms,
        )
    else:
        sampled_layout = sum(s.layout_ms for s in capture.samples)
        layout_metrics = LayoutMetrics(layout_time_ms=sampled_layout)
        render = RenderBreakdown(
            script_ms=sum(s.script_ms for s in capture.samples),
            layout_ms=sampled_layout,
        )

    long_tasks = _long_tasks(capture, extraction)
    requests, network_summary = _network(capture, extraction)
    animations = _animations(capture)

    primary = capture.primary_snapshot
    web_vitals = compute_web_vitals(
        [t for s in capture.snapshots for t in s.long_tasks] if capture.snapshots else None,
        extraction.long_tasks,
        fcp_ms=primary.fcp_ms if primary else None,
        lcp_ms=primary.lcp_ms if primary else None,
        cls=primary.cls if primary else None,
    )

    report = PerfReport(
        started_at=_iso(capture.started_at),
        stopped_at=_iso(capture.stopped_at),
        duration_ms=duration_ms,
        fps_series=fps_series,
        cpu_series=cpu_series,
        gpu_series=gpu_series,
        memory_series=memory_series,
        dom_nodes_series=dom_series,
        layout_metrics=layout_metrics,
        long_tasks=LongTaskSummary(
            count=len(long_tasks),
            total_time_ms=sum(t.duration_ms for t in long_tasks),
            top_tasks=sorted(long_tasks, key=lambda t: t.duration_ms, reverse=True)[:TOP_LONG_TASKS],
        ),
        network_summary=network_summary,
        network_requests=requests,
        render_breakdown=render,
        webgl_metrics=WebglMetrics(
            draw_calls=extraction.webgl_draw_calls,
            shader_compiles=extraction.webgl_shader_compiles,
            other_events=extraction.webgl_other_events,
        ),
        animation_metrics=AnimationMetrics(
            animations=animations,
            frame_events_per_sec=frame_events,
            total_animations=len(animations),
        ),
        web_vitals=web_vitals,
        spike_frames=select_spike_frames(fps_series, capture.screenshots),
        video=capture.video,
    )

    sustained_cpu_ms = None
    if cpu_decision.source != "trace":
        sustained_cpu_ms = sum(s.cpu_busy_ms for s in capture.samples)

    report = report.model_copy(update={"suggestions": build_suggestions(report, sustained_cpu_ms)})
    logger.info(
        f"Report built: {duration_sec:.1f}s, {extraction.event_count} trace events, "
        f"{len(capture.samples)} samples, {len(report.suggestions)} suggestions"
    )
    return report
