"""Shared fixtures for perftrace tests."""

import pytest

from perftrace.api.schemas.report import (
    AnimationMetrics,
    LayoutMetrics,
    LongTaskSummary,
    MetricPoint,
    MetricSeries,
    NetworkSummary,
    PerfReport,
    RenderBreakdown,
    WebglMetrics,
    WebVitals,
)


def series(label, unit, points=()):
    return MetricSeries(
        label=label,
        unit=unit,
        points=[MetricPoint(time_sec=t, value=v) for t, v in points],
    )


@pytest.fixture
def make_report():
    """Factory for a quiet 10 second report; keyword overrides replace fields."""

    def factory(**overrides):
        fields = dict(
            started_at="2024-01-01T00:00:00+00:00",
            stopped_at="2024-01-01T00:00:10+00:00",
            duration_ms=10_000.0,
            fps_series=series("FPS", "fps"),
            cpu_series=series("CPU Busy", "ms"),
            gpu_series=series("GPU Busy", "ms"),
            memory_series=series("JS Heap", "MB"),
            dom_nodes_series=series("DOM Nodes", "count"),
            layout_metrics=LayoutMetrics(),
            long_tasks=LongTaskSummary(),
            network_summary=NetworkSummary(),
            render_breakdown=RenderBreakdown(),
            webgl_metrics=WebglMetrics(),
            animation_metrics=AnimationMetrics(frame_events_per_sec=series("Frame Events", "events/s")),
            web_vitals=WebVitals(),
        )
        fields.update(overrides)
        return PerfReport(**fields)

    return factory
