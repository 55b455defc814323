"""Tests for derived diagnostics.

This module tests:
- Total blocking time and Web Vitals assembly
- Animation bottleneck inference
- Spike frame selection
- Suggestion rules
- Timeline lookups
"""

import pytest

from perftrace.api.schemas.report import (
    AnimationMetrics,
    AnimationRecord,
    LayoutMetrics,
    LongTask,
    LongTaskSummary,
    SpikeFrame,
    WebVitals,
)
from perftrace.api.services.capture import InPageLongTask, Screenshot
from perftrace.api.services.trace.diagnostics import (
    annotate_animations,
    build_suggestions,
    closest_spike_frame,
    compute_web_vitals,
    infer_bottleneck,
    select_spike_frames,
    total_blocking_time,
    vitals_at_time,
)
from tests.conftest import series


# =============================================================================
# Web Vitals Tests
# =============================================================================

class TestWebVitals:
    """Tests for total_blocking_time and compute_web_vitals."""

    def test_total_blocking_time(self):
        assert total_blocking_time([70, 120, 30]) == 90

    def test_in_page_long_tasks(self):
        tasks = [InPageLongTask(start_ms=0, duration_ms=d) for d in (70, 120, 30)]
        vitals = compute_web_vitals(tasks, [], fcp_ms=800.0, lcp_ms=1200.0, cls=0.02)
        assert vitals.tbt_ms == 90
        assert vitals.long_task_count == 3
        assert vitals.long_task_total_ms == 220
        assert vitals.fcp_ms == 800.0
        assert vitals.lcp_ms == 1200.0

    def test_without_snapshot_tbt_is_zero(self):
        trace_tasks = [LongTask(name="RunTask", duration_ms=80, start_sec=1.0)]
        vitals = compute_web_vitals(None, trace_tasks)
        assert vitals.tbt_ms == 0
        assert vitals.long_task_count == 1
        assert vitals.long_task_total_ms == 80
        assert vitals.fcp_ms is None


# =============================================================================
# Bottleneck Tests
# =============================================================================

class TestInferBottleneck:
    """Tests for infer_bottleneck."""

    @pytest.mark.parametrize(
        "properties,expected",
        [
            (["width", "transform"], "layout"),
            (["marginTop"], "layout"),
            (["background-color", "opacity"], "paint"),
            (["boxShadow"], "paint"),
            (["opacity", "transform"], "compositor"),
        ],
    )
    def test_property_precedence(self, properties, expected):
        assert infer_bottleneck("anything", properties) == expected

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("cc-scroll", "compositor"),
            ("blink-resize", "layout"),
            ("restyle", "layout"),
            ("fadeIn", "compositor"),
            ("spin", None),
            (None, None),
        ],
    )
    def test_name_heuristics(self, name, expected):
        assert infer_bottleneck(name) == expected

    def test_annotate_animations(self):
        animations = [
            AnimationRecord(id="1", name="grow", animated_properties=["height"]),
            AnimationRecord(id="2", name="slideIn"),
        ]
        annotated = annotate_animations(animations)
        assert [a.bottleneck_hint for a in annotated] == ["layout", "compositor"]
        assert animations[0].bottleneck_hint is None


# =============================================================================
# Spike Frame Tests
# =============================================================================

class TestSpikeFrames:
    """Tests for select_spike_frames."""

    def test_lowest_points_matched_to_nearest_screenshot(self):
        fps = series("FPS", "fps", [(0, 60), (1, 20), (2, 58), (3, 59), (4, 10), (5, 60), (6, 57), (7, 55)])
        shots = [
            Screenshot(time_sec=0.5, data=b"a"),
            Screenshot(time_sec=3.8, data=b"b"),
            Screenshot(time_sec=6.5, data=b"c"),
        ]

        frames = select_spike_frames(fps, shots, count=2)

        assert [f.time_sec for f in frames] == [1, 4]
        assert [f.screenshot_time_sec for f in frames] == [0.5, 3.8]
        assert frames[0].image_data_url.startswith("data:image/jpeg;base64,")

    def test_no_screenshots(self):
        fps = series("FPS", "fps", [(0, 60)])
        assert select_spike_frames(fps, []) == []


# =============================================================================
# Suggestion Tests
# =============================================================================

class TestBuildSuggestions:
    """Tests for build_suggestions."""

    def test_low_frame_rate_fires_once(self, make_report):
        report = make_report(fps_series=series("FPS", "fps", [(0, 42), (1, 42), (2, 42)]))
        titles = [s.title for s in build_suggestions(report)]
        assert titles == ["Low frame rate"]

    def test_quiet_report_has_no_suggestions(self, make_report):
        report = make_report(fps_series=series("FPS", "fps", [(0, 60), (1, 59)]))
        assert build_suggestions(report) == []

    def test_all_zero_fps_does_not_fire(self, make_report):
        report = make_report(fps_series=series("FPS", "fps", [(0, 0), (1, 0)]))
        assert build_suggestions(report) == []

    def test_long_tasks_and_layout(self, make_report):
        report = make_report(
            long_tasks=LongTaskSummary(count=11, total_time_ms=900),
            layout_metrics=LayoutMetrics(layout_count=20, layout_time_ms=2000, paint_count=151),
        )
        titles = {s.title for s in build_suggestions(report)}
        assert titles == {"Long tasks detected", "High layout cost", "Frequent repaints"}

    def test_memory_growth(self, make_report):
        report = make_report(memory_series=series("JS Heap", "MB", [(0, 100), (5, 110), (10, 130)]))
        titles = [s.title for s in build_suggestions(report)]
        assert titles == ["Memory growth"]

    def test_layout_animation_and_vitals(self, make_report):
        animations = [AnimationRecord(id="1", name="grow", bottleneck_hint="layout")]
        report = make_report(
            animation_metrics=AnimationMetrics(
                animations=animations,
                frame_events_per_sec=series("Frame Events", "events/s"),
                total_animations=1,
            ),
            web_vitals=WebVitals(cls=0.25, tbt_ms=450),
        )
        suggestions = {s.title: s for s in build_suggestions(report)}
        assert set(suggestions) == {"Layout-triggering animations", "Layout shifts", "High total blocking time"}
        assert suggestions["High total blocking time"].severity == "critical"

    def test_sustained_cpu_only_when_passed(self, make_report):
        report = make_report()
        assert build_suggestions(report) == []
        titles = [s.title for s in build_suggestions(report, sustained_cpu_ms=8000)]
        assert titles == ["High CPU usage"]


# =============================================================================
# Timeline Lookup Tests
# =============================================================================

class TestTimelineLookups:
    """Tests for vitals_at_time and closest_spike_frame."""

    def test_vitals_at_time(self, make_report):
        report = make_report(
            fps_series=series("FPS", "fps", [(0, 60), (5, 30), (10, 55)]),
            memory_series=series("JS Heap", "MB", [(0, 12), (10, 14)]),
        )
        values = vitals_at_time(report, 4.2)
        assert values["fps"] == 30
        assert values["js_heap_mb"] == 12
        assert values["gpu_busy_ms"] is None

    def test_closest_spike_frame(self, make_report):
        frames = [
            SpikeFrame(time_sec=2, value=20, screenshot_time_sec=2.1, image_data_url="data:,"),
            SpikeFrame(time_sec=8, value=15, screenshot_time_sec=7.9, image_data_url="data:,"),
        ]
        report = make_report(spike_frames=frames)
        assert closest_spike_frame(report, 6.5).time_sec == 8
        assert closest_spike_frame(make_report(), 6.5) is None
