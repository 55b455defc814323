"""End-to-end tests for report assembly from a session capture."""

from unittest.mock import patch

import pytest

from perftrace.api.schemas.report import NetworkRequest, VideoRef
from perftrace.api.services.capture import (
    CollectorSnapshot,
    InPageAnimation,
    InPageLongTask,
    PerfSample,
    Screenshot,
    SessionCapture,
)
from perftrace.api.services.trace.decoder import TraceEvent
from perftrace.api.services.trace.report_builder import build_report

BASE_TS = 1_000_000_000
STARTED_AT = 1_700_000_000.0


def trace_events():
    """Ten seconds of microsecond events: 60fps frames, 5ms tasks, one long task."""
    events = []
    for i in range(600):
        events.append(TraceEvent(name="DrawFrame", cat="cc", ph="I", ts=BASE_TS + i * 16_667, dur=None))
    for i in range(100):
        events.append(TraceEvent(name="RunTask", cat="toplevel", ph="X", ts=BASE_TS + i * 100_000, dur=5_000))
    events.append(TraceEvent(name="RunTask", cat="toplevel", ph="X", ts=BASE_TS + 2_050_000, dur=80_000))
    events.append(TraceEvent(name="Layout", cat="devtools.timeline", ph="X", ts=BASE_TS + 3_000_000, dur=4_000))
    events.append(TraceEvent(name="thread_name", cat="__metadata", ph="M", ts=0, dur=None))
    return events


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def snapshot():
    return CollectorSnapshot(
        fps_points=[(float(t), 58.0) for t in range(1, 10)],
        long_tasks=[InPageLongTask(start_ms=2050, duration_ms=80)],
        fcp_ms=500.0,
        lcp_ms=900.0,
        cls=0.01,
    )


@pytest.fixture
def capture(snapshot):
    return SessionCapture(
        started_at=STARTED_AT,
        stopped_at=STARTED_AT + 10.0,
        events=trace_events(),
        samples=[
            PerfSample(time_sec=2.0 * k, cpu_busy_ms=100, script_ms=20, layout_ms=5, js_heap_mb=10 + k, dom_nodes=500)
            for k in range(1, 5)
        ],
        snapshots=[snapshot],
        screenshots=[Screenshot(time_sec=5.0, data=b"jpeg")],
        network_requests=[
            NetworkRequest(url="https://example.com/", status=200, transfer_bytes=1000, duration_ms=50),
        ],
        video=VideoRef(url="/api/v1/record/video"),
    )


# =============================================================================
# Trace-backed Report Tests
# =============================================================================

class TestBuildReportWithTrace:
    """Tests for a session with a healthy trace."""

    def test_duration_is_wall_clock(self, capture):
        report = build_report(capture)
        assert report.duration_ms == 10_000
        assert report.started_at.startswith("2023-11-14T22:13:20")

    def test_every_series_spans_session(self, capture):
        report = build_report(capture)
        for s in (report.fps_series, report.cpu_series, report.memory_series, report.dom_nodes_series):
            assert s.points, s.label
            times = [p.time_sec for p in s.points]
            assert times == sorted(times)
            assert times[0] == 0.0
            assert times[-1] == 10.0

    def test_fps_from_trace(self, capture):
        report = build_report(capture)
        assert all(59 <= v <= 61 for v in report.fps_series.point_values[:10])

    def test_gpu_without_data_is_empty(self, capture):
        assert build_report(capture).gpu_series.points == []

    def test_memory_falls_back_to_samples(self, capture):
        report = build_report(capture)
        assert report.memory_series.points[0].value == 11
        assert report.memory_series.points[-1].value == 14

    def test_totals_and_vitals(self, capture):
        report = build_report(capture)
        assert report.long_tasks.count == 1
        assert report.long_tasks.top_tasks[0].duration_ms == pytest.approx(80.0)
        assert report.layout_metrics.layout_count == 1
        assert report.web_vitals.tbt_ms == pytest.approx(30.0)
        assert report.web_vitals.fcp_ms == 500.0
        assert report.network_summary.requests == 1
        assert report.network_summary.total_bytes == 1000
        assert report.video.url == "/api/v1/record/video"

    def test_spike_frames_and_suggestions(self, capture):
        report = build_report(capture)
        assert len(report.spike_frames) == 5
        assert all(f.screenshot_time_sec == 5.0 for f in report.spike_frames)
        titles = [s.title for s in report.suggestions]
        assert "Memory growth" in titles
        assert "Low frame rate" not in titles
        assert "High CPU usage" not in titles

    def test_camel_case_serialization(self, capture):
        payload = build_report(capture).model_dump(by_alias=True)
        assert "fpsSeries" in payload
        assert "timeSec" in payload["fpsSeries"]["points"][0]
        assert "tbtMs" in payload["webVitals"]


# =============================================================================
# Fallback Report Tests
# =============================================================================

class TestBuildReportFallback:
    """Tests for sessions whose trace is missing or broken."""

    @pytest.fixture
    def traceless(self, capture):
        capture.events = []
        capture.samples = [
            PerfSample(time_sec=2.0 * k, cpu_busy_ms=1800, script_ms=300, layout_ms=40, js_heap_mb=12, dom_nodes=400)
            for k in range(1, 6)
        ]
        return capture

    def test_series_from_samples_and_collector(self, traceless):
        report = build_report(traceless)
        assert report.fps_series.points[0].time_sec == 0.0
        assert report.fps_series.points[-1].time_sec == 10.0
        assert report.fps_series.points[1].value == 58.0
        assert report.cpu_series.points[-1].value == 1800

    def test_totals_from_samples(self, traceless):
        report = build_report(traceless)
        assert report.layout_metrics.layout_time_ms == 200
        assert report.render_breakdown.script_ms == 1500
        assert report.long_tasks.count == 1
        assert report.long_tasks.top_tasks[0].start_sec == pytest.approx(2.05)

    def test_sustained_cpu_rule(self, traceless):
        titles = [s.title for s in build_report(traceless).suggestions]
        assert "High CPU usage" in titles

    def test_in_page_animations_used(self, traceless, snapshot):
        snapshot.animations = [InPageAnimation(name="width", kind="CSSTransition", time_sec=3.0, property="width")]
        report = build_report(traceless)
        assert report.animation_metrics.total_animations == 1
        assert report.animation_metrics.animations[0].bottleneck_hint == "layout"
        assert "Layout-triggering animations" in [s.title for s in report.suggestions]

    def test_extraction_failure_still_builds(self, capture):
        with patch(
            "perftrace.api.services.trace.report_builder.extract_trace",
            side_effect=RuntimeError("bad trace"),
        ):
            report = build_report(capture)
        assert report.duration_ms == 10_000
        assert report.fps_series.points[1].value == 58.0

    def test_no_snapshot_gives_zero_tbt(self, traceless):
        traceless.snapshots = []
        report = build_report(traceless)
        assert report.web_vitals.tbt_ms == 0
        assert report.web_vitals.fcp_ms is None


# =============================================================================
# Frame-rate Source Selection Tests
# =============================================================================

class TestFrameRateSource:
    """Tests for picking the frame-rate source across a whole report."""

    def test_partial_trace_falls_back_to_in_page_fps(self, capture):
        # Five evenly spaced frame bursts in the first 3s; tasks keep the trace span at 10s
        events = []
        for k in range(5):
            burst = BASE_TS + k * 750_000
            events.extend(
                TraceEvent(name="DrawFrame", cat="cc", ph="I", ts=burst + i * 1_000, dur=None) for i in range(10)
            )
        events.extend(
            TraceEvent(name="RunTask", cat="toplevel", ph="X", ts=BASE_TS + i * 500_000, dur=5_000) for i in range(21)
        )
        capture.events = events

        report = build_report(capture)

        times = [p.time_sec for p in report.fps_series.points]
        assert times[0] == 0.0
        assert times[-1] == 10.0
        assert times == sorted(times)
        assert set(report.fps_series.point_values) == {58.0}

    def test_trace_running_past_session_end(self, capture):
        # 60fps frames for 20s against a 10s wall clock
        capture.events = [
            TraceEvent(name="DrawFrame", cat="cc", ph="I", ts=BASE_TS + i * 16_667, dur=None)
            for i in range(1200)
        ]

        report = build_report(capture)

        values = report.fps_series.point_values
        times = [p.time_sec for p in report.fps_series.points]
        assert max(values) <= 200
        assert all(59 <= v <= 61 for v in values)
        assert times[0] == 0.0
        assert times[-1] == 10.0
        assert all(t == int(t) for t in times)
