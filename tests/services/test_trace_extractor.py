"""Tests for trace extraction.

This module tests:
- Timestamp unit inference (microseconds vs milliseconds)
- Per-second buckets, long tasks and counters
- Network request correlation
- WebGL event classification
"""

import pytest

from perftrace.api.services.trace.decoder import TraceEvent
from perftrace.api.services.trace.extractor import (
    MICROSECONDS,
    MILLISECONDS,
    buckets_to_points,
    classify_webgl_event,
    extract_trace,
    infer_unit_divisor,
)

BASE_TS = 5_000_000_000


def event(name, ts, ph="X", dur=None, cat="devtools.timeline", **data):
    raw = {"name": name, "cat": cat, "ph": ph, "ts": ts}
    if dur is not None:
        raw["dur"] = dur
    if data:
        raw["args"] = {"data": data}
    return TraceEvent.from_dict(raw)


# =============================================================================
# Unit Inference Tests
# =============================================================================

class TestUnitInference:
    """Tests for infer_unit_divisor."""

    def test_microsecond_span(self):
        events = [event("Paint", BASE_TS), event("Paint", BASE_TS + 2_000_000)]
        assert infer_unit_divisor(events) == MICROSECONDS
        assert extract_trace(events).span_sec == pytest.approx(2.0)

    def test_millisecond_span(self):
        events = [event("Paint", 1_000), event("Paint", 3_000)]
        assert infer_unit_divisor(events) == MILLISECONDS
        assert extract_trace(events).span_sec == pytest.approx(2.0)

    def test_metadata_events_ignored(self):
        events = [event("thread_name", 0, ph="M"), event("Paint", 1_000), event("Paint", 3_000)]
        assert infer_unit_divisor(events) == MILLISECONDS

    def test_no_timestamps(self):
        assert infer_unit_divisor([]) == MICROSECONDS
        extraction = extract_trace([event("thread_name", 0, ph="M")])
        assert extraction.span_sec == 0.0
        assert extraction.fps_buckets == {}


# =============================================================================
# Extraction Tests
# =============================================================================

class TestExtractTrace:
    """Tests for extract_trace."""

    def test_long_task_threshold(self):
        events = [
            event("RunTask", BASE_TS, dur=60_000, cat="toplevel"),
            event("RunTask", BASE_TS + 500_000, dur=40_000, cat="toplevel"),
            event("Paint", BASE_TS + 3_000_000),
        ]
        extraction = extract_trace(events)

        assert len(extraction.long_tasks) == 1
        task = extraction.long_tasks[0]
        assert task.duration_ms == pytest.approx(60.0)
        assert task.start_sec == 0.0

    def test_cpu_buckets_sum_main_thread_time(self):
        events = [
            event("RunTask", BASE_TS, dur=10_000, cat="toplevel"),
            event("RunTask", BASE_TS + 200_000, dur=30_000, cat="toplevel"),
            event("RunTask", BASE_TS + 2_100_000, dur=5_000, cat="toplevel"),
        ]
        extraction = extract_trace(events)
        assert extraction.cpu_buckets == pytest.approx({0: 40.0, 2: 5.0})

    def test_frame_and_animation_buckets(self):
        events = [
            event("DrawFrame", BASE_TS, ph="I"),
            event("DrawFrame", BASE_TS + 500_000, ph="I"),
            event("DrawFrame", BASE_TS + 1_200_000, ph="I"),
            event("FireAnimationFrame", BASE_TS + 1_300_000, dur=1_000),
            event("Paint", BASE_TS + 2_500_000),
        ]
        extraction = extract_trace(events)
        assert buckets_to_points(extraction.fps_buckets) == [(0.0, 2), (1.0, 1)]
        assert extraction.animation_frame_buckets == {1: 1}

    def test_layout_paint_and_render_totals(self):
        events = [
            event("Layout", BASE_TS, dur=2_000),
            event("Layout", BASE_TS + 1_000, dur=3_000),
            event("Paint", BASE_TS + 2_000, dur=1_000),
            event("EvaluateScript", BASE_TS + 3_000, dur=4_000),
            event("RasterTask", BASE_TS + 4_000, dur=500),
            event("CompositeLayers", BASE_TS + 5_000, dur=700),
            event("Paint", BASE_TS + 2_000_000),
        ]
        extraction = extract_trace(events)
        assert extraction.layout_count == 2
        assert extraction.layout_time_ms == pytest.approx(5.0)
        assert extraction.paint_count == 2
        assert extraction.paint_time_ms == pytest.approx(1.0)
        assert extraction.script_ms == pytest.approx(4.0)
        assert extraction.raster_ms == pytest.approx(0.5)
        assert extraction.composite_ms == pytest.approx(0.7)

    def test_update_counters(self):
        events = [
            event("UpdateCounters", BASE_TS + 1_500_000, ph="I", jsHeapSizeUsed=20 * 1024 * 1024, nodes=300),
            event("UpdateCounters", BASE_TS, ph="I", jsHeapSizeUsed=10 * 1024 * 1024, nodes=100),
        ]
        extraction = extract_trace(events)
        assert extraction.memory_points == [(0.0, 10.0), (1.5, 20.0)]
        assert extraction.dom_points == [(0.0, 100.0), (1.5, 300.0)]

    def test_network_correlation(self):
        events = [
            event("ResourceSendRequest", BASE_TS, ph="I",
                  requestId="1", url="https://example.com/app.js", requestMethod="GET"),
            event("ResourceReceiveResponse", BASE_TS + 100_000, ph="I",
                  requestId="1", statusCode=200, mimeType="application/javascript"),
            event("ResourceFinish", BASE_TS + 250_000, ph="I", requestId="1", encodedDataLength=4096),
            event("ResourceSendRequest", BASE_TS + 2_000_000, ph="I",
                  requestId="2", url="https://example.com/pending.png"),
        ]
        extraction = extract_trace(events)

        assert len(extraction.network_requests) == 2
        done = extraction.network_requests[0]
        assert done.url == "https://example.com/app.js"
        assert done.status == 200
        assert done.transfer_bytes == 4096
        assert done.duration_ms == pytest.approx(250.0)
        assert extraction.network_requests[1].duration_ms is None

    def test_webgl_counts(self):
        events = [
            event("WebGL.drawArrays", BASE_TS),
            event("WebGL.compileShader", BASE_TS + 10),
            event("WebGL.bufferData", BASE_TS + 20),
            event("Paint", BASE_TS + 2_000_000),
        ]
        extraction = extract_trace(events)
        assert extraction.webgl_draw_calls == 1
        assert extraction.webgl_shader_compiles == 1
        assert extraction.webgl_other_events == 1


class TestClassifyWebglEvent:
    """Tests for classify_webgl_event."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("WebGLRenderingContext::drawElements", "draw"),
            ("WebGL.compileShader", "shader"),
            ("WebGL.texImage2D", "other"),
            ("Paint", None),
        ],
    )
    def test_classification(self, name, expected):
        assert classify_webgl_event(name) == expected
