"""Performance report Pydantic schemas.

Field names are snake_case in Python and camelCase on the wire, so a report
serialized with ``model_dump(by_alias=True)`` matches what the dashboard reads.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serializing field names in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MetricPoint(CamelModel):
    """A single sample on a metric timeline."""

    time_sec: float = Field(..., ge=0, description="Seconds since session start")
    value: float


class MetricSeries(CamelModel):
    """Chronological series of points with display metadata."""

    label: str
    unit: str
    points: list[MetricPoint] = Field(default_factory=list)

    @property
    def point_values(self) -> list[float]:
        return [p.value for p in self.points]


class LayoutMetrics(CamelModel):
    """Layout and paint totals."""

    layout_count: int = 0
    paint_count: int = 0
    layout_time_ms: float = 0.0
    paint_time_ms: float = 0.0


class LongTask(CamelModel):
    """A main-thread task longer than 50ms."""

    name: str
    duration_ms: float
    start_sec: float


class LongTaskSummary(CamelModel):
    """Long task totals with the five slowest tasks."""

    count: int = 0
    total_time_ms: float = 0.0
    top_tasks: list[LongTask] = Field(default_factory=list)


class NetworkRequest(CamelModel):
    """One network request observed during the session."""

    url: str
    method: str = "GET"
    status: Optional[int] = None
    resource_type: Optional[str] = None
    transfer_bytes: Optional[float] = None
    duration_ms: Optional[float] = None


class NetworkSummary(CamelModel):
    """Aggregate network activity."""

    requests: int = 0
    total_bytes: float = 0.0
    average_latency_ms: float = 0.0


class RenderBreakdown(CamelModel):
    """Time spent per render phase."""

    script_ms: float = 0.0
    layout_ms: float = 0.0
    raster_ms: float = 0.0
    composite_ms: float = 0.0


class WebglMetrics(CamelModel):
    """WebGL event counts."""

    draw_calls: int = 0
    shader_compiles: int = 0
    other_events: int = 0


BottleneckHint = Literal["layout", "paint", "compositor"]


class AnimationRecord(CamelModel):
    """An animation that started during the session."""

    id: str
    name: str = ""
    kind: str = "unknown"
    start_time_sec: Optional[float] = None
    duration_ms: Optional[float] = None
    delay_ms: Optional[float] = None
    animated_properties: Optional[list[str]] = None
    bottleneck_hint: Optional[BottleneckHint] = None


class AnimationMetrics(CamelModel):
    """Animations plus the frame-event rate derived from the trace."""

    animations: list[AnimationRecord] = Field(default_factory=list)
    frame_events_per_sec: MetricSeries
    total_animations: int = 0


class WebVitals(CamelModel):
    """Load and stability metrics."""

    fcp_ms: Optional[float] = None
    lcp_ms: Optional[float] = None
    cls: Optional[float] = None
    tbt_ms: float = 0.0
    long_task_count: int = 0
    long_task_total_ms: float = 0.0


class SpikeFrame(CamelModel):
    """Screenshot captured closest to a low frame-rate sample."""

    time_sec: float
    value: float
    screenshot_time_sec: float
    image_data_url: str


class VideoRef(CamelModel):
    """Where the session recording can be fetched."""

    url: str
    format: str = "webm"


class Suggestion(CamelModel):
    """A rule-based bottleneck suggestion."""

    title: str
    detail: str
    severity: Literal["info", "warning", "critical"] = "warning"


class PerfReport(CamelModel):
    """Consolidated report produced once per recording session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    started_at: str
    stopped_at: str
    duration_ms: float
    fps_series: MetricSeries
    cpu_series: MetricSeries
    gpu_series: MetricSeries
    memory_series: MetricSeries
    dom_nodes_series: MetricSeries
    layout_metrics: LayoutMetrics
    long_tasks: LongTaskSummary
    network_summary: NetworkSummary
    network_requests: list[NetworkRequest] = Field(default_factory=list)
    render_breakdown: RenderBreakdown
    webgl_metrics: WebglMetrics
    animation_metrics: AnimationMetrics
    web_vitals: WebVitals
    spike_frames: list[SpikeFrame] = Field(default_factory=list)
    video: Optional[VideoRef] = None
    suggestions: list[Suggestion] = Field(default_factory=list)

    @property
    def duration_sec(self) -> float:
        return self.duration_ms / 1000
