"""Recording control Pydantic schemas."""

from typing import Literal

from pydantic import Field

from perftrace.api.schemas.report import CamelModel


class StartRecordingRequest(CamelModel):
    """Request schema for starting a recording session."""

    url: str = Field(..., description="Page to record (http or https)")
    cpu_throttle_rate: int = Field(1, description="CPU slowdown multiplier (1, 4 or 6)")


class SessionStatus(CamelModel):
    """Response schema returned when a session starts."""

    status: Literal["recording"] = "recording"
    url: str


class LiveMetrics(CamelModel):
    """Snapshot of the running session for the live panel."""

    recording: Literal[True] = True
    elapsed_sec: float
    fps: float | None = None
    cpu_busy_ms: float | None = None
    js_heap_mb: float | None = None
    dom_nodes: float | None = None
