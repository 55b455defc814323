"""Recording API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Response

from perftrace.api.dependencies import get_recording_service
from perftrace.api.schemas.record import LiveMetrics, SessionStatus, StartRecordingRequest
from perftrace.api.schemas.report import PerfReport
from perftrace.api.services.recording_service import RecordingService

router = APIRouter(prefix="/record", tags=["record"])


@router.post("/start", response_model=SessionStatus, response_model_by_alias=True)
async def start_recording(
    request: StartRecordingRequest,
    recording_service: RecordingService = Depends(get_recording_service),
):
    """Open a browser on the URL and start recording.

    Args:
        request: URL and CPU throttle rate

    Returns:
        Session status with the normalized URL
    """
    return await recording_service.start_session(request.url, request.cpu_throttle_rate)


@router.post("/stop", response_model=PerfReport, response_model_by_alias=True)
async def stop_recording(
    recording_service: RecordingService = Depends(get_recording_service),
):
    """Stop the active session and return its performance report."""
    return await recording_service.stop_session()


@router.get("/live", response_model=Optional[LiveMetrics], response_model_by_alias=True)
async def live_metrics(
    recording_service: RecordingService = Depends(get_recording_service),
):
    """Latest live metrics, or null when nothing is recording."""
    return await recording_service.get_live_metrics()


@router.get("/video")
def latest_video(
    recording_service: RecordingService = Depends(get_recording_service),
):
    """Download the video of the last finished session."""
    data, mime_type = recording_service.get_latest_video()
    return Response(
        content=data,
        media_type=mime_type,
        headers={"Cache-Control": "no-store"},
    )
