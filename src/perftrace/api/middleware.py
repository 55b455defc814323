"""Error handling middleware for FastAPI."""

from fastapi import Request
from fastapi.responses import JSONResponse

from perftrace.utils.errors import (
    AlreadyRecordingError,
    InvalidInputError,
    NoActiveSessionError,
    NotAvailableError,
    RecordingStartError,
)


async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    """Handle invalid URL or throttle rate errors.

    Args:
        request: FastAPI request
        exc: Exception instance

    Returns:
        JSON error response
    """
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_input",
            "message": str(exc),
            "value": repr(exc.value),
        },
    )


async def already_recording_handler(request: Request, exc: AlreadyRecordingError) -> JSONResponse:
    """Handle a start request while a session is active."""
    return JSONResponse(
        status_code=409,
        content={
            "error": "already_recording",
            "message": str(exc),
            "url": exc.url,
        },
    )


async def no_active_session_handler(request: Request, exc: NoActiveSessionError) -> JSONResponse:
    """Handle a stop request without an active session."""
    return JSONResponse(
        status_code=409,
        content={
            "error": "no_active_session",
            "message": str(exc),
        },
    )


async def not_available_handler(request: Request, exc: NotAvailableError) -> JSONResponse:
    """Handle requests for artifacts that do not exist.

    Args:
        request: FastAPI request
        exc: Exception instance

    Returns:
        JSON error response
    """
    return JSONResponse(
        status_code=404,
        content={
            "error": "not_available",
            "message": str(exc),
            "resource": exc.resource,
        },
    )


async def recording_start_handler(request: Request, exc: RecordingStartError) -> JSONResponse:
    """Handle browser launch or navigation failures.

    Args:
        request: FastAPI request
        exc: Exception instance

    Returns:
        JSON error response
    """
    return JSONResponse(
        status_code=502,
        content={
            "error": "recording_start_failed",
            "message": f"Failed to start recording for {exc.url}",
            "url": exc.url,
            "details": str(exc.original_error),
        },
    )


def register_exception_handlers(app):
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(InvalidInputError, invalid_input_handler)
    app.add_exception_handler(AlreadyRecordingError, already_recording_handler)
    app.add_exception_handler(NoActiveSessionError, no_active_session_handler)
    app.add_exception_handler(NotAvailableError, not_available_handler)
    app.add_exception_handler(RecordingStartError, recording_start_handler)
