"""Utility modules for perftrace."""

from perftrace.utils.errors import (
    AlreadyRecordingError,
    InvalidInputError,
    NoActiveSessionError,
    NotAvailableError,
    PerfTraceError,
    RecordingStartError,
)

__all__ = [
    "PerfTraceError",
    "InvalidInputError",
    "AlreadyRecordingError",
    "NoActiveSessionError",
    "NotAvailableError",
    "RecordingStartError",
]
