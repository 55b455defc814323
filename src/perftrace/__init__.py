"""PerfTrace - Browser Performance Recorder

Records a live browser session on a URL and reconciles the Chrome trace,
periodic counter samples and in-page observations into one performance
report with frame rate, CPU, GPU, memory, DOM, layout, network, animation
and Web Vitals data.
"""

__version__ = "0.1.0"

# Import core functionality
from perftrace.core.config import Config, ReconcileSettings, load_environment
from perftrace.api.schemas.report import PerfReport
from perftrace.api.services.recording_service import RecordingService
from perftrace.api.services.trace.report_builder import build_report

# Import CLI entry point
from perftrace.cli import main

__all__ = [
    "__version__",
    "Config",
    "ReconcileSettings",
    "load_environment",
    "PerfReport",
    "RecordingService",
    "build_report",
    "main",
]
