"""Configuration and environment handling."""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# CPU throttle rates accepted by StartSession
ALLOWED_THROTTLE_RATES = (1, 4, 6)


@dataclass
class ReconcileSettings:
    """Heuristic thresholds used when choosing between trace and fallback series.

    Attributes:
        max_span_ratio: Trace span may differ from the wall-clock duration by at
            most this factor in either direction before the trace is distrusted
        min_buckets: Trace series needs more than this many distinct points
        min_coverage_ratio: Trace series must cover at least this share of the session
        max_fps_per_bucket: Any per-second frame count above this forces fallback
        ms_rescale_factor: Timestamps above factor * duration are treated as milliseconds
        extend_lead_sec: Series starting later than this are extended back to t=0
        extend_step_sec: Step used when extending a series forward to the end
    """

    max_span_ratio: float = 5.0
    min_buckets: int = 2
    min_coverage_ratio: float = 0.5
    max_fps_per_bucket: float = 200.0
    ms_rescale_factor: float = 1.5
    extend_lead_sec: float = 0.5
    extend_step_sec: float = 1.0

    @classmethod
    def from_env(cls) -> "ReconcileSettings":
        """Create ReconcileSettings from environment variables.

        Returns:
            ReconcileSettings instance with values from environment or defaults
        """
        return cls(
            max_span_ratio=float(os.getenv("PERFTRACE_MAX_SPAN_RATIO", "5.0")),
            min_buckets=int(os.getenv("PERFTRACE_MIN_TRACE_BUCKETS", "2")),
            min_coverage_ratio=float(os.getenv("PERFTRACE_MIN_COVERAGE_RATIO", "0.5")),
            max_fps_per_bucket=float(os.getenv("PERFTRACE_MAX_FPS_PER_BUCKET", "200")),
        )


@dataclass
class Config:
    """Configuration for perftrace.

    Attributes:
        headless: Launch Chromium without a window
        viewport_width: Viewport width enforced during recording
        viewport_height: Viewport height enforced during recording
        metrics_interval_sec: Period of the counter polling loop
        screenshot_interval_sec: Period of the screenshot loop
        max_screenshots: Screenshot cap per session
        viewport_interval_sec: Period of the viewport enforcement loop
        video_dir: Directory Playwright writes session videos into
        reconcile: Source selection thresholds
    """

    headless: bool = False
    viewport_width: int = 1365
    viewport_height: int = 768
    metrics_interval_sec: float = 2.0
    screenshot_interval_sec: float = 3.0
    max_screenshots: int = 12
    viewport_interval_sec: float = 2.0
    video_dir: str = field(default_factory=lambda: str(Path(tempfile.gettempdir()) / "perftrace-videos"))
    reconcile: ReconcileSettings = field(default_factory=ReconcileSettings)

    @classmethod
    def from_env(cls) -> "Config":
        """Create Config from environment variables.

        Returns:
            Config instance with values from environment or defaults
        """
        return cls(
            headless=os.getenv("PERFTRACE_HEADLESS", "false").lower() == "true",
            viewport_width=int(os.getenv("PERFTRACE_VIEWPORT_WIDTH", "1365")),
            viewport_height=int(os.getenv("PERFTRACE_VIEWPORT_HEIGHT", "768")),
            metrics_interval_sec=float(os.getenv("PERFTRACE_METRICS_INTERVAL", "2.0")),
            screenshot_interval_sec=float(os.getenv("PERFTRACE_SCREENSHOT_INTERVAL", "3.0")),
            max_screenshots=int(os.getenv("PERFTRACE_MAX_SCREENSHOTS", "12")),
            viewport_interval_sec=float(os.getenv("PERFTRACE_VIEWPORT_INTERVAL", "2.0")),
            video_dir=os.getenv("PERFTRACE_VIDEO_DIR")
            or str(Path(tempfile.gettempdir()) / "perftrace-videos"),
            reconcile=ReconcileSettings.from_env(),
        )

    @property
    def viewport(self) -> dict[str, int]:
        """Viewport size in the shape Playwright expects."""
        return {"width": self.viewport_width, "height": self.viewport_height}


def load_environment() -> None:
    """Load environment variables from .env file.

    Looks for .env file in current directory and parent directories.
    Silently succeeds if .env file is not found.
    """
    env_path = Path(".env")

    if env_path.exists():
        load_dotenv(env_path, override=True)
    else:
        # Try to find .env in parent directories
        load_dotenv(override=True)
