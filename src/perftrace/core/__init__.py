"""Core modules for perftrace."""

from perftrace.core.config import (
    ALLOWED_THROTTLE_RATES,
    Config,
    ReconcileSettings,
    load_environment,
)

__all__ = [
    "ALLOWED_THROTTLE_RATES",
    "Config",
    "ReconcileSettings",
    "load_environment",
]
