"""Custom exception classes for the recording engine."""


class PerfTraceError(Exception):
    """Base exception for perftrace."""

    pass


class InvalidInputError(PerfTraceError):
    """Raised when a caller supplies an unusable URL or throttle rate."""

    def __init__(self, value: object, message: str | None = None):
        self.value = value
        if message is None:
            message = f"Invalid input: {value!r}"
        super().__init__(message)


class AlreadyRecordingError(PerfTraceError):
    """Raised when a session is started while another one is active."""

    def __init__(self, url: str | None = None):
        self.url = url
        message = "A recording session is already running."
        if url:
            message = f"A recording session is already running for {url}."
        super().__init__(message)


class NoActiveSessionError(PerfTraceError):
    """Raised when stop is requested without an active session."""

    def __init__(self):
        super().__init__("No active session to stop.")


class NotAvailableError(PerfTraceError):
    """Raised when a requested artifact (e.g. the session video) does not exist."""

    def __init__(self, resource: str, message: str | None = None):
        self.resource = resource
        if message is None:
            message = f"{resource.capitalize()} not available."
        super().__init__(message)


class RecordingStartError(PerfTraceError):
    """Raised when the browser could not be launched or navigated."""

    def __init__(self, url: str, original_error: Exception):
        self.url = url
        self.original_error = original_error
        message = (
            f"Failed to start recording for '{url}'.\n"
            f"Error: {str(original_error)}\n\n"
            f"Please check:\n"
            f"1. Chromium is installed (playwright install chromium)\n"
            f"2. The URL is reachable from this machine\n"
            f"3. PERFTRACE_HEADLESS=true when no display is available"
        )
        super().__init__(message)
