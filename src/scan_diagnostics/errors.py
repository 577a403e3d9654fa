"""Error types raised by the diagnostics pipeline."""


class ScanDiagnosticsError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(ScanDiagnosticsError):
    """Invalid batching, retry or session input parameters."""


class ConversionError(ScanDiagnosticsError):
    """A single image could not be converted to a raster image."""

    def __init__(self, filename: str, message: str) -> None:
        super().__init__(f"{filename}: {message}")
        self.filename = filename
        self.message = message


class AnalysisTransientError(ScanDiagnosticsError):
    """The analysis service failed; the call may be retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is None:
            return message
        return f"{self.status_code}: {message}"


class InvalidTransitionError(ScanDiagnosticsError):
    """A session status change would move backwards or leave a terminal state."""


class SessionNotFoundError(ScanDiagnosticsError):
    """No session exists for the requested id."""


class SessionBusyError(ScanDiagnosticsError):
    """Another worker holds a live lease on the session."""
