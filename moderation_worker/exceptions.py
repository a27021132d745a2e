"""
Exception hierarchy for the moderation worker.

Job-scope errors (download, integrity, extraction) abort the job.
Frame-scope errors (classification) are absorbed by the scheduler.
Telemetry and cleanup errors are logged, never escalated.
"""


class ModerationError(Exception):
    """Base exception for moderation worker errors."""

    retryable = True


class DownloadError(ModerationError):
    """Raised when the source video cannot be fetched."""

    pass


class IntegrityError(ModerationError):
    """Raised when the bytes written to disk differ from the bytes fetched."""

    def __init__(self, written: int, expected: int):
        super().__init__(f"File size mismatch: wrote {written} bytes, expected {expected}")
        self.written = written
        self.expected = expected


class ExtractionError(ModerationError):
    """Raised when the external frame decoder fails."""

    pass


class StorageError(ModerationError):
    """Raised when an object storage operation fails."""

    pass


class ClassificationError(ModerationError):
    """Raised when the classification model call fails for a frame."""

    pass


class ClassificationTimeout(ClassificationError):
    """Raised when the classification model does not answer in time."""
    retryable = False

    def __init__(self, timeout_sec: float):
        super().__init__(f"Classification timed out after {timeout_sec:g}s")
        self.timeout_sec = timeout_sec


class StreamWriteError(ModerationError):
    """Raised when a progress event cannot be written to the output channel."""

    retryable = False


class CleanupError(ModerationError):
    """Raised when an artifact cannot be deleted."""

    retryable = False


class NestedStepError(ModerationError):
    """Raised when a step is started from inside another step."""

    retryable = False

    def __init__(self, outer: str, inner: str):
        super().__init__(f"Step '{inner}' was started inside step '{outer}'; steps must not be nested")
        self.outer = outer
        self.inner = inner


class JobStateError(ModerationError):
    """Raised when a job cannot be run from its persisted state."""

    retryable = False


class StreamTerminatedError(ModerationError):
    """Raised by the client when the stream closed without a terminal event."""

    retryable = False


class JobFailedError(ModerationError):
    """Raised by the client when the stream carried an error event."""

    retryable = False
