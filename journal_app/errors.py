"""Exceptions raised by the capture and analysis pipeline."""


class JournalError(Exception):
    """Base exception for pipeline failures surfaced to the user."""

    pass


class DeviceUnavailable(JournalError):
    """Microphone could not be acquired (permission denied or no device)."""

    pass


class TransportFailure(JournalError):
    """Network or service error while talking to the analysis service."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyResponse(JournalError):
    """Analysis service answered without any payload."""

    pass


class MalformedResponse(JournalError):
    """Payload is not valid JSON or misses a required field.

    ``field`` holds the dotted path of the offending field when known.
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NoAudioReturned(JournalError):
    """Speech synthesis response carried no audio payload."""

    pass
