"""Error types for the timed media exchange.

Adapter failures are mapped onto this hierarchy by the exchange session
before they reach the sequencer or the surrounding test flow.
"""


class ExchangeError(Exception):
    """Base exception for exchange-related errors."""

    pass


class DeviceDeniedError(ExchangeError):
    """Raised when microphone access is refused."""

    def __init__(self, message: str, device: str | None = None) -> None:
        """Initialize device error.

        Args:
            message: Error message.
            device: Name of the device that was requested, if known.
        """
        super().__init__(message)
        self.device = device


class DeviceUnavailableError(DeviceDeniedError):
    """Raised when no usable microphone exists or it was lost mid-recording."""

    pass


class PlaybackFailureError(ExchangeError):
    """Raised when a prompt could not be played."""

    def __init__(self, message: str, resource: str | None = None) -> None:
        """Initialize playback error.

        Args:
            message: Error message.
            resource: Prompt locator that failed, if known.
        """
        super().__init__(message)
        self.resource = resource


class SubmissionFailureError(ExchangeError):
    """Raised when a recording was not accepted by the submission channel."""

    def __init__(self, message: str, question_id: str | None = None) -> None:
        """Initialize submission error.

        Args:
            message: Error message.
            question_id: Question the artifact belonged to.
        """
        super().__init__(message)
        self.question_id = question_id


class ProtocolMisuseError(ExchangeError, RuntimeError):
    """Raised when a component is driven out of order (programming error)."""

    pass


class AdvanceBlockedError(ProtocolMisuseError):
    """Raised when the sequencer is asked to move past an unfinished question."""

    pass


class QuestionSourceError(ExchangeError):
    """Raised when questions cannot be fetched or parsed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize source error.

        Args:
            message: Error message.
            status_code: HTTP status code if available.
        """
        super().__init__(message)
        self.status_code = status_code


class NoQuestionsAvailableError(QuestionSourceError):
    """Raised when a section has no questions to administer."""

    pass


__all__ = [
    "AdvanceBlockedError",
    "DeviceDeniedError",
    "DeviceUnavailableError",
    "ExchangeError",
    "NoQuestionsAvailableError",
    "PlaybackFailureError",
    "ProtocolMisuseError",
    "QuestionSourceError",
    "SubmissionFailureError",
]
