from typing import Any, Optional


class CineGenError(Exception):
    pass


class ConfigurationError(CineGenError):
    """A credential or required input is missing."""


class SubmissionError(CineGenError):
    """The provider rejected the job request or returned no task id."""


class GenerationError(CineGenError):
    """The provider reported a terminal failure for a task."""


class GenerationTimeoutError(CineGenError, TimeoutError):
    """The poll budget ran out before the task reached a terminal state."""


class JobCancelledError(CineGenError):
    pass


class AuthenticationError(CineGenError):
    """No session, or the session has expired. Re-login is required."""


class TransportError(CineGenError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientTransportError(TransportError):
    """Rate limited by the provider; retried by the transport."""


class SyncError(CineGenError):
    def __init__(self, message: str, report: Any = None):
        super().__init__(message)
        self.report = report
