"""
Custom Exception Classes for AlertAigua

Hierarchical exception structure shared by the poller, the alarm engine
and the notification collaborators. Nothing here is process-fatal: every
error is either retried, counted, or logged and isolated.
"""


class AlertAiguaError(Exception):
    """Base exception for all AlertAigua errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigurationError(AlertAiguaError):
    """Required configuration missing or invalid (fatal to the current cycle only)"""

    def __init__(self, message: str):
        super().__init__(f"Configuration Error: {message}", recoverable=True)


class TransportError(AlertAiguaError):
    """Network or timeout failure talking to an upstream service"""

    def __init__(self, message: str, host: str | None = None):
        self.host = host
        super().__init__(f"Transport Error: {message}", recoverable=True)


class NetworkError(TransportError):
    """Sensor telemetry request failed at the transport or HTTP level"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, host)


class MalformedDataError(AlertAiguaError):
    """Upstream data has an unexpected shape or type"""

    def __init__(self, message: str, payload: str | None = None):
        self.payload = payload
        super().__init__(f"Malformed Data: {message}", recoverable=True)


class MalformedResponseError(MalformedDataError):
    """Sensor telemetry response failed structural validation"""

    def __init__(self, message: str, payload: object = None):
        excerpt = None
        if payload is not None:
            excerpt = repr(payload)[:200]
        super().__init__(message, excerpt)


class PersistenceError(AlertAiguaError):
    """Subscriber store read/write failure"""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        subscriber_id: str | None = None,
    ):
        self.operation = operation
        self.subscriber_id = subscriber_id
        super().__init__(f"Persistence Error: {message}", recoverable=True)


class NotificationError(AlertAiguaError):
    """Push notification could not be delivered"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        kind: str | None = None,
    ):
        self.device_id = device_id
        self.kind = kind
        super().__init__(f"Notification Error: {message}", recoverable=True)


# Errors the retry controller is allowed to swallow and retry
RETRYABLE_ERRORS = (TransportError, MalformedDataError)
