"""Custom exceptions for trialflow."""


class TrialflowError(Exception):
    """Base exception for all trialflow errors."""

    pass


# =============================================================================
# Trial Document Exceptions
# =============================================================================


class SpecificationError(TrialflowError):
    """Raised when a trial document cannot be parsed at all."""

    def __init__(self, message: str, payload_preview: str | None = None):
        self.payload_preview = payload_preview
        super().__init__(message)


class InvalidTrialNodeError(TrialflowError):
    """Raised when a single trial node fails validation."""

    def __init__(self, node_id: str | None, reason: str):
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"Invalid trial node '{node_id or '<missing id>'}': {reason}")


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(TrialflowError):
    """Base exception for experiment server errors."""

    pass


class RequestFailedError(GatewayError):
    """Raised when a request fails in a way that may succeed on retry."""

    def __init__(self, url: str, status_code: int | None = None, message: str | None = None):
        self.url = url
        self.status_code = status_code
        detail = message or (f"HTTP {status_code}" if status_code else "request failed")
        super().__init__(f"Request to {url} failed: {detail}")


class NonRetryableRequestError(GatewayError):
    """Raised for authorization and not-found responses."""

    def __init__(self, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Request to {url} rejected with HTTP {status_code}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class RetryExhaustedError(GatewayError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Retry exhausted after {attempts} attempts: {last_error}")


# =============================================================================
# Checkpoint Exceptions
# =============================================================================


class CheckpointError(TrialflowError):
    """Raised when a checkpoint cannot be read or written."""

    def __init__(self, participant_id: str, experiment_id: str, message: str):
        self.participant_id = participant_id
        self.experiment_id = experiment_id
        super().__init__(
            f"Checkpoint error for participant '{participant_id}' "
            f"in experiment '{experiment_id}': {message}"
        )
