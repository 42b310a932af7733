"""Exception hierarchy for cancelflow.

Flow-level exceptions carry an ``error_code`` class attribute so callers can
map them onto the error taxonomy shown to the presentation layer.
"""


class CancelFlowError(Exception):
    """Base exception for all cancelflow errors."""

    error_code: str = "CANCELFLOW_ERROR"


class TransientError(CancelFlowError):
    """Retry-able errors such as network timeouts or temporary failures."""


class PermanentError(CancelFlowError):
    """Non-retry-able errors that require configuration or code changes."""


class ConfigurationError(PermanentError):
    """Invalid or missing configuration."""

    error_code = "CONFIGURATION_ERROR"


class StoreError(CancelFlowError):
    """The backing store rejected or failed an operation."""

    error_code = "STORE_ERROR"


class StoreUnavailable(StoreError, TransientError):  # noqa: N818
    """The backing store could not be reached, may succeed on retry."""

    error_code = "STORE_UNAVAILABLE"


class InitializationFailed(CancelFlowError):  # noqa: N818
    """Creating or resuming a cancellation session failed.

    Blocking: the wizard stays in its error state until a retry succeeds.
    """

    error_code = "INITIALIZATION_FAILED"


class InputRejected(CancelFlowError):  # noqa: N818
    """User input failed validation or sanitization.

    Only the submit action that carried the input is blocked.
    """

    error_code = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize InputRejected with the offending field.

        Args:
            message: Inline message suitable for re-prompting the user.
            field: Name of the rejected answer field, if known.
        """
        self.field = field
        super().__init__(message)


class InvalidTransition(CancelFlowError):  # noqa: N818
    """An event was sent that the current step does not accept."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, step: str, event: str) -> None:
        """Initialize InvalidTransition with the rejected step/event pair.

        Args:
            step: The step the wizard was on.
            event: The event that was not allowed.
        """
        self.step = step
        self.event = event
        super().__init__(f"Event '{event}' is not allowed from step '{step}'")


class StepUpdateFailed(CancelFlowError):  # noqa: N818
    """Persisting the answers of a step failed. Logged, never blocking."""

    error_code = "STEP_UPDATE_FAILED"


class FinalizationFailed(CancelFlowError):  # noqa: N818
    """Recording the terminal outcome failed. Logged, never blocking."""

    error_code = "FINALIZATION_FAILED"
