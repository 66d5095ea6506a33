"""Assistant error types."""


class AssistantError(Exception):
    """Base class for assistant failures surfaced to the user."""


class ApplyPreconditionError(AssistantError):
    """An action cannot be committed in its current state."""

    def __init__(self, action_id: str, message: str) -> None:
        super().__init__(message)
        self.action_id = action_id
        self.message = message


class ApplyInProgressError(AssistantError):
    """Another apply flow is already running for the session."""
