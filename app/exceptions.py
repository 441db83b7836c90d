class PipelineError(Exception):
    """Base class for analysis pipeline failures."""


class InputError(PipelineError):
    """Raised when a trigger payload lacks the fields needed to locate a record."""


class DependencyError(PipelineError):
    """Raised when an external dependency (storage, provider, model) fails."""


class RateLimitError(DependencyError):
    """Raised when a provider answers a required call with a rate-limit marker."""


class StageValidationError(PipelineError):
    """Raised when an external response fails schema or domain validation."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class IllegalTransitionError(PipelineError):
    """Raised when a state transition is not part of the pipeline graph."""


class InsufficientCreditsError(Exception):
    """Raised when a user has no analysis credits left."""


class ProfileNotFoundError(Exception):
    """Raised when a user profile does not exist."""


class WebhookError(ValueError):
    """Raised when a billing webhook payload is invalid or cannot be applied."""
