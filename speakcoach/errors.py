"""
Failure taxonomy shared by the recording pipeline and the progress engine.
"""


class CoachError(Exception):
    """Base class for all pipeline errors."""
    pass


class NotFoundError(CoachError):
    """A referenced recording, session or user does not exist."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class InvalidStateError(CoachError):
    """A status transition was requested from a state that does not allow it."""
    pass


class SubmissionValidationError(CoachError):
    """A submitted recording is malformed (empty audio reference, negative size...)."""
    pass


class AnalysisFailure(CoachError):
    """
    The analysis provider raised or returned an unusable result.

    `retryable` is True for transient causes (timeouts, network errors, 5xx)
    and False when the provider answered but the payload cannot be used.
    """

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class PersistenceFailure(CoachError):
    """A store write or commit failed."""
    pass
