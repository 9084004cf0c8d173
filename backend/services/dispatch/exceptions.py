"""Custom exceptions for the dispatch engine."""


class DispatchError(Exception):
    """Base class for dispatch errors surfaced to callers."""
    pass


class JobValidationError(DispatchError):
    """Raised when a job request is malformed (bad coordinates, unknown kind)."""
    pass


class NotFoundError(DispatchError):
    """Raised when a job or assignment cannot be found."""
    pass


class ConflictError(DispatchError):
    """Raised when an operation conflicts with the current state."""
    pass


class UnauthorizedResponseError(ConflictError):
    """Raised when a driver responds to an assignment they do not own."""
    pass


class AlreadyResolvedError(ConflictError):
    """Raised when an assignment is no longer pending."""
    pass


class NoCandidatesError(DispatchError):
    """Raised when a matching pass finds no eligible driver."""
    pass


class ExhaustedRetriesError(DispatchError):
    """Raised when a job ran out of reassignment attempts."""
    pass


class ScoringError(DispatchError):
    """Raised when a single driver record cannot be scored."""
    pass
