"""
Errors that propagate to the immediate caller of the matching engine.

Absorbed conditions (no candidates this round, one rejection while sibling offers
are still pending) are NOT errors; they drive the state machines onward.
"""


class MatchingError(Exception):
    """Base class for matching engine failures."""
    pass


class AssignmentNotFoundError(MatchingError):
    """Raised when an assignment id does not exist."""
    pass


class DriverNotFoundError(MatchingError):
    """Raised when a driver state update names an unknown driver."""
    pass


class AuthorizationError(MatchingError):
    """Raised when a driver responds to an offer made to somebody else. No state is mutated."""
    pass


class AssignmentConflictError(MatchingError):
    """
    Raised when an offer is no longer available: it is already terminal,
    a concurrent accept won the race, or the response timeout has elapsed.
    """
    pass


class InvalidResponseError(MatchingError):
    """Raised when a driver response is neither ACCEPTED nor REJECTED."""
    pass


class StoreError(MatchingError):
    """Infrastructure failure raised by a persistence implementation."""
    pass
