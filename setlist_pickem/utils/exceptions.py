"""
Exception hierarchy for the scoring engine.

Transient store failures, feed failures, integrity misses and configuration
errors are kept apart so callers can isolate the first three and fail loudly
on the last.
"""


class PickemError(Exception):
    """Base class for all application errors"""


class StoreUnavailableError(PickemError):
    """Database still unreachable after every retry attempt failed"""

    def __init__(self, operation_name, attempts, cause=None):
        self.operation_name = operation_name
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"{operation_name} failed after {attempts} attempt(s): "
            f"{type(cause).__name__ if cause else 'unknown error'}"
        )


class SetlistFeedError(PickemError):
    """Setlist feed unreachable, malformed, or reported an error"""


class NotFoundError(PickemError):
    """Requested show, submission or tour does not exist"""

    def __init__(self, resource, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class DuplicateAwardError(PickemError):
    """User already holds the achievement"""


class ConfigurationError(PickemError):
    """Required configuration is missing or invalid"""


class TimezoneResolutionError(ConfigurationError):
    """No usable timezone could be derived for a show"""


class ScoringConfigError(ConfigurationError):
    """Point weight table is missing an entry for a pick category"""


class InvalidTransitionError(PickemError):
    """Tour status change not allowed from the current state"""

    def __init__(self, tour_name, current, target, hint=None):
        self.current = current
        self.target = target
        message = f"Cannot move tour '{tour_name}' from {current} to {target}"
        if hint:
            message = f"{message}: {hint}"
        super().__init__(message)


class PickValidationError(PickemError):
    """Picks do not form one opener, one encore and eleven distinct general songs"""


class SubmissionClosedError(PickemError):
    """Show has started or its tour is not taking picks"""

    def __init__(self, show_id, reason):
        self.show_id = show_id
        self.reason = reason
        super().__init__(f"Submissions for show {show_id} are closed: {reason}")
