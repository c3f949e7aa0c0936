"""
Error kinds raised during a reduction run.

Session errors are recovered by retiring the offending session. Everything
else that derives from ReductionError, except PredicateTimeout, aborts the
run.
"""

from typing import Optional


class ReductionError(RuntimeError):
    """Base class for reduction errors."""

    component = "parashrink"

    def __init__(self, message: str, component: Optional[str] = None):
        super().__init__(message)
        if component is not None:
            self.component = component


class SessionError(ReductionError):
    """A reducer session broke its contract; the session is retired."""

    component = "reducer session"


class ProtocolViolation(SessionError):
    """Malformed or out-of-order signal from a reducer process."""


class ChannelBroken(SessionError):
    """Reducer process exited unexpectedly in the middle of a request."""


class PredicateTimeout(ReductionError):
    """Predicate exceeded its time bound (treated as uninteresting)."""

    component = "predicate oracle"


class PredicateLaunchFailure(ReductionError):
    """Predicate process could not be started."""

    component = "predicate oracle"


class ArtifactIOError(ReductionError):
    """Temp allocation, cleanup, backup or replace failed."""

    component = "artifact store"


class InitialNotInteresting(ReductionError):
    """The unreduced test case does not satisfy the predicate."""

    component = "orchestrator"
