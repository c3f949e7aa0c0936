"""
Execution module for parashrink.

Handles running the external predicate and driving reducer processes.
"""

from .oracle import PredicateOracle, PredicateResult
from .session import ReducerSession, SessionState
