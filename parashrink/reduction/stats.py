"""
Statistics gathered during a reduction run.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass
class ReducerStats:
    """Per-reducer outcome counters."""
    name: str

    # Candidates that became a new generation
    accepted: int = 0

    # Interesting, but another candidate won the generation
    interesting: int = 0

    # Judged and found not interesting
    not_interesting: int = 0

    # Not smaller than the baseline; rejected without judging
    not_smaller: int = 0

    # Superseded before (or while) being judged
    stale: int = 0

    # Times the reducer ran dry on the current generation
    exhausted: int = 0

    failed: bool = False


@dataclass
class ReductionStats:
    """Statistics from a reduction run."""
    original_size: int = 0
    final_size: int = 0
    generations: int = 0
    oracle_calls: int = 0
    oracle_timeouts: int = 0
    sessions_failed: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    reducers: Dict[int, ReducerStats] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.start_time is None:
            return 0
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    @property
    def percent_reduced(self) -> float:
        """Share of the original size removed, in percent."""
        if self.original_size == 0:
            return 100.0
        return (self.original_size - self.final_size) / self.original_size * 100.0

    def reducer(self, session_id: int, name: str = "") -> ReducerStats:
        """Counters for one session, created on first use."""
        if session_id not in self.reducers:
            self.reducers[session_id] = ReducerStats(name=name)
        return self.reducers[session_id]
