"""
Reduction module for parashrink.

Owns the test case on disk and arbitrates between competing candidates.
"""

from .candidate import Artifact, Candidate, Outcome
from .store import ArtifactStore
from .stats import ReductionStats, ReducerStats
from .arbiter import CandidateArbiter, SessionReport
