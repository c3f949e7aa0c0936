"""
Artifact and candidate records shared by the store and the arbiter.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path


class Outcome(Enum):
    """Fate of a candidate."""
    PENDING = auto()
    ACCEPTED = auto()
    REJECTED = auto()
    STALE = auto()


@dataclass(frozen=True)
class Artifact:
    """One generation of the test case under reduction."""
    path: Path
    generation: int
    size: int
    digest: str

    @classmethod
    def from_file(cls, path: Path, generation: int) -> 'Artifact':
        """Describe the current contents of path as the given generation."""
        data = path.read_bytes()
        return cls(
            path=path,
            generation=generation,
            size=len(data),
            digest=file_digest(data),
        )


@dataclass
class Candidate:
    """A proposed replacement produced by one session for one generation."""
    session_id: int
    generation: int
    path: Path
    size: int = 0
    digest: str = ""
    outcome: Outcome = Outcome.PENDING

    # Set once the predicate has been consulted
    interesting: bool = False
    judged: bool = False

    def load(self) -> None:
        """Record size and digest of the materialized candidate."""
        data = self.path.read_bytes()
        self.size = len(data)
        self.digest = file_digest(data)

    def improves_on(self, baseline: Artifact, allow_equal_size: bool = False) -> bool:
        """Whether accepting this candidate would be a valid transition."""
        if self.digest == baseline.digest:
            return False
        if allow_equal_size:
            return self.size <= baseline.size
        return self.size < baseline.size


def file_digest(data: bytes) -> str:
    """Content digest used to tell generations apart."""
    return hashlib.sha256(data).hexdigest()
