"""
Reducer session: drives one long-lived reducer process.

Protocol (line oriented, over the process's stdin/stdout):
1. The reducer is started as ``command... <seed-path>``
2. We write one line holding the path the next candidate must be written to
3. The reducer writes the candidate, closes it, then writes one blank line
4. When it has nothing more to offer for its seed, the reducer exits with
   status 0 instead of answering

Any other exit, or a non-blank answer, is a protocol failure and retires
the session.
"""

import logging
import os
import subprocess
import threading
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional

from ..errors import ChannelBroken, ProtocolViolation, SessionError


logger = logging.getLogger('parashrink.execution')


class SessionState(Enum):
    """Lifecycle of a reducer session."""
    IDLE = auto()             # Process running, no request outstanding
    GENERATING = auto()       # Request written, waiting for the ready line
    AWAITING_RESULT = auto()  # Candidate ready, being judged
    EXHAUSTED = auto()        # No more candidates for the current seed
    FAILED = auto()           # Retired after a protocol failure


class ReducerSession:
    """
    A resumable candidate generator backed by an external process.

    Each call to generate() asks for the next candidate against the seed the
    process was started with. restart() drops all state tied to that seed by
    replacing the process.
    """

    def __init__(self, session_id: int, command: List[str],
                 shutdown_timeout: float = 1.0):
        """Initialize session."""
        if not command:
            raise ValueError("Reducer command must not be empty")
        self.session_id = session_id
        self.command = list(command)
        self.name = " ".join(self.command)
        self.shutdown_timeout = shutdown_timeout

        self.state = SessionState.IDLE
        self.generation = -1
        self.seed_path: Optional[Path] = None
        self.error: Optional[SessionError] = None

        self.candidates_produced = 0

        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (f"ReducerSession({self.session_id}, {self.name!r}, "
                f"{self.state.name}, generation={self.generation})")

    @property
    def active(self) -> bool:
        """Whether the session can still contribute candidates."""
        return self.state is not SessionState.FAILED

    def start(self, seed_path: Path, generation: int) -> None:
        """
        Spawn the reducer process against a seed.

        Raises:
            ChannelBroken: the process could not be launched
        """
        if self.state is SessionState.FAILED:
            raise ProtocolViolation(f"Reducer {self.name}: cannot start a failed session")

        logger.debug(f"Reducer {self.session_id}: spawning {self.name} on {seed_path}")
        try:
            proc = subprocess.Popen(
                self.command + [str(seed_path)],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
            )
        except OSError as e:
            raise self._fail(ChannelBroken(f"Reducer {self.name}: cannot launch: {e}"))

        with self._lock:
            self._proc = proc
        self.seed_path = seed_path
        self.generation = generation
        self.state = SessionState.IDLE

    def restart(self, seed_path: Path, generation: int) -> None:
        """Replace the process with a fresh one seeded from a newer generation."""
        logger.debug(f"Reducer {self.session_id}: reseeding with generation {generation}")
        self.close()
        self.start(seed_path, generation)

    def generate(self, candidate_path: Path) -> bool:
        """
        Request the next candidate and block until it is ready.

        Args:
            candidate_path: Where the reducer must write the candidate

        Returns:
            True if the candidate is ready at candidate_path, False if the
            reducer is exhausted for its current seed

        Raises:
            ProtocolViolation: malformed ready signal or out-of-order request
            ChannelBroken: the process died mid-request
        """
        if self.state is SessionState.FAILED:
            raise ProtocolViolation(f"Reducer {self.name}: session has failed")
        if self.state in (SessionState.GENERATING, SessionState.AWAITING_RESULT):
            raise self._fail(ProtocolViolation(
                f"Reducer {self.name}: request issued while another is outstanding"
            ))
        if self.state is SessionState.EXHAUSTED:
            return False

        proc = self._proc
        if proc is None:
            raise ProtocolViolation(f"Reducer {self.name}: session was never started")

        if proc.poll() is not None:
            return self._exited(proc, "before the request")

        self.state = SessionState.GENERATING
        try:
            proc.stdin.write(os.fsencode(str(candidate_path)) + b"\n")
            proc.stdin.flush()
        except (BrokenPipeError, ValueError):
            # ValueError: stdin already closed by a concurrent shutdown
            return self._exited(proc, "while receiving the request")
        except OSError as e:
            raise self._fail(ChannelBroken(f"Reducer {self.name}: cannot send request: {e}"))

        try:
            line = proc.stdout.readline()
        except (OSError, ValueError) as e:
            raise self._fail(ChannelBroken(f"Reducer {self.name}: cannot read ready signal: {e}"))

        if not line:
            return self._exited(proc, "before signalling ready")

        if line.rstrip(b"\r\n"):
            raise self._fail(ProtocolViolation(
                f"Reducer {self.name}: expected a blank ready line, got {line[:80]!r}"
            ))
        if not candidate_path.is_file():
            raise self._fail(ProtocolViolation(
                f"Reducer {self.name}: signalled ready but wrote no candidate file to {candidate_path}"
            ))

        self.candidates_produced += 1
        self.state = SessionState.AWAITING_RESULT
        return True

    def release(self) -> None:
        """Mark the last candidate as handled so the next may be requested."""
        if self.state is SessionState.AWAITING_RESULT:
            self.state = SessionState.IDLE

    def close(self) -> None:
        """Terminate the reducer process, killing it if it will not exit."""
        with self._lock:
            proc, self._proc = self._proc, None
        if proc is None:
            return

        # Terminate first: a thread blocked reading stdout gets EOF instead
        # of holding the stream lock we would need to close it.
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=self.shutdown_timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=self.shutdown_timeout)

        for stream in (proc.stdin, proc.stdout):
            try:
                stream.close()
            except (OSError, ValueError):
                pass

    def _exited(self, proc: subprocess.Popen, when: str) -> bool:
        """Interpret the process going away: clean exit is exhaustion."""
        try:
            returncode = proc.wait(timeout=self.shutdown_timeout)
        except subprocess.TimeoutExpired:
            raise self._fail(ChannelBroken(
                f"Reducer {self.name}: closed its channel {when} but kept running"
            ))

        if returncode == 0:
            logger.debug(f"Reducer {self.session_id}: no more reductions "
                         f"for generation {self.generation}")
            self.state = SessionState.EXHAUSTED
            self.close()
            return False

        raise self._fail(ChannelBroken(
            f"Reducer {self.name}: exited with status {returncode} {when}"
        ))

    def _fail(self, error: SessionError) -> SessionError:
        """Retire the session; returns error for the caller to raise."""
        self.state = SessionState.FAILED
        self.error = error
        self.close()
        return error
