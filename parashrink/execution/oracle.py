"""
Predicate oracle interface.

Runs the external interestingness test against a file and interprets its
exit code: 0 means interesting, anything else means not interesting.
"""

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from ..errors import PredicateLaunchFailure, PredicateTimeout


logger = logging.getLogger('parashrink.execution')


@dataclass
class PredicateResult:
    """Result from one predicate invocation."""
    interesting: bool = False
    timeout: bool = False
    error_message: str = ""

    # Exit status (None if killed on timeout)
    exit_code: Optional[int] = None

    # Wall-clock runtime in seconds
    runtime_seconds: float = 0.0


class PredicateOracle:
    """
    Runs the interestingness test.

    The test is assumed deterministic and non-mutating, so there are no
    retries. With a timeout, a hung test is killed and counts as not
    interesting.
    """

    def __init__(self, command: List[str], timeout: Optional[int] = None):
        """
        Initialize oracle.

        Args:
            command: Predicate command; the file path is appended
            timeout: Per-invocation bound in ms (None = unbounded)
        """
        if not command:
            raise ValueError("Predicate command must not be empty")
        self.command = list(command)
        self.timeout = timeout

    def judge(self, path: Path) -> PredicateResult:
        """
        Decide whether the file at path is interesting.

        A timed-out check counts as not interesting; the result carries
        timeout=True and the PredicateTimeout message.

        Raises:
            PredicateLaunchFailure: the predicate could not be started
        """
        result = PredicateResult()

        start_time = time.perf_counter()
        try:
            result.exit_code = self._run(path)
            result.interesting = result.exit_code == 0

        except PredicateTimeout as e:
            result.timeout = True
            result.error_message = str(e)
            logger.warning(f"{e.component}: {e}")

        finally:
            result.runtime_seconds = time.perf_counter() - start_time

        return result

    def _run(self, path: Path) -> int:
        """Run the predicate once and return its exit status."""
        try:
            proc = subprocess.run(
                self.command + [str(path)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout / 1000.0 if self.timeout is not None else None,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run has already killed and reaped the child
            raise PredicateTimeout(
                f"Predicate exceeded {self.timeout} ms on {path}"
            ) from e
        except OSError as e:
            raise PredicateLaunchFailure(
                f"Cannot launch predicate {self.command[0]}: {e}"
            ) from e
        return proc.returncode

    def is_interesting(self, path: Path) -> bool:
        """Shorthand for judge(path).interesting."""
        return self.judge(path).interesting

    def check_available(self) -> Tuple[bool, str]:
        """
        Check that the predicate can be launched at all.

        Returns:
            (available, message)
        """
        executable = self.command[0]
        if "/" in executable:
            found = Path(executable)
            if not found.exists():
                return False, f"Predicate not found at {executable}"
            return True, f"Predicate {found}"

        resolved = shutil.which(executable)
        if resolved is None:
            return False, f"Predicate {executable} not found on PATH"
        return True, f"Predicate {resolved}"
