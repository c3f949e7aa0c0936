"""
Main parashrink orchestrator.

Backs up the test case, verifies it is interesting, spawns one session per
reducer, and runs the candidate arbiter to a fixed point.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import AcceptancePolicy, ReductionConfig, load_config, split_command
from .errors import InitialNotInteresting, ReductionError, SessionError
from .execution.oracle import PredicateOracle
from .execution.session import ReducerSession
from .reduction.arbiter import CandidateArbiter
from .reduction.candidate import Artifact
from .reduction.stats import ReductionStats
from .reduction.store import ArtifactStore


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger('parashrink')

# Final test cases smaller than this are echoed to stdout
TOO_BIG_TO_PRINT = 4096


@dataclass
class ReductionResult:
    """Result of a reduction run."""
    # Original size in bytes
    original_size: int

    # Final size in bytes
    reduced_size: int = 0

    # Accepted generations
    generations: int = 0

    # Every accepted artifact, oldest first
    history: List[Artifact] = field(default_factory=list)

    stats: ReductionStats = field(default_factory=ReductionStats)

    @property
    def reduction_ratio(self) -> float:
        """Ratio of reduction (1.0 = no reduction)."""
        if self.original_size == 0:
            return 1.0
        return self.reduced_size / self.original_size


class Orchestrator:
    """
    Top-level driver.

    Process:
    1. Back up the test case to <fixture>.orig
    2. Verify the unreduced test case is interesting
    3. Start one reducer session per reducer command
    4. Arbitrate candidates until every session is exhausted or failed
    """

    def __init__(self, config: ReductionConfig):
        """Initialize orchestrator."""
        self.config = config
        self.stats = ReductionStats()

        self.store = ArtifactStore(
            config.fixture_path,
            backup_path=config.backup_path,
            work_parent=config.work_dir,
        )
        self.oracle = PredicateOracle(config.predicate, timeout=config.predicate_timeout)
        self.sessions: List[ReducerSession] = [
            ReducerSession(i, command, shutdown_timeout=config.session_shutdown_timeout)
            for i, command in enumerate(config.reducers)
        ]
        self.arbiter: Optional[CandidateArbiter] = None

    def check(self) -> Artifact:
        """
        Back up the test case and verify it is initially interesting.

        Raises:
            InitialNotInteresting: the predicate rejects the original
            PredicateLaunchFailure: the predicate cannot be run
            ArtifactIOError: the backup could not be written
        """
        self.store.backup()
        initial = self.store.current(generation=0)

        logger.info(f"Judging initial test case ({initial.size} bytes)...")
        result = self.oracle.judge(self.config.fixture_path)
        if not result.interesting:
            reason = "timed out" if result.timeout else f"exit code {result.exit_code}"
            raise InitialNotInteresting(
                f"Initial test case {self.config.fixture_path} is not interesting ({reason})"
            )
        return initial

    def run(self) -> ReductionResult:
        """
        Reduce the test case in place.

        Returns:
            ReductionResult describing the run
        """
        self.stats = ReductionStats()
        self.stats.start_time = datetime.now()

        initial = self.check()
        self.stats.original_size = initial.size
        result = ReductionResult(original_size=initial.size, stats=self.stats)

        self.arbiter = CandidateArbiter(
            self.store,
            self.oracle,
            self.sessions,
            policy=self.config.policy,
            allow_equal_size=self.config.allow_equal_size,
            stats=self.stats,
        )

        logger.info(f"Starting reduction with {len(self.sessions)} reducers")
        try:
            self.store.open()
            final = self.arbiter.run(initial)
        finally:
            self._shutdown()

        self.stats.end_time = datetime.now()
        self.stats.final_size = final.size
        result.reduced_size = final.size
        result.generations = final.generation
        result.history = list(self.arbiter.history)

        self._log_final_stats()
        return result

    def _shutdown(self) -> None:
        """Stop every reducer and remove temp files."""
        for session in self.sessions:
            logger.debug(f"Reducer {session.session_id}: shutting down")
            session.close()
        self.store.close()

    def _log_final_stats(self) -> None:
        """Log final statistics."""
        stats = self.stats
        logger.info("=" * 85)
        logger.info(f"Final reduced size is {stats.final_size} bytes "
                    f"({stats.percent_reduced:.2f}% reduced)")
        logger.info(f"Generations: {stats.generations}")
        logger.info(f"Predicate calls: {stats.oracle_calls} "
                    f"({stats.oracle_timeouts} timed out)")
        logger.info(f"Failed reducers: {stats.sessions_failed}")
        logger.info(f"Duration: {stats.duration:.1f}s")
        logger.info("-" * 85)
        logger.info(f"{'Reducer':<40.40} {'accepted':>8} {'intrstng':>8} "
                    f"{'not intr':>8} {'stale':>8} {'exhaust':>8}")
        ranked = sorted(
            stats.reducers.values(),
            key=lambda r: (r.accepted, r.interesting, r.not_interesting),
            reverse=True,
        )
        for reducer in ranked:
            name = _short_name(reducer.name, 40)
            if reducer.failed:
                name = _short_name(reducer.name, 31) + " (failed)"
            logger.info(f"{name:<40.40} {reducer.accepted:>8} {reducer.interesting:>8} "
                        f"{reducer.not_interesting:>8} {reducer.stale:>8} {reducer.exhausted:>8}")
        logger.info("=" * 85)


def _short_name(name: str, width: int) -> str:
    """Keep the tail of a reducer command, which is usually the informative part."""
    tail = name.rsplit("/", 1)[-1]
    return tail[-width:]


def dump_candidates(command: List[str], seed: Path, output_dir: Path,
                    count: int = 10) -> List[Path]:
    """
    Drive one reducer against a seed and keep its first candidates.

    Args:
        command: Reducer command (seed path appended)
        seed: File the reducer starts from
        output_dir: Directory receiving candidate-<i> files
        count: Maximum number of candidates to request

    Returns:
        Paths of the candidates produced, in order
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    session = ReducerSession(0, command)
    produced: List[Path] = []
    try:
        session.start(seed, generation=0)
        for i in range(count):
            path = (output_dir / f"candidate-{i}").resolve()
            if not session.generate(path):
                break
            session.release()
            produced.append(path)
    finally:
        session.close()
    return produced


def _print_result(path: Path) -> None:
    """Print the final test case if it is small and text."""
    data = path.read_bytes()
    if len(data) >= TOO_BIG_TO_PRINT:
        return
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return
    print("=" * 85)
    print(text, end="" if text.endswith("\n") else "\n")


def _add_log_file(log_file: Path) -> None:
    """Mirror all log output to a file."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)


def _run_command(args: argparse.Namespace) -> int:
    """Handle `parashrink run`."""
    try:
        config = load_config(
            args.config,
            fixture_path=args.fixture,
            predicate=args.predicate,
            reducers=args.reducers or None,
            predicate_timeout=args.timeout,
            policy=args.policy,
            allow_equal_size=True if args.allow_equal_size else None,
            work_dir=args.work_dir,
            log_file=args.log_file,
            print_result=False if args.no_print else None,
        )
    except (OSError, ValueError) as e:
        logger.error(f"configuration: {e}")
        return 1

    if config.log_file is not None:
        _add_log_file(config.log_file)

    if not config.fixture_path.is_file():
        logger.error(f"artifact store: test case {config.fixture_path} does not exist")
        return 1
    if not config.reducers and not args.check_only:
        logger.error("configuration: at least one reducer is required")
        return 1

    orchestrator = Orchestrator(config)
    available, msg = orchestrator.oracle.check_available()
    if not available:
        logger.error(f"predicate oracle: {msg}")
        return 1

    try:
        if args.check_only:
            orchestrator.check()
            logger.info("Initial test case is interesting, exiting")
            return 0
        orchestrator.run()
    except ReductionError as e:
        logger.error(f"{e.component}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; test case holds the last accepted reduction")
        return 130

    if config.print_result:
        _print_result(config.fixture_path)
    return 0


def _candidates_command(args: argparse.Namespace) -> int:
    """Handle `parashrink candidates`."""
    try:
        produced = dump_candidates(
            split_command(args.reducer), args.seed.resolve(), args.output, args.count
        )
    except SessionError as e:
        logger.error(f"{e.component}: {e}")
        return 1
    logger.info(f"Reducer produced {len(produced)} candidates in {args.output}")
    return 0


def main(argv: Optional[List[str]] = None):
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="Parashrink: parallel test-case reducer"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Reduce a test case in place")
    run.add_argument("fixture", type=Path, help="Test case to reduce in place")
    run.add_argument("predicate", help="Interestingness test command")
    run.add_argument("reducers", nargs="*", help="Reducer commands")
    run.add_argument(
        "-t", "--timeout",
        type=int,
        help="Predicate timeout in ms"
    )
    run.add_argument(
        "--policy",
        choices=[p.value for p in AcceptancePolicy],
        help="Which interesting candidate wins a generation"
    )
    run.add_argument(
        "--allow-equal-size",
        action="store_true",
        help="Accept candidates that differ without shrinking"
    )
    run.add_argument(
        "--work-dir",
        type=Path,
        help="Parent directory for candidate files"
    )
    run.add_argument(
        "--log-file",
        type=Path,
        help="Also write log output to this file"
    )
    run.add_argument(
        "-c", "--config",
        type=Path,
        help="JSON configuration file"
    )
    run.add_argument(
        "--check-only",
        action="store_true",
        help="Only verify the test case is interesting, don't reduce"
    )
    run.add_argument(
        "--no-print",
        action="store_true",
        help="Don't print the reduced test case"
    )
    run.set_defaults(handler=_run_command)

    candidates = subparsers.add_parser(
        "candidates", help="Save the first candidates a reducer produces"
    )
    candidates.add_argument("reducer", help="Reducer command")
    candidates.add_argument("seed", type=Path, help="File to reduce")
    candidates.add_argument(
        "-n", "--count",
        type=int,
        default=10,
        help="Maximum number of candidates"
    )
    candidates.add_argument(
        "-o", "--output",
        type=Path,
        default=Path("./candidates"),
        help="Output directory"
    )
    candidates.set_defaults(handler=_candidates_command)

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
