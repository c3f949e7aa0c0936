"""
Candidate arbiter: races reducer sessions and accepts one candidate per
generation.

Each session is driven by its own worker thread. Workers only ever read the
current generation number; accepting a candidate, advancing the generation
and reseeding sessions all happen on the arbiter's thread. Superseded work
is never cancelled, it is tagged with the generation it was computed
against and dropped when it reports back.
"""

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..config import AcceptancePolicy
from ..errors import ProtocolViolation, SessionError
from ..execution.oracle import PredicateOracle, PredicateResult
from ..execution.session import ReducerSession, SessionState
from .candidate import Artifact, Candidate, Outcome
from .stats import ReductionStats
from .store import ArtifactStore


logger = logging.getLogger('parashrink.reduction')


@dataclass
class SessionReport:
    """What a worker learned from one request to one session."""
    session_id: int
    generation: int
    candidate: Candidate
    exhausted: bool = False
    error: Optional[SessionError] = None
    predicate: Optional[PredicateResult] = None


class CandidateArbiter:
    """
    Single authority over the current-best test case.

    Round structure:
    1. Every idle session is asked for a candidate against the current
       generation (sessions seeded from an older one are restarted first)
    2. Each candidate is judged by the oracle on the session's worker thread
    3. The first interesting candidate of the current generation is accepted
       and the generation advances; everything else tagged with the old
       generation is stale
    4. Rejected candidates are dropped and their session asked again
    5. Sessions exhausted on the current generation wait for it to advance

    The loop ends when nothing is in flight and no session can be asked.
    """

    def __init__(self, store: ArtifactStore,
                 oracle: PredicateOracle,
                 sessions: List[ReducerSession],
                 policy: AcceptancePolicy = AcceptancePolicy.FIRST,
                 allow_equal_size: bool = False,
                 stats: Optional[ReductionStats] = None):
        """Initialize arbiter."""
        self.store = store
        self.oracle = oracle
        self.sessions = list(sessions)
        self.policy = policy
        self.allow_equal_size = allow_equal_size
        self.stats = stats or ReductionStats()

        # Every accepted generation, oldest first
        self.history: List[Artifact] = []

        self._artifact: Optional[Artifact] = None
        self._in_flight: Dict[Future, Tuple[ReducerSession, Candidate]] = {}
        self._winners: List[Candidate] = []

        for session in self.sessions:
            self.stats.reducer(session.session_id, session.name)

    @property
    def generation(self) -> int:
        """Current generation; safe to read from worker threads."""
        artifact = self._artifact
        return artifact.generation if artifact is not None else -1

    @property
    def artifact(self) -> Optional[Artifact]:
        """Current-best test case."""
        return self._artifact

    def run(self, initial: Artifact) -> Artifact:
        """
        Reduce until every session is exhausted or failed.

        Args:
            initial: The verified-interesting starting test case

        Returns:
            The last accepted artifact
        """
        self._artifact = initial
        self.history = [initial]
        self._in_flight = {}
        self._winners = []

        executor = ThreadPoolExecutor(
            max_workers=max(1, len(self.sessions)),
            thread_name_prefix="parashrink-session",
        )
        try:
            self._dispatch(executor)
            while self._in_flight:
                done, _ = wait(list(self._in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    session, _candidate = self._in_flight.pop(future)
                    self._handle(session, future.result())
                self._settle()
                self._dispatch(executor)
        except BaseException:
            self._abort()
            raise
        finally:
            executor.shutdown(wait=True)

        return self._artifact

    def _dispatch(self, executor: ThreadPoolExecutor) -> None:
        """Issue a request to every session that can take one."""
        if self._winners:
            # A smallest-wins round is closing; let in-flight work finish.
            return

        busy = {id(session) for session, _ in self._in_flight.values()}
        generation = self.generation
        for session in self.sessions:
            if not session.active or id(session) in busy:
                continue

            if session.generation < generation:
                seed = self.store.snapshot(self._artifact)
                try:
                    session.restart(seed, generation)
                except SessionError as e:
                    self._retire(session, e)
                    continue
            elif session.state is SessionState.EXHAUSTED:
                continue

            candidate = Candidate(
                session_id=session.session_id,
                generation=generation,
                path=self.store.new_candidate_path(session.session_id, generation),
            )
            logger.debug(f"Reducer {session.session_id}: generating next reduction "
                         f"of generation {generation}")
            future = executor.submit(self._work, session, candidate, self._artifact)
            self._in_flight[future] = (session, candidate)

        live = [s.generation for s in self.sessions
                if s.state not in (SessionState.FAILED, SessionState.EXHAUSTED)]
        self.store.prune_snapshots(min(live, default=generation))

    def _work(self, session: ReducerSession, candidate: Candidate,
              baseline: Artifact) -> SessionReport:
        """Worker thread: obtain one candidate and judge it if still relevant."""
        report = SessionReport(session.session_id, candidate.generation, candidate)
        try:
            ready = session.generate(candidate.path)
        except SessionError as e:
            report.error = e
            return report

        if not ready:
            report.exhausted = True
            return report

        try:
            try:
                candidate.load()
            except OSError as e:
                # The reducer owns the candidate until it is read back
                report.error = ProtocolViolation(
                    f"Reducer {session.name}: unreadable candidate {candidate.path}: {e}"
                )
                return report

            if not candidate.improves_on(baseline, self.allow_equal_size):
                candidate.outcome = Outcome.REJECTED
                return report

            if self.generation != candidate.generation:
                # Superseded while the reducer was working: do not judge.
                candidate.outcome = Outcome.STALE
                return report

            report.predicate = self.oracle.judge(candidate.path)
            candidate.judged = True
            candidate.interesting = report.predicate.interesting
            return report
        finally:
            session.release()

    def _handle(self, session: ReducerSession, report: SessionReport) -> None:
        """Apply acceptance and staleness rules to one report."""
        stats = self.stats.reducer(session.session_id, session.name)
        candidate = report.candidate

        if report.error is not None:
            self.store.discard(candidate.path)
            self._retire(session, report.error)
            return

        if report.exhausted:
            self.store.discard(candidate.path)
            if report.generation == self.generation:
                stats.exhausted += 1
                logger.info(f"Reducer {session.session_id}: no more reductions "
                            f"for generation {report.generation}")
            # Otherwise the session is behind and will be reseeded.
            return

        if report.predicate is not None:
            self.stats.oracle_calls += 1
            if report.predicate.timeout:
                self.stats.oracle_timeouts += 1

        if candidate.outcome is Outcome.REJECTED:
            stats.not_smaller += 1
            self.store.discard(candidate.path)
            return

        if candidate.outcome is Outcome.STALE or report.generation != self.generation:
            candidate.outcome = Outcome.STALE
            if candidate.judged and candidate.interesting:
                stats.interesting += 1
            else:
                stats.stale += 1
            logger.debug(f"Reducer {session.session_id}: dropping stale candidate "
                         f"of generation {report.generation}")
            self.store.discard(candidate.path)
            return

        if not candidate.interesting:
            candidate.outcome = Outcome.REJECTED
            stats.not_interesting += 1
            logger.debug(f"Reducer {session.session_id}: candidate of {candidate.size} bytes "
                         f"not interesting")
            self.store.discard(candidate.path)
            return

        logger.debug(f"Reducer {session.session_id}: found an interesting test case "
                     f"of size {candidate.size} bytes")
        if self.policy is AcceptancePolicy.SMALLEST:
            self._winners.append(candidate)
        else:
            self._accept(candidate)

    def _settle(self) -> None:
        """Close a smallest-wins round once all its requests have reported."""
        if not self._winners:
            return
        generation = self.generation
        if any(c.generation == generation for _, c in self._in_flight.values()):
            return

        best = min(self._winners, key=lambda c: c.size)
        for candidate in self._winners:
            if candidate is not best:
                candidate.outcome = Outcome.STALE
                self.stats.reducer(candidate.session_id).interesting += 1
                self.store.discard(candidate.path)
        self._winners = []
        self._accept(best)

    def _accept(self, candidate: Candidate) -> None:
        """Make candidate the next generation."""
        previous = self._artifact
        if candidate.generation != previous.generation:
            raise AssertionError(
                f"Refusing stale candidate of generation {candidate.generation} "
                f"(current {previous.generation})"
            )

        self._artifact = self.store.accept(candidate, previous.generation + 1)
        candidate.outcome = Outcome.ACCEPTED
        self.history.append(self._artifact)

        self.stats.generations += 1
        self.stats.reducer(candidate.session_id).accepted += 1

        original = self.history[0].size
        new_size = self._artifact.size
        percent = (original - new_size) / original * 100.0 if original else 100.0
        name = self.stats.reducer(candidate.session_id).name
        logger.info(f"New smallest interesting test case: {new_size} bytes "
                    f"({percent:.2f}% reduced) -- generated by {name}")

    def _retire(self, session: ReducerSession, error: SessionError) -> None:
        """Exclude a misbehaving session from the rest of the run."""
        logger.warning(f"Reducer {session.session_id}: error: {error}; retiring session")
        session.close()
        session.state = SessionState.FAILED
        self.stats.reducer(session.session_id, session.name).failed = True
        self.stats.sessions_failed += 1

    def _abort(self) -> None:
        """Stop every reducer so blocked worker threads can return."""
        for session in self.sessions:
            session.close()
        self._in_flight = {}
        self._winners = []
