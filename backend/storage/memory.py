"""In-memory storage. Nothing survives a restart."""
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, TypeVar

from backend.domain.errors import NotFoundError, ValidationError
from backend.domain.models import (
    Problem,
    ProblemAttempt,
    ProblemAttemptCreate,
    ProblemCreate,
    Solution,
    SolutionBody,
    StudySession,
    StudySessionCreate,
    StudySessionEnd,
    UserProgress,
    UserProgressUpdate,
)

from .base import Storage

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _newest_first(items: Iterable[T], key) -> list[T]:
    """Sort by timestamp descending; later insertions win ties."""
    indexed = list(enumerate(items))
    indexed.sort(key=lambda pair: (key(pair[1]), pair[0]), reverse=True)
    return [item for _, item in indexed]


class MemStorage(Storage):
    """Keyed dicts guarded by one lock.

    Timestamps handed out by a store are strictly increasing, so ordering by
    ``created_at`` never depends on clock resolution.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._problems: dict[str, Problem] = {}
        self._solutions: dict[str, Solution] = {}
        self._sessions: dict[str, StudySession] = {}
        self._progress: dict[str, UserProgress] = {}
        self._attempts: dict[str, ProblemAttempt] = {}
        self._last_stamp: Optional[datetime] = None

    def _stamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # Problems

    def _insert_problem(self, data: ProblemCreate) -> Problem:
        problem = Problem(id=self._new_id(), created_at=self._stamp(), **data.model_dump())
        self._problems[problem.id] = problem
        return problem

    def create_problem(self, data: ProblemCreate) -> Problem:
        with self._lock:
            problem = self._insert_problem(data)
            return problem.model_copy(deep=True)

    def get_problem(self, problem_id: str) -> Optional[Problem]:
        with self._lock:
            problem = self._problems.get(problem_id)
            return problem.model_copy(deep=True) if problem else None

    def get_recent_problems(self, limit: int) -> list[Problem]:
        if limit <= 0:
            return []
        with self._lock:
            problems = _newest_first(self._problems.values(), lambda p: p.created_at)
            return [p.model_copy(deep=True) for p in problems[:limit]]

    def get_favorite_problems(self) -> list[Problem]:
        with self._lock:
            favorites = [p for p in self._problems.values() if p.is_favorite]
            return [p.model_copy(deep=True) for p in _newest_first(favorites, lambda p: p.created_at)]

    def update_problem_favorite(self, problem_id: str, is_favorite: bool) -> Problem:
        with self._lock:
            problem = self._problems.get(problem_id)
            if problem is None:
                raise NotFoundError(f"Problem {problem_id} not found")
            updated = problem.model_copy(update={"is_favorite": is_favorite})
            self._problems[problem_id] = updated
            return updated.model_copy(deep=True)

    def count_problems(self) -> int:
        with self._lock:
            return len(self._problems)

    # Solutions

    def _insert_solution(
        self,
        problem_id: str,
        solution: SolutionBody,
        final_answer: str,
        confidence: int,
        time_to_solve: Optional[int],
        method: Optional[str],
    ) -> Solution:
        stored = Solution(
            id=self._new_id(),
            created_at=self._stamp(),
            problem_id=problem_id,
            solution=solution.model_copy(deep=True),
            final_answer=final_answer,
            confidence=confidence,
            time_to_solve=time_to_solve,
            method=method,
        )
        self._solutions[stored.id] = stored
        return stored

    def create_solution(
        self,
        problem_id: str,
        solution: SolutionBody,
        final_answer: str,
        confidence: int,
        time_to_solve: Optional[int] = None,
        method: Optional[str] = None,
    ) -> Solution:
        with self._lock:
            if problem_id not in self._problems:
                raise NotFoundError(f"Problem {problem_id} not found")
            stored = self._insert_solution(
                problem_id, solution, final_answer, confidence, time_to_solve, method
            )
            return stored.model_copy(deep=True)

    def create_problem_with_solution(
        self,
        data: ProblemCreate,
        solution: SolutionBody,
        final_answer: str,
        confidence: int,
        time_to_solve: Optional[int] = None,
        method: Optional[str] = None,
    ) -> tuple[Problem, Solution]:
        with self._lock:
            problem = self._insert_problem(data)
            try:
                stored = self._insert_solution(
                    problem.id, solution, final_answer, confidence, time_to_solve, method
                )
            except Exception:
                del self._problems[problem.id]
                raise
            return problem.model_copy(deep=True), stored.model_copy(deep=True)

    def get_solution(self, problem_id: str) -> Optional[Solution]:
        with self._lock:
            matches = [s for s in self._solutions.values() if s.problem_id == problem_id]
            if not matches:
                return None
            return _newest_first(matches, lambda s: s.created_at)[0].model_copy(deep=True)

    # Study sessions

    def create_study_session(self, data: StudySessionCreate) -> StudySession:
        with self._lock:
            session = StudySession(id=self._new_id(), started_at=self._stamp(), **data.model_dump())
            self._sessions[session.id] = session
            return session.model_copy(deep=True)

    def get_study_sessions(self) -> list[StudySession]:
        with self._lock:
            sessions = _newest_first(self._sessions.values(), lambda s: s.started_at)
            return [s.model_copy(deep=True) for s in sessions]

    def end_study_session(self, session_id: str, data: StudySessionEnd) -> StudySession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Study session {session_id} not found")
            if session.ended_at is not None:
                raise ValidationError(f"Study session {session_id} has already ended")

            changes: dict = {"ended_at": self._stamp()}
            for field in ("problems_solved", "total_time"):
                value = getattr(data, field)
                if value is None:
                    continue
                if value < getattr(session, field):
                    raise ValidationError(f"{field} cannot decrease")
                changes[field] = value

            ended = session.model_copy(update=changes)
            self._sessions[session_id] = ended
            return ended.model_copy(deep=True)

    # Progress

    def get_user_progress(self) -> list[UserProgress]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._progress.values()]

    def _find_progress(self, category: str) -> Optional[UserProgress]:
        for progress in self._progress.values():
            if progress.category == category:
                return progress
        return None

    def get_progress_for(self, category: str) -> Optional[UserProgress]:
        with self._lock:
            progress = self._find_progress(category)
            return progress.model_copy(deep=True) if progress else None

    def update_progress(self, progress: UserProgressUpdate) -> UserProgress:
        with self._lock:
            existing = self._find_progress(progress.category)
            progress_id = existing.id if existing else self._new_id()
            stored = UserProgress(
                id=progress_id,
                last_studied=self._stamp(),
                **progress.model_dump(include=set(UserProgressUpdate.model_fields)),
            )
            self._progress[progress_id] = stored
            logger.debug("Stored progress for %s: %s", stored.category, stored)
            return stored.model_copy(deep=True)

    # Attempts

    def record_attempt(self, problem_id: str, data: ProblemAttemptCreate) -> ProblemAttempt:
        with self._lock:
            attempt = ProblemAttempt(
                id=self._new_id(),
                problem_id=problem_id,
                attempted_at=self._stamp(),
                **data.model_dump(),
            )
            self._attempts[attempt.id] = attempt
            return attempt.model_copy(deep=True)

    def get_attempts(self, problem_id: str) -> list[ProblemAttempt]:
        with self._lock:
            attempts = [a for a in self._attempts.values() if a.problem_id == problem_id]
            return [a.model_copy(deep=True) for a in _newest_first(attempts, lambda a: a.attempted_at)]
