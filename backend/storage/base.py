"""Abstract storage interface. Callers depend on this, not on a backend."""
from abc import ABC, abstractmethod
from typing import Optional

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


class Storage(ABC):
    """CRUD over the five entities.

    Implementations own identifier generation and timestamps, and return
    copies so callers never hold live references into the store.
    """

    # Problems
    @abstractmethod
    def create_problem(self, data: ProblemCreate) -> Problem: ...

    @abstractmethod
    def get_problem(self, problem_id: str) -> Optional[Problem]: ...

    @abstractmethod
    def get_recent_problems(self, limit: int) -> list[Problem]: ...

    @abstractmethod
    def get_favorite_problems(self) -> list[Problem]: ...

    @abstractmethod
    def update_problem_favorite(self, problem_id: str, is_favorite: bool) -> Problem: ...

    @abstractmethod
    def count_problems(self) -> int: ...

    # Solutions
    @abstractmethod
    def create_solution(
        self,
        problem_id: str,
        solution: SolutionBody,
        final_answer: str,
        confidence: int,
        time_to_solve: Optional[int] = None,
        method: Optional[str] = None,
    ) -> Solution: ...

    @abstractmethod
    def create_problem_with_solution(
        self,
        data: ProblemCreate,
        solution: SolutionBody,
        final_answer: str,
        confidence: int,
        time_to_solve: Optional[int] = None,
        method: Optional[str] = None,
    ) -> tuple[Problem, Solution]:
        """Store a problem and its solution as one unit."""

    @abstractmethod
    def get_solution(self, problem_id: str) -> Optional[Solution]: ...

    # Study sessions
    @abstractmethod
    def create_study_session(self, data: StudySessionCreate) -> StudySession: ...

    @abstractmethod
    def get_study_sessions(self) -> list[StudySession]: ...

    @abstractmethod
    def end_study_session(self, session_id: str, data: StudySessionEnd) -> StudySession: ...

    # Progress
    @abstractmethod
    def get_user_progress(self) -> list[UserProgress]: ...

    @abstractmethod
    def get_progress_for(self, category: str) -> Optional[UserProgress]: ...

    @abstractmethod
    def update_progress(self, progress: UserProgressUpdate) -> UserProgress:
        """Upsert the record for ``progress.category``."""

    # Attempts
    @abstractmethod
    def record_attempt(self, problem_id: str, data: ProblemAttemptCreate) -> ProblemAttempt: ...

    @abstractmethod
    def get_attempts(self, problem_id: str) -> list[ProblemAttempt]: ...
