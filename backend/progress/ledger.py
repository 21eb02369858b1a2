"""Per-category progress: attempt log plus running counters."""
import logging
import threading
from collections import defaultdict

from backend.domain.errors import NotFoundError
from backend.domain.models import (
    ProblemAttempt,
    ProblemAttemptCreate,
    UserProgress,
    UserProgressUpdate,
)
from backend.storage.base import Storage

logger = logging.getLogger(__name__)


def apply_attempt(current: UserProgressUpdate, attempt: ProblemAttemptCreate) -> UserProgressUpdate:
    """Return the counters after one more attempt.

    Accuracy is not stored; it is derived on read from the two counters.
    """
    solved = current.problems_solved + 1
    correct = current.correct_answers
    streak = current.current_streak
    best = current.best_streak

    if attempt.is_correct:
        correct += 1
        streak += 1
        best = max(best, streak)
    else:
        streak = 0

    previous_avg = current.average_time or 0
    average_time = round((previous_avg * (solved - 1) + attempt.time_spent) / solved)

    return current.model_copy(
        update={
            "problems_solved": solved,
            "correct_answers": correct,
            "current_streak": streak,
            "best_streak": best,
            "average_time": average_time,
        }
    )


class ProgressLedger:
    """Records attempts and folds each one into its category's progress.

    Updates for one category are serialized so concurrent attempts cannot
    lose increments.
    """

    def __init__(self, storage: Storage):
        self.storage = storage
        self._guard = threading.Lock()
        self._category_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    def _lock_for(self, category: str) -> threading.Lock:
        with self._guard:
            return self._category_locks[category]

    def record_attempt(self, problem_id: str, data: ProblemAttemptCreate) -> ProblemAttempt:
        problem = self.storage.get_problem(problem_id)
        if problem is None:
            raise NotFoundError(f"Problem {problem_id} not found")

        attempt = self.storage.record_attempt(problem_id, data)
        self.update_for_attempt(problem.category, data)
        return attempt

    def update_for_attempt(self, category: str, attempt: ProblemAttemptCreate) -> UserProgress:
        with self._lock_for(category):
            existing = self.storage.get_progress_for(category)
            if existing is None:
                current = UserProgressUpdate(category=category)
            else:
                current = UserProgressUpdate.model_validate(
                    existing.model_dump(include=set(UserProgressUpdate.model_fields))
                )
            progress = self.storage.update_progress(apply_attempt(current, attempt))

        logger.debug(
            "Progress for %s: %d/%d correct, streak %d (best %d)",
            category, progress.correct_answers, progress.problems_solved,
            progress.current_streak, progress.best_streak,
        )
        return progress
