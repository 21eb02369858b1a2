"""Entities, request contracts and errors for the math solver."""
from .errors import (
    MalformedSolutionOutput,
    MathSolverError,
    NotFoundError,
    SolverUnavailableError,
    ValidationError,
)
from .models import (
    MATH_CATEGORIES,
    Problem,
    ProblemAttempt,
    Solution,
    SolveRequest,
    StudySession,
    UserProgress,
    validate_solve_request,
)

__all__ = [
    "MATH_CATEGORIES",
    "MalformedSolutionOutput",
    "MathSolverError",
    "NotFoundError",
    "Problem",
    "ProblemAttempt",
    "Solution",
    "SolveRequest",
    "SolverUnavailableError",
    "StudySession",
    "UserProgress",
    "ValidationError",
    "validate_solve_request",
]
