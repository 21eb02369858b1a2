"""Data models for math problems, their solutions and study progress."""
import re
from datetime import datetime
from typing import Any, Literal, Optional, get_args

import pydantic
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import ValidationError

# Closed set of topic tags for problems and per-topic progress
MathCategory = Literal[
    "algebra",
    "calculus",
    "geometry",
    "trigonometry",
    "statistics",
    "linear-algebra",
    "differential-equations",
    "discrete-math",
    "precalculus",
    "number-theory",
]

MATH_CATEGORIES: tuple[str, ...] = get_args(MathCategory)

_DATA_URI_PREFIX = re.compile(r"^data:image/[a-z0-9.+-]+;base64,", re.IGNORECASE)


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Solution payload

class SolutionStep(CamelModel):
    step: int
    description: str
    formula: Optional[str] = None
    result: Optional[str] = None


class SolutionBody(CamelModel):
    steps: list[SolutionStep] = []  # Authoritative step order
    explanation: str = ""
    concepts: Optional[list[str]] = None


class Visualization(CamelModel):
    type: Optional[str] = None
    data: Optional[Any] = None


# Problems

class ProblemCreate(CamelModel):
    """Fields a caller supplies when creating a problem."""
    problem_text: str
    category: MathCategory
    difficulty: int = Field(ge=1, le=5)
    image_url: Optional[str] = None
    latex_representation: Optional[str] = None
    is_favorite: bool = False
    tags: Optional[list[str]] = None


class Problem(ProblemCreate):
    id: str
    created_at: datetime


class FavoriteUpdate(CamelModel):
    is_favorite: StrictBool


# Solutions

class SolutionCreate(CamelModel):
    problem_id: str
    solution: SolutionBody
    final_answer: str
    confidence: int = Field(default=95, ge=0, le=100)
    time_to_solve: Optional[int] = Field(default=None, ge=0)  # milliseconds
    method: Optional[str] = None
    visualization: Optional[Visualization] = None


class Solution(SolutionCreate):
    id: str
    created_at: datetime


# Study sessions

class StudySessionCreate(CamelModel):
    session_name: Optional[str] = None
    problems_solved: int = Field(default=0, ge=0)
    total_time: int = Field(default=0, ge=0)  # minutes
    average_difficulty: Optional[int] = None
    categories: Optional[list[str]] = None
    ended_at: Optional[datetime] = None


class StudySession(StudySessionCreate):
    id: str
    started_at: datetime


class StudySessionEnd(CamelModel):
    """Final counters reported when a session completes."""
    problems_solved: Optional[int] = Field(default=None, ge=0)
    total_time: Optional[int] = Field(default=None, ge=0)


# Progress

class UserProgressUpdate(CamelModel):
    """Counters written back for one category."""
    category: MathCategory
    problems_solved: int = Field(default=0, ge=0)
    correct_answers: int = Field(default=0, ge=0)
    average_time: Optional[int] = None  # seconds
    current_streak: int = Field(default=0, ge=0)
    best_streak: int = Field(default=0, ge=0)
    skill_level: int = Field(default=1, ge=1, le=10)


class UserProgress(UserProgressUpdate):
    """Cumulative statistics for one category. One record per category."""
    id: str
    last_studied: datetime

    @computed_field
    @property
    def accuracy(self) -> float:
        return self.correct_answers / max(self.problems_solved, 1)


# Attempts

class ProblemAttemptCreate(CamelModel):
    user_answer: Optional[str] = None
    is_correct: bool = False
    hints_used: int = Field(default=0, ge=0)
    time_spent: int = Field(default=0, ge=0)  # seconds


class ProblemAttempt(ProblemAttemptCreate):
    id: str
    problem_id: str
    attempted_at: datetime


# Solve contract

class SolveRequest(CamelModel):
    """A problem to solve, given as text, as an image, or both."""
    problem_text: str = ""
    category: MathCategory
    difficulty: int = Field(ge=1, le=5)
    image_data: Optional[str] = None  # base64 bytes, no data URI prefix

    @field_validator("image_data")
    @classmethod
    def _strip_data_uri(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = _DATA_URI_PREFIX.sub("", value.strip())
        return value or None

    @model_validator(mode="after")
    def _require_text_or_image(self) -> "SolveRequest":
        if not self.problem_text.strip() and not self.image_data:
            raise ValueError("problemText is required when no imageData is given")
        return self


class SolveResponse(CamelModel):
    problem: Problem
    solution: Solution


def describe_validation_error(exc) -> str:
    """Flatten pydantic or FastAPI request errors into one readable line."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid request"


def validate_solve_request(payload: dict) -> SolveRequest:
    """Validate an inbound solve payload. Raises ValidationError."""
    try:
        return SolveRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(describe_validation_error(exc)) from exc
