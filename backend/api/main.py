"""FastAPI backend for the math problem solver."""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.config import Settings
from backend.domain.errors import NotFoundError, SolverUnavailableError, ValidationError
from backend.domain.models import (
    MATH_CATEGORIES,
    FavoriteUpdate,
    Problem,
    ProblemAttempt,
    ProblemAttemptCreate,
    ProblemCreate,
    Solution,
    SolveRequest,
    SolveResponse,
    StudySession,
    StudySessionCreate,
    StudySessionEnd,
    UserProgress,
    describe_validation_error,
)
from backend.progress import ProgressLedger
from backend.solver import SolverGateway
from backend.storage import MemStorage, Storage

logger = logging.getLogger(__name__)

# Process-wide state, replaced in tests through dependency overrides
settings = Settings.from_env()
storage = MemStorage()
solver = SolverGateway(storage, settings)
ledger = ProgressLedger(storage)


def get_settings() -> Settings:
    return settings


def get_storage() -> Storage:
    return storage


def get_solver() -> SolverGateway:
    return solver


def get_ledger() -> ProgressLedger:
    return ledger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Report configuration on startup."""
    logger.info("Using model %s at %s", settings.model, settings.completions_url)
    if not settings.api_key:
        logger.warning("OPENAI_API_KEY is not set; solve requests will fail")
    yield


app = FastAPI(
    title="Math Solver API",
    description="API for solving math problems step by step and tracking study progress",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    detail = describe_validation_error(exc)
    logger.info("Rejected %s %s: %s", request.method, request.url.path, detail)
    return JSONResponse(status_code=400, content={"error": detail})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.info("Not found on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(SolverUnavailableError)
async def solver_unavailable_handler(request: Request, exc: SolverUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Failed to solve problem"})


@app.get("/api/categories")
async def get_categories() -> dict:
    """Get the fixed list of math categories."""
    return {"categories": list(MATH_CATEGORIES)}


@app.get("/api/problems", response_model=list[Problem])
async def get_problems(
    store: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings),
) -> list[Problem]:
    """Get the most recently created problems, newest first."""
    return store.get_recent_problems(config.recent_limit)


@app.post("/api/problems", response_model=Problem)
async def create_problem(data: ProblemCreate, store: Storage = Depends(get_storage)) -> Problem:
    """Create a problem without solving it."""
    return store.create_problem(data)


def _report_detached_failure(task: asyncio.Future) -> None:
    """Read the outcome of a solve whose caller may have gone away."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Solve task finished with %s: %s", type(exc).__name__, exc)


@app.post("/api/problems/solve", response_model=SolveResponse)
async def solve_problem(
    request: SolveRequest,
    gateway: SolverGateway = Depends(get_solver),
) -> SolveResponse:
    """Solve a problem with the reasoning model and store the result."""
    # A client disconnect must not abort the store step
    task = asyncio.ensure_future(gateway.solve(request))
    task.add_done_callback(_report_detached_failure)
    solved = await asyncio.shield(task)
    return SolveResponse(problem=solved.problem, solution=solved.solution)


@app.get("/api/problems/{problem_id}", response_model=Problem)
async def get_problem(problem_id: str, store: Storage = Depends(get_storage)) -> Problem:
    """Get a single problem."""
    problem = store.get_problem(problem_id)
    if problem is None:
        raise NotFoundError(f"Problem {problem_id} not found")
    return problem


@app.get("/api/problems/{problem_id}/solution", response_model=Solution)
async def get_solution(problem_id: str, store: Storage = Depends(get_storage)) -> Solution:
    """Get the latest solution for a problem."""
    solution = store.get_solution(problem_id)
    if solution is None:
        raise NotFoundError("Solution not found")
    return solution


@app.patch("/api/problems/{problem_id}/favorite")
async def update_favorite(
    problem_id: str,
    update: FavoriteUpdate,
    store: Storage = Depends(get_storage),
) -> dict:
    """Mark or unmark a problem as favorite."""
    store.update_problem_favorite(problem_id, update.is_favorite)
    return {"success": True}


@app.post("/api/problems/{problem_id}/attempt", response_model=ProblemAttempt)
async def submit_attempt(
    problem_id: str,
    data: ProblemAttemptCreate,
    progress: ProgressLedger = Depends(get_ledger),
) -> ProblemAttempt:
    """Record an attempt and update the progress for the problem's category."""
    return progress.record_attempt(problem_id, data)


@app.get("/api/problems/{problem_id}/attempts", response_model=list[ProblemAttempt])
async def get_attempts(problem_id: str, store: Storage = Depends(get_storage)) -> list[ProblemAttempt]:
    """Get attempts for a problem, newest first."""
    return store.get_attempts(problem_id)


@app.get("/api/progress", response_model=list[UserProgress])
async def get_progress(store: Storage = Depends(get_storage)) -> list[UserProgress]:
    """Get progress for every category studied so far."""
    return store.get_user_progress()


@app.post("/api/study-session", response_model=StudySession)
async def start_study_session(
    data: StudySessionCreate,
    store: Storage = Depends(get_storage),
) -> StudySession:
    """Start a new study session."""
    return store.create_study_session(data)


@app.get("/api/study-sessions", response_model=list[StudySession])
async def get_study_sessions(store: Storage = Depends(get_storage)) -> list[StudySession]:
    """Get all study sessions, most recently started first."""
    return store.get_study_sessions()


@app.patch("/api/study-session/{session_id}/end", response_model=StudySession)
async def end_study_session(
    session_id: str,
    data: Optional[StudySessionEnd] = None,
    store: Storage = Depends(get_storage),
) -> StudySession:
    """Complete a study session, optionally with its final counters."""
    return store.end_study_session(session_id, data or StudySessionEnd())


@app.get("/api/favorites", response_model=list[Problem])
async def get_favorites(store: Storage = Depends(get_storage)) -> list[Problem]:
    """Get favorite problems, newest first."""
    return store.get_favorite_problems()


@app.get("/health")
async def health_check(
    store: Storage = Depends(get_storage),
    config: Settings = Depends(get_settings),
):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "problems_stored": store.count_problems(),
        "model": config.model,
        "credentials_configured": bool(config.api_key),
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
