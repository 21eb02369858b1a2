"""Gateway to the reasoning model: call, time, parse and store."""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from backend.config import Settings
from backend.domain.errors import MalformedSolutionOutput, SolverUnavailableError
from backend.domain.models import (
    Problem,
    ProblemCreate,
    Solution,
    SolutionBody,
    SolutionStep,
    SolveRequest,
)
from backend.storage.base import Storage

from .prompts import build_payload, image_data_uri

logger = logging.getLogger(__name__)

UNKNOWN_ANSWER = "Unable to determine"
FALLBACK_CONFIDENCE = 75
SOLUTION_METHOD = "AI-powered solution"


@dataclass
class ParsedSolution:
    body: SolutionBody
    final_answer: str
    confidence: int


@dataclass
class SolvedProblem:
    problem: Problem
    solution: Solution


def fallback_solution() -> ParsedSolution:
    """Low-confidence placeholder used when the model output is unusable."""
    return ParsedSolution(
        body=SolutionBody(steps=[], explanation="", concepts=[]),
        final_answer=UNKNOWN_ANSWER,
        confidence=FALLBACK_CONFIDENCE,
    )


def _extract_json_object(text: str) -> dict:
    text = (text or "").strip()

    # Handle case where model wraps JSON in markdown code blocks
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise MalformedSolutionOutput("no JSON object in model output")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise MalformedSolutionOutput(f"invalid JSON in model output: {e}") from e
    if not isinstance(data, dict):
        raise MalformedSolutionOutput("model output is not a JSON object")
    return data


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        text = value
    elif isinstance(value, (dict, list)):
        text = json.dumps(value)
    else:
        text = str(value)
    return text or None


def _coerce_steps(raw: Any) -> list[SolutionStep]:
    if not isinstance(raw, list):
        return []
    steps: list[SolutionStep] = []
    for index, item in enumerate(raw, start=1):
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            continue
        try:
            number = int(item.get("step", index))
        except (TypeError, ValueError, OverflowError):
            number = index
        steps.append(
            SolutionStep(
                step=number,
                description=_optional_text(item.get("description")) or "",
                formula=_optional_text(item.get("formula")),
                result=_optional_text(item.get("result")),
            )
        )
    return steps


def _coerce_confidence(raw: Any) -> int:
    if isinstance(raw, bool) or raw is None:
        return FALLBACK_CONFIDENCE
    try:
        value = int(round(float(raw)))
    except (TypeError, ValueError, OverflowError):
        return FALLBACK_CONFIDENCE
    return min(100, max(0, value))


def parse_solution(text: str) -> ParsedSolution:
    """Parse model text into solution fields.

    Raises MalformedSolutionOutput when there is no JSON object or no final
    answer. Other missing fields get empty defaults.
    """
    data = _extract_json_object(text)

    final_answer = _optional_text(data.get("finalAnswer"))
    if final_answer is None or not final_answer.strip():
        raise MalformedSolutionOutput("model output has no finalAnswer")

    concepts = data.get("concepts")
    if isinstance(concepts, list):
        concepts = [str(c) for c in concepts if c is not None]
    else:
        concepts = []

    explanation = data.get("explanation")
    return ParsedSolution(
        body=SolutionBody(
            steps=_coerce_steps(data.get("steps")),
            explanation=explanation if isinstance(explanation, str) else "",
            concepts=concepts,
        ),
        final_answer=final_answer.strip(),
        confidence=_coerce_confidence(data.get("confidence")),
    )


def _message_content(result: Any) -> str:
    try:
        content = result["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedSolutionOutput("completion has no message content") from e
    if not isinstance(content, str):
        raise MalformedSolutionOutput("completion content is not text")
    return content


class SolverGateway:
    """Solves a validated request and stores the problem with its solution.

    Malformed model output never reaches the caller: it is replaced by a
    low-confidence fallback. Transport, auth and timeout failures raise
    SolverUnavailableError and are not retried.
    """

    def __init__(
        self,
        storage: Storage,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storage = storage
        self.settings = settings
        self._transport = transport

    async def _complete(self, request: SolveRequest) -> str:
        payload = build_payload(request, self.settings.model, self.settings.max_tokens)
        headers = {"Authorization": f"Bearer {self.settings.api_key}"}

        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(
                self.settings.completions_url,
                json=payload,
                headers=headers,
                timeout=self.settings.timeout,
            )
            response.raise_for_status()

        try:
            result = response.json()
        except ValueError as e:
            raise MalformedSolutionOutput("completion body is not JSON") from e
        return _message_content(result)

    async def request_solution(self, request: SolveRequest) -> tuple[ParsedSolution, int]:
        """Call the model and return parsed fields with elapsed milliseconds."""
        if not self.settings.api_key:
            logger.error("No OPENAI_API_KEY configured, cannot solve %s problem", request.category)
            raise SolverUnavailableError("Reasoning model credentials are not configured")

        started = time.perf_counter()
        try:
            text = await asyncio.wait_for(self._complete(request), timeout=self.settings.timeout)
            parsed = parse_solution(text)
        except MalformedSolutionOutput as e:
            logger.warning("Unusable model output for %s problem: %s", request.category, e)
            parsed = fallback_solution()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(
                "Reasoning model timed out after %.1fs for %s problem",
                self.settings.timeout, request.category,
            )
            raise SolverUnavailableError("Reasoning model timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "Reasoning model returned %s for %s problem",
                e.response.status_code, request.category,
            )
            raise SolverUnavailableError(
                f"Reasoning model returned HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.error("Reasoning model unreachable for %s problem: %s", request.category, e)
            raise SolverUnavailableError(f"Reasoning model unavailable: {e}") from e
        except Exception as e:
            logger.exception("Error calling reasoning model for %s problem", request.category)
            raise SolverUnavailableError(f"Error calling reasoning model: {e}") from e

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return parsed, elapsed_ms

    async def solve(self, request: SolveRequest) -> SolvedProblem:
        logger.info("Solving %s problem (difficulty %d)", request.category, request.difficulty)
        parsed, elapsed_ms = await self.request_solution(request)

        problem, solution = self.storage.create_problem_with_solution(
            ProblemCreate(
                problem_text=request.problem_text,
                category=request.category,
                difficulty=request.difficulty,
                image_url=image_data_uri(request.image_data) if request.image_data else None,
            ),
            solution=parsed.body,
            final_answer=parsed.final_answer,
            confidence=parsed.confidence,
            time_to_solve=elapsed_ms,
            method=SOLUTION_METHOD,
        )
        logger.info(
            "Solved problem %s in %d ms (confidence %d)",
            problem.id, elapsed_ms, solution.confidence,
        )
        return SolvedProblem(problem=problem, solution=solution)
