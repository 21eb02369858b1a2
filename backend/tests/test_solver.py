import asyncio
import json

import httpx
import pytest

from backend.domain.errors import MalformedSolutionOutput, SolverUnavailableError
from backend.domain.models import SolveRequest
from backend.solver import SolverGateway, parse_solution
from backend.solver.gateway import FALLBACK_CONFIDENCE, UNKNOWN_ANSWER

from .conftest import ALGEBRA_SOLUTION, completion


def _request(**overrides):
    fields = {"problemText": "Solve for x: 2x + 5 = 15", "category": "algebra", "difficulty": 1}
    fields.update(overrides)
    return SolveRequest.model_validate(fields)


def _solve(gateway, request=None):
    return asyncio.run(gateway.solve(request or _request()))


def test_solve_returns_structured_solution(gateway, model_calls):
    solved = _solve(gateway)

    assert solved.solution.final_answer == "x = 5"
    assert solved.solution.confidence == 98
    assert [s.step for s in solved.solution.solution.steps] == [1, 2]
    assert solved.solution.solution.steps[1].result == "x = 5"
    assert solved.solution.solution.concepts == ["linear equations", "inverse operations"]
    assert solved.solution.method == "AI-powered solution"
    assert solved.solution.time_to_solve is not None and solved.solution.time_to_solve >= 0
    assert solved.solution.problem_id == solved.problem.id
    assert len(model_calls) == 1


def test_solve_sends_strict_json_request(gateway, model_calls, settings):
    _solve(gateway)

    body = model_calls[0]
    assert body["model"] == settings.model
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["role"] == "system"
    assert "algebra" in body["messages"][0]["content"]
    assert body["messages"][1]["content"].endswith("Solve for x: 2x + 5 = 15")


def test_solve_persists_problem_and_solution(gateway, store):
    solved = _solve(gateway)

    assert store.get_problem(solved.problem.id) == solved.problem
    assert store.get_solution(solved.problem.id) == solved.solution
    assert solved.problem.image_url is None


def test_solve_with_image_stores_data_uri(gateway, model_calls):
    solved = _solve(gateway, _request(problemText="", imageData="aGVsbG8="))

    content = model_calls[0]["messages"][1]["content"]
    assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,aGVsbG8="
    assert solved.problem.image_url == "data:image/jpeg;base64,aGVsbG8="


@pytest.mark.parametrize(
    "content",
    [
        "I think the answer is five.",
        "{not valid json",
        json.dumps({"steps": [], "explanation": "no answer here", "confidence": 99}),
        json.dumps(["x = 5"]),
        "",
    ],
)
def test_malformed_output_falls_back(gateway, model_reply, content):
    model_reply["body"] = completion(content)

    solved = _solve(gateway)

    assert solved.solution.final_answer == UNKNOWN_ANSWER
    assert solved.solution.confidence == FALLBACK_CONFIDENCE
    assert solved.solution.solution.steps == []
    assert solved.solution.solution.explanation == ""
    assert solved.solution.solution.concepts == []


def test_completion_without_choices_falls_back(gateway, model_reply):
    model_reply["body"] = {"id": "chatcmpl-1", "choices": []}

    solved = _solve(gateway)

    assert solved.solution.final_answer == UNKNOWN_ANSWER
    assert solved.solution.confidence == FALLBACK_CONFIDENCE


def test_non_json_body_falls_back(store, settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))
    gateway = SolverGateway(store, settings, transport=transport)

    solved = _solve(gateway)

    assert solved.solution.final_answer == UNKNOWN_ANSWER


@pytest.mark.parametrize("status", [401, 429, 500, 503])
def test_http_errors_raise_unavailable(gateway, model_reply, store, status):
    model_reply["status"] = status
    model_reply["body"] = {"error": {"message": "nope"}}

    with pytest.raises(SolverUnavailableError):
        _solve(gateway)
    assert store.count_problems() == 0


def test_network_error_raises_unavailable(store, settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = SolverGateway(store, settings, transport=httpx.MockTransport(handler))

    with pytest.raises(SolverUnavailableError):
        _solve(gateway)


def test_timeout_raises_unavailable(store, settings):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = SolverGateway(store, settings, transport=httpx.MockTransport(handler))

    with pytest.raises(SolverUnavailableError):
        _solve(gateway)


def test_slow_model_is_cut_off(store, settings):
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=completion(json.dumps(ALGEBRA_SOLUTION)))

    gateway = SolverGateway(
        store, settings.model_copy(update={"timeout": 0.05}), transport=httpx.MockTransport(handler)
    )

    with pytest.raises(SolverUnavailableError):
        _solve(gateway)
    assert store.count_problems() == 0


def test_missing_api_key_skips_call(store, settings, transport, model_calls):
    gateway = SolverGateway(store, settings.model_copy(update={"api_key": None}), transport=transport)

    with pytest.raises(SolverUnavailableError):
        _solve(gateway)
    assert model_calls == []


def test_parse_solution_handles_code_fences():
    text = "Here you go:\n```json\n" + json.dumps(ALGEBRA_SOLUTION) + "\n```"

    parsed = parse_solution(text)

    assert parsed.final_answer == "x = 5"
    assert len(parsed.body.steps) == 2


def test_parse_solution_coerces_loose_fields():
    text = json.dumps({
        "steps": ["Add the numbers", {"step": "2", "description": "Check", "result": 7}, 42],
        "finalAnswer": 7,
        "confidence": "88.6",
    })

    parsed = parse_solution(text)

    assert parsed.final_answer == "7"
    assert parsed.confidence == 89
    assert [(s.step, s.description, s.result) for s in parsed.body.steps] == [
        (1, "Add the numbers", None),
        (2, "Check", "7"),
    ]
    assert parsed.body.explanation == ""
    assert parsed.body.concepts == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        (150, 100),
        (-3, 0),
        (None, 75),
        ("high", 75),
        (True, 75),
        (float("inf"), 75),
        (float("-inf"), 75),
        (float("nan"), 75),
        ("Infinity", 75),
    ],
)
def test_parse_solution_bounds_confidence(raw, expected):
    parsed = parse_solution(json.dumps({"finalAnswer": "1", "confidence": raw}))
    assert parsed.confidence == expected


def test_parse_solution_rejects_blank_answer():
    with pytest.raises(MalformedSolutionOutput):
        parse_solution(json.dumps({"finalAnswer": "   "}))


def test_parse_solution_survives_huge_numbers():
    text = (
        '{"steps": [{"step": 1e999, "description": "Subtract 5"}, {"step": 2, "description": "Halve"}],'
        ' "finalAnswer": "x = 5", "confidence": 1e999}'
    )

    parsed = parse_solution(text)

    assert parsed.confidence == FALLBACK_CONFIDENCE
    assert [s.step for s in parsed.body.steps] == [1, 2]


@pytest.mark.parametrize(
    "content",
    [
        '{"finalAnswer": "x = 5", "confidence": 1e999}',
        '{"finalAnswer": "x = 5", "confidence": "Infinity"}',
        '{"steps": [{"step": 1e999, "description": "Subtract 5"}], "finalAnswer": "x = 5"}',
    ],
)
def test_solve_with_overflowing_numbers_still_stores_solution(gateway, model_reply, store, content):
    model_reply["body"] = completion(content)

    solved = _solve(gateway)

    assert solved.solution.final_answer == "x = 5"
    assert 0 <= solved.solution.confidence <= 100
    assert store.get_solution(solved.problem.id) == solved.solution


def test_unexpected_client_error_raises_unavailable(store, settings):
    def handler(request):
        raise RuntimeError("transport exploded")

    gateway = SolverGateway(store, settings, transport=httpx.MockTransport(handler))

    with pytest.raises(SolverUnavailableError):
        _solve(gateway)
    assert store.count_problems() == 0


def test_invalid_base_url_raises_unavailable(store, settings, transport, model_calls):
    bad_url = settings.model_copy(update={"base_url": "http://localhost:notaport/v1"})
    gateway = SolverGateway(store, bad_url, transport=transport)

    with pytest.raises(SolverUnavailableError):
        _solve(gateway)
    assert model_calls == []
