import json

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.api import main
from backend.config import Settings
from backend.progress import ProgressLedger
from backend.solver import SolverGateway
from backend.storage import MemStorage

ALGEBRA_SOLUTION = {
    "steps": [
        {"step": 1, "description": "Subtract 5 from both sides", "formula": "2x + 5 - 5 = 15 - 5", "result": "2x = 10"},
        {"step": 2, "description": "Divide both sides by 2", "formula": "2x / 2 = 10 / 2", "result": "x = 5"},
    ],
    "explanation": "Isolate x using inverse operations.",
    "concepts": ["linear equations", "inverse operations"],
    "finalAnswer": "x = 5",
    "confidence": 98,
}


def completion(content: str) -> dict:
    """Chat-completions response body carrying ``content``."""
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def settings():
    return Settings(api_key="test-key", base_url="http://test/v1", timeout=5.0)


@pytest.fixture
def store():
    return MemStorage()


@pytest.fixture
def model_calls():
    """Requests seen by the fake model endpoint."""
    return []


@pytest.fixture
def model_reply():
    """Mutable reply for the fake model endpoint: (status, json body)."""
    return {"status": 200, "body": completion(json.dumps(ALGEBRA_SOLUTION))}


@pytest.fixture
def transport(model_calls, model_reply):
    def handler(request):
        model_calls.append(json.loads(request.content))
        return httpx.Response(model_reply["status"], json=model_reply["body"])

    return httpx.MockTransport(handler)


@pytest.fixture
def gateway(store, settings, transport):
    return SolverGateway(store, settings, transport=transport)


@pytest.fixture
def client(store, settings, gateway):
    ledger = ProgressLedger(store)
    overrides = {
        main.get_storage: lambda: store,
        main.get_settings: lambda: settings,
        main.get_solver: lambda: gateway,
        main.get_ledger: lambda: ledger,
    }
    main.app.dependency_overrides.update(overrides)
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
