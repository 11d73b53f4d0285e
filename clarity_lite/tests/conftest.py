"""
Shared fixtures: temp SQLite database, scripted model client, API client.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest

from clarity_lite.config import get_settings
from clarity_lite.llm_client import get_model_spec
from clarity_lite.prompts import Prompt
from clarity_lite.schemas import AnalysisTask


# =============================================================================
# Scripted model client
# =============================================================================

Reply = Union[str, Exception, Callable[..., str]]


class FakeModelClient:
    """
    Stands in for ModelClient. Replies are scripted per task; each entry is a
    string, an exception to raise, or a callable(prompt, model_id, image_url).
    A list of replies is consumed in order.
    """

    def __init__(self, replies: Optional[Dict[AnalysisTask, Any]] = None):
        self.replies: Dict[AnalysisTask, Any] = dict(replies or {})
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def select_model(self, model_id=None, has_image: bool = False):
        if has_image:
            return get_model_spec("gpt-4o")
        return get_model_spec(model_id)

    def configured_providers(self) -> List[str]:
        return ["openai"]

    async def invoke(self, task, prompt, model_id=None, image_url=None) -> str:
        if isinstance(prompt, str):
            prompt = Prompt(system="", user=prompt)
        self.calls.append({"task": task, "prompt": prompt, "model_id": model_id, "image_url": image_url})

        reply = self.replies.get(task, "")
        if isinstance(reply, list):
            reply = reply.pop(0) if reply else ""
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt, model_id, image_url)
        return reply

    async def close(self):
        self.closed = True

    def calls_for(self, task: AnalysisTask) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["task"] == task]


def parse_reply(speakers: List[str], messages: List[tuple]) -> str:
    """JSON a parse-stage backend would return; messages are (speaker, content)"""
    return json.dumps({
        "speakers": speakers,
        "messages": [
            {"speaker": s, "content": c, "timestamp": None, "lineNumber": i}
            for i, (s, c) in enumerate(messages, 1)
        ],
    })


def analysis_reply(issues: Optional[List[dict]] = None, clarity_score: Any = 72, summary: Optional[dict] = None) -> str:
    return json.dumps({
        "issues": issues if issues is not None else [
            {
                "id": "issue_1",
                "severity": "moderate",
                "category": "ambiguous_language",
                "title": "Unclear meeting time",
                "description": "No time was proposed for the meeting.",
                "highlightedText": "let's meet",
                "lineNumbers": [1],
                "whyConfusing": ["No time or place given"],
                "suggestedImprovement": "Let's meet Tuesday at 3pm at the cafe.",
                "confidence": 0.8,
            }
        ],
        "summary": summary if summary is not None else {
            "criticalIssues": 0,
            "moderateIssues": 1,
            "minorIssues": 0,
            "keyInsights": ["Plans are left open-ended"],
            "recommendations": ["Propose a concrete time"],
        },
        "clarityScore": clarity_score,
    })


@pytest.fixture
def fake_model_client():
    return FakeModelClient({
        AnalysisTask.PARSE: parse_reply(["John", "Sarah"], [("John", "let's meet"), ("Sarah", "sure, when?")]),
        AnalysisTask.ANALYZE: analysis_reply(),
    })


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def sqlalchemy_db(tmp_path, monkeypatch):
    """Fresh SQLite file per test, local auth bypass on"""
    from clarity_lite.db.session import reset_engine, init_db

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'clarity_test.db'}")
    monkeypatch.setenv("DEPLOYMENT_MODE", "local")
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    get_settings.cache_clear()
    reset_engine()
    init_db()

    yield

    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def db_session(sqlalchemy_db):
    from clarity_lite.db.session import get_db_session

    with get_db_session() as db:
        yield db


# =============================================================================
# API client
# =============================================================================

def stripe_transport(handler: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> httpx.MockTransport:
    def default(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "unexpected call"}})
    return httpx.MockTransport(handler or default)


@pytest.fixture
def api_client(sqlalchemy_db, fake_model_client):
    """TestClient with the scripted model client and a mocked billing provider"""
    from fastapi.testclient import TestClient
    from clarity_lite.api import app, get_model_client, get_orchestrator, get_billing_client
    from clarity_lite.billing import BillingClient
    from clarity_lite.orchestrator import AnalysisOrchestrator

    settings = get_settings()
    orchestrator = AnalysisOrchestrator(fake_model_client, settings)
    billing = BillingClient(settings, http_client=httpx.AsyncClient(transport=stripe_transport()))

    app.dependency_overrides[get_model_client] = lambda: fake_model_client
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_billing_client] = lambda: billing

    client = TestClient(app)
    client.fake_model = fake_model_client
    yield client

    app.dependency_overrides.clear()
