"""
HTTP surface: POST /chat and GET /chat/pending with auth overridden.

Run: pytest tests/test_chat_router.py -v
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import banana
from nutripal.core.security import current_user_id
from nutripal.main import app
from nutripal.models.schemas import IntentResult, LookupResult
from nutripal.routers.chat import get_orchestrator


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[current_user_id] = lambda: "user-1"
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root():
    response = TestClient(app).get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome to NutriPal"}


class TestChat:

    def test_proposal_then_pending(self, client, language, lookup):
        lookup.results["banana"] = LookupResult(status="success", nutrition_data=banana(), confidence_score=95)
        language.intents = [IntentResult(intent="log_food", food_items=["banana"], portions=["1 medium"])]

        response = client.post("/chat", json={"message": "I had a banana", "session_id": "s1"})
        assert response.status_code == 200
        body = response.json()
        assert body["response_type"] == "confirmation_food_log"

        pending = client.get("/chat/pending").json()
        assert pending["type"] == "food_log"
        assert pending["id"] == body["data"]["proposal_id"]

    def test_nothing_pending(self, client):
        response = client.get("/chat/pending")
        assert response.status_code == 200
        assert response.json() is None

    def test_failures_are_still_200(self, client, language):
        def boom(message, history=None):
            raise RuntimeError("down")
        language.classify_intent = boom

        response = client.post("/chat", json={"message": "hello"})
        assert response.status_code == 200
        assert response.json()["response_type"] == "fatal_error"

    def test_history_is_passed_through(self, client, language):
        seen = {}

        def classify(message, history=None):
            seen["history"] = history
            return IntentResult(intent="off_topic")
        language.classify_intent = classify

        client.post("/chat", json={
            "message": "and the weather?",
            "conversation_history": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "Hello!"}],
        })
        assert [m.role for m in seen["history"]] == ["user", "assistant"]

    def test_message_is_required(self, client):
        assert client.post("/chat", json={}).status_code == 422


class TestAuth:

    def test_missing_token(self):
        assert TestClient(app).post("/chat", json={"message": "hi"}).status_code == 401

    def test_unknown_token(self):
        fake = MagicMock()
        fake.auth.get_user.return_value = SimpleNamespace(user=None)
        with patch("nutripal.core.security.get_supabase", return_value=fake):
            response = TestClient(app).get("/chat/pending", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        fake.auth.get_user.assert_called_once_with("nope")
