"""HTTP tests for /api/v1/assistant."""

import pytest
from httpx import AsyncClient

from tests.conftest import BOT, FakeUpstream, InMemoryStore, auth_header, make_token

ASK_URL = "/api/v1/assistant/ask"
QUESTION = "Can my company import steel from Turkey next month"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        resp = await client.post(ASK_URL, json={"question": QUESTION, "chatbot_id": BOT})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Authentication required"
        assert resp.json()["error"]["code"] == "AUTH_REQUIRED"
        assert resp.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient):
        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": BOT},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid or expired token"
        assert resp.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_token_without_role(self, client: AsyncClient):
        token = make_token("u1", role="")
        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": BOT},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid token payload"


# ---------------------------------------------------------------------------
# Ask
# ---------------------------------------------------------------------------


class TestAsk:
    @pytest.mark.asyncio
    async def test_answer(self, client: AsyncClient, store: InMemoryStore):
        store.add_member("u1")

        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": BOT},
            headers=auth_header("u1"),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["answer"] == "Answer"
        assert body["tokens_used"] == 100
        assert body["cached"] is False
        assert body["preferences_applied"] == {
            "content_orientation": "intermediate",
            "communication_style": "professional",
            "nickname": None,
        }

    @pytest.mark.asyncio
    async def test_second_ask_is_cached(self, client: AsyncClient, store: InMemoryStore):
        store.add_member("u1")
        payload = {"question": QUESTION, "chatbot_id": BOT}

        await client.post(ASK_URL, json=payload, headers=auth_header("u1"))
        resp = await client.post(ASK_URL, json=payload, headers=auth_header("u1"))

        assert resp.json()["tokens_used"] == 0
        assert resp.json()["cached"] is True

    @pytest.mark.asyncio
    async def test_explicit_preferences(self, client: AsyncClient, store: InMemoryStore, upstream: FakeUpstream):
        store.add_member("u1")

        resp = await client.post(
            ASK_URL,
            json={
                "question": QUESTION,
                "chatbot_id": BOT,
                "preferences": {
                    "content_orientation": "advanced",
                    "communication_style": "casual",
                    "nickname": "  Sam ",
                },
            },
            headers=auth_header("u1"),
        )

        assert resp.json()["preferences_applied"] == {
            "content_orientation": "advanced",
            "communication_style": "casual",
            "nickname": "Sam",
        }
        assert "ADVANCED LEVEL" in upstream.sent[0]["instructions"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"question": "", "chatbot_id": BOT},
        {"question": "   ", "chatbot_id": BOT},
        {"question": "???", "chatbot_id": BOT},
        {"question": " !! ... ", "chatbot_id": BOT},
        {"question": "x" * 4001, "chatbot_id": BOT},
        {"question": QUESTION},
        {"question": QUESTION, "chatbot_id": BOT, "preferences": {"content_orientation": "expert"}},
    ])
    async def test_validation(self, client: AsyncClient, payload: dict):
        resp = await client.post(ASK_URL, json=payload, headers=auth_header("u1"))
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_punctuation_only_question_never_reaches_upstream(
        self, client: AsyncClient, store: InMemoryStore, upstream: FakeUpstream
    ):
        store.add_member("u1")
        for question in ("???", "!!!"):
            resp = await client.post(
                ASK_URL, json={"question": question, "chatbot_id": BOT}, headers=auth_header("u1")
            )
            assert resp.status_code == 422
        assert upstream.sent == []


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.asyncio
    async def test_unknown_bot(self, client: AsyncClient):
        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": "UNKNOWN"},
            headers=auth_header("u1"),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "BOT_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_no_company(self, client: AsyncClient):
        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": BOT},
            headers=auth_header("u1"),
        )
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "NO_COMPANY"
        assert error["retryable"] is False

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, client: AsyncClient, store: InMemoryStore):
        store.add_member("u1", max_requests=5, used=5)

        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": BOT},
            headers=auth_header("u1"),
        )

        assert resp.status_code == 429
        error = resp.json()["error"]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["details"]["usage"] == {"used": 5, "max": 5, "remaining": 0}

    @pytest.mark.asyncio
    async def test_operator_bypasses_licensing(self, client: AsyncClient):
        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": BOT},
            headers=auth_header("root", role="admin"),
        )
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_upstream_failure_is_retryable(self, client: AsyncClient, store: InMemoryStore, upstream: FakeUpstream):
        store.add_member("u1")
        upstream.fail_send = True

        resp = await client.post(
            ASK_URL,
            json={"question": QUESTION, "chatbot_id": BOT},
            headers=auth_header("u1"),
        )

        assert resp.status_code == 502
        assert resp.json()["error"]["retryable"] is True


# ---------------------------------------------------------------------------
# Bots
# ---------------------------------------------------------------------------


class TestBots:
    @pytest.mark.asyncio
    async def test_list(self, client: AsyncClient):
        resp = await client.get("/api/v1/assistant/bots", headers=auth_header("u1"))
        assert resp.status_code == 200
        assert resp.json() == {"bots": ["EUDR", "MACF"]}

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        resp = await client.get("/api/v1/assistant/bots")
        assert resp.status_code == 401
