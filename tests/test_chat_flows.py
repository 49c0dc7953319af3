"""
Chat Flow Tests

Tests conversations, message exchange, credit metering and completion
failures.
"""

from unittest.mock import patch

import pytest

from sim.chat.completion import CompletionError


@pytest.fixture
def advisor(make_advisor):
    advisor, _ = make_advisor()
    return advisor


def start_conversation(client, advisor_id, headers=None):
    response = client.post(f"/api/advisors/{advisor_id}/conversations", headers=headers or {})
    return response, response.get_json().get("conversation")


def send(client, conversation_id, content, headers=None):
    return client.post(f"/api/conversations/{conversation_id}/messages", json={"content": content}, headers=headers or {})


class TestConversations:
    """Test opening and listing conversations."""

    def test_anonymous_conversations_are_not_reused(self, client, advisor):
        first, first_conv = start_conversation(client, advisor["id"])
        second, second_conv = start_conversation(client, advisor["id"])

        assert first.status_code == 201
        assert second.status_code == 201
        assert first_conv["id"] != second_conv["id"]
        assert first_conv["user_id"] is None

    def test_signed_in_conversation_reused(self, client, advisor, auth_headers, auth_session):
        first, conversation = start_conversation(client, advisor["id"], auth_headers)
        again, same = start_conversation(client, advisor["id"], auth_headers)

        assert first.status_code == 201
        assert again.status_code == 200
        assert again.get_json()["created"] is False
        assert same["id"] == conversation["id"]
        assert conversation["user_id"] == auth_session["user"]["id"]

    def test_conversation_by_advisor_slug(self, client, make_advisor):
        advisor, _ = make_advisor(custom_url="ada")

        response, conversation = start_conversation(client, "ada")

        assert response.status_code == 201
        assert conversation["advisor_id"] == advisor["id"]

    def test_unknown_advisor(self, client):
        response = client.post("/api/advisors/missing/conversations")

        assert response.status_code == 404

    def test_list_conversations(self, client, advisor, auth_headers):
        _, conversation = start_conversation(client, advisor["id"], auth_headers)
        send(client, conversation["id"], "What is a difference engine?", auth_headers)

        conversations = client.get("/api/conversations", headers=auth_headers).get_json()["conversations"]

        assert len(conversations) == 1
        listed = conversations[0]
        assert listed["id"] == conversation["id"]
        assert listed["title"] == "What is a difference engine?"
        assert listed["last_message"].startswith("Ada received your message")
        assert listed["advisor"]["name"] == "Ada"

    def test_list_conversations_requires_auth(self, client):
        assert client.get("/api/conversations").status_code == 401


class TestMessages:
    """Test sending and reading messages."""

    def test_send_message(self, client, advisor):
        _, conversation = start_conversation(client, advisor["id"])

        response = send(client, conversation["id"], "Hello Ada")

        assert response.status_code == 201
        data = response.get_json()
        assert data["userMessage"]["role"] == "user"
        assert data["userMessage"]["content"] == "Hello Ada"
        assert data["assistantMessage"]["role"] == "assistant"
        assert data["assistantMessage"]["content"] == "Ada received your message: Hello Ada"
        assert "credits" not in data

    def test_history_in_order(self, client, advisor):
        _, conversation = start_conversation(client, advisor["id"])
        send(client, conversation["id"], "first")
        send(client, conversation["id"], "second")

        messages = client.get(f"/api/conversations/{conversation['id']}/messages").get_json()["messages"]

        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "first"),
            ("assistant", "Ada received your message: first"),
            ("user", "second"),
            ("assistant", "Ada received your message: second"),
        ]

    def test_history_passed_to_completion(self, app, client, advisor):
        app.config["APP_CONFIG"]["COMPLETION_HISTORY_LIMIT"] = 3
        _, conversation = start_conversation(client, advisor["id"])
        send(client, conversation["id"], "one")

        with patch("sim.blueprints.chat.generate_reply", return_value="ok") as mock_reply:
            send(client, conversation["id"], "two")

        history = mock_reply.call_args[0][2]
        assert [m["content"] for m in history] == ["one", "Ada received your message: one", "two"]

    @pytest.mark.parametrize("content", ["", "   ", None])
    def test_empty_message_rejected(self, client, advisor, content):
        _, conversation = start_conversation(client, advisor["id"])

        response = client.post(f"/api/conversations/{conversation['id']}/messages", json={"content": content})

        assert response.status_code == 400

    def test_overlong_message_rejected(self, client, advisor):
        _, conversation = start_conversation(client, advisor["id"])

        response = send(client, conversation["id"], "x" * 10001)

        assert response.status_code == 400

    def test_unknown_conversation(self, client):
        assert send(client, "missing", "hello").status_code == 404

    def test_owned_conversation_hidden_from_others(self, app, client, advisor, auth_headers):
        _, conversation = start_conversation(client, advisor["id"], auth_headers)

        stranger = app.test_client()
        assert stranger.get(f"/api/conversations/{conversation['id']}/messages").status_code == 404
        assert send(stranger, conversation["id"], "let me in").status_code == 404

    def test_completion_failure_keeps_user_message(self, client, advisor):
        _, conversation = start_conversation(client, advisor["id"])

        with patch("sim.blueprints.chat.generate_reply", side_effect=CompletionError("backend down")):
            response = send(client, conversation["id"], "Are you there?")

        assert response.status_code == 502
        data = response.get_json()
        assert data["error"] == "completion_failed"
        assert data["userMessage"]["content"] == "Are you there?"

        messages = client.get(f"/api/conversations/{conversation['id']}/messages").get_json()["messages"]
        assert [m["role"] for m in messages] == ["user"]


class TestCredits:
    """Test message credits for signed-in callers."""

    @pytest.fixture(autouse=True)
    def small_plan(self, app):
        app.config["APP_CONFIG"]["PLAN_LIMITS"] = {"free": 2, "plus": 5, "pro": 10}

    def test_credit_status(self, client, auth_headers):
        response = client.get("/api/credits", headers=auth_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data["plan"] == "free"
        assert data["limit"] == 2
        assert data["remaining"] == 2
        assert data["reset_at"]

    def test_messages_consume_credits(self, client, advisor, auth_headers):
        _, conversation = start_conversation(client, advisor["id"], auth_headers)

        first = send(client, conversation["id"], "one", auth_headers)
        second = send(client, conversation["id"], "two", auth_headers)
        third = send(client, conversation["id"], "three", auth_headers)

        assert first.get_json()["credits"] == {"remaining": 1}
        assert second.get_json()["credits"] == {"remaining": 0}
        assert third.status_code == 429
        data = third.get_json()
        assert data["error"] == "credits_exhausted"
        assert data["remaining"] == 0
        assert data["limit"] == 2
        assert data["reset_at"]

        messages = client.get(f"/api/conversations/{conversation['id']}/messages").get_json()["messages"]
        assert "three" not in [m["content"] for m in messages]

    def test_consume_endpoint(self, client, auth_headers):
        results = [client.post("/api/credits/consume", json={}, headers=auth_headers) for _ in range(3)]

        assert [r.status_code for r in results] == [200, 200, 429]
        assert results[1].get_json() == {"success": True, "remaining": 0, "limit": 2}
        assert results[2].get_json()["error"] == "credits_exhausted"

    def test_credits_require_auth(self, client):
        assert client.get("/api/credits").status_code == 401
        assert client.post("/api/credits/consume", json={}).status_code == 401

    def test_anonymous_chat_not_metered(self, client, advisor):
        _, conversation = start_conversation(client, advisor["id"])

        statuses = [send(client, conversation["id"], f"message {i}").status_code for i in range(3)]

        assert statuses == [201, 201, 201]
