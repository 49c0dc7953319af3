"""
Unit tests for the advisor completion client.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from sim.chat.completion import CompletionError, build_messages, build_store_prompt, generate_reply

ADVISOR = {"id": "adv-1", "name": "Ada", "prompt": "You are Ada Lovelace."}

HISTORY = [
    {"role": "user", "content": "Hello"},
    {"role": "assistant", "content": "Good day."},
    {"role": "user", "content": "What is an engine?"},
]

OPENAI_CFG = {
    "COMPLETION_BACKEND": "openai",
    "COMPLETION_API_URL": "https://llm.example/v1/chat/completions",
    "COMPLETION_API_KEY": "sk-test",
    "COMPLETION_MODEL": "test-model",
    "COMPLETION_TIMEOUT": 5,
}


def completion_response(content, status_code=200):
    response = MagicMock(status_code=status_code, text="upstream says no")
    response.json.return_value = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    return response


class TestBuildMessages:
    def test_prompt_comes_first(self):
        msg_list = build_messages(ADVISOR["prompt"], HISTORY)

        assert msg_list[0] == {"role": "system", "content": "You are Ada Lovelace."}
        assert [m["content"] for m in msg_list[1:]] == ["Hello", "Good day.", "What is an engine?"]

    def test_unknown_roles_skipped(self):
        msg_list = build_messages("prompt", [{"role": "system", "content": "x"}, {"role": "user", "content": "hi"}])

        assert msg_list == [{"role": "system", "content": "prompt"}, {"role": "user", "content": "hi"}]


class TestStubBackend:
    def test_echoes_last_user_message(self):
        reply = generate_reply({"COMPLETION_BACKEND": "stub"}, ADVISOR, HISTORY)

        assert reply == "Ada received your message: What is an engine?"

    def test_unknown_backend(self):
        with pytest.raises(CompletionError, match="Unknown completion backend"):
            generate_reply({"COMPLETION_BACKEND": "carrier-pigeon"}, ADVISOR, HISTORY)


class TestOpenAIBackend:
    def test_reply_content_returned(self):
        with patch("sim.chat.completion.requests.post", return_value=completion_response("Engines weave patterns.")) as mock_post:
            reply = generate_reply(OPENAI_CFG, ADVISOR, HISTORY)

        assert reply == "Engines weave patterns."
        args, kwargs = mock_post.call_args
        assert args[0] == "https://llm.example/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"]["model"] == "test-model"
        assert kwargs["json"]["messages"][0]["role"] == "system"
        assert kwargs["timeout"] == 5

    def test_missing_api_key(self):
        cfg = {**OPENAI_CFG, "COMPLETION_API_KEY": None}
        with pytest.raises(CompletionError, match="COMPLETION_API_KEY"):
            generate_reply(cfg, ADVISOR, HISTORY)

    def test_http_error(self):
        with patch("sim.chat.completion.requests.post", return_value=completion_response(None, status_code=500)):
            with pytest.raises(CompletionError, match="500"):
                generate_reply(OPENAI_CFG, ADVISOR, HISTORY)

    def test_network_error(self):
        with patch("sim.chat.completion.requests.post", side_effect=requests.Timeout("slow")):
            with pytest.raises(CompletionError, match="request failed"):
                generate_reply(OPENAI_CFG, ADVISOR, HISTORY)

    def test_empty_reply(self):
        with patch("sim.chat.completion.requests.post", return_value=completion_response("")):
            with pytest.raises(CompletionError, match="empty reply"):
                generate_reply(OPENAI_CFG, ADVISOR, HISTORY)

    def test_malformed_body(self):
        response = MagicMock(status_code=200, text="<html></html>")
        response.json.side_effect = ValueError("Expecting value")
        with patch("sim.chat.completion.requests.post", return_value=response):
            with pytest.raises(CompletionError, match="malformed"):
                generate_reply(OPENAI_CFG, ADVISOR, HISTORY)


class TestStorePrompt:
    STORE = {"id": "store-1", "store_name": "Ada's Notes", "store_description": "Lecture notes"}

    def test_catalog_listed(self):
        products = [
            {
                "id": "prod-1",
                "title": "Engine notes",
                "description": "Annotated notes",
                "price": 10.0,
                "currency": "USDC",
                "delivery_info": "https://files.example/notes.pdf",
            },
            {"id": "prod-2", "title": "Sketches", "description": None, "price": 2.5, "currency": None},
        ]

        prompt = build_store_prompt(self.STORE, products)

        assert prompt.startswith("You are an AI shopping assistant for Ada's Notes.")
        assert "- Engine notes (10 USDC): Annotated notes" in prompt
        assert "- Sketches (2.5 USDC)\n" in prompt
        assert "- 'Engine notes': prod-1" in prompt
        assert "files.example" not in prompt

    def test_empty_catalog(self):
        prompt = build_store_prompt({"store_name": None, "store_description": None}, [])

        assert "this store" in prompt
        assert "No products are currently available" in prompt
