"""Chat completion client for advisor replies."""

import logging
from typing import Any, Dict, List, Mapping

import requests

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when the completion backend fails to produce a reply."""

    pass


def build_messages(system_prompt: str, history: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Prompt followed by prior turns, oldest first."""
    msg_list: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for message in history:
        if message["role"] in ("user", "assistant"):
            msg_list.append({"role": message["role"], "content": message["content"]})
    return msg_list


def build_store_prompt(store: Dict[str, Any], products: List[Dict[str, Any]]) -> str:
    """
    System prompt for a store's shopping assistant.

    Lists the active catalog with prices and product ids. Delivery details
    are left out; buyers only receive them after paying.
    """
    if products:
        lines = []
        for p in products:
            line = f"- {p['title']} ({p['price']:g} {p.get('currency') or 'USDC'})"
            if p.get("description"):
                line += f": {p['description']}"
            lines.append(line)
        ids = [f"- {p['title']!r}: {p['id']}" for p in products]
        catalog_section = "AVAILABLE PRODUCTS:\n" + "\n".join(lines) + "\n\nPRODUCT IDS:\n" + "\n".join(ids)
    else:
        catalog_section = "No products are currently available in the catalog."

    return (
        f"You are an AI shopping assistant for {store.get('store_name') or 'this store'}.\n\n"
        f"STORE DESCRIPTION:\n{store.get('store_description') or 'An online store'}\n\n"
        "Help customers discover products, answer questions about items and make "
        "personalized recommendations. Only recommend products from the catalog below.\n\n"
        f"{catalog_section}"
    )


def _stub_reply(advisor_name: str, msg_list: List[Dict[str, str]]) -> str:
    last_user = next((m["content"] for m in reversed(msg_list) if m["role"] == "user"), "")
    return f"{advisor_name} received your message: {last_user}"


def _openai_reply(cfg: Mapping[str, Any], msg_list: List[Dict[str, str]]) -> str:
    api_key = cfg.get("COMPLETION_API_KEY")
    if not api_key:
        raise CompletionError("COMPLETION_API_KEY is not configured")

    headers = {"Authorization": f"Bearer {api_key}"}
    data: Dict[str, Any] = {
        "model": cfg.get("COMPLETION_MODEL", "openrouter/auto"),
        "messages": msg_list,
    }

    try:
        resp = requests.post(
            cfg.get("COMPLETION_API_URL"),
            json=data,
            headers=headers,
            timeout=cfg.get("COMPLETION_TIMEOUT", 30),
        )
    except requests.RequestException as e:
        raise CompletionError(f"Completion request failed: {e}") from e

    if resp.status_code >= 300:
        raise CompletionError(f"Completion backend returned {resp.status_code}: {resp.text[:200]}")

    try:
        content = resp.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise CompletionError("Completion backend returned a malformed body") from e
    if not content:
        raise CompletionError("Completion backend returned an empty reply")
    return content


def generate_reply(
    cfg: Mapping[str, Any],
    advisor: Dict[str, Any],
    history: List[Dict[str, Any]],
) -> str:
    """
    Produce the advisor's next message.

    Args:
        cfg: Application configuration (``COMPLETION_*`` keys)
        advisor: Advisor dictionary supplying the system prompt
        history: Conversation messages in ascending order, ending with the
            user's new message

    Returns:
        Reply text

    Raises:
        CompletionError: If the backend is unreachable or answers badly
    """
    msg_list = build_messages(advisor["prompt"], history)
    backend = str(cfg.get("COMPLETION_BACKEND", "stub")).lower()

    if backend == "openai":
        reply = _openai_reply(cfg, msg_list)
    elif backend == "stub":
        reply = _stub_reply(advisor["name"], msg_list)
    else:
        raise CompletionError(f"Unknown completion backend: {backend}")

    logger.info(f"Generated reply for advisor {advisor['id']} via {backend} ({len(msg_list)} messages)")
    return reply
