"""
Chat Completion Client - Text model calls over HTTP

Thin async client for the provider's chat-completions endpoint, shared by
language detection, intent extraction and conversation summaries.

Usage:
    from interpreter.services.llm import get_llm_client

    client = get_llm_client()
    message = await client.complete(
        [{"role": "user", "content": "Hello"}],
        max_tokens=10,
    )
    print(message["content"])
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from interpreter.config.settings import settings
from interpreter.services.exceptions import LLMError

logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """Calls `{base_url}/chat/completions` and returns the first choice's message."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model or settings.OPENAI_CHAT_MODEL
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.OPENAI_BASE_URL).rstrip("/"),
            headers={"Authorization": f"Bearer {api_key if api_key is not None else settings.OPENAI_API_KEY}"},
            timeout=timeout or settings.LLM_TIMEOUT_SEC,
            transport=transport,
        )

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        temperature: float = 0.0,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """
        Run one chat completion.

        Returns:
            The assistant message dict (`content`, optional `tool_calls`)

        Raises:
            LLMError: on transport errors, non-2xx answers or malformed bodies
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            payload["tools"] = tools
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise LLMError(f"chat completion returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise LLMError(f"chat completion failed: {e}") from e

        try:
            return body["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("chat completion response has no message") from e

    async def aclose(self):
        await self._client.aclose()


_llm_client: Optional[ChatCompletionClient] = None


def get_llm_client() -> ChatCompletionClient:
    global _llm_client
    if _llm_client is None:
        _llm_client = ChatCompletionClient()
    return _llm_client


async def close_llm_client():
    global _llm_client
    if _llm_client is not None:
        await _llm_client.aclose()
        _llm_client = None
