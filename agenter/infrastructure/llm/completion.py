"""Text-completion transport used by every cognition tool and the responder"""

from typing import AsyncIterator, Dict, List, Optional, Sequence
from abc import ABC, abstractmethod
import asyncio
import json

import httpx
import structlog
from langchain_core.messages import BaseMessage

from agenter.domain.exceptions import CompletionError
from agenter.infrastructure.config.settings import Settings

logger = structlog.get_logger(__name__)

_ROLES = {"system": "system", "human": "user", "ai": "assistant"}


def to_chat_messages(messages: Sequence[BaseMessage]) -> List[Dict[str, str]]:
    """OpenAI-style role/content dicts"""

    return [
        {"role": _ROLES.get(message.type, "user"), "content": str(message.content)}
        for message in messages
    ]


class TextCompleter(ABC):
    """Opaque complete-text / stream-text capability"""

    @abstractmethod
    def stream(
        self,
        messages: Sequence[BaseMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None
    ) -> AsyncIterator[str]:
        """Yield reply text chunks as they arrive"""

    async def complete(
        self,
        messages: Sequence[BaseMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None
    ) -> str:
        chunks = []
        async for chunk in self.stream(messages, model=model, temperature=temperature, top_p=top_p):
            chunks.append(chunk)
        return "".join(chunks)

    async def aclose(self) -> None:
        return None


class DeepSeekCompleter(TextCompleter):
    """OpenAI-compatible chat completions with server-sent-event streaming"""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.deepseek.com/v1",
        model: str = "deepseek-chat",
        temperature: float = 0.0,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def stream(
        self,
        messages: Sequence[BaseMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None
    ) -> AsyncIterator[str]:
        payload = {
            "model": model or self.model,
            "messages": to_chat_messages(messages),
            "temperature": self.temperature if temperature is None else temperature,
            "stream": True,
        }
        if top_p is not None:
            payload["top_p"] = top_p

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        try:
            async with self.client.stream(
                "POST", f"{self.base_url}/chat/completions", json=payload, headers=headers
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise CompletionError(f"DeepSeek error {response.status_code}: {body}")

                async for line in response.aiter_lines():
                    content = self._parse_event(line)
                    if content:
                        yield content
        except httpx.HTTPError as e:
            logger.error("Completion request failed", model=payload["model"], error=str(e))
            raise CompletionError(f"DeepSeek request failed: {e}") from e

    @staticmethod
    def _parse_event(line: str) -> Optional[str]:
        """Content delta of one SSE line, if any"""

        line = line.strip()
        if not line.startswith("data:"):
            return None
        data = line[len("data:"):].strip()
        if not data or data == "[DONE]":
            return None
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            return None
        choices = event.get("choices") or []
        if not choices:
            return None
        return (choices[0].get("delta") or {}).get("content")

    async def aclose(self) -> None:
        await self.client.aclose()


class MockCompleter(TextCompleter):
    """Offline completer that echoes the last message"""

    def __init__(self, delay: float = 0.01):
        self.delay = delay

    async def stream(
        self,
        messages: Sequence[BaseMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None
    ) -> AsyncIterator[str]:
        content = str(messages[-1].content) if messages else ""
        reply = f"Mock response to: {content[:50]}"
        for char in reply:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield char


def build_completer(settings: Settings) -> TextCompleter:
    """Completer for the configured provider"""

    if settings.provider == "deepseek":
        settings.require_completion_credentials()
        return DeepSeekCompleter(
            api_key=settings.deepseek_api_token or "",
            base_url=settings.deepseek_base_url,
            model=settings.deepseek_model,
            timeout=settings.completion_timeout_seconds,
        )
    return MockCompleter()
