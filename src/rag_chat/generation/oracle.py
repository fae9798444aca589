"""Generation oracle contract and LangChain-backed implementation."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)


class CompletionOracle(Protocol):
    """External text-completion service."""

    async def complete(self, prompt: str) -> str:
        """Return one blocking completion for `prompt`."""

    def stream(
        self, prompt: str, *, model_id: str, temperature: float
    ) -> AsyncIterator[str]:
        """Yield answer text incrementally; raises on failure."""


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)


class LangChainOracle:
    """Oracle over LangChain chat models.

    Summaries use one fixed model; streamed answers use a model constructed for
    the request's model id so generation and token accounting share a codec.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        summary_model: str = "gpt-3.5-turbo-16k",
        summary_llm: BaseChatModel | None = None,
    ) -> None:
        self._api_key = api_key
        self._summary_llm = summary_llm or self._chat_model(summary_model, temperature=0.0)

    def _chat_model(self, model_id: str, *, temperature: float) -> BaseChatModel:
        from langchain_openai import ChatOpenAI

        kwargs: dict[str, Any] = {"model": model_id, "temperature": temperature}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        return ChatOpenAI(**kwargs)

    async def complete(self, prompt: str) -> str:
        result = await self._summary_llm.ainvoke(prompt)
        return _content_text(getattr(result, "content", result))

    async def stream(
        self, prompt: str, *, model_id: str, temperature: float
    ) -> AsyncIterator[str]:
        llm = self._chat_model(model_id, temperature=temperature)
        async for chunk in llm.astream(prompt):
            text = _content_text(getattr(chunk, "content", chunk))
            if text:
                yield text
        logger.debug("Oracle stream for %s finished", model_id)
