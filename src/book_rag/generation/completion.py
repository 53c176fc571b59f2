"""Completion clients used for answer synthesis."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage

from book_rag.errors import CompletionError

SYSTEM_INSTRUCTION = """
You are a helpful assistant answering questions about a book.
Use the following context to answer the question.
If you're not sure about something, say so.
""".strip()

NO_CONTEXT_ANSWER = "I could not find anything in the book that answers this question."


def build_system_prompt(system_instruction: str, context: str) -> str:
    return f"{system_instruction}\nContext: {context}"


class CompletionClient(ABC):
    """Generates an answer from a system instruction, context, and query."""

    @abstractmethod
    async def complete(
        self,
        system_instruction: str,
        context: str,
        query: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Return the answer text."""


class ChatCompletionClient(CompletionClient):
    """Chat-model completion via `langchain_openai.ChatOpenAI`.

    The model is bound per call so `max_tokens` and `temperature` follow the
    request rather than the client construction.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "gpt-3.5-turbo",
        llm: Any | None = None,
    ) -> None:
        if llm is None:
            from langchain_openai import ChatOpenAI

            llm = ChatOpenAI(model=model, api_key=api_key)
        self.llm = llm

    async def complete(
        self,
        system_instruction: str,
        context: str,
        query: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        messages = [
            SystemMessage(content=build_system_prompt(system_instruction, context)),
            HumanMessage(content=query),
        ]
        try:
            response = await self.llm.bind(
                max_tokens=max_tokens, temperature=temperature
            ).ainvoke(messages)
        except Exception as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc

        answer = _message_text(response).strip()
        if not answer:
            raise CompletionError("Completion returned no content")
        return answer


class ExtractiveCompletionClient(CompletionClient):
    """Answers from the retrieved context without a language model.

    Used when no OpenAI key is configured. Returns the leading context lines
    so the response stays grounded in retrieved passages.
    """

    def __init__(self, max_lines: int = 3) -> None:
        self.max_lines = max_lines

    async def complete(
        self,
        system_instruction: str,
        context: str,
        query: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        del system_instruction, query, temperature
        lines = [line.strip() for line in context.splitlines() if line.strip()]
        if not lines:
            return NO_CONTEXT_ANSWER
        answer = "\n".join(lines[: self.max_lines])
        # Rough bound: about four characters per token.
        return answer[: max_tokens * 4]


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts)
    return str(content or "")
