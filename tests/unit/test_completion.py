import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from book_rag.errors import CompletionError
from book_rag.generation.completion import (
    NO_CONTEXT_ANSWER,
    SYSTEM_INSTRUCTION,
    ChatCompletionClient,
    ExtractiveCompletionClient,
)


class _StubChatModel:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.bound: dict[str, object] = {}
        self.messages: list = []

    def bind(self, **kwargs):
        self.bound = kwargs
        return self

    async def ainvoke(self, messages):
        self.messages = messages
        if self.error is not None:
            raise self.error
        return self.response


async def test_chat_client_sends_context_in_system_message() -> None:
    llm = _StubChatModel(response=AIMessage(content="  Alpha comes first.  "))
    client = ChatCompletionClient(llm=llm)

    answer = await client.complete(
        SYSTEM_INSTRUCTION, "Alpha is the first.", "What is Alpha?", max_tokens=500, temperature=0.7
    )

    assert answer == "Alpha comes first."
    assert llm.bound == {"max_tokens": 500, "temperature": 0.7}
    system, human = llm.messages
    assert isinstance(system, SystemMessage)
    assert isinstance(human, HumanMessage)
    assert system.content.endswith("Context: Alpha is the first.")
    assert human.content == "What is Alpha?"


async def test_provider_failure_becomes_completion_error() -> None:
    client = ChatCompletionClient(llm=_StubChatModel(error=RuntimeError("429 Too Many Requests")))

    with pytest.raises(CompletionError, match="429"):
        await client.complete(SYSTEM_INSTRUCTION, "ctx", "q", max_tokens=10, temperature=0.0)


async def test_empty_completion_is_an_error() -> None:
    client = ChatCompletionClient(llm=_StubChatModel(response=AIMessage(content="   ")))

    with pytest.raises(CompletionError, match="no content"):
        await client.complete(SYSTEM_INSTRUCTION, "ctx", "q", max_tokens=10, temperature=0.0)


async def test_extractive_client_answers_from_leading_context_lines() -> None:
    client = ExtractiveCompletionClient(max_lines=2)

    answer = await client.complete(
        SYSTEM_INSTRUCTION, "first\n\nsecond\nthird", "q", max_tokens=500, temperature=0.7
    )

    assert answer == "first\nsecond"
    assert await client.complete(SYSTEM_INSTRUCTION, "", "q", max_tokens=5, temperature=0.0) == NO_CONTEXT_ANSWER
