"""Token estimation."""

import asyncio

import pytest

from agentloop.agent.agent_loop import Agent
from agentloop.core.schema import (
    ChatResponse,
    Message,
    ToolCall,
)
from agentloop.core.tokens import (
    MESSAGE_OVERHEAD,
    ApproxEstimator,
    TiktokenEstimator,
    load_estimator,
)

from conftest import (
    ScriptedBackend,
    echo_tool,
    text_response,
    tool_response,
)


class WordEncoding:
    """Stands in for a tiktoken encoding: one token per whitespace-separated word."""

    def encode_ordinary(self, text: str) -> list[str]:
        return text.split()


def test_empty_history_costs_nothing() -> None:
    assert ApproxEstimator().count_messages([]) == 0


def test_approx_counts_characters() -> None:
    estimator = ApproxEstimator()
    assert estimator.count_text("a" * 25) == 10
    assert estimator.count_messages([Message.user("a" * 25)]) == 10 + MESSAGE_OVERHEAD


def test_count_is_monotonic_in_history() -> None:
    estimator = ApproxEstimator()
    history = [Message.system("You are helpful."), Message.user("hello")]
    before = estimator.count_messages(history)

    call = ToolCall(id="c1", name="write_file", arguments={"path": "a.txt", "content": "x" * 100})
    history.append(ChatResponse(text="writing", tool_calls=[call]).to_message())
    after = estimator.count_messages(history)

    assert before >= 0
    assert after > before
    # tool-call arguments are part of the cost
    assert after - before > 40


def test_load_estimator() -> None:
    assert isinstance(load_estimator("approx"), ApproxEstimator)
    assert isinstance(load_estimator("APPROX"), ApproxEstimator)
    with pytest.raises(ValueError, match="not registered"):
        load_estimator("bogus")


def test_tiktoken_estimator_with_injected_encoding() -> None:
    estimator = TiktokenEstimator(encoding=WordEncoding())
    call = ToolCall(id="c1", name="echo", arguments={"text": "two words"})
    history = [
        Message.system("be brief"),
        Message.user("one two three"),
        ChatResponse(tool_calls=[call]).to_message(),
    ]

    assert estimator.count_text("alpha beta") == 2
    # {"text": "two words"} splits into three words
    assert estimator.count_messages(history) == 2 + 3 + 3 + 3 * MESSAGE_OVERHEAD


def _run_with(estimator):
    backend = ScriptedBackend([tool_response(("c1", "echo", {"text": "hi"})), text_response("Done: hi")])
    agent = Agent(
        backend=backend, system_prompt="You are a test agent.", tools=[echo_tool], estimator=estimator
    )
    agent.add_user_message("say hi")
    reply = asyncio.run(agent.run())
    return reply, agent


def test_swapping_estimators_changes_only_counts() -> None:
    approx_reply, approx_agent = _run_with(ApproxEstimator())
    words_reply, words_agent = _run_with(TiktokenEstimator(encoding=WordEncoding()))

    assert approx_reply == words_reply == "Done: hi"
    assert approx_agent.messages == words_agent.messages
    assert approx_agent.step_count == words_agent.step_count
    assert approx_agent.estimate_tokens() != words_agent.estimate_tokens()
