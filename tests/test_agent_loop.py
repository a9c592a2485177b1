"""Behaviour of the orchestration loop against a scripted backend."""

import asyncio
import json
from typing import List

import pytest

from agentloop.agent.agent_loop import (
    STEP_LIMIT_MESSAGE,
    Agent,
)
from agentloop.agent.summarizer import SUMMARY_PREFIX
from agentloop.core.retry import (
    BackendError,
    RetryPolicy,
)
from agentloop.core.run_log import AgentRunLog
from agentloop.core.schema import (
    ChatResponse,
    ReasoningPart,
    Role,
)
from agentloop.tools import function_tool

from conftest import (
    ScriptedBackend,
    echo_tool,
    text_response,
    tool_response,
)


def make_agent(backend, observer, **kwargs) -> Agent:
    kwargs.setdefault("tools", [echo_tool])
    return Agent(backend=backend, system_prompt="You are a test agent.", observer=observer, **kwargs)


def test_echo_round_trip(observer) -> None:
    """One tool round followed by a final answer."""
    backend = ScriptedBackend(
        [tool_response(("c1", "echo", {"text": "hi"})), text_response("Done: hi")]
    )
    agent = make_agent(backend, observer)
    agent.add_user_message("say hi")

    assert asyncio.run(agent.run()) == "Done: hi"
    assert agent.step_count == 1
    assert [m.role for m in agent.messages] == [
        Role.SYSTEM,
        Role.USER,
        Role.ASSISTANT,
        Role.TOOL,
        Role.ASSISTANT,
    ]
    results = agent.messages[3].tool_results()
    assert len(results) == 1
    assert results[0].call_id == "c1"
    assert results[0].output == "hi"
    assert not results[0].is_error
    assert observer.of_kind("tool_result") == [("echo", True, "hi")]
    assert observer.of_kind("text") == ["Done: hi"]


def test_tools_are_advertised_on_every_request(observer) -> None:
    backend = ScriptedBackend([tool_response(("c1", "echo", {"text": "a"})), text_response("ok")])
    agent = make_agent(backend, observer)
    agent.add_user_message("go")
    asyncio.run(agent.run())

    assert len(backend.requests) == 2
    for _, tools in backend.requests:
        assert [t.name for t in tools] == ["echo"]


def test_zero_max_steps_makes_no_request(observer) -> None:
    backend = ScriptedBackend([])
    agent = make_agent(backend, observer, max_steps=0)
    agent.add_user_message("anything")

    assert asyncio.run(agent.run()) == STEP_LIMIT_MESSAGE.format(max_steps=0)
    assert backend.requests == []


def test_step_ceiling(observer) -> None:
    backend = ScriptedBackend(
        [tool_response((f"c{i}", "echo", {"text": str(i)})) for i in range(2)]
    )
    agent = make_agent(backend, observer, max_steps=2)
    agent.add_user_message("loop forever")

    assert asyncio.run(agent.run()) == "Task couldn't be completed after 2 steps."
    assert len(backend.requests) == 2
    assert agent.step_count == 2


def test_long_arguments_are_truncated_for_display_only(observer) -> None:
    long_text = "x" * 300
    backend = ScriptedBackend(
        [tool_response(("c1", "echo", {"text": long_text})), text_response("done")]
    )
    agent = make_agent(backend, observer)
    agent.add_user_message("echo a lot")
    asyncio.run(agent.run())

    (name, preview), = observer.of_kind("tool_call")
    assert name == "echo"
    assert json.loads(preview) == {"text": "x" * 200 + "..."}
    assert agent.messages[2].tool_calls()[0].arguments["text"] == long_text
    assert agent.messages[3].tool_results()[0].output == long_text


def test_unknown_tool_is_reported_to_the_model(observer) -> None:
    backend = ScriptedBackend([tool_response(("c1", "nope", {})), text_response("sorry")])
    agent = make_agent(backend, observer)
    agent.add_user_message("call something odd")

    assert asyncio.run(agent.run()) == "sorry"
    result = agent.messages[3].tool_results()[0]
    assert result.is_error
    assert result.output == "Unknown tool: nope"
    assert observer.of_kind("tool_result") == [("nope", False, "Unknown tool: nope")]


def test_tool_failure_does_not_abort(observer) -> None:
    @function_tool("explode")
    def explode() -> str:
        raise RuntimeError("kaboom")

    backend = ScriptedBackend([tool_response(("c1", "explode", {})), text_response("recovered")])
    agent = make_agent(backend, observer, tools=[explode])
    agent.add_user_message("go")

    assert asyncio.run(agent.run()) == "recovered"
    result = agent.messages[3].tool_results()[0]
    assert result.is_error
    assert "kaboom" in result.output


def test_calls_run_sequentially_in_model_order(observer) -> None:
    seen: List[str] = []

    @function_tool("mark")
    async def mark(label: str) -> str:
        seen.append(label)
        await asyncio.sleep(0)
        return label

    backend = ScriptedBackend(
        [
            tool_response(("a", "mark", {"label": "first"}), ("b", "mark", {"label": "second"})),
            text_response("ok"),
        ]
    )
    agent = make_agent(backend, observer, tools=[mark])
    agent.add_user_message("go")
    asyncio.run(agent.run())

    assert seen == ["first", "second"]
    assert [m.tool_results()[0].call_id for m in agent.messages[3:5]] == ["a", "b"]
    assert agent.step_count == 1


def test_backend_error_propagates(observer) -> None:
    backend = ScriptedBackend([BackendError("service down", status_code=503)])
    agent = make_agent(backend, observer)
    agent.add_user_message("go")

    with pytest.raises(BackendError, match="service down"):
        asyncio.run(agent.run())


def test_retry_policy_is_applied_by_the_backend(observer) -> None:
    backend = ScriptedBackend([BackendError("flaky", status_code=500), text_response("ok")])
    agent = make_agent(
        backend,
        observer,
        retry_policy=RetryPolicy(max_retries=2, initial_delay=0.0, jitter=False),
    )
    agent.add_user_message("go")

    assert asyncio.run(agent.run()) == "ok"
    assert len(backend.requests) == 2
    (attempt, _, error), = observer.of_kind("retry")
    assert attempt == 1
    assert error == "flaky"


def test_reasoning_is_announced_and_kept(observer) -> None:
    backend = ScriptedBackend(
        [ChatResponse(text="42", reasoning=[ReasoningPart(text="let me think")])]
    )
    agent = make_agent(backend, observer)
    agent.add_user_message("meaning of life?")

    assert asyncio.run(agent.run()) == "42"
    assert observer.of_kind("thinking") == ["let me think"]
    assert agent.messages[-1].reasoning() == ["let me think"]
    assert agent.messages[-1].text() == "42"


def test_history_is_compacted_over_budget(observer) -> None:
    backend = ScriptedBackend(
        [
            tool_response(("c1", "echo", {"text": "hi " * 60})),
            text_response("echoed hi once"),  # summary side-request
            text_response("Done"),
        ]
    )
    agent = make_agent(backend, observer, token_limit=5, completion_reserve=0)
    agent.add_user_message("go")

    assert asyncio.run(agent.run()) == "Done"
    assert [m.role for m in agent.messages] == [Role.SYSTEM, Role.USER, Role.USER, Role.ASSISTANT]
    assert agent.messages[1].text() == "go"
    assert agent.messages[2].text() == SUMMARY_PREFIX + "echoed hi once"
    # the summary request carries no tools
    assert backend.requests[1][1] == []
    assert len(observer.of_kind("summarize_start")) == 1
    assert len(observer.of_kind("summarize_done")) == 1
    ((before, _),) = observer.of_kind("summarize_start")
    (after,) = observer.of_kind("summarize_done")
    assert after <= before


def test_run_log_records_the_run(tmp_path, observer) -> None:
    backend = ScriptedBackend(
        [tool_response(("c1", "echo", {"text": "hi"})), text_response("Done")]
    )
    agent = make_agent(backend, observer, run_log=AgentRunLog(tmp_path))
    agent.add_user_message("go")
    asyncio.run(agent.run())

    (log_path,) = observer.of_kind("log_file")
    records = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert [r["kind"] for r in records] == [
        "REQUEST",
        "RESPONSE",
        "TOOL_RESULT",
        "REQUEST",
        "RESPONSE",
    ]
    assert [r["index"] for r in records] == [1, 2, 3, 4, 5]
    assert records[2]["payload"]["tool_name"] == "echo"
    assert records[2]["payload"]["success"] is True


def test_session_helpers(observer) -> None:
    agent = make_agent(ScriptedBackend([text_response("hello")]), observer)
    assert agent.tool_names() == ["echo"]
    assert agent.tool_schema("echo").parameters["required"] == ["text"]
    assert agent.tool_schema("missing") is None

    assert asyncio.run(agent.call_tool_direct("echo", {"text": "direct"})).content == "direct"
    assert asyncio.run(agent.call_tool_direct("missing", {})) is None

    before = agent.estimate_tokens()
    agent.add_user_message("more words here")
    assert agent.estimate_tokens() > before

    asyncio.run(agent.run())
    assert agent.stats()["messages"] == 3
    agent.reset()
    assert len(agent.messages) == 1
    assert agent.messages[0].role == Role.SYSTEM
    assert agent.step_count == 0
