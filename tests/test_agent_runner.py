"""Tests for the bounded agent tool loop."""

import json

import pytest

from conftest import ScriptedLLM, reply, tool_call, tool_reply
from ledger_agents.agent_runner import run_agent_loop
from ledger_agents.errors import ModelServiceError
from ledger_agents.tools import ToolSpec, Toolset, params, string, success


def lookup_toolset(calls):
    async def lookup(name: str):
        calls.append(name)
        return success(contacts=[{"name": name, "contactId": 1}])

    return Toolset([ToolSpec("search_contacts", "Search", params({"name": string("Name")}, ["name"]), lookup)])


class TestRunAgentLoop:

    @pytest.mark.asyncio
    async def test_answer_without_tools(self):
        llm = ScriptedLLM(chat_responses=[reply("Hei!")])

        run = await run_agent_loop(llm, "m", "system", [{"role": "user", "content": "hei"}], lookup_toolset([]), 5)

        assert run.text == "Hei!"
        assert len(run.steps) == 1
        assert run.tool_call_count == 0
        assert not run.hit_step_cap
        assert llm.chat_calls[0]["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_tool_results_are_fed_back(self):
        calls = []
        llm = ScriptedLLM(chat_responses=[
            tool_reply(tool_call("c1", "search_contacts", name="Kiwi")),
            reply("Fant Kiwi."),
        ])

        run = await run_agent_loop(llm, "m", "system", [{"role": "user", "content": "finn kiwi"}],
                                   lookup_toolset(calls), 5)

        assert calls == ["Kiwi"]
        assert run.text == "Fant Kiwi."
        assert [s.index for s in run.steps] == [0, 1]
        assert run.steps[0].tool_results[0].result["contacts"][0]["name"] == "Kiwi"

        second = llm.chat_calls[1]["messages"]
        assert second[-2]["role"] == "assistant"
        assert second[-1]["role"] == "tool"
        assert second[-1]["tool_name"] == "search_contacts"
        assert json.loads(second[-1]["content"])["success"] is True

    @pytest.mark.asyncio
    async def test_step_cap(self):
        llm = ScriptedLLM(chat_responses=[
            tool_reply(tool_call(f"c{i}", "search_contacts", name="x")) for i in range(10)
        ])

        run = await run_agent_loop(llm, "m", "system", [], lookup_toolset([]), 3)

        assert run.hit_step_cap
        assert len(run.steps) == 3
        assert len(llm.chat_calls) == 3
        assert "Stopped after 3 steps" in run.text

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_end_loop(self):
        llm = ScriptedLLM(chat_responses=[
            tool_reply(tool_call("c1", "drop_database")),
            reply("Beklager."),
        ])

        run = await run_agent_loop(llm, "m", "system", [], lookup_toolset([]), 5)

        assert run.steps[0].tool_results[0].result["success"] is False
        assert run.text == "Beklager."

    @pytest.mark.asyncio
    async def test_model_error_raises(self):
        llm = ScriptedLLM(chat_responses=[{"error": "connection refused"}])
        with pytest.raises(ModelServiceError):
            await run_agent_loop(llm, "m", "system", [], lookup_toolset([]), 5)
