"""Tests for toolsets: closed operation sets and dispatch."""

from enum import Enum

import httpx
import pytest

from ledger_agents.errors import LedgerAPIError, ValidationError
from ledger_agents.step_trace import OPERATION_COMPLETE, ToolCall
from ledger_agents.tools import ToolKind, ToolSpec, Toolset, failure, integer, params, string, success


class DemoOp(str, Enum):
    ECHO = "echo"
    BOOM = "boom"


async def echo(text: str, times: int = 1):
    return success(text=text * times)


def spec(name, handler=echo, required=("text",)):
    return ToolSpec(
        name,
        f"{name} tool",
        params({"text": string("Text"), "times": integer("Repeat count")}, required=required),
        handler,
    )


class TestToolsetConstruction:

    def test_names_must_match_operations(self):
        with pytest.raises(ValueError, match="missing=\\['boom'\\]"):
            Toolset([spec("echo")], DemoOp)
        with pytest.raises(ValueError, match="extra=\\['other'\\]"):
            Toolset([spec("echo"), spec("boom"), spec("other")], DemoOp)

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            Toolset([spec("echo"), spec("echo")])

    def test_schemas_and_lookup(self):
        toolset = Toolset([spec("echo"), spec("boom")], DemoOp)
        assert len(toolset) == 2
        assert "echo" in toolset
        assert toolset.names == ["echo", "boom"]
        schema = toolset.schemas()[0]
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "echo"
        assert schema["function"]["parameters"]["required"] == ["text"]

    def test_extend_keeps_existing_tools(self):
        toolset = Toolset([spec("echo"), spec("boom")], DemoOp)
        extended = toolset.extend([spec("delegate_to_x")])
        assert extended.names == ["echo", "boom", "delegate_to_x"]
        assert len(toolset) == 2


class TestDispatch:

    @pytest.mark.asyncio
    async def test_runs_handler(self):
        toolset = Toolset([spec("echo")])
        result = await toolset.dispatch(ToolCall("1", "echo", {"text": "ab", "times": 2}))
        assert result == {"success": True, "text": "abab"}

    @pytest.mark.asyncio
    async def test_unknown_tool_is_failure(self):
        result = await Toolset([spec("echo")]).dispatch(ToolCall("1", "delete_everything", {}))
        assert result["success"] is False
        assert "Unknown tool" in result["error"]

    @pytest.mark.asyncio
    async def test_missing_argument_is_failure(self):
        result = await Toolset([spec("echo")]).dispatch(ToolCall("1", "echo", {"times": 2}))
        assert result["success"] is False
        assert "text" in result["error"]

    @pytest.mark.asyncio
    async def test_unknown_arguments_dropped(self):
        result = await Toolset([spec("echo")]).dispatch(ToolCall("1", "echo", {"text": "x", "colour": "red"}))
        assert result == {"success": True, "text": "x"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ValidationError("Line 1: amount must be positive"),
        LedgerAPIError("Ledger API error (400): bad", 400),
        KeyError("lines"),
    ])
    async def test_handler_errors_become_failures(self, error):
        async def raising(text: str):
            raise error

        result = await Toolset([spec("boom", raising)]).dispatch(ToolCall("1", "boom", {"text": "x"}))

        assert result["success"] is False
        assert result["error"]

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self):
        async def raising(text: str):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(httpx.TransportError):
            await Toolset([spec("boom", raising)]).dispatch(ToolCall("1", "boom", {"text": "x"}))

    @pytest.mark.asyncio
    async def test_non_dict_result_is_wrapped(self):
        async def plain(text: str):
            return [text]

        result = await Toolset([spec("echo", plain)]).dispatch(ToolCall("1", "echo", {"text": "x"}))
        assert result == {"success": True, "result": ["x"]}


class TestResultHelpers:

    def test_success_with_marker(self):
        result = success("Created", operation_complete=True, purchase={"purchaseId": 1})
        assert result == {"success": True, OPERATION_COMPLETE: True, "message": "Created", "purchase": {"purchaseId": 1}}

    def test_failure(self):
        assert failure("nope", requiresSelection=True) == {"success": False, "error": "nope", "requiresSelection": True}

    def test_default_kind_is_query(self):
        assert spec("echo").kind is ToolKind.QUERY
