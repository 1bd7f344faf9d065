"""Shared fixtures: a mock bookkeeping API and a scripted model client."""

import json
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
import pytest

from ledger_agents.accounts import AccountDirectory
from ledger_agents.cache import TTLCache
from ledger_agents.capabilities import AgentContext
from ledger_agents.ledger_client import LedgerClient
from ledger_agents.reconciliation import MatchSettings

BASE_URL = "https://ledger.test/api/v2"
COMPANY = "acme"
PREFIX = f"/api/v2/companies/{COMPANY}"


# ============================================================================
# Model client
# ============================================================================

def reply(text: str) -> Dict[str, Any]:
    """A non-streaming model answer without tool calls."""
    return {"message": {"role": "assistant", "content": text, "tool_calls": []}}


def tool_call(call_id: str, name: str, /, **arguments) -> Dict[str, Any]:
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}


def tool_reply(*calls: Dict[str, Any], text: str = "") -> Dict[str, Any]:
    return {"message": {"role": "assistant", "content": text, "tool_calls": list(calls)}}


class ScriptedLLM:
    """Stands in for OllamaClient; answers come from queues, requests are recorded."""

    def __init__(
        self,
        chat_responses: Sequence[Dict[str, Any]] = (),
        stream_rounds: Sequence[List[Dict[str, Any]]] = (),
    ):
        self.chat_responses = list(chat_responses)
        self.stream_rounds = list(stream_rounds)
        self.chat_calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Dict[str, Any]] = []

    async def chat(self, model, messages, tools=None, format=None, temperature=0.2):
        self.chat_calls.append({
            "model": model,
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "format": format,
        })
        if not self.chat_responses:
            return reply("done")
        return self.chat_responses.pop(0)

    async def chat_stream(self, model, messages, tools=None, temperature=0.2):
        self.stream_calls.append({"model": model, "messages": [dict(m) for m in messages], "tools": tools})
        chunks = self.stream_rounds.pop(0) if self.stream_rounds else [{"type": "done"}]
        for chunk in chunks:
            yield chunk

    async def close(self):
        pass


def stream_text(*parts: str) -> List[Dict[str, Any]]:
    return [{"type": "content", "content": p} for p in parts] + [{"type": "done"}]


def stream_tool_calls(*calls: Dict[str, Any], text: str = "") -> List[Dict[str, Any]]:
    chunks: List[Dict[str, Any]] = []
    if text:
        chunks.append({"type": "content", "content": text})
    chunks.extend({"type": "tool_call", "tool_call": c} for c in calls)
    chunks.append({"type": "done"})
    return chunks


# ============================================================================
# Bookkeeping API
# ============================================================================

class FakeLedger:
    """
    Routes mock transport requests to canned responses by method and path.

    Routes are keyed by ``"GET /journalEntries"`` (path relative to the
    company). A route value is either a response body or a callable taking
    the request and returning an httpx.Response.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith(PREFIX):
            path = path[len(PREFIX):]
        route = self.routes.get(f"{request.method} {path}")
        if route is None:
            return httpx.Response(404, json={"message": f"No route for {request.method} {path}"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path == PREFIX + path
        ]

    def body(self, method: str, path: str, index: int = -1) -> Any:
        return json.loads(self.calls(method, path)[index].content)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> LedgerClient:
    return LedgerClient(
        COMPANY,
        access_token="test-token",
        base_url=BASE_URL,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def ledger(fake_ledger):
    return make_client(fake_ledger)


@pytest.fixture
def settings():
    return MatchSettings(amount_tolerance=500, day_window=5, search_days=5, page_size=100, max_pages=10)


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def ctx(ledger, llm, settings):
    accounts = AccountDirectory(ledger, llm=llm, model="test-model", cache=TTLCache(60))
    return AgentContext(client=ledger, accounts=accounts, settings=settings)


def journal_entry(entry_id: int, on: str, amount: int, account: str = "1920:10001",
                  description: str = "Entry") -> Dict[str, Any]:
    """A journal entry as listed by the API, with one bank line."""
    return {
        "journalEntryId": entry_id,
        "transactionId": entry_id * 10,
        "date": on,
        "description": description,
        "lines": [{"account": account, "amount": amount}],
    }
