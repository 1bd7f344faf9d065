"""End-to-end tests for the chat endpoint and the coordinator loop."""

import httpx
import pytest

from conftest import ScriptedLLM, reply, stream_text, stream_tool_calls, tool_call
from ledger_agents import api
from ledger_agents.capabilities import build_capability_agents
from ledger_agents.config import config
from ledger_agents.coordinator import APOLOGY, Coordinator
from ledger_agents.data_stream import StreamDecoder, decode_response
from ledger_agents.delegation import Delegator
from ledger_agents.main import app
from ledger_agents.models import ChatMessage


@pytest.fixture
def scripted(monkeypatch):
    def install(llm):
        monkeypatch.setattr(api, "ollama", llm)
        return llm

    return install


def chat_body(*texts, company="acme", **extra):
    messages = []
    for i, text in enumerate(texts):
        messages.append({"role": "user" if i % 2 == 0 else "assistant", "content": text})
    body = {"messages": messages, "company_slug": company}
    body.update(extra)
    return body


async def post_chat(body):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        async with client.stream("POST", "/api/chat", json=body) as response:
            decoded = await decode_response(response)
            return response, decoded


class TestChatEndpoint:

    @pytest.mark.asyncio
    async def test_text_answer(self, scripted):
        llm = scripted(ScriptedLLM(stream_rounds=[stream_text("Hei! ", "Hva kan jeg hjelpe med?")]))

        response, decoded = await post_chat(chat_body("hei"))

        assert response.status_code == 200
        assert response.headers["X-Vercel-AI-Data-Stream"] == "v1"
        assert decoded.full_text == "Hei! Hva kan jeg hjelpe med?"
        assert decoded.tool_calls == []
        assert llm.stream_calls[0]["messages"][-1] == {"role": "user", "content": "hei"}
        tool_names = {t["function"]["name"] for t in llm.stream_calls[0]["tools"]}
        assert "delegate_to_banking_agent" in tool_names
        assert "reconcile_bank_statement" not in tool_names

    @pytest.mark.asyncio
    async def test_delegation_round_trip(self, scripted):
        llm = scripted(ScriptedLLM(
            chat_responses=[reply("Driftskonto har 1000 kr.")],
            stream_rounds=[
                stream_tool_calls(tool_call("call_1", "delegate_to_banking_agent", task="Vis saldo")),
                stream_text("Du har 1000 kr på driftskontoen."),
            ],
        ))

        _, decoded = await post_chat(chat_body("hei", "Hei!", "hvor mye har jeg i banken?"))

        call = decoded.delegation_call()
        assert call.id == "call_1"
        assert call.name == "delegate_to_banking_agent"
        result = decoded.tool_results[0].result
        assert result["success"] is True
        assert result["delegatedTo"] == "banking-agent"
        assert result["result"] == "Driftskonto har 1000 kr."
        assert decoded.full_text == "Du har 1000 kr på driftskontoen."

        agent_messages = llm.chat_calls[0]["messages"]
        assert agent_messages[1:3] == [
            {"role": "user", "content": "hei"},
            {"role": "assistant", "content": "Hei!"},
        ]
        assert agent_messages[-1]["content"] == "[Delegated task from orchestrator]: Vis saldo"

        followup = llm.stream_calls[1]["messages"]
        assert followup[-1]["role"] == "tool"
        assert followup[-1]["tool_name"] == "delegate_to_banking_agent"

    @pytest.mark.asyncio
    async def test_model_failure_streams_apology_and_error(self, scripted):
        scripted(ScriptedLLM(stream_rounds=[[{"type": "error", "error": "model not found"}]]))

        response, decoded = await post_chat(chat_body("hei"))

        assert response.status_code == 200
        assert decoded.full_text == APOLOGY
        assert decoded.errors == ["Model service error: model not found"]

    @pytest.mark.asyncio
    async def test_list_content_parts(self, scripted):
        llm = scripted(ScriptedLLM())
        body = {
            "messages": [{"role": "user", "content": [
                {"type": "text", "text": "Registrer "},
                {"type": "image", "image": "..."},
                {"type": "text", "text": "kvitteringen"},
            ]}],
            "company_slug": "acme",
        }

        await post_chat(body)

        assert llm.stream_calls[0]["messages"][-1] == {"role": "user", "content": "Registrer kvitteringen"}

    @pytest.mark.asyncio
    async def test_files_are_named_in_coordinator_prompt(self, scripted):
        llm = scripted(ScriptedLLM())
        body = chat_body("registrer denne", files=[
            {"name": "kvittering.pdf", "type": "application/pdf", "data": "JVBERi0="},
        ])

        await post_chat(body)

        assert "kvittering.pdf" in llm.stream_calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_files_only_turn_keeps_history(self, scripted):
        llm = scripted(ScriptedLLM(
            chat_responses=[reply("Kjøpet er registrert.")],
            stream_rounds=[
                stream_tool_calls(tool_call("call_1", "delegate_to_purchases_agent", task="Registrer kvitteringen")),
                stream_text("Ferdig."),
            ],
        ))
        body = chat_body("hei", "Hei! Send kvitteringen.", "", files=[
            {"name": "r.pdf", "type": "application/pdf", "data": "JVBERi0="},
        ])

        await post_chat(body)

        coordinator_messages = llm.stream_calls[0]["messages"]
        assert coordinator_messages[-1] == {"role": "user", "content": api.FILES_ONLY_TEXT}
        assert coordinator_messages[-2] == {"role": "assistant", "content": "Hei! Send kvitteringen."}
        agent_messages = llm.chat_calls[0]["messages"]
        assert agent_messages[1:3] == [
            {"role": "user", "content": "hei"},
            {"role": "assistant", "content": "Hei! Send kvitteringen."},
        ]
        assert agent_messages[-1]["content"] == "[Delegated task from orchestrator]: Registrer kvitteringen"

    @pytest.mark.asyncio
    async def test_missing_company(self, scripted, monkeypatch):
        scripted(ScriptedLLM())
        monkeypatch.setattr(config, "ledger_company", "")

        response, _ = await post_chat(chat_body("hei", company=None))

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_messages(self, scripted):
        scripted(ScriptedLLM())
        response, _ = await post_chat({"messages": [], "company_slug": "acme"})
        assert response.status_code == 400


class TestHistory:

    def messages(self, *pairs):
        return [ChatMessage(role=role, content=content) for role, content in pairs]

    def test_empty_turns_dropped_without_files(self):
        history = api.text_history(self.messages(("user", "hei"), ("assistant", ""), ("user", "")))
        assert history == [{"role": "user", "content": "hei"}]

    def test_files_only_final_turn_kept(self):
        history = api.text_history(
            self.messages(("user", "hei"), ("assistant", "Hei!"), ("user", "")), has_files=True,
        )
        assert history[-1] == {"role": "user", "content": api.FILES_ONLY_TEXT}

    def test_split_current_turn(self):
        prior, current = api.split_current_turn([
            {"role": "user", "content": "hei"},
            {"role": "assistant", "content": "Hei!"},
            {"role": "user", "content": "saldo?"},
        ])
        assert prior == [{"role": "user", "content": "hei"}, {"role": "assistant", "content": "Hei!"}]
        assert current == {"role": "user", "content": "saldo?"}

        prior, current = api.split_current_turn([{"role": "assistant", "content": "Hei!"}])
        assert prior == [{"role": "assistant", "content": "Hei!"}]
        assert current is None


class TestInfoEndpoints:

    @pytest.mark.asyncio
    async def test_health_and_root(self):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            health = (await client.get("/health")).json()
            root = (await client.get("/")).json()

        assert health["status"] == "healthy"
        assert "banking-agent" in health["agents"]
        assert "orchestrator" not in health["agents"]
        assert root["endpoints"]["chat"] == "/api/chat"


class TestCoordinator:

    @pytest.mark.asyncio
    async def test_round_cap(self, ctx):
        llm = ScriptedLLM(stream_rounds=[
            stream_tool_calls(tool_call(f"c{i}", "delegate_to_ledger_agent", task="Vis kontoplan"))
            for i in range(5)
        ])
        coordinator = Coordinator(Delegator(build_capability_agents(ctx), llm=llm), llm=llm, max_steps=2)

        events = [e async for e in coordinator.run([{"role": "user", "content": "kontoplan"}])]

        assert [e["type"] for e in events].count("tool_call") == 2
        assert events[-1] == {"type": "finish", "reason": "length"}
        assert len(llm.stream_calls) == 2

    @pytest.mark.asyncio
    async def test_repeated_tool_call_chunks_run_once(self, ctx):
        call = tool_call("c1", "delegate_to_ledger_agent", task="Vis kontoplan")
        llm = ScriptedLLM(stream_rounds=[stream_tool_calls(call, call), stream_text("Ferdig.")])
        coordinator = Coordinator(Delegator(build_capability_agents(ctx), llm=llm), llm=llm)

        events = [e async for e in coordinator.run([{"role": "user", "content": "kontoplan"}])]

        assert [e["type"] for e in events] == ["tool_call", "tool_result", "text", "finish"]
        assert len(llm.chat_calls) == 1

    def test_encode_event(self):
        decoder = StreamDecoder()
        for event in (
            {"type": "text", "content": "Hei"},
            {"type": "tool_call", "id": "c1", "name": "delegate_to_sales_agent", "args": {"task": "x"}},
            {"type": "tool_result", "id": "c1", "result": {"success": True}},
            {"type": "finish", "reason": "stop"},
            {"type": "something_else"},
        ):
            decoder.feed(api.encode_event(event))
        decoded = decoder.finish()

        assert decoded.full_text == "Hei"
        assert decoded.tool_calls[0].args == {"task": "x"}
        assert decoded.tool_results[0].result == {"success": True}
