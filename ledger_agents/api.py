"""
Chat API endpoint.

``POST /api/chat`` runs one user turn through the coordinator and streams
the result in the data stream format (text, tool calls, tool results,
errors, finish), one record per line.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from .accounts import AccountDirectory
from .capabilities import AgentContext, build_capability_agents
from .config import config
from .coordinator import Coordinator
from .data_stream import (
    STREAM_HEADERS, format_error, format_finish, format_text, format_tool_call, format_tool_result,
)
from .delegation import Delegator
from .ledger_client import LedgerClient
from .models import ChatMessage, ChatRequest
from .ollama_client import ollama

logger = logging.getLogger(__name__)

router = APIRouter()


FILES_ONLY_TEXT = "(files attached)"


def text_history(messages: List[ChatMessage], has_files: bool = False) -> List[Dict[str, Any]]:
    """
    Conversation as plain text messages, user and assistant turns only.

    Turns without text are dropped. When files are attached, an empty
    final user message is kept with a placeholder so the turn still ends
    with the user.
    """
    history = []
    last = len(messages) - 1
    for index, m in enumerate(messages):
        if m.role not in ("user", "assistant"):
            continue
        text = m.text()
        if not text and has_files and index == last and m.role == "user":
            text = FILES_ONLY_TEXT
        if text:
            history.append({"role": m.role, "content": text})
    return history


def split_current_turn(history: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Prior conversation and the current user message, if the history ends with one."""
    if history and history[-1]["role"] == "user":
        return history[:-1], history[-1]
    return list(history), None


def encode_event(event: Dict[str, Any]) -> str:
    """One coordinator event as a data stream record."""
    event_type = event.get("type")
    if event_type == "text":
        return format_text(event["content"])
    if event_type == "tool_call":
        return format_tool_call(event["id"], event["name"], event.get("args") or {})
    if event_type == "tool_result":
        return format_tool_result(event["id"], event.get("result"))
    if event_type == "error":
        return format_error(event.get("error", "Unknown error"))
    if event_type == "finish":
        return format_finish(event.get("reason", "stop"))
    return ""


@router.post("/api/chat")
async def chat(request: ChatRequest):
    """
    Handle one user turn.

    Builds the per-turn agent table and delegator, then streams the
    coordinator's events. Files on the request are offered to the agents
    as pending uploads for this turn only.
    """
    company_slug = request.company_slug or config.ledger_company
    if not company_slug:
        raise HTTPException(status_code=400, detail="No company selected")
    if not request.messages:
        raise HTTPException(status_code=400, detail="No messages")

    files = tuple(f.to_pending() for f in request.files)
    history = text_history(request.messages, has_files=bool(files))
    prior, _ = split_current_turn(history)
    logger.info(f"Chat turn: company={company_slug}, messages={len(history)}, files={len(files)}")

    ledger = LedgerClient(company_slug)
    ctx = AgentContext(
        client=ledger,
        accounts=AccountDirectory(ledger, llm=ollama),
        settings=config.match_settings(),
        pending_files=files,
    )
    agents = build_capability_agents(ctx)
    delegator = Delegator(
        agents,
        llm=ollama,
        history=prior,
        pending_files=files,
        ledger_client=ledger,
    )
    coordinator = Coordinator(delegator, llm=ollama, files=files)

    async def stream() -> AsyncIterator[str]:
        try:
            async for event in coordinator.run(history):
                record = encode_event(event)
                if record:
                    yield record
        finally:
            await ledger.close()

    return StreamingResponse(stream(), media_type="text/plain; charset=utf-8", headers=STREAM_HEADERS)
