"""
Coordinator loop.

The coordinator only owns delegation tools. Each round streams the
model's answer; text is passed through as it arrives, and any
delegation calls are run one after another once the round ends, with
their results fed back for the next round. The loop ends when a round
has no tool calls or after ``coordinator_max_steps`` rounds.
"""

import json
import logging
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from .agent_runner import parse_tool_call
from .config import config
from .delegation import Delegator
from .errors import ModelServiceError
from .models import AgentId, PendingFile
from .ollama_client import OllamaClient
from .prompts import coordinator_prompt
from .tools import Toolset

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, something went wrong while handling your request. Please try again."


class Coordinator:
    """
    Streams one user turn.

    Yields event dicts:
    - {"type": "text", "content": "..."}
    - {"type": "tool_call", "id": ..., "name": ..., "args": {...}}
    - {"type": "tool_result", "id": ..., "result": {...}}
    - {"type": "error", "error": "..."}
    - {"type": "finish", "reason": "stop" | "length" | "error"}
    """

    def __init__(
        self,
        delegator: Delegator,
        llm: OllamaClient,
        model: Optional[str] = None,
        files: Sequence[PendingFile] = (),
        max_steps: Optional[int] = None,
        today: Optional[date] = None,
    ):
        self.delegator = delegator
        self.llm = llm
        self.model = model or config.ollama_model
        self.files = tuple(files)
        self.max_steps = max_steps or config.coordinator_max_steps
        self.today = today
        self.toolset = Toolset(delegator.tools_for(AgentId.ORCHESTRATOR))

    async def run(self, messages: Sequence[Dict[str, Any]]) -> AsyncIterator[Dict[str, Any]]:
        conversation: List[Dict[str, Any]] = [
            {"role": "system", "content": coordinator_prompt(self.files, self.today)},
        ]
        conversation.extend(messages)

        try:
            for round_index in range(self.max_steps):
                content_parts: List[str] = []
                raw_calls: List[Dict[str, Any]] = []
                seen_ids = set()

                async for chunk in self.llm.chat_stream(
                    model=self.model,
                    messages=conversation,
                    tools=self.toolset.schemas(),
                ):
                    chunk_type = chunk.get("type")
                    if chunk_type == "error":
                        raise ModelServiceError(f"Model service error: {chunk.get('error')}")
                    elif chunk_type == "content":
                        content_parts.append(chunk["content"])
                        yield {"type": "text", "content": chunk["content"]}
                    elif chunk_type == "tool_call":
                        tool_call = chunk["tool_call"]
                        # Dedupe repeated tool call chunks
                        if tool_call["id"] in seen_ids:
                            continue
                        seen_ids.add(tool_call["id"])
                        raw_calls.append(tool_call)
                    elif chunk_type == "done":
                        break

                if not raw_calls:
                    logger.info(f"Coordinator finished after {round_index + 1} round(s)")
                    yield {"type": "finish", "reason": "stop"}
                    return

                conversation.append({
                    "role": "assistant",
                    "content": "".join(content_parts),
                    "tool_calls": raw_calls,
                })

                for raw in raw_calls:
                    call = parse_tool_call(raw)
                    yield {"type": "tool_call", "id": call.id, "name": call.name, "args": call.arguments}
                    result = await self.toolset.dispatch(call)
                    yield {"type": "tool_result", "id": call.id, "result": result}
                    conversation.append({
                        "role": "tool",
                        "content": json.dumps(result, ensure_ascii=False, default=str),
                        "tool_name": call.name,
                    })

            logger.warning(f"Coordinator hit the round cap ({self.max_steps})")
            yield {"type": "finish", "reason": "length"}

        except Exception as e:
            logger.error(f"Coordinator failed: {e}", exc_info=True)
            yield {"type": "text", "content": APOLOGY}
            yield {"type": "error", "error": str(e)}
            yield {"type": "finish", "reason": "error"}
