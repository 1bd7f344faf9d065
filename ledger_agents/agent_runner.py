"""
Bounded tool-calling loop for one agent invocation.

Each round sends the conversation to the model with the agent's tool
schemas. Tool calls in the response are dispatched in order and their
results appended as ``tool`` messages; the loop ends when the model
answers without tool calls or the step cap is reached. Every round is
recorded as an ExecutionStep so the caller can inspect what happened.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .errors import ModelServiceError
from .ollama_client import OllamaClient
from .step_trace import ExecutionStep, ToolCall, ToolResult
from .tools import Toolset

logger = logging.getLogger(__name__)


@dataclass
class AgentRun:
    """Final text and full step trace of one invocation."""
    text: str
    steps: List[ExecutionStep] = field(default_factory=list)
    hit_step_cap: bool = False

    @property
    def tool_call_count(self) -> int:
        return sum(len(s.tool_calls) for s in self.steps)


def parse_tool_call(raw: Dict[str, Any]) -> ToolCall:
    func = raw.get("function", {}) or {}
    arguments = func.get("arguments") or {}
    return ToolCall(id=raw.get("id", ""), name=func.get("name", ""), arguments=arguments)


async def run_agent_loop(
    llm: OllamaClient,
    model: str,
    system_prompt: str,
    messages: Sequence[Dict[str, Any]],
    toolset: Toolset,
    max_steps: int,
) -> AgentRun:
    """
    Run the tool loop until the model stops calling tools or ``max_steps``.

    Raises ModelServiceError when the model service fails. Tool failures
    do not end the loop; the model sees them as results.
    """
    conversation: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    conversation.extend(messages)
    tools = toolset.schemas()
    steps: List[ExecutionStep] = []
    texts: List[str] = []

    for index in range(max_steps):
        response = await llm.chat(model=model, messages=conversation, tools=tools)
        if response.get("error"):
            raise ModelServiceError(f"Model service error: {response['error']}")

        message = response.get("message", {}) or {}
        content = message.get("content") or ""
        raw_calls = message.get("tool_calls") or []

        step = ExecutionStep(index=index, text=content)
        steps.append(step)
        if content:
            texts.append(content)

        if not raw_calls:
            logger.info(f"Agent loop finished after {index + 1} step(s)")
            return AgentRun(text=content or "\n".join(texts), steps=steps)

        conversation.append({"role": "assistant", "content": content, "tool_calls": raw_calls})

        for raw in raw_calls:
            call = parse_tool_call(raw)
            step.tool_calls.append(call)
            result = await toolset.dispatch(call)
            step.tool_results.append(ToolResult(id=call.id, name=call.name, result=result))
            conversation.append({
                "role": "tool",
                "content": json.dumps(result, ensure_ascii=False, default=str),
                "tool_name": call.name,
            })

    logger.warning(f"Agent loop hit the step cap ({max_steps})")
    text = "\n".join(texts) or f"Stopped after {max_steps} steps without a final answer."
    return AgentRun(text=text, steps=steps, hit_step_cap=True)
