"""
Delegation between agents.

The coordinator and every capability agent reach other agents through
``delegate_to_<agent>`` tools. Each call becomes a DelegationRequest that
the Delegator routes to exactly one capability agent, runs that agent's
tool loop, and answers with a DelegationResponse. Delegation is
sequential and forms a tree: a capability agent may delegate onward,
never to itself, and never deeper than ``max_delegation_depth``.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from .agent_runner import run_agent_loop
from .attachments import apply_upload_plan
from .capabilities import CapabilityAgent
from .config import config
from .data_stream import DELEGATION_PREFIX
from .errors import ProtocolError
from .ledger_client import LedgerClient
from .models import AGENT_DESCRIPTIONS, CAPABILITY_AGENTS, AgentId, PendingFile
from .ollama_client import OllamaClient
from .step_trace import (
    FILE_UPLOADED, CreatedEntity, build_upload_plan, completed_operations,
    extract_created_entities, uploads_performed,
)
from .tools import ToolKind, ToolSpec, params, string

logger = logging.getLogger(__name__)

DelegateFn = Callable[[AgentId, str, Optional[Dict[str, Any]]], Awaitable[Dict[str, Any]]]


def _name(agent: Any) -> str:
    return getattr(agent, "value", str(agent))


# ============================================================================
# Request / response
# ============================================================================

@dataclass(frozen=True)
class DelegationRequest:
    from_agent: AgentId
    to_agent: AgentId
    task: str
    context: Optional[Dict[str, Any]] = None

    def message(self) -> str:
        """The user message the target agent sees."""
        text = f"[Delegated task from {self.from_agent.value}]: {self.task}"
        if self.context:
            text += f"\n\nContext: {json.dumps(self.context, ensure_ascii=False, default=str)}"
        return text


@dataclass
class SideSignals:
    """What the invocation did besides answering."""
    file_uploaded: bool = False
    completed_operations: List[str] = field(default_factory=list)
    created_entities: List[CreatedEntity] = field(default_factory=list)
    uploads: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            FILE_UPLOADED: self.file_uploaded,
            "completedOperations": list(self.completed_operations),
            "createdEntities": [
                {"entityType": e.entity_type, "entityId": e.entity_id, "order": e.order}
                for e in self.created_entities
            ],
            "uploads": list(self.uploads),
        }


@dataclass
class DelegationResponse:
    """Answer to one DelegationRequest; ``from_agent`` is the agent that handled it."""
    success: bool
    from_agent: AgentId
    result: str = ""
    error: Optional[str] = None
    side_signals: SideSignals = field(default_factory=SideSignals)

    def to_tool_result(self) -> Dict[str, Any]:
        """Flattened form returned by the delegation tools."""
        out: Dict[str, Any] = {
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "delegatedTo": _name(self.from_agent),
        }
        out.update(self.side_signals.to_dict())
        return out


# ============================================================================
# Delegation tools
# ============================================================================

def delegation_tool_name(agent: AgentId) -> str:
    return f"{DELEGATION_PREFIX}{agent.tool_suffix}"


def build_delegation_tools(current: AgentId, delegate: DelegateFn) -> List[ToolSpec]:
    """
    One delegation tool per capability agent other than ``current``.

    The coordinator (``current`` = orchestrator) gets a tool for every
    capability agent. No tool ever targets ``current`` or the coordinator.
    """
    tools = []
    for target in CAPABILITY_AGENTS:
        if target is current:
            continue
        tools.append(_delegation_tool(target, delegate))
    return tools


def _delegation_tool(target: AgentId, delegate: DelegateFn) -> ToolSpec:
    async def handler(task: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await delegate(target, task, context if isinstance(context, dict) else None)

    return ToolSpec(
        delegation_tool_name(target),
        f"Delegate a task to {target.value}. Handles: {AGENT_DESCRIPTIONS[target]}.",
        params(
            {
                "task": string("The complete task, including every detail the agent needs"),
                "context": {"type": "object", "description": "Extra structured data for the task"},
            },
            required=["task"],
        ),
        handler,
        kind=ToolKind.DELEGATE,
    )


# ============================================================================
# Delegator
# ============================================================================

class Delegator:
    """
    Routes delegation requests to capability agents for one user turn.

    ``agents`` is the immutable table built by ``build_capability_agents``.
    ``history`` is the prior conversation as text-only messages; every
    invocation is seeded with it plus the delegated task.
    """

    def __init__(
        self,
        agents: Mapping[AgentId, CapabilityAgent],
        llm: OllamaClient,
        model: Optional[str] = None,
        history: Sequence[Dict[str, Any]] = (),
        pending_files: Sequence[PendingFile] = (),
        ledger_client: Optional[LedgerClient] = None,
        max_steps: Optional[int] = None,
        max_depth: Optional[int] = None,
    ):
        self.agents = agents
        self.llm = llm
        self.model = model or config.agent_model
        self.history = list(history)
        self.pending_files = tuple(pending_files)
        self.ledger_client = ledger_client
        self.max_steps = max_steps or config.agent_max_steps
        self.max_depth = max_depth or config.max_delegation_depth
        self._depth = 0

    def tools_for(self, agent: AgentId) -> List[ToolSpec]:
        """Delegation tools offered to ``agent``."""
        return build_delegation_tools(agent, self._delegate_from(agent))

    def _delegate_from(self, from_agent: AgentId) -> DelegateFn:
        async def delegate(target: AgentId, task: str, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            response = await self.delegate(DelegationRequest(from_agent, target, task, context))
            return response.to_tool_result()

        return delegate

    async def delegate(self, request: DelegationRequest) -> DelegationResponse:
        """Run one delegation. Never raises; failures come back as ``success=False``."""
        try:
            self._check(request)
        except ProtocolError as e:
            logger.warning(f"Rejected delegation {request.from_agent.value} -> {_name(request.to_agent)}: {e}")
            return DelegationResponse(success=False, from_agent=request.to_agent, error=str(e))

        logger.info(f"Delegating {request.from_agent.value} -> {request.to_agent.value} "
                    f"(depth {self._depth + 1}): {request.task[:100]}")
        self._depth += 1
        try:
            return await self._invoke(request)
        except Exception as e:
            logger.error(f"Delegation to {request.to_agent.value} failed: {e}", exc_info=True)
            return DelegationResponse(success=False, from_agent=request.to_agent, error=str(e))
        finally:
            self._depth -= 1

    def _check(self, request: DelegationRequest):
        if request.to_agent not in self.agents:
            raise ProtocolError(f"{_name(request.to_agent)} is not a capability agent")
        if request.to_agent == request.from_agent:
            raise ProtocolError(f"{request.to_agent.value} cannot delegate to itself")
        if self._depth >= self.max_depth:
            raise ProtocolError(f"Delegation depth limit ({self.max_depth}) reached")

    async def _invoke(self, request: DelegationRequest) -> DelegationResponse:
        agent = self.agents[request.to_agent]
        toolset = agent.toolset.extend(self.tools_for(agent.agent_id))
        messages = self.history + [{"role": "user", "content": request.message()}]

        run = await run_agent_loop(self.llm, self.model, agent.prompt, messages, toolset, self.max_steps)
        if run.hit_step_cap:
            logger.warning(f"{agent.agent_id.value} stopped at the step cap after {run.tool_call_count} tool calls")

        signals = SideSignals(
            file_uploaded=uploads_performed(run.steps),
            completed_operations=completed_operations(run.steps),
            created_entities=extract_created_entities(run.steps, toolset.creation_rules()),
        )

        if self.pending_files and signals.created_entities and not signals.file_uploaded and self.ledger_client:
            plan = build_upload_plan(signals.created_entities, len(self.pending_files))
            logger.info(f"No upload step ran; uploading {len(plan)} file(s) to created entities")
            signals.uploads = await apply_upload_plan(self.ledger_client, plan, self.pending_files)
            signals.file_uploaded = any(u["success"] for u in signals.uploads)

        result = run.text
        if signals.completed_operations:
            result += (
                f"\n\n[Operations completed: {', '.join(signals.completed_operations)}. "
                f"These are done; do not delegate them again.]"
            )

        return DelegationResponse(
            success=True,
            from_agent=agent.agent_id,
            result=result,
            side_signals=signals,
        )
