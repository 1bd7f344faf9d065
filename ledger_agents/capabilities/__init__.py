"""
Capability agents.

Each module defines one agent's closed set of operations and builds its
Toolset from a shared AgentContext. ``build_capability_agents`` is the
first construction phase: it creates every agent once and returns an
immutable table keyed by AgentId. Delegation tools are added later by
the Delegator, which only reads this table.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Mapping

from ..models import CAPABILITY_AGENTS, AgentId
from ..prompts import agent_prompt
from ..tools import Toolset
from . import banking, counterparties, general_ledger, purchases, quotations, sales
from .common import AgentContext

TOOLSET_BUILDERS: Dict[AgentId, Callable[[AgentContext], Toolset]] = {
    AgentId.SALES: sales.build_toolset,
    AgentId.PURCHASES: purchases.build_toolset,
    AgentId.COUNTERPARTY: counterparties.build_toolset,
    AgentId.QUOTATION: quotations.build_toolset,
    AgentId.BANKING: banking.build_toolset,
    AgentId.LEDGER: general_ledger.build_toolset,
}


@dataclass(frozen=True)
class CapabilityAgent:
    """A capability agent: its id, its tools and its system prompt."""
    agent_id: AgentId
    toolset: Toolset
    prompt: str


def build_capability_agents(ctx: AgentContext) -> Mapping[AgentId, CapabilityAgent]:
    """Build every capability agent for one turn."""
    agents = {
        agent: CapabilityAgent(
            agent_id=agent,
            toolset=TOOLSET_BUILDERS[agent](ctx),
            prompt=agent_prompt(agent, ctx.pending_files),
        )
        for agent in CAPABILITY_AGENTS
    }
    return MappingProxyType(agents)


__all__ = [
    "AgentContext",
    "CapabilityAgent",
    "TOOLSET_BUILDERS",
    "build_capability_agents",
]
