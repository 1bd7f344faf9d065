"""
Step trace aggregation.

An agent invocation produces an ordered list of ExecutionSteps, each
holding the tool calls the model made in that round and their results.
This module derives, from that trace, which entities were created (in
creation order) and how pending files map onto them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Result flags set by tool handlers
OPERATION_COMPLETE = "_operationComplete"
FILE_UPLOADED = "fileUploaded"


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """The result of executing one ToolCall."""
    id: str
    name: str
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionStep:
    """One round of an agent invocation; ``index`` orders the trace."""
    index: int
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)


@dataclass(frozen=True)
class CreationRule:
    """Where a creating tool puts the id of the entity it created."""
    entity_type: str
    id_path: Tuple[str, ...]

    def extract_id(self, result: Mapping[str, Any]) -> Optional[Any]:
        node: Any = result
        for key in self.id_path:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
        if node is None or node == "":
            return None
        return node


@dataclass(frozen=True)
class CreatedEntity:
    entity_id: Any
    entity_type: str
    order: int
    tool_name: str = ""


@dataclass(frozen=True)
class UploadAssignment:
    """Upload pending file ``file_index`` (1-based) to ``entity``."""
    entity: CreatedEntity
    file_index: int


DEFAULT_CREATION_RULES: Dict[str, CreationRule] = {
    "create_purchase": CreationRule("purchase", ("purchase", "purchaseId")),
    "create_sale": CreationRule("sale", ("sale", "saleId")),
    "create_invoice": CreationRule("invoice", ("invoice", "invoiceId")),
}


def iter_results(steps: Iterable[ExecutionStep]) -> Iterable[ToolResult]:
    """All tool results in trace order."""
    for step in sorted(steps, key=lambda s: s.index):
        yield from step.tool_results


def extract_created_entities(
    steps: Sequence[ExecutionStep],
    rules: Optional[Mapping[str, CreationRule]] = None,
) -> List[CreatedEntity]:
    """
    Every entity created during an invocation, in creation order.

    A result counts only when it carries the completion marker and the
    tool's rule finds an id in it. Upload and query steps have no rule
    and are skipped wherever they appear in the trace.
    """
    rules = DEFAULT_CREATION_RULES if rules is None else rules
    entities: List[CreatedEntity] = []

    for result in iter_results(steps):
        rule = rules.get(result.name)
        if rule is None:
            continue
        payload = result.result or {}
        if not payload.get(OPERATION_COMPLETE):
            continue
        entity_id = rule.extract_id(payload)
        if entity_id is None:
            logger.warning(f"{result.name} completed without an id at {'.'.join(rule.id_path)}")
            continue
        entities.append(CreatedEntity(
            entity_id=entity_id,
            entity_type=rule.entity_type,
            order=len(entities),
            tool_name=result.name,
        ))

    return entities


def build_upload_plan(entities: Sequence[CreatedEntity], file_count: int) -> List[UploadAssignment]:
    """
    Assign file ``order + 1`` to each entity while files last.

    Surplus entities get no upload and surplus files stay unused.
    """
    return [
        UploadAssignment(entity=entity, file_index=entity.order + 1)
        for entity in entities
        if entity.order < file_count
    ]


def completed_operations(steps: Sequence[ExecutionStep]) -> List[str]:
    """Names of tools whose result carried the completion marker, in order."""
    return [r.name for r in iter_results(steps) if (r.result or {}).get(OPERATION_COMPLETE)]


def uploads_performed(steps: Sequence[ExecutionStep]) -> bool:
    """True if any step uploaded a file."""
    return any((r.result or {}).get(FILE_UPLOADED) for r in iter_results(steps))
