"""
Tool specs and toolsets.

A ToolSpec pairs the JSON schema the model sees with the async handler
that runs the call. A Toolset is the closed set of tools one agent may
call; dispatch is a single lookup keyed by tool name.

Handlers return plain dicts. ``success()`` and ``failure()`` build the
common result shapes, and creating tools set the completion marker so
the step trace can find the entities they created.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Type

import httpx

from .errors import LedgerAgentsError, ValidationError
from .ledger_client import LedgerClient
from .step_trace import FILE_UPLOADED, OPERATION_COMPLETE, CreationRule, ToolCall

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Dict[str, Any]]]

# Transport faults abort the whole invocation instead of becoming a tool result
FATAL_TOOL_ERRORS = (httpx.TransportError,)


class ToolKind(str, Enum):
    QUERY = "query"
    CREATE = "create"
    UPDATE = "update"
    UPLOAD = "upload"
    DELEGATE = "delegate"


@dataclass(frozen=True)
class ToolSpec:
    """A callable tool as offered to the model."""
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: Handler
    kind: ToolKind = ToolKind.QUERY
    creates: Optional[CreationRule] = None

    def schema(self) -> Dict[str, Any]:
        """Tool definition in the function-calling format Ollama accepts."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


# ============================================================================
# Result helpers
# ============================================================================

def success(message: Optional[str] = None, operation_complete: bool = False, **data) -> Dict[str, Any]:
    result: Dict[str, Any] = {"success": True}
    if operation_complete:
        result[OPERATION_COMPLETE] = True
    if message:
        result["message"] = message
    result.update(data)
    return result


def failure(error: str, **extra) -> Dict[str, Any]:
    return {"success": False, "error": error, **extra}


def is_upload_result(result: Dict[str, Any]) -> bool:
    return bool(result.get(FILE_UPLOADED))


# ============================================================================
# Schema helpers
# ============================================================================

def params(properties: Dict[str, Any], required: Sequence[str] = ()) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": list(required)}


def string(description: str, enum: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "string", "description": description}
    if enum:
        schema["enum"] = list(enum)
    return schema


def integer(description: str) -> Dict[str, Any]:
    return {"type": "integer", "description": description}


def number(description: str) -> Dict[str, Any]:
    return {"type": "number", "description": description}


def boolean(description: str) -> Dict[str, Any]:
    return {"type": "boolean", "description": description}


def array(items: Dict[str, Any], description: str) -> Dict[str, Any]:
    return {"type": "array", "items": items, "description": description}


def obj(properties: Dict[str, Any], description: str = "", required: Sequence[str] = ()) -> Dict[str, Any]:
    schema = params(properties, required)
    if description:
        schema["description"] = description
    return schema


# ============================================================================
# Toolset
# ============================================================================

class Toolset:
    """
    Closed set of tools for one agent.

    When ``operations`` is given, the tool names must be exactly the
    values of that Enum, so a capability cannot silently gain or lose an
    operation.
    """

    def __init__(self, specs: Iterable[ToolSpec], operations: Optional[Type[Enum]] = None):
        self._specs: Dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            self._specs[spec.name] = spec

        if operations is not None:
            expected = {op.value for op in operations}
            actual = set(self._specs)
            if expected != actual:
                missing = sorted(expected - actual)
                extra = sorted(actual - expected)
                raise ValueError(f"Toolset does not match {operations.__name__}: "
                                 f"missing={missing} extra={extra}")

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def schemas(self) -> List[Dict[str, Any]]:
        return [spec.schema() for spec in self._specs.values()]

    def creation_rules(self) -> Dict[str, CreationRule]:
        """Creation rules keyed by tool name, for the step trace."""
        return {name: spec.creates for name, spec in self._specs.items() if spec.creates is not None}

    def extend(self, specs: Iterable[ToolSpec]) -> "Toolset":
        """A new toolset with ``specs`` added (used for delegation tools)."""
        return Toolset(list(self._specs.values()) + list(specs))

    async def dispatch(self, call: ToolCall) -> Dict[str, Any]:
        """
        Run one tool call and return its result dict.

        Unknown tools, missing arguments and handler exceptions become
        failure results. Only FATAL_TOOL_ERRORS propagate.
        """
        spec = self._specs.get(call.name)
        if spec is None:
            logger.warning(f"Unknown tool requested: {call.name}")
            return failure(f"Unknown tool: {call.name}. Available tools: {', '.join(self._specs)}")

        arguments = call.arguments if isinstance(call.arguments, dict) else {}
        missing = [p for p in spec.parameters.get("required", []) if arguments.get(p) is None]
        if missing:
            return failure(f"Missing required argument(s) for {call.name}: {', '.join(missing)}")

        known = spec.parameters.get("properties", {})
        unknown = [k for k in arguments if k not in known]
        if unknown:
            logger.debug(f"Dropping unknown arguments for {call.name}: {unknown}")
            arguments = {k: v for k, v in arguments.items() if k in known}

        logger.info(f"Tool call: {call.name}")
        try:
            result = await spec.handler(**arguments)
        except FATAL_TOOL_ERRORS:
            raise
        except ValidationError as e:
            logger.info(f"{call.name} rejected input: {e}")
            return failure(str(e))
        except LedgerAgentsError as e:
            logger.warning(f"{call.name} failed: {e}")
            return failure(str(e))
        except Exception as e:
            logger.error(f"{call.name} raised: {e}", exc_info=True)
            return failure(f"{call.name} failed: {e}")

        if not isinstance(result, dict):
            result = success(result=result)
        return result


# ============================================================================
# Generic REST tool builders
# ============================================================================

def search_tool(
    client: LedgerClient,
    name: str,
    description: str,
    path: str,
    filters: Dict[str, Any],
    summarize: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    default_page_size: int = 25,
) -> ToolSpec:
    """A QUERY tool that lists ``path`` with the given filters as query params."""
    properties = dict(filters)
    properties["pageSize"] = integer(f"Max results (default {default_page_size})")

    async def handler(**kwargs) -> Dict[str, Any]:
        kwargs.setdefault("pageSize", default_page_size)
        data = await client.get(path, **kwargs)
        items = data if isinstance(data, list) else []
        if summarize:
            items = [summarize(item) for item in items]
        return success(count=len(items), items=items)

    return ToolSpec(name, description, params(properties), handler)


def get_tool(
    client: LedgerClient,
    name: str,
    description: str,
    path_template: str,
    id_param: str,
    result_key: str,
) -> ToolSpec:
    """A QUERY tool that fetches one entity by id."""

    async def handler(**kwargs) -> Dict[str, Any]:
        entity = await client.get(path_template.format(id=kwargs[id_param]))
        return success(**{result_key: entity})

    return ToolSpec(
        name,
        description,
        params({id_param: integer(f"{result_key} id")}, required=[id_param]),
        handler,
    )
