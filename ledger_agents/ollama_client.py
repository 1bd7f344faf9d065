"""Ollama API client (streaming and tool-calling chat)."""

import json
import logging
import secrets
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .config import config

logger = logging.getLogger(__name__)


def _normalize_tool_call(tool_call: Dict[str, Any]) -> Dict[str, Any]:
    """
    Give every tool call an id and dict arguments.

    Ollama omits ids on older versions and some models return the
    arguments as a JSON string.
    """
    func = tool_call.get("function", {}) or {}
    arguments = func.get("arguments", {})
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            logger.warning(f"Tool call arguments are not JSON: {arguments[:100]}")
            arguments = {}
    return {
        "id": tool_call.get("id") or f"call_{secrets.token_hex(4)}",
        "type": "function",
        "function": {"name": func.get("name", ""), "arguments": arguments or {}},
    }


class OllamaClient:
    """
    Async client for Ollama /api/chat.

    Handles:
    - Streaming chat completions for the coordinator
    - Non-streaming tool-calling chat for capability agents
    - JSON-mode completions for account suggestions
    """

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(300.0, connect=10.0))
        self.base_url = base_url or config.ollama_url

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def chat_stream(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.2,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream chat completion from Ollama.

        Yields chunks with structure:
        - {"type": "content", "content": "..."} - text content
        - {"type": "tool_call", "tool_call": {...}} - tool invocation requested by the model
        - {"type": "done", ...} - generation complete
        - {"type": "error", "error": "..."} - transport or HTTP failure
        """
        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
            "options": {"temperature": temperature},
        }
        if tools:
            payload["tools"] = tools

        logger.info(f"Starting chat stream: model={model}, messages={len(messages)}, "
                    f"tools={len(tools) if tools else 0}")

        try:
            async with self.client.stream(
                "POST",
                f"{self.base_url}/api/chat",
                json=payload,
            ) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line:
                        continue

                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Failed to parse chunk: {line[:100]}")
                        continue

                    if chunk.get("error"):
                        yield {"type": "error", "error": str(chunk["error"])}
                        return

                    message = chunk.get("message", {})

                    for tc in message.get("tool_calls", []) or []:
                        yield {
                            "type": "tool_call",
                            "tool_call": _normalize_tool_call(tc),
                        }

                    content = message.get("content", "")
                    if content:
                        yield {
                            "type": "content",
                            "content": content,
                        }

                    if chunk.get("done"):
                        yield {
                            "type": "done",
                            "done_reason": chunk.get("done_reason"),
                            "eval_count": chunk.get("eval_count"),
                        }
                        return

        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e.response.status_code}")
            yield {"type": "error", "error": str(e)}
        except httpx.HTTPError as e:
            logger.error(f"Ollama stream error: {e}")
            yield {"type": "error", "error": str(e)}

    async def chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        format: Optional[str] = None,
        temperature: float = 0.2,
    ) -> Dict[str, Any]:
        """
        Non-streaming chat completion.

        Returns the Ollama response with normalized tool calls, or
        ``{"error": "..."}`` when the call fails.
        """
        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if tools:
            payload["tools"] = tools
        if format:
            payload["format"] = format

        try:
            resp = await self.client.post(
                f"{self.base_url}/api/chat",
                json=payload,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Ollama chat error: {e}")
            return {"error": str(e)}

        if data.get("error"):
            return {"error": str(data["error"])}

        message = data.get("message", {}) or {}
        message["tool_calls"] = [_normalize_tool_call(tc) for tc in message.get("tool_calls", []) or []]
        data["message"] = message
        return data


# Global instance
ollama = OllamaClient()
