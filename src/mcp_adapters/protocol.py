"""JSON-RPC 2.0 session mapping MCP methods onto an adapter server."""

import json
import logging
from typing import Any, Dict, List, Optional

from .capabilities import CapabilityKind
from .errors import ErrorKind
from .registry import LIST_CAPABILITIES
from .response import Envelope, JsonRpcResponse

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"

_HANDLER_FAILURES = {ErrorKind.DOWNSTREAM_SERVICE.value, ErrorKind.UNEXPECTED.value}


def to_text(value: Any) -> str:
    """Render a handler result as text content."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, default=str)
    except (TypeError, ValueError):
        return str(value)


def prompt_arguments(input_schema: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Prompt argument list derived from an input schema."""
    required = set(input_schema.get("required", []))
    arguments = []
    for prop_name, prop_schema in input_schema.get("properties", {}).items():
        arg = {"name": prop_name, "required": prop_name in required}
        if "description" in prop_schema:
            arg["description"] = prop_schema["description"]
        if "type" in prop_schema:
            prop_type = prop_schema["type"]
            arg["type"] = prop_type[0] if isinstance(prop_type, list) else prop_type
        arguments.append(arg)
    return arguments


def prompt_messages(messages: Any) -> Optional[List[Dict[str, Any]]]:
    """Convert ``[{"role", "content"}]`` to MCP prompt messages, or ``None`` if malformed."""
    if not isinstance(messages, list):
        return None
    result = []
    for msg in messages:
        if not (isinstance(msg, dict) and "role" in msg and "content" in msg):
            return None
        content = msg["content"]
        if not isinstance(content, dict):
            content = {"type": "text", "text": str(content)}
        result.append({"role": msg["role"], "content": content})
    return result


class JsonRpcSession:
    """Routes one JSON-RPC message at a time to the server.

    Args:
        server: An :class:`~mcp_adapters.lifecycle.AdapterServer` (or any
            object with the same ``dispatch``, ``descriptors`` and
            ``get_capability`` methods)
    """

    def __init__(self, server):
        self.server = server
        self._methods = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "prompts/list": self._prompts_list,
            "prompts/get": self._prompts_get,
            "capabilities/list": self._capabilities_list,
            "capabilities/dispatch": self._capabilities_dispatch,
        }

    async def handle(self, message: Any) -> Optional[Dict[str, Any]]:
        """Handle one decoded message.

        Args:
            message: Decoded JSON value

        Returns:
            Response dict, or ``None`` for notifications
        """
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0" or not isinstance(message.get("method"), str):
            request_id = message.get("id") if isinstance(message, dict) else None
            return JsonRpcResponse.invalid_request(request_id, "Invalid JSON-RPC request")

        method = message["method"]
        is_notification = "id" not in message
        request_id = message.get("id")
        params = message.get("params") or {}

        if is_notification:
            logger.debug("Notification %s", method)
            return None

        if not isinstance(params, dict):
            return JsonRpcResponse.invalid_params(request_id, "params must be an object")

        handler = self._methods.get(method)
        if handler is None:
            return JsonRpcResponse.method_not_found(request_id, method)

        try:
            return await handler(request_id, params)
        except Exception:
            logger.exception("Error while handling %s", method)
            return JsonRpcResponse.internal_error(request_id, f"Internal error while handling {method}")

    def _descriptors(self, kind: CapabilityKind):
        return self.server.descriptors(kind)

    def _wrong_kind(self, request_id, name: str, kind: CapabilityKind):
        descriptor = self.server.get_capability(name)
        if descriptor is not None and descriptor.kind is not kind:
            return JsonRpcResponse.from_envelope(request_id, Envelope.not_found(name))
        return None

    async def _initialize(self, request_id, params):
        capabilities: Dict[str, Any] = {}
        if self._descriptors(CapabilityKind.TOOL):
            capabilities["tools"] = {"listChanged": False}
        if self._descriptors(CapabilityKind.PROMPT):
            capabilities["prompts"] = {"listChanged": False}
        result = {
            "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
            "capabilities": capabilities,
            "serverInfo": {"name": self.server.name, "version": self.server.version},
        }
        if self.server.instructions:
            result["instructions"] = self.server.instructions
        return JsonRpcResponse.success(request_id, result)

    async def _ping(self, request_id, params):
        return JsonRpcResponse.success(request_id, {})

    async def _tools_list(self, request_id, params):
        tools = [d.to_dict() for d in self._descriptors(CapabilityKind.TOOL)]
        return JsonRpcResponse.success(request_id, {"tools": tools})

    async def _tools_call(self, request_id, params):
        name = params.get("name")
        if not isinstance(name, str):
            return JsonRpcResponse.invalid_params(request_id, "tools/call requires a tool name")
        wrong_kind = self._wrong_kind(request_id, name, CapabilityKind.TOOL)
        if wrong_kind is not None:
            return wrong_kind
        envelope = await self.server.dispatch(name, params.get("arguments"))

        if envelope["ok"]:
            result = envelope["result"]
            payload = {"content": [{"type": "text", "text": to_text(result)}], "isError": False}
            if isinstance(result, dict):
                payload["structuredContent"] = result
            return JsonRpcResponse.success(request_id, payload)

        if envelope["errorKind"] in _HANDLER_FAILURES:
            failure = {k: v for k, v in envelope.items() if k != "ok"}
            return JsonRpcResponse.success(request_id, {
                "content": [{"type": "text", "text": envelope["message"]}],
                "structuredContent": failure,
                "isError": True,
            })
        return JsonRpcResponse.from_envelope(request_id, envelope)

    async def _prompts_list(self, request_id, params):
        prompts = []
        for descriptor in self._descriptors(CapabilityKind.PROMPT):
            entry = {"name": descriptor.name}
            if descriptor.description:
                entry["description"] = descriptor.description
            arguments = prompt_arguments(descriptor.input_schema)
            if arguments:
                entry["arguments"] = arguments
            prompts.append(entry)
        return JsonRpcResponse.success(request_id, {"prompts": prompts})

    async def _prompts_get(self, request_id, params):
        name = params.get("name")
        if not isinstance(name, str):
            return JsonRpcResponse.invalid_params(request_id, "prompts/get requires a prompt name")
        wrong_kind = self._wrong_kind(request_id, name, CapabilityKind.PROMPT)
        if wrong_kind is not None:
            return wrong_kind
        envelope = await self.server.dispatch(name, params.get("arguments"))
        if not envelope["ok"]:
            return JsonRpcResponse.from_envelope(request_id, envelope)

        messages = prompt_messages(envelope["result"])
        if messages is None:
            logger.error("Prompt %s returned malformed messages", name)
            return JsonRpcResponse.internal_error(request_id, f"Prompt '{name}' returned malformed messages")

        descriptor = self.server.get_capability(name)
        result = {"messages": messages}
        if descriptor is not None and descriptor.description:
            result["description"] = descriptor.description
        return JsonRpcResponse.success(request_id, result)

    async def _capabilities_list(self, request_id, params):
        envelope = await self.server.dispatch(LIST_CAPABILITIES, {})
        if not envelope["ok"]:
            return JsonRpcResponse.from_envelope(request_id, envelope)
        return JsonRpcResponse.success(request_id, envelope["result"])

    async def _capabilities_dispatch(self, request_id, params):
        name = params.get("capabilityName")
        if not isinstance(name, str):
            return JsonRpcResponse.invalid_params(request_id, "capabilityName is required")
        envelope = await self.server.dispatch(name, params.get("arguments"))
        return JsonRpcResponse.success(request_id, envelope)

