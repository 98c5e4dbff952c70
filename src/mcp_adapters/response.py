"""Response envelopes for dispatch results and JSON-RPC messages."""

from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Union

from .errors import CategorizedError, ErrorKind


class ErrorCodes(IntEnum):
    """JSON-RPC error codes used on the wire."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    SERVER_ERROR = -32000
    SERVER_NOT_READY = -32002


class DispatchErrorKind(str, Enum):
    """Failures produced by the dispatcher itself rather than a handler."""

    CAPABILITY_NOT_FOUND = "CapabilityNotFound"
    INVALID_ARGUMENTS = "InvalidArguments"
    SERVER_UNAVAILABLE = "ServerUnavailable"


_ERROR_CODES = {
    DispatchErrorKind.CAPABILITY_NOT_FOUND.value: ErrorCodes.METHOD_NOT_FOUND,
    DispatchErrorKind.INVALID_ARGUMENTS.value: ErrorCodes.INVALID_PARAMS,
    DispatchErrorKind.SERVER_UNAVAILABLE.value: ErrorCodes.SERVER_NOT_READY,
    ErrorKind.DOWNSTREAM_SERVICE.value: ErrorCodes.SERVER_ERROR,
    ErrorKind.ENVIRONMENT_VALIDATION.value: ErrorCodes.SERVER_ERROR,
    ErrorKind.UNEXPECTED.value: ErrorCodes.INTERNAL_ERROR,
}


def error_code_for(error_kind: str) -> int:
    """JSON-RPC code for an ``errorKind`` value."""
    return int(_ERROR_CODES.get(error_kind, ErrorCodes.INTERNAL_ERROR))


class Envelope:
    """Builder for ``{ok: ...}`` dispatch results."""

    @staticmethod
    def success(result: Any) -> Dict[str, Any]:
        return {"ok": True, "result": result}

    @staticmethod
    def failure(
        kind: Union[ErrorKind, DispatchErrorKind, str],
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create a failed dispatch result.

        Args:
            kind: Error kind, stored by value
            message: Caller-visible message
            details: Optional structured details

        Returns:
            Failure envelope
        """
        envelope = {
            "ok": False,
            "errorKind": kind.value if isinstance(kind, Enum) else kind,
            "message": message,
        }
        if details:
            envelope["details"] = details
        return envelope

    @staticmethod
    def from_error(error: CategorizedError) -> Dict[str, Any]:
        envelope = {"ok": False}
        envelope.update(error.to_dict())
        return envelope

    @staticmethod
    def not_found(name: str) -> Dict[str, Any]:
        return Envelope.failure(
            DispatchErrorKind.CAPABILITY_NOT_FOUND,
            f"Capability not found: {name}",
            {"capability": name},
        )

    @staticmethod
    def invalid_arguments(name: str, errors: List[Dict[str, str]]) -> Dict[str, Any]:
        fields = ", ".join(sorted({error["field"] for error in errors}))
        return Envelope.failure(
            DispatchErrorKind.INVALID_ARGUMENTS,
            f"Invalid arguments for '{name}': {fields}",
            {"capability": name, "errors": errors},
        )

    @staticmethod
    def unavailable(state: str) -> Dict[str, Any]:
        return Envelope.failure(
            DispatchErrorKind.SERVER_UNAVAILABLE,
            f"Server is not accepting requests (state: {state})",
            {"state": state},
        )


class JsonRpcResponse:
    """Builder for JSON-RPC 2.0 response messages."""

    @staticmethod
    def success(request_id: Any, result: Any) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    @staticmethod
    def error(
        request_id: Any,
        code: int,
        message: str,
        data: Optional[Any] = None
    ) -> Dict[str, Any]:
        """Create an error response.

        Args:
            request_id: Id of the request, ``None`` when it could not be read
            code: Error code
            message: Error message
            data: Optional error data

        Returns:
            JSON-RPC error response
        """
        error_obj = {"code": int(code), "message": message}
        if data is not None:
            error_obj["data"] = data
        return {"jsonrpc": "2.0", "id": request_id, "error": error_obj}

    @staticmethod
    def from_envelope(request_id: Any, envelope: Dict[str, Any]) -> Dict[str, Any]:
        """Turn a failed dispatch envelope into a JSON-RPC error."""
        data = {"errorKind": envelope["errorKind"]}
        if "details" in envelope:
            data["details"] = envelope["details"]
        return JsonRpcResponse.error(
            request_id,
            error_code_for(envelope["errorKind"]),
            envelope["message"],
            data,
        )

    @staticmethod
    def method_not_found(request_id: Any, method: str) -> Dict[str, Any]:
        return JsonRpcResponse.error(request_id, ErrorCodes.METHOD_NOT_FOUND, f"Method not found: {method}")

    @staticmethod
    def invalid_request(request_id: Any, message: str) -> Dict[str, Any]:
        return JsonRpcResponse.error(request_id, ErrorCodes.INVALID_REQUEST, message)

    @staticmethod
    def invalid_params(request_id: Any, message: str) -> Dict[str, Any]:
        return JsonRpcResponse.error(request_id, ErrorCodes.INVALID_PARAMS, message)

    @staticmethod
    def parse_error(message: str) -> Dict[str, Any]:
        return JsonRpcResponse.error(None, ErrorCodes.PARSE_ERROR, message)

    @staticmethod
    def internal_error(request_id: Any, message: str) -> Dict[str, Any]:
        return JsonRpcResponse.error(request_id, ErrorCodes.INTERNAL_ERROR, message)
