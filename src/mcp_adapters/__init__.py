"""mcp-adapters - capability registration and dispatch for MCP adapter processes."""

from .capabilities import CapabilityDescriptor, CapabilityKind
from .config import AdapterSettings, EnvironmentValidator
from .dispatcher import Dispatcher
from .errors import CategorizedError, ErrorKind, LifecycleError, RegistrationError
from .lifecycle import AdapterDefinition, AdapterServer, ServerState, StartupOutcome
from .logging_config import setup_logging
from .registry import LIST_CAPABILITIES, CapabilityRegistry
from .response import DispatchErrorKind, Envelope, ErrorCodes, JsonRpcResponse
from .schema import (
    python_type_to_json_schema,
    generate_function_input_schema,
    validate_against_schema
)

__version__ = "0.1.0"

__all__ = [
    "AdapterDefinition",
    "AdapterServer",
    "AdapterSettings",
    "CapabilityDescriptor",
    "CapabilityKind",
    "CapabilityRegistry",
    "CategorizedError",
    "Dispatcher",
    "DispatchErrorKind",
    "Envelope",
    "EnvironmentValidator",
    "ErrorCodes",
    "ErrorKind",
    "JsonRpcResponse",
    "LIST_CAPABILITIES",
    "LifecycleError",
    "RegistrationError",
    "ServerState",
    "StartupOutcome",
    "python_type_to_json_schema",
    "generate_function_input_schema",
    "setup_logging",
    "validate_against_schema",
]
