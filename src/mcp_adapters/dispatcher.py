"""Dispatch of inbound capability calls to registered handlers."""

import json
import logging
from typing import Any, Dict, Optional, Tuple, Union

from .errors import CategorizedError, ErrorKind
from .registry import LIST_CAPABILITIES, CapabilityRegistry
from .response import DispatchErrorKind, Envelope
from .schema import validate_against_schema

logger = logging.getLogger(__name__)


def parse_arguments(raw_arguments: Union[str, Dict[str, Any], None]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Normalize raw arguments to a dict.

    Args:
        raw_arguments: Arguments as a dict, a JSON string or ``None``

    Returns:
        ``(arguments, None)`` on success, ``(None, message)`` otherwise
    """
    if raw_arguments is None:
        return {}, None
    if isinstance(raw_arguments, str):
        if not raw_arguments.strip():
            return {}, None
        try:
            raw_arguments = json.loads(raw_arguments)
        except json.JSONDecodeError as e:
            return None, f"Invalid JSON arguments: {e}"
    if not isinstance(raw_arguments, dict):
        return None, "Arguments must be an object"
    return raw_arguments, None


class Dispatcher:
    """Resolves a capability name, validates arguments and runs the handler.

    This is the single place where handler exceptions are turned into
    structured responses. ``asyncio.CancelledError`` is not an ``Exception``
    and therefore propagates to the transport untouched.
    """

    def __init__(self, registry: CapabilityRegistry):
        self._registry = registry

    async def dispatch(self, name: str, raw_arguments: Union[str, Dict[str, Any], None] = None) -> Dict[str, Any]:
        """Dispatch one call.

        Args:
            name: Capability name
            raw_arguments: Arguments as a dict, a JSON string or ``None``

        Returns:
            Success or failure envelope; never raises for handler failures
        """
        if name == LIST_CAPABILITIES:
            return Envelope.success({"capabilities": self._registry.list_capabilities()})

        descriptor = self._registry.get(name)
        if descriptor is None:
            logger.debug("Unknown capability requested: %s", name)
            return Envelope.not_found(name)

        arguments, parse_error = parse_arguments(raw_arguments)
        if parse_error is not None:
            return Envelope.failure(
                DispatchErrorKind.INVALID_ARGUMENTS,
                parse_error,
                {"capability": name, "errors": [{"field": "$", "message": parse_error}]},
            )

        errors = validate_against_schema(arguments, descriptor.input_schema)
        if errors:
            logger.debug("Rejected arguments for %s: %s", name, errors)
            return Envelope.invalid_arguments(name, errors)

        logger.debug("Invoking %s", name)
        try:
            result = await descriptor.invoke(arguments)
        except CategorizedError as e:
            logger.warning("Capability %s failed (%s): %s", name, e.kind.value, e.message)
            return Envelope.from_error(e)
        except Exception:
            logger.exception("Unhandled error in capability %s", name)
            return Envelope.failure(ErrorKind.UNEXPECTED, f"Internal error while executing '{name}'")

        return Envelope.success(result)
