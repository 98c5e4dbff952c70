"""Capability descriptors: a name, an input schema and a handler."""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .schema import generate_function_input_schema


class CapabilityKind(str, Enum):
    """Families of capabilities a server exposes."""

    TOOL = "tool"
    PROMPT = "prompt"


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Represents one invocable capability (tool or prompt)."""

    name: str
    input_schema: Dict[str, Any]
    handler: Callable[..., Any] = field(compare=False)
    description: str = ""
    kind: CapabilityKind = CapabilityKind.TOOL

    @classmethod
    def from_function(
        cls,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        kind: CapabilityKind = CapabilityKind.TOOL,
        input_schema: Optional[Dict[str, Any]] = None
    ) -> "CapabilityDescriptor":
        """Create a descriptor from a function.

        Args:
            func: Handler function, plain or async
            name: Capability name (defaults to function name)
            description: Description (defaults to function docstring)
            kind: Tool or prompt
            input_schema: Explicit schema (defaults to one derived from the signature)

        Returns:
            CapabilityDescriptor instance
        """
        return cls(
            name=name or func.__name__,
            input_schema=input_schema if input_schema is not None else generate_function_input_schema(func),
            handler=func,
            description=description or inspect.cleandoc(func.__doc__ or ""),
            kind=CapabilityKind(kind),
        )

    async def invoke(self, arguments: Dict[str, Any]) -> Any:
        """Run the handler with already validated arguments."""
        result = self.handler(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Advertised form used for capability discovery."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
