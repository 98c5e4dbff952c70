"""Capability registry built at startup and frozen before serving."""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from .capabilities import CapabilityDescriptor, CapabilityKind
from .errors import LifecycleError, RegistrationError
from .schema import is_valid_schema

logger = logging.getLogger(__name__)

LIST_CAPABILITIES = "listCapabilities"
RESERVED_NAMES = frozenset({LIST_CAPABILITIES})


class CapabilityRegistry:
    """Ordered mapping from capability name to descriptor.

    Capabilities are added with :meth:`register` or the :attr:`tool` and
    :attr:`prompt` decorators. Once :meth:`freeze` is called the registry is
    read-only, so a dispatch in progress never sees the table change.
    """

    def __init__(self):
        self._descriptors: Dict[str, CapabilityDescriptor] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def register(
        self,
        name: str,
        input_schema: Dict[str, Any],
        handler: Callable[..., Any],
        description: Optional[str] = None,
        kind: CapabilityKind = CapabilityKind.TOOL
    ) -> CapabilityDescriptor:
        """Register a capability.

        Args:
            name: Unique, non-empty capability name
            input_schema: JSON Schema object for the arguments
            handler: Callable invoked with the validated arguments as keywords
            description: Human-readable description
            kind: Tool or prompt

        Returns:
            The registered descriptor

        Raises:
            LifecycleError: If the registry is frozen
            RegistrationError: If any precondition fails
        """
        descriptor = CapabilityDescriptor(
            name=name,
            input_schema=input_schema,
            handler=handler,
            description=description or "",
            kind=CapabilityKind(kind),
        )
        return self.add(descriptor)

    def add(self, descriptor: CapabilityDescriptor) -> CapabilityDescriptor:
        """Register an already built descriptor."""
        if self._frozen:
            raise LifecycleError(
                f"Cannot register '{descriptor.name}': registry is frozen once the server is listening"
            )
        name = descriptor.name
        if not isinstance(name, str) or not name.strip():
            raise RegistrationError("Capability name must be a non-empty string")
        if name in RESERVED_NAMES:
            raise RegistrationError(f"Capability name is reserved: {name}")
        if name in self._descriptors:
            raise RegistrationError(f"Capability already registered: {name}")
        if not is_valid_schema(descriptor.input_schema):
            raise RegistrationError(f"Capability '{name}' needs an object input schema")
        if not callable(descriptor.handler):
            raise RegistrationError(f"Capability '{name}' handler is not callable")

        self._descriptors[name] = descriptor
        logger.debug("Registered %s '%s'", descriptor.kind.value, name)
        return descriptor

    def _decorator(self, kind: CapabilityKind):
        def decorator(func_or_options=None, **kwargs):
            if func_or_options is None:
                # Called with keyword arguments: @registry.tool(name="...")
                def inner_decorator(func: Callable) -> Callable:
                    self.add(CapabilityDescriptor.from_function(func, kind=kind, **kwargs))
                    return func
                return inner_decorator
            elif callable(func_or_options):
                # Direct decoration: @registry.tool
                self.add(CapabilityDescriptor.from_function(func_or_options, kind=kind, **kwargs))
                return func_or_options
            else:
                raise TypeError("Invalid arguments to capability decorator")

        return decorator

    @property
    def tool(self):
        """Decorator for registering tools.

        Usage:
            @registry.tool
            def echo(text: str) -> dict:
                return {"text": text}

        Or with options:
            @registry.tool(name="image-generate", description="Generate an image")
            async def generate(prompt: str) -> dict:
                ...
        """
        return self._decorator(CapabilityKind.TOOL)

    @property
    def prompt(self):
        """Decorator for registering prompts.

        Prompt handlers return a list of ``{"role", "content"}`` messages.
        """
        return self._decorator(CapabilityKind.PROMPT)

    def get(self, name: str) -> Optional[CapabilityDescriptor]:
        return self._descriptors.get(name)

    def descriptors(self, kind: Optional[CapabilityKind] = None) -> List[CapabilityDescriptor]:
        return [d for d in self._descriptors.values() if kind is None or d.kind == kind]

    def list_capabilities(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self._descriptors.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[CapabilityDescriptor]:
        return iter(list(self._descriptors.values()))

    def __repr__(self) -> str:
        return (
            f"CapabilityRegistry(tools={len(self.descriptors(CapabilityKind.TOOL))}, "
            f"prompts={len(self.descriptors(CapabilityKind.PROMPT))}, "
            f"frozen={self._frozen})"
        )
