"""Server lifecycle: validate, build the client, register, listen, shut down."""

import asyncio
import inspect
import logging
import signal
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

from .capabilities import CapabilityDescriptor, CapabilityKind
from .config import AdapterSettings, DEFAULT_ENV_FILE, EnvironmentValidator
from .dispatcher import Dispatcher
from .errors import CategorizedError, LifecycleError
from .logging_config import set_level
from .registry import CapabilityRegistry
from .response import Envelope

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class ServerState(Enum):
    UNINITIALIZED = "Uninitialized"
    VALIDATED = "Validated"
    REGISTERED = "Registered"
    LISTENING = "Listening"
    TERMINATED = "Terminated"


_ORDER = list(ServerState)


@dataclass(frozen=True)
class AdapterDefinition:
    """Everything that differs between two adapter processes.

    Attributes:
        name: Server name advertised to clients
        version: Server version
        settings_cls: Settings model validated at startup
        client_factory: Builds the service client from validated settings;
            may return an awaitable
        register: Called as ``register(registry, client, settings)`` to add
            the adapter's capabilities
        instructions: Optional usage hints sent on ``initialize``
    """

    name: str
    version: str
    settings_cls: Type[AdapterSettings]
    client_factory: Callable[[Any], Any]
    register: Callable[[CapabilityRegistry, Any, Any], None]
    instructions: Optional[str] = None


@dataclass(frozen=True)
class StartupOutcome:
    """Result of :meth:`AdapterServer.run`, turned into an exit code by the caller."""

    exit_code: int
    error: Optional[CategorizedError] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == EXIT_OK


def create_transport(settings: AdapterSettings):
    """Transport selected by the ``transport`` setting."""
    if settings.transport == "http":
        from .transports.http import HttpTransport
        return HttpTransport(host=settings.host, port=settings.port)
    from .transports.stdio import StdioTransport
    return StdioTransport()


class AdapterServer:
    """One adapter process.

    States only move forward: Uninitialized, Validated, Registered,
    Listening, Terminated. Requests are refused outside Listening.
    """

    def __init__(
        self,
        definition: AdapterDefinition,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = DEFAULT_ENV_FILE,
        overrides: Optional[Mapping[str, Any]] = None
    ):
        self.definition = definition
        self._validator = EnvironmentValidator(definition.settings_cls, environ=environ, env_file=env_file)
        self._overrides = dict(overrides or {})
        self._state = ServerState.UNINITIALIZED
        self._initialize_called = False
        self._stop_requested = False
        self._settings: Optional[AdapterSettings] = None
        self._client: Any = None
        self._registry: Optional[CapabilityRegistry] = None
        self._dispatcher: Optional[Dispatcher] = None

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def version(self) -> str:
        return self.definition.version

    @property
    def instructions(self) -> Optional[str]:
        return self.definition.instructions

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def settings(self) -> AdapterSettings:
        if self._settings is None:
            raise LifecycleError("Settings are not available before validation")
        return self._settings

    @property
    def client(self) -> Any:
        return self._client

    @property
    def registry(self) -> CapabilityRegistry:
        if self._registry is None:
            raise LifecycleError("Capabilities cannot be registered before the environment is validated")
        return self._registry

    def _advance(self, target: ServerState) -> None:
        if _ORDER.index(target) <= _ORDER.index(self._state):
            raise LifecycleError(f"Invalid transition {self._state.value} -> {target.value}")
        logger.info("%s: %s -> %s", self.name, self._state.value, target.value)
        self._state = target

    async def initialize(self) -> None:
        """Validate settings, build the client and register capabilities.

        Raises:
            LifecycleError: If called more than once
            CategorizedError: EnvironmentValidation error from the validator
        """
        if self._initialize_called:
            raise LifecycleError("initialize() may only be called once per server")
        self._initialize_called = True

        self._settings = self._validator.validate(self._overrides)
        set_level(self._settings.log_level)
        self._advance(ServerState.VALIDATED)

        self._registry = CapabilityRegistry()
        client = self.definition.client_factory(self._settings)
        if inspect.isawaitable(client):
            client = await client
        self._client = client

        self.definition.register(self._registry, client, self._settings)
        self._advance(ServerState.REGISTERED)
        logger.info("%s: %d capabilities registered", self.name, len(self._registry))

    async def listen(self, transport) -> None:
        """Freeze the registry and serve until the transport returns."""
        if self._state is not ServerState.REGISTERED:
            raise LifecycleError(f"listen() requires state Registered, not {self._state.value}")
        self._registry.freeze()
        self._dispatcher = Dispatcher(self._registry)
        self._advance(ServerState.LISTENING)
        try:
            await transport.serve(self)
        finally:
            await self.shutdown()

    async def dispatch(self, name: str, arguments: Any = None) -> Dict[str, Any]:
        """Dispatch a call, refusing it unless the server is listening."""
        if self._state is not ServerState.LISTENING:
            return Envelope.unavailable(self._state.value)
        return await self._dispatcher.dispatch(name, arguments)

    def list_capabilities(self):
        if self._registry is None:
            return []
        return self._registry.list_capabilities()

    def descriptors(self, kind: Optional[CapabilityKind] = None) -> List[CapabilityDescriptor]:
        if self._registry is None:
            return []
        return self._registry.descriptors(kind)

    def get_capability(self, name: str) -> Optional[CapabilityDescriptor]:
        if self._registry is None:
            return None
        return self._registry.get(name)

    async def shutdown(self) -> None:
        """Move to Terminated and release the client. Idempotent."""
        if self._state is ServerState.TERMINATED:
            return
        self._advance(ServerState.TERMINATED)

        client, self._client = self._client, None
        if client is None:
            return
        close = getattr(client, "aclose", None) or getattr(client, "close", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result
            logger.debug("%s: client released", self.name)

    def _request_stop(self, task: "asyncio.Task") -> None:
        logger.info("%s: shutdown signal received", self.name)
        self._stop_requested = True
        task.cancel()

    def _install_signal_handlers(self, task: "asyncio.Task") -> bool:
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._request_stop, task)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug("Signal handlers unavailable; relying on KeyboardInterrupt")
            return False
        return True

    @staticmethod
    def _remove_signal_handlers() -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    async def run(self, transport=None) -> StartupOutcome:
        """Initialize and serve, reporting how the process should exit.

        Args:
            transport: Transport to serve on (defaults to the one chosen by settings)

        Returns:
            ``StartupOutcome`` with exit code 0 only on graceful shutdown
        """
        try:
            await self.initialize()
        except CategorizedError as e:
            logger.error("%s", e.message)
            await self.shutdown()
            return StartupOutcome(EXIT_FAILURE, e)
        except Exception as e:
            logger.exception("%s: startup failed", self.name)
            await self.shutdown()
            return StartupOutcome(EXIT_FAILURE, CategorizedError.unexpected(f"Startup failed: {e}", cause=e))

        if transport is None:
            transport = create_transport(self._settings)

        serve_task = asyncio.ensure_future(self.listen(transport))
        handlers_installed = self._install_signal_handlers(serve_task)
        try:
            await serve_task
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
        except Exception as e:
            logger.exception("%s: server stopped with an error", self.name)
            return StartupOutcome(EXIT_FAILURE, CategorizedError.unexpected(f"Server error: {e}", cause=e))
        finally:
            if handlers_installed:
                self._remove_signal_handlers()
            await self.shutdown()

        logger.info("%s: stopped", self.name)
        return StartupOutcome(EXIT_OK)
