"""Command line entry point for adapter processes.

Usage:
    mcp-adapters [start] [--adapter MODULE:ATTR] [--env-file PATH] [settings flags]

The adapter's settings model contributes one flag per field, so
``mcp-adapters --adapter mcp_adapters.adapters.fal_ai:DEFINITION --help``
lists the fal.ai options.
"""

import argparse
import asyncio
import importlib
import logging
import sys
from typing import List, Mapping, Optional

from .config import DEFAULT_ENV_FILE, EnvironmentValidator
from .lifecycle import EXIT_FAILURE, EXIT_OK, AdapterDefinition, AdapterServer
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_ADAPTER = "mcp_adapters.adapters.fal_ai:DEFINITION"


def load_definition(reference: str) -> AdapterDefinition:
    """Import an ``AdapterDefinition`` given as ``module:attribute``.

    Raises:
        ValueError: If the reference is malformed or names something else
    """
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Adapter must be given as module:attribute, got '{reference}'")
    module = importlib.import_module(module_name)
    definition = getattr(module, attr, None)
    if not isinstance(definition, AdapterDefinition):
        raise ValueError(f"'{reference}' is not an AdapterDefinition")
    return definition


def _base_parser(full: bool) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-adapters",
        description="Run an MCP adapter process",
        add_help=full,
    )
    if full:
        parser.add_argument(
            "command",
            nargs="?",
            choices=["start"],
            default="start",
            help="Command to run (default: start)"
        )
    parser.add_argument(
        "--adapter",
        default=DEFAULT_ADAPTER,
        help=f"Adapter definition as module:attribute (default: {DEFAULT_ADAPTER})"
    )
    parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_FILE,
        help=f"Dotenv file with settings (default: {DEFAULT_ENV_FILE})"
    )
    return parser


def main(
    argv: Optional[List[str]] = None,
    definition: Optional[AdapterDefinition] = None,
    environ: Optional[Mapping[str, str]] = None
) -> int:
    """Run an adapter until it is stopped.

    Args:
        argv: Arguments without the program name (defaults to ``sys.argv[1:]``)
        definition: Adapter to run; when omitted ``--adapter`` selects it
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Process exit code: 0 after a graceful shutdown, 1 on any failure
    """
    argv = sys.argv[1:] if argv is None else list(argv)

    known, _ = _base_parser(full=False).parse_known_args(argv)
    if definition is None:
        try:
            definition = load_definition(known.adapter)
        except (ImportError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILURE

    validator = EnvironmentValidator(definition.settings_cls, environ=environ, env_file=known.env_file)
    parser = _base_parser(full=True)
    parser.prog = definition.name
    validator.add_arguments(parser)
    args = parser.parse_args(argv)

    overrides = {
        name: getattr(args, name)
        for name in definition.settings_cls.model_fields
        if getattr(args, name, None) is not None
    }

    # The configured level is applied by the server once settings are validated
    setup_logging("INFO")
    server = AdapterServer(definition, environ=environ, env_file=args.env_file, overrides=overrides)

    try:
        outcome = asyncio.run(server.run())
    except KeyboardInterrupt:
        # Platforms without loop signal handlers stop here
        logger.info("%s: interrupted", definition.name)
        return EXIT_OK

    if outcome.error is not None:
        error = outcome.error
        print(f"{error.kind.value}: {error.message}", file=sys.stderr)
    return outcome.exit_code


def console_main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    console_main()
