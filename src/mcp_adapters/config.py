"""Environment validation for adapter settings.

Settings are pydantic models. Each field can come from a command line flag,
an environment variable or a dotenv file, in that order of priority:

    class BlobSettings(AdapterSettings):
        blob_read_write_token: str = Field(
            description="Blob read-write token",
            json_schema_extra={"cli_flags": ["--token", "-t"]},
        )

reads ``--blob-read-write-token`` / ``--token`` / ``-t``, then
``BLOB_READ_WRITE_TOKEN``.
"""

import argparse
import logging
import os
from typing import Any, Dict, List, Literal, Mapping, Optional, Type, TypeVar

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import CategorizedError

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = ".env"

SettingsT = TypeVar("SettingsT", bound="AdapterSettings")


class AdapterSettings(BaseModel):
    """Settings every adapter process understands."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    transport: Literal["stdio", "http"] = Field(
        default="stdio", description="Protocol transport to serve on"
    )
    host: str = Field(default="127.0.0.1", description="Bind address for the HTTP transport")
    port: int = Field(default=3000, gt=0, lt=65536, description="Port for the HTTP transport")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


def env_name(field_name: str) -> str:
    return field_name.upper()


def flag_name(field_name: str) -> str:
    return "--" + field_name.replace("_", "-")


def _extra_flags(field_info) -> List[str]:
    extra = field_info.json_schema_extra
    if isinstance(extra, dict):
        return list(extra.get("cli_flags", []))
    return []


class EnvironmentValidator:
    """Builds a validated settings object before any client exists.

    Args:
        settings_cls: ``AdapterSettings`` subclass to populate
        environ: Environment mapping (defaults to ``os.environ``)
        env_file: Dotenv file to read, ignored when it does not exist
    """

    def __init__(
        self,
        settings_cls: Type[SettingsT],
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = DEFAULT_ENV_FILE
    ):
        self.settings_cls = settings_cls
        self.environ = os.environ if environ is None else environ
        self.env_file = env_file

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Add one option per settings field to ``parser``.

        Values stay strings so that type errors are reported by the
        validator together with every other problem.
        """
        group = parser.add_argument_group("settings")
        for name, field_info in self.settings_cls.model_fields.items():
            flags = [flag_name(name)] + _extra_flags(field_info)
            help_text = f"{field_info.description or name} (env: {env_name(name)})"
            if field_info.annotation is bool:
                group.add_argument(
                    *flags, dest=name, action=argparse.BooleanOptionalAction, default=None, help=help_text
                )
            else:
                group.add_argument(*flags, dest=name, default=None, help=help_text)

    def _dotenv_values(self) -> Dict[str, Optional[str]]:
        if not self.env_file or not os.path.isfile(self.env_file):
            return {}
        logger.debug("Reading settings from %s", self.env_file)
        return dotenv_values(self.env_file)

    def collect(self, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Gather raw values by field name; empty strings count as missing."""
        overrides = overrides or {}
        file_values = self._dotenv_values()
        raw: Dict[str, Any] = {}

        for name in self.settings_cls.model_fields:
            for value in (overrides.get(name), self.environ.get(env_name(name)), file_values.get(env_name(name))):
                if value is None or (isinstance(value, str) and not value.strip()):
                    continue
                raw[name] = value
                break
        return raw

    def validate(self, overrides: Optional[Mapping[str, Any]] = None) -> SettingsT:
        """Validate every field in one pass.

        Args:
            overrides: Values from the command line, keyed by field name

        Returns:
            Populated settings instance

        Raises:
            CategorizedError: EnvironmentValidation error listing every bad field
        """
        raw = self.collect(overrides)
        try:
            return self.settings_cls.model_validate(raw)
        except ValidationError as e:
            fields = []
            for err in e.errors():
                field = str(err["loc"][0]) if err["loc"] else ""
                fields.append({
                    "field": env_name(field) if field else "(settings)",
                    "flag": flag_name(field) if field else None,
                    "message": err["msg"],
                })
            lines = "\n".join(f"{f['field']}: {f['message']}" for f in fields)
            raise CategorizedError.environment(f"Environment validation failed:\n{lines}", fields) from None
