"""Configuration system for push-dispatch.

This module implements the configuration schema using Pydantic for
validation, with ``${VAR}`` environment variable resolution so VAPID keys
never have to be written into the YAML file, and fail-fast validation with
actionable error messages.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Final, Self

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from push_dispatch.utils.logging import get_logger

# Matches ${VARIABLE_NAME} where VARIABLE_NAME holds letters, digits and underscores
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_DATABASE_PATH: Final[Path] = Path("data/push-dispatch.db")

# Four weeks, the longest TTL push services accept
DEFAULT_TTL_SECONDS: Final[int] = 2_419_200

logger = get_logger(__name__)


class DatabaseConfig(BaseModel):
    """SQLite storage settings."""

    path: Annotated[
        Path,
        Field(description="SQLite database file holding subscriptions and audit events"),
    ] = DEFAULT_DATABASE_PATH
    persist_events: Annotated[
        bool,
        Field(description="Record dispatch events in the logs table as well as the log output"),
    ] = True


class VapidConfig(BaseModel):
    """VAPID identity used to sign push requests.

    Values are normally injected through ``${VAR}`` references.
    """

    private_key: Annotated[
        str,
        Field(min_length=1, description="VAPID private key (base64url or PEM)"),
    ]
    public_key: Annotated[
        str,
        Field(min_length=1, description="VAPID public key handed to browsers"),
    ]
    email: Annotated[
        str,
        Field(min_length=1, description="Contact address sent in the VAPID 'sub' claim"),
    ]

    @field_validator("email", mode="after")
    @classmethod
    def strip_mailto_prefix(cls, v: str) -> str:
        """Accept both ``ops@example.com`` and ``mailto:ops@example.com``."""
        address = v.strip().removeprefix("mailto:")
        if "@" not in address:
            msg = f"VAPID email must be an email address, got: {v!r}"
            raise ValueError(msg)
        return address


class DispatchConfig(BaseModel):
    """Batch dispatch and transport behavior."""

    max_concurrency: Annotated[
        int | None,
        Field(
            gt=0,
            description="Upper bound on in-flight deliveries per batch (null for unbounded)",
        ),
    ] = 50
    ttl_seconds: Annotated[
        int,
        Field(
            ge=0,
            le=DEFAULT_TTL_SECONDS,
            description="How long the push service may hold an undelivered message",
        ),
    ] = DEFAULT_TTL_SECONDS
    request_timeout_seconds: Annotated[
        float,
        Field(gt=0, description="Timeout of one push service request in seconds"),
    ] = 10.0


class ApplicationConfig(BaseModel):
    """Application-level settings."""

    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "INFO"
    dry_run: Annotated[
        bool,
        Field(description="Dry-run mode: log notifications without contacting push services"),
    ] = False
    syslog_enabled: Annotated[
        bool,
        Field(description="Enable syslog integration"),
    ] = True


class MainConfig(BaseModel):
    """Top-level configuration container.

    Only ``vapid`` is required, and only when dry-run mode is off; every
    other section has working defaults.
    """

    vapid: Annotated[
        VapidConfig | None,
        Field(description="VAPID signing identity (optional in dry-run mode)"),
    ] = None
    database: Annotated[DatabaseConfig, Field(description="Storage configuration")] = DatabaseConfig()
    dispatch: Annotated[DispatchConfig, Field(description="Dispatch configuration")] = DispatchConfig()
    application: Annotated[
        ApplicationConfig,
        Field(description="Application-level configuration"),
    ] = ApplicationConfig()

    @model_validator(mode="after")
    def require_vapid_unless_dry_run(self) -> Self:
        if self.vapid is None and not self.application.dry_run:
            msg = "vapid section is required unless application.dry_run is enabled"
            raise ValueError(msg)
        return self


class EnvironmentVariableError(Exception):
    """Raised when a referenced environment variable is not set.

    The message names the variable but never includes any resolved value.
    """


def resolve_env_var(value: str) -> str:
    """Resolve ``${VARIABLE_NAME}`` references in a string value.

    Raises:
        EnvironmentVariableError: If a referenced environment variable is missing

    Examples:
        >>> os.environ["VAPID_EMAIL"] = "ops@example.com"
        >>> resolve_env_var("mailto:${VAPID_EMAIL}")
        'mailto:ops@example.com'
        >>> resolve_env_var("no variables here")
        'no variables here'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)

        if env_value is None:
            msg = (
                f"Required environment variable '{var_name}' is not set. "
                f"Export it (for example VAPID_PRIVATE_KEY) before running push-dispatch."
            )
            raise EnvironmentVariableError(msg)

        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _resolve_item(item: object) -> object:
    if isinstance(item, str):
        return resolve_env_var(item)
    if isinstance(item, dict):
        # YAML data is untyped at load time; validated by Pydantic after resolution
        return resolve_env_vars_in_dict(item)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if isinstance(item, list):
        return [_resolve_item(element) for element in item]  # pyright: ignore[reportUnknownVariableType]  # YAML list items
    return item


def resolve_env_vars_in_dict(data: Mapping[str, object]) -> dict[str, object]:
    """Recursively resolve environment variables in string values.

    Nested dictionaries and lists are traversed; other values are kept as-is.

    Examples:
        >>> os.environ["VAPID_PRIVATE_KEY"] = "secret"
        >>> resolve_env_vars_in_dict({"vapid": {"private_key": "${VAPID_PRIVATE_KEY}"}})
        {'vapid': {'private_key': 'secret'}}
    """
    return {key: _resolve_item(value) for key, value in data.items()}


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""


def _section(data: Mapping[str, object], name: str) -> dict[str, object]:
    section = data.get(name)
    if isinstance(section, dict):
        return dict(section)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    return {}


def load_main_config(config_path: Path, *, dry_run: bool = False) -> MainConfig:
    """Load and validate the configuration file.

    In dry-run mode (``dry_run`` or ``application.dry_run`` in the file) the
    ``vapid`` section is optional, and a ``vapid`` section whose environment
    variables are unset is ignored.

    Args:
        config_path: Path to the YAML configuration file
        dry_run: Force dry-run mode before validation

    Returns:
        Validated MainConfig instance

    Raises:
        ConfigurationError: If the file cannot be read, parsed, resolved or validated
    """
    if not config_path.exists():
        msg = (
            f"Configuration file not found: {config_path}\n"
            f"Please create a configuration file at this location.\n"
            f"See config/push-dispatch.yaml.example for the file format."
        )
        raise ConfigurationError(msg)

    try:
        with config_path.open("r") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML configuration file: {config_path}\n"
            f"YAML parsing error: {e}\n"
            f"Check indentation and quoting around the reported position."
        )
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Failed to read configuration file: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigurationError(msg) from e

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid configuration file format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}\n"
            f"Configuration file must contain key-value pairs."
        )
        raise ConfigurationError(msg)

    data: dict[str, object] = dict(raw_data)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if dry_run:
        data["application"] = {**_section(data, "application"), "dry_run": True}
    dry_run_in_effect = _section(data, "application").get("dry_run") is True
    vapid_section = data.pop("vapid", None) if dry_run_in_effect else None

    try:
        resolved_data = resolve_env_vars_in_dict(data)
    except EnvironmentVariableError as e:
        msg = (
            f"Environment variable resolution failed in: {config_path}\n"
            f"{e}\n"
            f"VAPID keys are normally injected this way; see config/push-dispatch.yaml.example."
        )
        raise ConfigurationError(msg) from e

    if vapid_section is not None:
        try:
            resolved_data["vapid"] = _resolve_item(vapid_section)
        except EnvironmentVariableError as e:
            # dry runs never sign requests
            logger.info("Ignoring unresolved vapid section in dry-run mode", extra={"reason": str(e)})

    try:
        config = MainConfig.model_validate(resolved_data)
    except PydanticValidationError as e:
        error_lines = ["Configuration validation failed:", ""]
        for error in e.errors():
            field_path = " → ".join(str(loc) for loc in error["loc"])
            error_lines.append(f"  Field: {field_path}")
            error_lines.append(f"  Error: {error['msg']}")
            error_lines.append(f"  Type: {error['type']}")
            error_lines.append("")

        error_lines.append(f"Configuration file: {config_path}")
        error_lines.append("Compare with config/push-dispatch.yaml.example for valid values.")

        raise ConfigurationError("\n".join(error_lines)) from e

    return config
