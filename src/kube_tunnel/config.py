"""Forward specifications and tunnel settings loaded from TOML."""

import os
import tomllib
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .common.exceptions import ConfigurationError
from .common.logging import get_logger
from .common.utils import (
    MAX_PORT,
    MIN_PORT,
    is_dns_label,
    is_dns_subdomain,
    is_loopback_address,
)

logger = get_logger(__name__)

CONFIG_ENV_VAR = "KUBE_TUNNEL_CONFIG"
DEFAULT_CONFIG_NAME = "forwards.toml"
DEFAULT_BIND_ADDRESSES = ("::1", "127.0.0.1")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ForwardSpec(BaseModel):
    """One configured mapping from a local port to a pod port."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    context: str = Field(min_length=1, description="Kubeconfig context name")
    namespace: str = Field(min_length=1, description="Namespace of the workload")
    workload_name: str = Field(min_length=1, description="Pod name")
    remote_port: int = Field(ge=MIN_PORT, le=MAX_PORT, description="Container port")
    local_port: int = Field(ge=MIN_PORT, le=MAX_PORT, description="Local port to listen on")

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        """Validate namespace is an RFC 1123 label."""
        if not is_dns_label(v):
            raise ValueError(
                "Namespace must be a lowercase RFC 1123 label "
                "(alphanumerics and '-', at most 63 characters)"
            )
        return v

    @field_validator("workload_name")
    @classmethod
    def validate_workload_name(cls, v: str) -> str:
        """Validate workload name is an RFC 1123 subdomain."""
        if not is_dns_subdomain(v):
            raise ValueError(
                "Workload name must be a lowercase RFC 1123 subdomain "
                "(alphanumerics, '-' and '.', at most 253 characters)"
            )
        return v

    @property
    def podspec(self) -> str:
        """Display key ``namespace/workload``."""
        return f"{self.namespace}/{self.workload_name}"


class TunnelSettings(BaseModel):
    """Runtime settings for listeners, relays and logging."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    bind_addresses: tuple[str, ...] = Field(
        default=DEFAULT_BIND_ADDRESSES,
        min_length=1,
        description="Loopback addresses every forward listens on",
    )
    buffer_size: int = Field(
        default=1024, ge=1, le=1024 * 1024, description="Relay buffer per direction"
    )
    listen_backlog: int = Field(default=100, ge=1, le=65535)
    drain_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=60.0,
        description="Seconds to wait for tasks to exit after shutdown",
    )
    kubeconfig: str | None = Field(default=None, description="Kubeconfig path")
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    @field_validator("bind_addresses")
    @classmethod
    def validate_bind_addresses(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject non-loopback and duplicate bind addresses."""
        for address in v:
            if not is_loopback_address(address):
                raise ValueError(f"Bind address '{address}' is not a loopback address")
        if len(set(v)) != len(v):
            raise ValueError("Bind addresses must be unique")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate log level name."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(LOG_LEVELS)}")
        return level


class TunnelConfig(BaseModel):
    """Complete configuration: settings plus the ordered forward list."""

    model_config = ConfigDict(extra="forbid")

    settings: TunnelSettings = Field(default_factory=TunnelSettings)
    forwards: list[ForwardSpec] = Field(default_factory=list)

    @property
    def contexts(self) -> list[str]:
        """Distinct contexts in first-seen order."""
        return list(dict.fromkeys(spec.context for spec in self.forwards))


def discover_config_path() -> Path:
    """Locate the configuration file.

    ``$KUBE_TUNNEL_CONFIG`` wins; otherwise ``forwards.toml`` under
    ``$XDG_CONFIG_HOME/kube-tunnel`` (``~/.config`` when unset).
    """
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser()

    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "kube-tunnel" / DEFAULT_CONFIG_NAME


def parse_config(data: dict) -> TunnelConfig:
    """Build a TunnelConfig from decoded TOML data.

    Args:
        data: Mapping with an optional ``settings`` table and a ``forward`` array

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the data does not validate
    """
    unknown = set(data) - {"settings", "forward"}
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration sections: {', '.join(sorted(unknown))}"
        )

    try:
        return TunnelConfig(
            settings=data.get("settings", {}),
            forwards=data.get("forward", []),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(path: str | Path | None = None) -> TunnelConfig:
    """Load configuration from a TOML file.

    Args:
        path: File to read (discovered when None)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    config_path = Path(path) if path is not None else discover_config_path()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed TOML in {config_path}: {e}") from e

    config = parse_config(data)
    logger.debug(
        "Configuration loaded", path=str(config_path), forwards=len(config.forwards)
    )
    return config


def log_forwards(specs: Iterable[ForwardSpec]) -> None:
    """Log the configured forwards at startup."""
    logger.info("Starting, available port forwards are:")

    for spec in specs:
        logger.info(
            f"- {spec.podspec}, local port = {spec.local_port}, "
            f"remote port = {spec.remote_port}",
            context=spec.context,
        )
