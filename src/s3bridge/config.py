"""Configuration loading and Pydantic models for s3bridge."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_HEADER_PREFIX = "x-s3bridge-"


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30


class StoreConfig(BaseModel):
    """Object store client configuration.

    Only consulted when the application builds its own client; the proxy
    engine itself receives an already-configured client.
    """

    backend: str = "aws"
    region: str = "us-east-1"
    endpoint_url: str = ""
    use_path_style: bool = False
    ssl_enabled: bool = True
    access_key_id: str = ""
    secret_access_key: str = ""
    profile: str = ""
    timeout: float | None = None
    https_proxy: str = ""
    memory_seed_dir: str = ""


class ObservabilityConfig(BaseModel):
    """Metrics and health check toggles."""

    metrics: bool = True
    health_check: bool = True


class ProxyConfig(BaseModel):
    """Per-mount proxy policy. Immutable once the mount is active."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    key_prefix: str | None = None
    default_key: str | None = None
    override_cache_control: str | None = None
    default_cache_control: str | None = None
    csv_to_json: bool = False
    base64_encode: bool = True
    custom_header_prefix: str = DEFAULT_HEADER_PREFIX

    @property
    def key_header(self) -> str:
        """Name of the diagnostic header carrying the resolved store key."""
        return f"{self.custom_header_prefix}s3-key"


class MountConfig(BaseModel):
    """A proxy mounted at a path prefix."""

    model_config = ConfigDict(frozen=True)

    path: str = "/s3-proxy"
    proxy: ProxyConfig


class S3BridgeConfig(BaseModel):
    """Top-level s3bridge configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    mounts: list[MountConfig] = Field(default_factory=list)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "host": data.get("host", "0.0.0.0"),
        "port": data.get("port", 8080),
        "log_level": data.get("log_level", "INFO"),
        "log_format": data.get("log_format", "text"),
        "shutdown_timeout": data.get("shutdown_timeout", 30),
    }


def _parse_store(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the store section from YAML data.

    Handles nested structure: store.memory.seed_dir -> memory_seed_dir
    """
    if data is None:
        return {}

    result: dict[str, Any] = {"backend": data.get("backend", "aws")}
    for name in (
        "region",
        "endpoint_url",
        "use_path_style",
        "ssl_enabled",
        "access_key_id",
        "secret_access_key",
        "profile",
        "timeout",
        "https_proxy",
    ):
        if name in data:
            result[name] = data[name]

    memory_section = data.get("memory")
    if isinstance(memory_section, dict):
        result["memory_seed_dir"] = memory_section.get("seed_dir", "")

    return result


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {
        "metrics": data.get("metrics", True),
        "health_check": data.get("health_check", True),
    }


def _parse_mount(data: dict[str, Any]) -> MountConfig:
    """Parse one mount entry.

    The mount path sits next to the proxy options in YAML; everything but
    ``path`` belongs to the mount's ProxyConfig.
    """
    options = dict(data)
    path = options.pop("path", "/s3-proxy")
    return MountConfig(path=path, proxy=ProxyConfig(**options))


def load_config(path: Path) -> S3BridgeConfig:
    """Load an S3BridgeConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated S3BridgeConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a mount is missing its bucket.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return S3BridgeConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        store=StoreConfig(**_parse_store(raw.get("store"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
        mounts=[_parse_mount(m) for m in raw.get("mounts") or []],
    )
