"""Configuration management for turnprobe."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml


DEFAULT_PROBE_TIMEOUT = 10.0  # seconds per server
DEFAULT_CANDIDATE_POOL_SIZE = 10
DEFAULT_CREDENTIAL_TTL = 24 * 3600
DEFAULT_IDENTITY = "bongo"


@dataclass
class ProbeConfig:
    """Per-run probing configuration."""

    timeout: float = DEFAULT_PROBE_TIMEOUT
    batch_timeout: float | None = None  # None disables the global deadline
    candidate_pool_size: int = DEFAULT_CANDIDATE_POOL_SIZE


@dataclass
class CredentialServerConfig:
    """Credential HTTP endpoint configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    identity: str = DEFAULT_IDENTITY
    ttl: int = DEFAULT_CREDENTIAL_TTL


@dataclass
class Config:
    """turnprobe configuration."""

    log_level: str = "INFO"
    log_file: str | None = None
    servers: list[str] = field(default_factory=list)
    credentials_url: str | None = None
    username: str | None = None
    password: str | None = None
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    credential_server: CredentialServerConfig = field(
        default_factory=CredentialServerConfig
    )


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "turnprobe" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return None
    return data if isinstance(data, dict) else None


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
) -> Config:
    """Load configuration from file.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.

    Returns:
        Config object with values from file or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader

    data = reader(config_path)

    if data is None:
        return Config()

    # Parse probe config section
    probe_data = data.get("probe", {})
    probe_config = ProbeConfig(
        timeout=float(probe_data.get("timeout", ProbeConfig.timeout)),
        batch_timeout=probe_data.get("batch_timeout", ProbeConfig.batch_timeout),
        candidate_pool_size=probe_data.get(
            "candidate_pool_size", ProbeConfig.candidate_pool_size
        ),
    )

    # Parse credential_server config section
    server_data = data.get("credential_server", {})
    server_config = CredentialServerConfig(
        host=server_data.get("host", CredentialServerConfig.host),
        port=server_data.get("port", CredentialServerConfig.port),
        identity=server_data.get("identity", CredentialServerConfig.identity),
        ttl=server_data.get("ttl", CredentialServerConfig.ttl),
    )

    return Config(
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        servers=list(data.get("servers", [])),
        credentials_url=data.get("credentials_url", Config.credentials_url),
        username=data.get("username", Config.username),
        password=data.get("password", Config.password),
        probe=probe_config,
        credential_server=server_config,
    )
