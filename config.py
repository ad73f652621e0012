"""
Stack configuration loaded from pulumi.Config().

Provides a typed, immutable view of stack settings. All settings are read from
Pulumi config (e.g. Pulumi.<stack>.yaml or pulumi config set). Every key is
required. Used by __main__.main() to locate the build output, choose edge or
regional execution, size the server function and set log retention.
"""

from dataclasses import dataclass
from typing import Any, Callable

import pulumi


def _require_bool(config: pulumi.Config, key: str) -> bool:
    raw = config.require(key)
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes")


def _require_int(config: pulumi.Config, key: str) -> int:
    return int(config.require(key))


def _require_str(config: pulumi.Config, key: str) -> str:
    return config.require(key)


# (key, parser); parser receives (config, key) and returns value.
_CONFIG_SPEC: list[tuple[str, Callable[[pulumi.Config, str], Any]]] = [
    ("site_path", _require_str),
    ("edge", _require_bool),
    ("region", _require_str),
    ("log_retention_days", _require_int),
    ("server_memory_size", _require_int),
    ("server_timeout", _require_int),
]


@dataclass(frozen=True)
class StackConfig:
    """
    Stack configuration from Pulumi config.

    Attributes:
        site_path: Root of the framework build output (required).
        edge: Deploy the server to Lambda@Edge instead of one region (required).
        region: Region for regional functions and their log groups (required).
        log_retention_days: Server log retention; 0 keeps logs forever (required).
        server_memory_size: Server function memory in MB (required).
        server_timeout: Server function timeout in seconds (required).
    """

    site_path: str
    edge: bool
    region: str
    log_retention_days: int
    server_memory_size: int
    server_timeout: int

    @classmethod
    def from_pulumi_config(cls, config: pulumi.Config) -> "StackConfig":
        """
        Build StackConfig from pulumi.Config(). All keys in _CONFIG_SPEC are required.
        """
        kwargs = {key: parser(config, key) for key, parser in _CONFIG_SPEC}
        return cls(**kwargs)
