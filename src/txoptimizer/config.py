"""
TxOptimizer - Configuration

Defaults, a fluent builder, and loaders for environment variables and JSON
config files.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .errors import OptimizerError
from .types import DEFAULT_TIP_LAMPORTS

# Jito block engine endpoints by region.
JITO_BLOCK_ENGINE_MAINNET = "https://mainnet.block-engine.jito.wtf"
JITO_BLOCK_ENGINE_AMSTERDAM = "https://amsterdam.mainnet.block-engine.jito.wtf"
JITO_BLOCK_ENGINE_FRANKFURT = "https://frankfurt.mainnet.block-engine.jito.wtf"
JITO_BLOCK_ENGINE_NY = "https://ny.mainnet.block-engine.jito.wtf"
JITO_BLOCK_ENGINE_TOKYO = "https://tokyo.mainnet.block-engine.jito.wtf"

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


@dataclass
class OptimizerConfig:
    rpc_url: str = DEFAULT_RPC_URL
    block_engine_url: str = JITO_BLOCK_ENGINE_MAINNET
    tip_lamports: int = DEFAULT_TIP_LAMPORTS
    max_retries: int = 3
    request_timeout: int = 10_000
    """Per-request timeout in milliseconds."""
    poll_interval: float = 0.5
    """Seconds between bundle status queries."""
    confirm_timeout: float = 30.0
    """Default confirmation deadline in seconds."""


class ConfigBuilder:
    """Fluent configuration builder for TxOptimizerClient."""

    def __init__(self) -> None:
        self._rpc_url: str = DEFAULT_RPC_URL
        self._block_engine_url: str = JITO_BLOCK_ENGINE_MAINNET
        self._tip_lamports: int = DEFAULT_TIP_LAMPORTS
        self._max_retries: int = 3
        self._request_timeout: int = 10_000
        self._poll_interval: float = 0.5
        self._confirm_timeout: float = 30.0

    def rpc_url(self, url: str) -> ConfigBuilder:
        self._rpc_url = url
        return self

    def block_engine_url(self, url: str) -> ConfigBuilder:
        self._block_engine_url = url
        return self

    def tip_lamports(self, lamports: int) -> ConfigBuilder:
        self._tip_lamports = lamports
        return self

    def max_retries(self, n: int) -> ConfigBuilder:
        self._max_retries = n
        return self

    def request_timeout(self, ms: int) -> ConfigBuilder:
        self._request_timeout = ms
        return self

    def poll_interval(self, seconds: float) -> ConfigBuilder:
        self._poll_interval = seconds
        return self

    def confirm_timeout(self, seconds: float) -> ConfigBuilder:
        self._confirm_timeout = seconds
        return self

    def build(self) -> OptimizerConfig:
        config = OptimizerConfig(
            rpc_url=self._rpc_url,
            block_engine_url=self._block_engine_url,
            tip_lamports=self._tip_lamports,
            max_retries=self._max_retries,
            request_timeout=self._request_timeout,
            poll_interval=self._poll_interval,
            confirm_timeout=self._confirm_timeout,
        )
        validate(config)
        return config


def config_builder() -> ConfigBuilder:
    """Create a new ConfigBuilder instance."""
    return ConfigBuilder()


def validate(config: OptimizerConfig) -> None:
    if not config.rpc_url:
        raise OptimizerError.config("rpc_url is required")
    if not config.block_engine_url:
        raise OptimizerError.config("block_engine_url is required")
    if config.tip_lamports < 0:
        raise OptimizerError.config("tip_lamports must be non-negative")
    if config.max_retries < 1:
        raise OptimizerError.config("max_retries must be at least 1")
    if config.request_timeout <= 0:
        raise OptimizerError.config("request_timeout must be positive")
    if config.poll_interval <= 0:
        raise OptimizerError.config("poll_interval must be positive")
    if config.confirm_timeout <= 0:
        raise OptimizerError.config("confirm_timeout must be positive")


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> OptimizerConfig:
    """Load configuration from environment variables, falling back to defaults.

    Numeric variables that fail to parse are ignored, as if unset.
    """
    env = os.environ if environ is None else environ
    builder = config_builder()

    if env.get("SOLANA_RPC_URL"):
        builder.rpc_url(env["SOLANA_RPC_URL"])
    if env.get("JITO_BLOCK_ENGINE_URL"):
        builder.block_engine_url(env["JITO_BLOCK_ENGINE_URL"])

    tip = _parse_int(env.get("JITO_TIP_LAMPORTS"))
    if tip is not None:
        builder.tip_lamports(tip)
    retries = _parse_int(env.get("MAX_RETRIES"))
    if retries is not None:
        builder.max_retries(retries)
    timeout = _parse_int(env.get("REQUEST_TIMEOUT_MS"))
    if timeout is not None:
        builder.request_timeout(timeout)

    return builder.build()


def config_from_file(path: Union[str, Path]) -> OptimizerConfig:
    """Load configuration from a JSON file of OptimizerConfig fields."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        raise OptimizerError.config(f"Failed to read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise OptimizerError.config("Config file must contain a JSON object")

    known = {f.name for f in fields(OptimizerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise OptimizerError.config(f"Unknown config keys: {', '.join(unknown)}")

    values: Dict[str, Any] = dict(data)
    config = OptimizerConfig(**values)
    validate(config)
    return config


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
