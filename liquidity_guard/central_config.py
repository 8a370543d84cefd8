"""
Project Configuration — RPC endpoints, intervals, credentials, version
=======================================================================

Runtime settings are read once from the environment into an immutable
``Settings`` object. Contract addresses are not settings; they live in
``liquidity_guard.chain_registry``.

Environment variables:
  <CHAIN>_RPC_URL          per-chain JSON-RPC endpoint (e.g. BASE_RPC_URL)
  CHECK_INTERVAL_MINUTES   monitoring sweep period (default 5)
  RPC_TIMEOUT_SECONDS      bound on every single on-chain read (default 8)
  TELEGRAM_BOT_TOKEN       Bot API token; alerts are suppressed without it
  DATABASE_PATH            SQLite file (default liquidity_guard.db)
  APP_URL                  base URL for links inside alert messages
  LOG_LEVEL                logging level name (default INFO)
"""

import os
import re
from dataclasses import dataclass, field
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from liquidity_guard.chain_registry import CHAIN_REGISTRY
from liquidity_guard.errors import ConfigurationError

# Version: single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("liquidity-guard")
except PackageNotFoundError:
    # Dev / CI: package not installed, read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "LiquidityGuard"

DEFAULT_CHECK_INTERVAL_MINUTES = 5
DEFAULT_RPC_TIMEOUT_SECONDS = 8.0
DEFAULT_DATABASE_PATH = "liquidity_guard.db"
DEFAULT_APP_URL = "http://localhost:3000"


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration."""

    rpc_urls: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(
            {slug: entry["rpc_url"] for slug, entry in CHAIN_REGISTRY.items()}
        )
    )
    check_interval_minutes: int = DEFAULT_CHECK_INTERVAL_MINUTES
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS
    telegram_bot_token: Optional[str] = None
    database_path: str = DEFAULT_DATABASE_PATH
    app_url: str = DEFAULT_APP_URL
    log_level: str = "INFO"

    def rpc_url(self, chain: str) -> str:
        """RPC endpoint for ``chain``; raises ConfigurationError if none."""
        url = self.rpc_urls.get(chain)
        if not url:
            raise ConfigurationError(
                f"No RPC endpoint for chain '{chain}'. "
                f"Set {chain.upper()}_RPC_URL."
            )
        return url


def _positive_number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``).

    Raises:
        ConfigurationError: On a non-numeric or non-positive interval/timeout.
    """
    if environ is None:
        environ = os.environ

    rpc_urls = {}
    for slug, entry in CHAIN_REGISTRY.items():
        rpc_urls[slug] = environ.get(f"{slug.upper()}_RPC_URL") or entry["rpc_url"]

    return Settings(
        rpc_urls=MappingProxyType(rpc_urls),
        check_interval_minutes=_positive_number(
            environ, "CHECK_INTERVAL_MINUTES", DEFAULT_CHECK_INTERVAL_MINUTES, int
        ),
        rpc_timeout=_positive_number(
            environ, "RPC_TIMEOUT_SECONDS", DEFAULT_RPC_TIMEOUT_SECONDS, float
        ),
        telegram_bot_token=environ.get("TELEGRAM_BOT_TOKEN") or None,
        database_path=environ.get("DATABASE_PATH") or DEFAULT_DATABASE_PATH,
        app_url=(environ.get("APP_URL") or DEFAULT_APP_URL).rstrip("/"),
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
    )
