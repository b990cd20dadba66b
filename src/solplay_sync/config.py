"""
Sync service configuration management.

This module handles loading and accessing configuration from multiple sources
with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/sync.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached. The SyncConfig
dataclass provides typed access to all settings.

Usage:
    from solplay_sync.config import config

    print(config.ledger.rpc_url)
    print(config.settlement.platform_fee_bps)

Environment Variable Mapping:
    SOLPLAY_HOST              -> server.host
    SOLPLAY_PORT              -> server.port
    SOLPLAY_RPC_URL           -> ledger.rpc_url
    SOLPLAY_WS_URL            -> ledger.ws_url
    SOLPLAY_PROGRAM_ID        -> ledger.program_id
    SOLPLAY_POLL_INTERVAL     -> ledger.poll_interval_seconds
    SOLPLAY_SUBSCRIBE         -> ledger.subscribe_enabled
    SOLPLAY_DB_PATH           -> database.path
    SOLPLAY_PLATFORM_FEE_BPS  -> settlement.platform_fee_bps
    SOLPLAY_LOG_LEVEL         -> logging.level
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "sync.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "sync.example.ini"

LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0")  # nosec B104 - host comparison only


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class ServerSettings:
    """HTTP server configuration."""

    host: str = "0.0.0.0"  # nosec B104 - intentional for server binding
    port: int = 8000


@dataclass
class LedgerSettings:
    """Ledger RPC and ingestion loop configuration."""

    rpc_url: str = "https://api.devnet.solana.com"
    ws_url: str = ""
    program_id: str = "8esALmEtCkKPCkG3GHuSeXUhuwfwrmW3G8vep8GgpHQE"
    commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"
    poll_interval_seconds: float = 30.0
    poll_limit: int = 10
    request_timeout_seconds: float = 10.0
    subscribe_enabled: bool = True

    @property
    def is_local(self) -> bool:
        """True when the RPC endpoint points at a local validator."""
        return (urlparse(self.rpc_url).hostname or "") in LOCAL_HOSTS

    @property
    def effective_ws_url(self) -> str:
        """Websocket endpoint, derived from the RPC URL when not set explicitly."""
        if self.ws_url:
            return self.ws_url
        return self.rpc_url.replace("http", "ws", 1)

    @property
    def subscription_allowed(self) -> bool:
        """Push subscriptions are skipped against local validators."""
        return self.subscribe_enabled and not self.is_local


@dataclass
class DatabaseSettings:
    """Database configuration."""

    path: str = "data/solplay_sync.db"

    @property
    def absolute_path(self) -> Path:
        """Get absolute path to database file."""
        p = Path(self.path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class SettlementSettings:
    """Chunk-view tracking and settlement configuration."""

    platform_fee_bps: int = 500
    view_threshold: int = 100
    interval_seconds: float = 3600.0
    default_price_per_chunk: int = 1000
    settle_timeout_seconds: float = 15.0


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed", "json"] = "detailed"


@dataclass
class SyncConfig:
    """
    Complete service configuration.

    Aggregates all settings sections. Access via the module-level `config`
    object.
    """

    server: ServerSettings = field(default_factory=ServerSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    settlement: SettlementSettings = field(default_factory=SettlementSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _parse_bool(value: str) -> bool:
    """Parse a string value to boolean."""
    return value.lower() in ("true", "yes", "1", "on", "enabled")


def _load_from_ini(parser: configparser.ConfigParser, cfg: SyncConfig) -> None:
    """Load configuration from parsed INI file into SyncConfig."""
    # Server section
    if parser.has_section("server"):
        if parser.has_option("server", "host"):
            cfg.server.host = parser.get("server", "host")
        if parser.has_option("server", "port"):
            cfg.server.port = parser.getint("server", "port")

    # Ledger section
    if parser.has_section("ledger"):
        if parser.has_option("ledger", "rpc_url"):
            cfg.ledger.rpc_url = parser.get("ledger", "rpc_url")
        if parser.has_option("ledger", "ws_url"):
            cfg.ledger.ws_url = parser.get("ledger", "ws_url")
        if parser.has_option("ledger", "program_id"):
            cfg.ledger.program_id = parser.get("ledger", "program_id")
        if parser.has_option("ledger", "commitment"):
            val = parser.get("ledger", "commitment").lower()
            if val in ("processed", "confirmed", "finalized"):
                cfg.ledger.commitment = val  # type: ignore[assignment]
        if parser.has_option("ledger", "poll_interval_seconds"):
            cfg.ledger.poll_interval_seconds = parser.getfloat("ledger", "poll_interval_seconds")
        if parser.has_option("ledger", "poll_limit"):
            cfg.ledger.poll_limit = parser.getint("ledger", "poll_limit")
        if parser.has_option("ledger", "request_timeout_seconds"):
            cfg.ledger.request_timeout_seconds = parser.getfloat(
                "ledger", "request_timeout_seconds"
            )
        if parser.has_option("ledger", "subscribe_enabled"):
            cfg.ledger.subscribe_enabled = _parse_bool(parser.get("ledger", "subscribe_enabled"))

    # Database section
    if parser.has_section("database"):
        if parser.has_option("database", "path"):
            cfg.database.path = parser.get("database", "path")

    # Settlement section
    if parser.has_section("settlement"):
        if parser.has_option("settlement", "platform_fee_bps"):
            cfg.settlement.platform_fee_bps = parser.getint("settlement", "platform_fee_bps")
        if parser.has_option("settlement", "view_threshold"):
            cfg.settlement.view_threshold = parser.getint("settlement", "view_threshold")
        if parser.has_option("settlement", "interval_seconds"):
            cfg.settlement.interval_seconds = parser.getfloat("settlement", "interval_seconds")
        if parser.has_option("settlement", "default_price_per_chunk"):
            cfg.settlement.default_price_per_chunk = parser.getint(
                "settlement", "default_price_per_chunk"
            )
        if parser.has_option("settlement", "settle_timeout_seconds"):
            cfg.settlement.settle_timeout_seconds = parser.getfloat(
                "settlement", "settle_timeout_seconds"
            )

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed", "json"):
                cfg.logging.format = val  # type: ignore[assignment]


def _apply_env_overrides(cfg: SyncConfig) -> None:
    """Apply environment variable overrides to configuration."""
    if env_host := os.getenv("SOLPLAY_HOST"):
        cfg.server.host = env_host
    if env_port := os.getenv("SOLPLAY_PORT"):
        cfg.server.port = int(env_port)

    if env_rpc := os.getenv("SOLPLAY_RPC_URL"):
        cfg.ledger.rpc_url = env_rpc
    if env_ws := os.getenv("SOLPLAY_WS_URL"):
        cfg.ledger.ws_url = env_ws
    if env_program := os.getenv("SOLPLAY_PROGRAM_ID"):
        cfg.ledger.program_id = env_program
    if env_interval := os.getenv("SOLPLAY_POLL_INTERVAL"):
        cfg.ledger.poll_interval_seconds = float(env_interval)
    if env_subscribe := os.getenv("SOLPLAY_SUBSCRIBE"):
        cfg.ledger.subscribe_enabled = _parse_bool(env_subscribe)

    if env_db := os.getenv("SOLPLAY_DB_PATH"):
        cfg.database.path = env_db

    if env_fee := os.getenv("SOLPLAY_PLATFORM_FEE_BPS"):
        cfg.settlement.platform_fee_bps = int(env_fee)

    if env_log := os.getenv("SOLPLAY_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()


def load_config() -> SyncConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. config/sync.ini
        3. config/sync.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        SyncConfig: Fully populated configuration object.
    """
    cfg = SyncConfig()

    config_file = None
    if CONFIG_FILE.exists():
        config_file = CONFIG_FILE
    elif CONFIG_EXAMPLE.exists():
        config_file = CONFIG_EXAMPLE

    if config_file:
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)

    return cfg


def reload_config() -> "SyncConfig":
    """
    Reload configuration from disk and environment.

    This updates the module-level `config` object. A running ingestion loop
    keeps the settings it was built with.

    Returns:
        SyncConfig: The newly loaded configuration.
    """
    global config
    config = load_config()
    return config


# =============================================================================
# MODULE-LEVEL CONFIG
# =============================================================================

config = load_config()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_config_status() -> dict:
    """
    Get configuration status for diagnostics.

    Returns a dictionary with configuration source information.
    """
    return {
        "config_file_exists": CONFIG_FILE.exists(),
        "config_file_path": str(CONFIG_FILE),
        "using_example": not CONFIG_FILE.exists() and CONFIG_EXAMPLE.exists(),
        "rpc_url": config.ledger.rpc_url,
        "program_id": config.ledger.program_id,
        "subscription_allowed": config.ledger.subscription_allowed,
    }


def print_config_summary() -> None:
    """Print a summary of current configuration to stdout."""
    status = get_config_status()
    print("\n" + "=" * 60)
    print("SYNC CONFIGURATION")
    print("=" * 60)
    print(f"Config file: {status['config_file_path']}")
    print(f"File exists: {status['config_file_exists']}")
    if status["using_example"]:
        print("WARNING: Using example config (copy to sync.ini for production)")
    print("-" * 60)
    print(f"Server:       {config.server.host}:{config.server.port}")
    print(f"RPC:          {config.ledger.rpc_url}")
    print(f"Websocket:    {config.ledger.effective_ws_url}")
    print(f"Subscription: {config.ledger.subscription_allowed}")
    print(f"Program:      {config.ledger.program_id}")
    print(f"Poll every:   {config.ledger.poll_interval_seconds}s")
    print(f"Platform fee: {config.settlement.platform_fee_bps} bps")
    print(f"Database:     {config.database.absolute_path}")
    print(f"Log level:    {config.logging.level}")
    print("=" * 60 + "\n")


# =============================================================================
# TEST HELPERS
# =============================================================================


class use_test_database:
    """
    Context manager for using a temporary test database.

    Usage:
        from solplay_sync.config import use_test_database

        def test_something(tmp_path):
            with use_test_database(tmp_path / "test.db"):
                schema.init_database()

    Args:
        db_path: Path to the test database file
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.original_path: str | None = None

    def __enter__(self) -> Path:
        """Set up test database path."""
        self.original_path = config.database.path
        config.database.path = str(self.db_path)
        return self.db_path

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Restore original database path."""
        if self.original_path is not None:
            config.database.path = self.original_path
        return None
