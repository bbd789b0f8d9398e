"""
Configuration for the Ingress Operator.

Every setting comes from an environment variable so the operator can be
configured entirely from its Deployment. Plugin specific settings are read
by the plugins themselves (``load_config_from_env``) and can be overridden
per plugin through the ``PLUGIN_CONFIGS`` JSON object.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


def _split_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class DatabaseConfig:
    """Connection settings for the PostgreSQL object store."""

    host: str = "localhost"
    port: int = 5432
    database: str = "ingress_operator"
    user: str = "operator"
    password: str = field(default="", repr=False)
    min_pool_size: int = 5
    max_pool_size: int = 20

    @classmethod
    def from_env(cls):
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError("DB_PASSWORD must be set to connect to the object store")

        return cls(
            host=os.getenv("DB_HOST", cls.host),
            port=_env_int("DB_PORT", cls.port),
            database=os.getenv("DB_NAME", cls.database),
            user=os.getenv("DB_USER", cls.user),
            password=password,
            min_pool_size=_env_int("DB_MIN_POOL_SIZE", cls.min_pool_size),
            max_pool_size=_env_int("DB_MAX_POOL_SIZE", cls.max_pool_size),
        )


@dataclass
class ControllerConfig:
    """Worker count, resync period and retry backoff of the controller."""

    max_concurrent_reconciles: int = 5
    resync_interval: int = 300  # seconds; 0 turns periodic resync off
    backoff_base_delay: float = 1.0
    backoff_max_delay: float = 300.0
    backoff_jitter_factor: float = 0.1

    @classmethod
    def from_env(cls):
        return cls(
            max_concurrent_reconciles=_env_int(
                "MAX_CONCURRENT_RECONCILES", cls.max_concurrent_reconciles
            ),
            resync_interval=_env_int("RESYNC_INTERVAL", cls.resync_interval),
            backoff_base_delay=_env_float("BACKOFF_BASE_DELAY", cls.backoff_base_delay),
            backoff_max_delay=_env_float("BACKOFF_MAX_DELAY", cls.backoff_max_delay),
            backoff_jitter_factor=_env_float(
                "BACKOFF_JITTER_FACTOR", cls.backoff_jitter_factor
            ),
        )


@dataclass
class APIConfig:
    """Process-wide API and logging settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_enabled: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls):
        return cls(
            host=os.getenv("API_HOST", cls.host),
            port=_env_int("API_PORT", cls.port),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            cors_enabled=_env_bool("CORS_ENABLED"),
            cors_origins=_split_list(os.getenv("CORS_ORIGINS", "")) or ["*"],
        )


@dataclass
class PluginConfig:
    """Which plugins run, and per-plugin overrides."""

    translator_plugin: str = "routes"
    # Empty means every registered input plugin
    enabled_input_plugins: List[str] = field(default_factory=list)
    plugin_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        overrides: Dict[str, Dict[str, Any]] = {}
        raw = os.getenv("PLUGIN_CONFIGS")
        if raw:
            try:
                overrides = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring invalid PLUGIN_CONFIGS: {e}")

        return cls(
            translator_plugin=os.getenv("TRANSLATOR_PLUGIN", cls.translator_plugin),
            enabled_input_plugins=_split_list(os.getenv("ENABLED_INPUT_PLUGINS", "")),
            plugin_configs=overrides,
        )

    def get_plugin_config(self, plugin_name: str) -> Dict[str, Any]:
        return self.plugin_configs.get(plugin_name, {})


@dataclass
class Config:
    database: DatabaseConfig
    controller: ControllerConfig
    api: APIConfig
    plugins: PluginConfig

    @classmethod
    def from_env(cls):
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
            plugins=PluginConfig.from_env(),
        )

    @classmethod
    def default(cls):
        return cls(DatabaseConfig(), ControllerConfig(), APIConfig(), PluginConfig())


# Process-wide configuration, loaded on first use
config: Optional[Config] = None


def load_config() -> Config:
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    return config if config is not None else load_config()


def reset_config() -> None:
    """Forget the loaded configuration so the next access re-reads the env."""
    global config
    config = None
