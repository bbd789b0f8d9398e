"""Unit tests for config.py - Configuration management."""

import os
import pytest
from unittest.mock import patch

import config
from config import (
    APIConfig,
    Config,
    ControllerConfig,
    DatabaseConfig,
    PluginConfig,
    get_config,
    load_config,
    reset_config,
)


class TestDatabaseConfig:
    """Object store connection settings."""

    def test_default_values(self):
        cfg = DatabaseConfig()
        assert cfg.host == "localhost"
        assert cfg.port == 5432
        assert cfg.database == "ingress_operator"
        assert cfg.user == "operator"
        assert cfg.password == ""

    def test_password_not_in_repr(self):
        assert "secret" not in repr(DatabaseConfig(password="secret"))

    def test_from_env(self):
        env_vars = {
            "DB_HOST": "envhost",
            "DB_PORT": "5434",
            "DB_NAME": "envdb",
            "DB_USER": "envuser",
            "DB_PASSWORD": "envpassword",
            "DB_MIN_POOL_SIZE": "2",
            "DB_MAX_POOL_SIZE": "8",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = DatabaseConfig.from_env()

        assert cfg.host == "envhost"
        assert cfg.port == 5434
        assert cfg.database == "envdb"
        assert cfg.user == "envuser"
        assert cfg.password == "envpassword"
        assert cfg.min_pool_size == 2
        assert cfg.max_pool_size == 8

    def test_from_env_requires_password(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError) as exc_info:
                DatabaseConfig.from_env()
        assert "DB_PASSWORD" in str(exc_info.value)


class TestControllerConfig:
    """Worker, resync and backoff settings."""

    def test_default_values(self):
        cfg = ControllerConfig()
        assert cfg.max_concurrent_reconciles == 5
        assert cfg.resync_interval == 300
        assert cfg.backoff_base_delay == 1.0
        assert cfg.backoff_max_delay == 300.0
        assert cfg.backoff_jitter_factor == 0.1

    def test_from_env(self):
        env_vars = {
            "MAX_CONCURRENT_RECONCILES": "2",
            "RESYNC_INTERVAL": "0",
            "BACKOFF_BASE_DELAY": "0.5",
            "BACKOFF_MAX_DELAY": "60",
            "BACKOFF_JITTER_FACTOR": "0",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = ControllerConfig.from_env()

        assert cfg.max_concurrent_reconciles == 2
        assert cfg.resync_interval == 0
        assert cfg.backoff_base_delay == 0.5
        assert cfg.backoff_max_delay == 60.0
        assert cfg.backoff_jitter_factor == 0.0


class TestAPIConfig:
    """API listener, CORS and log level settings."""

    def test_default_values(self):
        cfg = APIConfig()
        assert cfg.host == "0.0.0.0"
        assert cfg.port == 8000
        assert cfg.log_level == "INFO"
        assert cfg.cors_enabled is False
        assert cfg.cors_origins == ["*"]

    def test_from_env(self):
        env_vars = {
            "API_HOST": "127.0.0.1",
            "API_PORT": "9000",
            "LOG_LEVEL": "DEBUG",
            "CORS_ENABLED": "TRUE",
            "CORS_ORIGINS": "https://a.example.com, https://b.example.com,",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = APIConfig.from_env()

        assert cfg.host == "127.0.0.1"
        assert cfg.port == 9000
        assert cfg.log_level == "DEBUG"
        assert cfg.cors_enabled is True
        assert cfg.cors_origins == ["https://a.example.com", "https://b.example.com"]

    def test_from_env_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = APIConfig.from_env()
        assert cfg.cors_enabled is False
        assert cfg.cors_origins == ["*"]


class TestPluginConfig:
    """Plugin selection and PLUGIN_CONFIGS overrides."""

    def test_default_values(self):
        cfg = PluginConfig()
        assert cfg.translator_plugin == "routes"
        assert cfg.enabled_input_plugins == []
        assert cfg.plugin_configs == {}

    def test_from_env(self):
        env_vars = {
            "TRANSLATOR_PLUGIN": "custom",
            "ENABLED_INPUT_PLUGINS": "http, grpc",
            "PLUGIN_CONFIGS": '{"routes": {"gateway_service": "gw"}}',
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = PluginConfig.from_env()

        assert cfg.translator_plugin == "custom"
        assert cfg.enabled_input_plugins == ["http", "grpc"]
        assert cfg.get_plugin_config("routes") == {"gateway_service": "gw"}

    def test_invalid_plugin_configs_ignored(self, caplog):
        with patch.dict(os.environ, {"PLUGIN_CONFIGS": "{not json"}, clear=True):
            cfg = PluginConfig.from_env()

        assert cfg.plugin_configs == {}
        assert "Ignoring invalid PLUGIN_CONFIGS" in caplog.text

    def test_get_plugin_config_missing(self):
        assert PluginConfig().get_plugin_config("unknown") == {}


class TestGlobalConfig:
    """Tests for the module-level config accessors."""

    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_default(self):
        cfg = Config.default()
        assert cfg.database.database == "ingress_operator"
        assert cfg.plugins.translator_plugin == "routes"

    def test_load_config_is_cached(self):
        with patch.dict(os.environ, {"DB_PASSWORD": "pw"}, clear=True):
            first = load_config()
            second = get_config()

        assert first is second
        assert config.config is first

    def test_reset_config(self):
        with patch.dict(os.environ, {"DB_PASSWORD": "pw"}, clear=True):
            first = get_config()
            reset_config()
            assert config.config is None
            assert get_config() is not first
