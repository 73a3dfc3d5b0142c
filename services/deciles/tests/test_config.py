"""
Tests for configuration loading.
"""
from climo_deciles import config as config_module
from climo_deciles.config import DecileConfig, get_config


def test_defaults(monkeypatch):
    """Test documented defaults."""
    monkeypatch.delenv("CLIMO_DATABASE_URL", raising=False)
    monkeypatch.delenv("CLIMO_CACHE_SIZE", raising=False)

    config = DecileConfig(_env_file=None)

    assert config.database_url == "sqlite:///climo.db"
    assert config.cache_size == 100000
    assert config.spark_master == ""
    assert config.is_sqlite


def test_environment_overrides(monkeypatch):
    """Test that CLIMO_ prefixed variables override defaults."""
    monkeypatch.setenv("CLIMO_DATABASE_URL", "postgresql://climo:climo@db:5432/climo")
    monkeypatch.setenv("CLIMO_CACHE_SIZE", "2000")

    config = DecileConfig(_env_file=None)

    assert config.database_url.startswith("postgresql://")
    assert config.cache_size == 2000
    assert not config.is_sqlite


def test_get_config_is_cached(monkeypatch):
    """Test that the global config is created once."""
    monkeypatch.setattr(config_module, "_config", None)

    assert get_config() is get_config()
