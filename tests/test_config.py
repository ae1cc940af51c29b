from datetime import timedelta

import pytest
import structlog

import releasewatch.core.config as config_module
from releasewatch.core.config import (
    LockConfig,
    NormalizerConfig,
    _load_yaml,
    get_config,
)
from releasewatch.core.exceptions import ConfigError, ReleaseWatchError
from releasewatch.core.logger import log_context


@pytest.fixture
def fresh_config():
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def test_settings_yaml_loaded(fresh_config):
    config = get_config()
    assert config.app.name == "releasewatch"
    assert config.dedup.similarity_threshold == 0.7
    assert config.dedup.word_overlap_threshold == 0.7
    assert config.dedup.sweep_cross_source_threshold == 0.85
    assert config.locking.default_lock_name == "feed_processing"
    assert config.locking.ttl == timedelta(minutes=30)
    assert "parks" in config.normalizer.brand_words


def test_env_log_level_overrides_yaml(fresh_config, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    assert get_config().logging.level == "DEBUG"


def test_missing_yaml_raises_config_error(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_DIR", tmp_path)
    with pytest.raises(ConfigError):
        _load_yaml("settings.yaml")


def test_invalid_yaml_raises_config_error(tmp_path, monkeypatch):
    (tmp_path / "settings.yaml").write_text("dedup: [unclosed\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "CONFIG_DIR", tmp_path)
    with pytest.raises(ConfigError) as exc_info:
        _load_yaml("settings.yaml")
    assert exc_info.value.details["file"] == "settings.yaml"


def test_normalizer_words_lowercased():
    config = NormalizerConfig(stop_words=[" The ", "NEW", ""], brand_words=["Disney"])
    assert config.stop_words == ["the", "new"]
    assert config.brand_words == ["disney"]


def test_lock_ttl_must_be_positive():
    with pytest.raises(ValueError):
        LockConfig(ttl_minutes=0)


def test_error_str_includes_details():
    error = ReleaseWatchError("Store down", {"url": "sqlite://"})
    assert str(error) == "Store down | details={'url': 'sqlite://'}"
    assert str(ReleaseWatchError("plain")) == "plain"


def test_log_context_binds_and_unbinds():
    with log_context(run_id="abc123"):
        assert structlog.contextvars.get_contextvars()["run_id"] == "abc123"
    assert "run_id" not in structlog.contextvars.get_contextvars()
