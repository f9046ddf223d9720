"""Tests for configuration loading and error rendering."""

import json

import pytest

from siteflow import config
from siteflow.config import EngineConfig
from siteflow.errors import ErrorCode, ResultNotFoundError, SiteflowError


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "configuration.json"
    monkeypatch.setattr(config, "SITEFLOW_CONFIG_FILE", path)
    for name in (
        "SITEFLOW_NODE_TIMEOUT",
        "SITEFLOW_MEMO_TTL",
        "SITEFLOW_MEMO_MAX_ENTRIES",
        "SITEFLOW_SESSION_MAX_ENTRIES",
        "ANALYSIS_CACHE_TTL",
    ):
        monkeypatch.delenv(name, raising=False)
    return path


def test_defaults_without_config_file(config_file):
    cfg = EngineConfig()

    assert cfg.node_timeout_seconds == 300.0
    assert cfg.memo_max_entries == 100
    assert cfg.memo_ttl_seconds == 300.0
    assert cfg.session_max_entries == 50
    assert cfg.session_ttl_seconds == 300.0


def test_file_values_are_used(config_file):
    config_file.write_text(json.dumps({"engine": {"node_timeout_seconds": 30, "memo_max_entries": 5}}))

    cfg = EngineConfig()

    assert cfg.node_timeout_seconds == 30.0
    assert cfg.memo_max_entries == 5


def test_env_overrides_file(config_file, monkeypatch):
    config_file.write_text(json.dumps({"engine": {"node_timeout_seconds": 30}}))
    monkeypatch.setenv("SITEFLOW_NODE_TIMEOUT", "12.5")

    assert EngineConfig().node_timeout_seconds == 12.5


def test_legacy_cache_ttl_is_milliseconds(config_file, monkeypatch):
    monkeypatch.setenv("ANALYSIS_CACHE_TTL", "60000")
    assert EngineConfig().session_ttl_seconds == 60.0


def test_malformed_config_file_is_ignored(config_file):
    config_file.write_text("{not json")
    assert config.get_siteflow_config() == {}


def test_error_to_dict():
    error = ResultNotFoundError("Results for node x not found", {"available_nodes": ["a"]})

    assert isinstance(error, SiteflowError)
    assert error.to_dict() == {
        "code": "RESULT_NOT_FOUND",
        "message": "Results for node x not found",
        "details": {"available_nodes": ["a"]},
    }
    assert error.code == ErrorCode.RESULT_NOT_FOUND
