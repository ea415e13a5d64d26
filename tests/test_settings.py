from __future__ import annotations

import logging

import pytest

from cotwatch.config.settings import get_logging_config, load_settings
from cotwatch.core.env import find_env_file
from cotwatch.core.logging import configure_logging


def test_packaged_defaults_load():
    settings = load_settings()
    assert settings.app.timezone == "UTC"
    assert settings.normalizer.unknown_sentinels == [9999999.0, 999999.0]
    assert settings.analysis.stop_distance_m == 50
    assert settings.alerts.emergency_max_listed_units == 10


def test_env_overrides_apply_on_top_of_yaml(monkeypatch):
    monkeypatch.setenv("COTWATCH_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("COTWATCH_STALENESS_WINDOW_SECONDS", "30")
    monkeypatch.setenv("COTWATCH_MAX_ENTITIES", "500")
    settings = load_settings()
    assert settings.app.log_level == "DEBUG"
    assert settings.store.staleness_window_seconds == 30
    assert settings.store.max_entities == 500


def test_external_config_path_replaces_defaults(monkeypatch, tmp_path):
    path = tmp_path / "cotwatch.yaml"
    path.write_text("spatial:\n  default_max_results: 3\nhistory:\n  max_points_per_entity: 50\n", encoding="utf-8")
    monkeypatch.setenv("COTWATCH_CONFIG_PATH", str(path))
    settings = load_settings()
    assert settings.spatial.default_max_results == 3
    assert settings.history.max_points_per_entity == 50


def test_invalid_yaml_root_is_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError, match="expected a mapping"):
        load_settings(path)


def test_configure_logging_applies_level_without_mutating_cached_config(monkeypatch):
    monkeypatch.setenv("COTWATCH_LOG_LEVEL", "WARNING")
    configure_logging(load_settings())
    assert logging.getLogger().level == logging.WARNING
    assert get_logging_config()["root"]["level"] != "WARNING"


def test_env_file_lookup_stops_at_project_root(monkeypatch, tmp_path):
    monkeypatch.delenv("COTWATCH_ENV_FILE", raising=False)
    project = tmp_path / "project"
    nested = project / "deploy" / "site"
    nested.mkdir(parents=True)
    (project / "pyproject.toml").write_text("[project]\nname = 'x'\n", encoding="utf-8")
    (project / ".env").write_text("COTWATCH_LOG_LEVEL=DEBUG\n", encoding="utf-8")
    (tmp_path / ".env").write_text("COTWATCH_LOG_LEVEL=ERROR\n", encoding="utf-8")

    assert find_env_file(nested) == (project / ".env").resolve()

    (project / ".env").unlink()
    assert find_env_file(nested) is None


def test_explicit_env_file_wins_and_missing_one_loads_nothing(monkeypatch, tmp_path):
    explicit = tmp_path / "site.env"
    explicit.write_text("COTWATCH_MAX_ENTITIES=10\n", encoding="utf-8")
    monkeypatch.setenv("COTWATCH_ENV_FILE", str(explicit))
    assert find_env_file(tmp_path / "elsewhere") == explicit.resolve()

    monkeypatch.setenv("COTWATCH_ENV_FILE", str(tmp_path / "missing.env"))
    assert find_env_file() is None
