"""Tests for settings loading, env overrides and persisted weight overrides."""

from __future__ import annotations

import json

import pytest

from gatekeeper.config import (
    ENV_CONFIG,
    ENV_DATA_DIR,
    OVERRIDES_FILENAME,
    Settings,
    load_config,
    overrides_document,
    save_overrides,
    write_default_config,
)
from gatekeeper.engine.worker import OutputMode
from gatekeeper.errors import ConfigurationError
from gatekeeper.routing.models import TaskCategory
from gatekeeper.validation import CriteriaRegistry


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(ENV_CONFIG, raising=False)
    monkeypatch.delenv(ENV_DATA_DIR, raising=False)


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        settings = load_config(data_dir=tmp_path)
        assert settings.max_retries == 2
        assert settings.auto_enhance is True
        assert settings.output_mode is OutputMode.TEXT
        assert settings.config_path is None
        assert settings.ledger_path == tmp_path / "ledger.db"
        assert settings.registry.version == 1

    def test_default_document_loads(self, tmp_path):
        path = write_default_config(tmp_path)
        settings = load_config(data_dir=tmp_path)
        assert settings.config_path == path
        assert settings.token_thresholds[TaskCategory.CODE_GENERATION] == 500
        assert settings.worker_command == []

    def test_write_default_keeps_existing(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("max_retries = 5\n")
        write_default_config(tmp_path)
        assert path.read_text() == "max_retries = 5\n"
        write_default_config(tmp_path, overwrite=True)
        assert "max_retries = 2" in path.read_text()

    def test_toml_document(self, tmp_path):
        (tmp_path / "config.toml").write_text(
            "\n".join(
                [
                    "max_retries = 4",
                    'output_mode = "json"',
                    'worker_command = "my-worker --quiet"',
                    "",
                    "[token_threshold]",
                    "research = 1500",
                    "",
                    "[categories.research.thresholds]",
                    "pass = 0.9",
                    "",
                ]
            )
        )
        settings = load_config(data_dir=tmp_path)
        assert settings.max_retries == 4
        assert settings.output_mode is OutputMode.JSON
        assert settings.worker_command == ["my-worker", "--quiet"]
        assert settings.token_thresholds[TaskCategory.RESEARCH] == 1500
        thresholds = settings.registry.thresholds(TaskCategory.RESEARCH)
        assert thresholds.pass_ == 0.9
        assert thresholds.enhance == 0.6

    def test_json_document(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"auto_enhance": False, "worker_timeout": 30}))
        settings = load_config(path, data_dir=tmp_path)
        assert settings.auto_enhance is False
        assert settings.worker_timeout == 30.0

    def test_criterion_weights_override(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(
            json.dumps({"categories": {"generic": {"criteria": {"min_length": 0.5,
                                                                 "addresses_request": 0.5}}}})
        )
        settings = load_config(path, data_dir=tmp_path)
        entry = settings.registry.entry(TaskCategory.GENERIC)
        assert entry.get("min_length").weight == 0.5

    @pytest.mark.parametrize(
        "document,match",
        [
            ({"bogus": 1}, "Unknown config keys"),
            ({"max_retries": -1}, "max_retries"),
            ({"output_mode": "xml"}, "output_mode"),
            ({"worker_timeout": "slow"}, "worker_timeout"),
            ({"token_threshold": {"research": 0}}, "token_threshold"),
            ({"categories": {"poetry": {}}}, "Unknown task category"),
            ({"categories": {"generic": {"criteria": {"min_length": 0.5}}}}, "sum to"),
            ({"categories": {"generic": {"criteria": {"min_length": 1.5}}}}, "must be in"),
            ({"categories": {"generic": {"criteria": {"nope": 0.5}}}}, "unknown criteria"),
            ({"categories": {"generic": {"phase_weights": {"format": 0.5}}}}, "phase weights"),
            ({"categories": {"generic": {"thresholds": {"pass": 0.2}}}}, "thresholds"),
            ({"categories": {"generic": {"colour": "red"}}}, "unknown keys"),
        ],
    )
    def test_bad_documents(self, tmp_path, document, match):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps(document))
        with pytest.raises(ConfigurationError, match=match):
            load_config(path, data_dir=tmp_path)

    def test_malformed_toml(self, tmp_path):
        (tmp_path / "config.toml").write_text("max_retries = = 2\n")
        with pytest.raises(ConfigurationError, match="Cannot read config"):
            load_config(data_dir=tmp_path)

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "absent.toml", data_dir=tmp_path)


class TestEnvironment:
    def test_env_data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv(ENV_DATA_DIR, str(tmp_path))
        assert load_config().data_dir == tmp_path

    def test_env_config_path(self, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.toml"
        path.write_text("max_retries = 1\n")
        monkeypatch.setenv(ENV_CONFIG, str(path))
        settings = load_config(data_dir=tmp_path)
        assert settings.max_retries == 1
        assert settings.config_path == path

    def test_env_config_missing(self, tmp_path, monkeypatch):
        monkeypatch.setenv(ENV_CONFIG, str(tmp_path / "missing.toml"))
        with pytest.raises(ConfigurationError, match=ENV_CONFIG):
            load_config(data_dir=tmp_path)

    def test_env_data_dir_beats_document(self, tmp_path, monkeypatch):
        other = tmp_path / "other"
        (tmp_path / "config.toml").write_text(f'data_dir = "{other}"\n')
        monkeypatch.setenv(ENV_DATA_DIR, str(tmp_path))
        assert load_config().data_dir == tmp_path


class TestOverrides:
    def test_default_registry_has_no_overrides(self):
        assert overrides_document(CriteriaRegistry.default())["categories"] == {}

    def test_round_trip(self, tmp_path):
        tuned = CriteriaRegistry.default().adjusted(TaskCategory.RESEARCH, "has_references", 1.1)
        path = save_overrides(tuned, tmp_path / OVERRIDES_FILENAME)

        document = json.loads(path.read_text())
        assert set(document["categories"]) == {"research"}
        assert set(document["categories"]["research"]["criteria"]) == {
            "has_summary",
            "has_references",
            "min_length",
        }

        settings = load_config(data_dir=tmp_path)
        loaded = settings.registry.entry(TaskCategory.RESEARCH).get("has_references").weight
        expected = tuned.entry(TaskCategory.RESEARCH).get("has_references").weight
        assert loaded == pytest.approx(expected)
        assert settings.registry.entry(TaskCategory.GENERIC) == (
            CriteriaRegistry.default().entry(TaskCategory.GENERIC)
        )

    def test_overrides_win_over_document(self, tmp_path):
        (tmp_path / "config.toml").write_text(
            "[categories.research.criteria]\n"
            "has_summary = 0.2\nhas_references = 0.5\nmin_length = 0.3\n"
        )
        tuned = CriteriaRegistry.default().adjusted(TaskCategory.RESEARCH, "has_references", 1.1)
        save_overrides(tuned, tmp_path / OVERRIDES_FILENAME)

        settings = load_config(data_dir=tmp_path)
        weight = settings.registry.entry(TaskCategory.RESEARCH).get("has_references").weight
        assert weight == pytest.approx(0.44 / 1.04)

    def test_settings_ensure_dirs(self, tmp_path):
        settings = Settings(data_dir=tmp_path / "a" / "b")
        settings.ensure_dirs()
        assert settings.data_dir.is_dir()
