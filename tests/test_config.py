import json
import os

import pytest
import yaml

from src.utils.config.config_manager import ConfigManager, EngineSettings, load_structured_file

CONFIG_PATH = os.path.join(os.path.dirname(__file__), "..", "config", "compliance_engine.yaml")


class TestSettings:

    def test_defaults_without_file(self):
        settings = ConfigManager().settings()

        assert settings.validator.keyword_risk_threshold == 0.6
        assert settings.validator.required_disclosures_enabled is False
        assert settings.audit.storage == "memory"
        assert settings.references.applicability_threshold == 30
        assert settings.logging.level == "INFO"

    def test_shipped_file_matches_defaults(self):
        assert ConfigManager(CONFIG_PATH).settings() == EngineSettings()

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("COMPLIANCE_AUDIT__SANITIZE_PII", "false")
        monkeypatch.setenv("COMPLIANCE_VALIDATOR__SCORE_ALERT_THRESHOLD", "70")

        manager = ConfigManager(CONFIG_PATH)

        assert manager.get("audit.sanitize_pii") is False
        settings = manager.settings()
        assert settings.audit.sanitize_pii is False
        assert settings.validator.score_alert_threshold == 70

    @pytest.mark.parametrize("key,value", [
        ("audit.storage", "postgres"),
        ("validator.keyword_risk_threshold", 1.5),
        ("logging.level", "verbose"),
        ("references.max_references", 0),
    ])
    def test_invalid_values_are_rejected(self, key, value):
        manager = ConfigManager()
        manager.set(key, value)
        with pytest.raises(ValueError, match="Invalid configuration"):
            manager.settings()

    def test_log_level_is_normalized(self):
        manager = ConfigManager()
        manager.set("logging.level", "debug")
        assert manager.settings().logging.level == "DEBUG"


class TestConfigManager:

    def test_dotted_get_and_set(self):
        manager = ConfigManager()
        manager.set("references.cache_size", 64)

        assert manager.get("references.cache_size") == 64
        assert manager.get("references.missing", "fallback") == "fallback"
        assert manager.get("references.cache_size.deeper") is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager(str(tmp_path / "absent.yaml"))

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            ConfigManager(str(path))

    def test_required_fields(self):
        manager = ConfigManager(CONFIG_PATH)
        assert manager.validate_required_fields(["audit.storage", "rules.rules_path", "api.port"]) == [
            "rules.rules_path", "api.port",
        ]

    def test_hash_tracks_content(self):
        first, second = ConfigManager(CONFIG_PATH), ConfigManager(CONFIG_PATH)
        assert first.generate_config_hash() == second.generate_config_hash()

        second.set("audit.enabled", False)
        assert first.generate_config_hash() != second.generate_config_hash()

    @pytest.mark.parametrize("filename", ["saved.yaml", "saved.json"])
    def test_save_and_reload(self, tmp_path, filename):
        path = str(tmp_path / filename)
        manager = ConfigManager(CONFIG_PATH)
        manager.set("audit.storage", "json_file")
        manager.save_config(path)

        reloaded = ConfigManager(path)
        assert reloaded.config == manager.config
        assert reloaded.settings().audit.storage == "json_file"

    def test_save_rejects_unknown_extension(self, tmp_path):
        with pytest.raises(ValueError):
            ConfigManager().save_config(str(tmp_path / "config.ini"))


class TestStructuredFiles:

    def test_yaml_and_json(self, tmp_path):
        (tmp_path / "a.yml").write_text(yaml.safe_dump({"rules": [{"id": "x"}]}))
        (tmp_path / "b.json").write_text(json.dumps({"rules": []}))

        assert load_structured_file(str(tmp_path / "a.yml")) == {"rules": [{"id": "x"}]}
        assert load_structured_file(str(tmp_path / "b.json")) == {"rules": []}

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "rules.txt"
        path.write_text("id: x")
        with pytest.raises(ValueError, match="Unsupported file type"):
            load_structured_file(str(path))
