import json
import logging

import pytest

from config_loader import (
    CONFIG_FILENAME,
    DEFAULT_RULES,
    ConfigError,
    ScanConfig,
    Settings,
    load_config,
    load_settings,
)


@pytest.fixture(autouse=True)
def _no_config_env(monkeypatch):
    monkeypatch.delenv("APISHIELD_CONFIG", raising=False)


def _write_config(directory, data, name=CONFIG_FILENAME):
    path = directory / name
    path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")
    return path


class TestScanConfig:
    def test_defaults(self):
        cfg = ScanConfig()
        assert cfg.ignore_paths == []
        assert cfg.custom_sensitive_fields == []
        assert cfg.compliance is None
        assert cfg.rules == DEFAULT_RULES

    def test_from_dict_camel_and_snake_case(self):
        camel = ScanConfig.from_dict({"ignorePaths": ["/a"], "customSensitiveFields": ["sku"], "compliance": "GDPR"})
        snake = ScanConfig.from_dict({"ignore_paths": ["/a"], "custom_sensitive_fields": ["sku"], "compliance": "gdpr"})
        assert camel == snake
        assert camel.compliance == "gdpr"
        assert camel.compliance_regulation == "GDPR"
        assert ScanConfig(compliance="pci").compliance_regulation == "PCI-DSS"

    def test_invalid_values_raise(self):
        with pytest.raises(ConfigError):
            ScanConfig(compliance="sox")
        with pytest.raises(ConfigError):
            ScanConfig(rules={"missingAuth": "loud"})
        with pytest.raises(ConfigError):
            ScanConfig.from_dict(["not", "a", "mapping"])

    @pytest.mark.parametrize("data", [
        {"ignorePaths": "/internal"},
        {"ignore_paths": "/"},
        {"customSensitiveFields": "sku"},
        {"customSensitiveFields": {"sku": True}},
    ])
    def test_list_options_must_be_lists(self, data):
        with pytest.raises(ConfigError):
            ScanConfig.from_dict(data)

    def test_rules_merge_over_defaults(self):
        cfg = ScanConfig(rules={"excessiveData": "OFF"})
        assert cfg.rule_level("excessiveData") == "off"
        assert cfg.rule_level("missingAuth") == "error"
        assert cfg.rule_level("somethingNew") == "error"

    def test_with_overrides_unions_lists(self):
        base = ScanConfig(ignore_paths=["/a"], custom_sensitive_fields=["sku"], compliance="ccpa")
        merged = base.with_overrides(ignore_paths=["/a", "/b"], custom_sensitive_fields=["badge"])
        assert merged.ignore_paths == ["/a", "/b"]
        assert merged.custom_sensitive_fields == ["sku", "badge"]
        assert merged.compliance == "ccpa"
        assert base.with_overrides(compliance="hipaa").compliance == "hipaa"
        assert base.ignore_paths == ["/a"]


class TestLoadConfig:
    def test_missing_implicit_file_gives_defaults(self, tmp_path):
        assert load_config(cwd=str(tmp_path)) == ScanConfig()

    def test_implicit_file_is_merged(self, tmp_path):
        _write_config(tmp_path, {"ignorePaths": ["/internal/*"], "rules": {"excessiveData": "off"}})
        cfg = load_config(cwd=str(tmp_path))
        assert cfg.ignore_paths == ["/internal/*"]
        assert cfg.rules["excessiveData"] == "off"
        assert cfg.rules["missingAuth"] == "error"

    def test_invalid_implicit_file_warns_and_falls_back(self, tmp_path, caplog):
        _write_config(tmp_path, "{not json")
        with caplog.at_level(logging.WARNING, logger="config_loader"):
            cfg = load_config(cwd=str(tmp_path))
        assert cfg == ScanConfig()
        assert "using defaults" in caplog.text

    def test_string_ignore_paths_in_file_is_rejected(self, tmp_path):
        _write_config(tmp_path, {"ignorePaths": "/internal"})
        with pytest.raises(ConfigError):
            load_config(cwd=str(tmp_path))

    def test_explicit_path_errors(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(path=str(tmp_path / "nope.json"))
        bad = _write_config(tmp_path, "{not json", name="bad.json")
        with pytest.raises(ConfigError):
            load_config(path=str(bad))

    def test_env_variable_points_to_config(self, tmp_path, monkeypatch):
        cfg_file = _write_config(tmp_path, {"compliance": "hipaa"}, name="custom.json")
        monkeypatch.setenv("APISHIELD_CONFIG", str(cfg_file))
        assert load_config(cwd=str(tmp_path / "elsewhere")).compliance == "hipaa"


class TestLoadSettings:
    def test_defaults_from_empty_env(self):
        assert load_settings({}) == Settings()

    def test_values_from_env(self):
        settings = load_settings({
            "APISHIELD_TIMEOUT": "2.5",
            "APISHIELD_PROBE_DELAY_MS": "100",
            "APISHIELD_USER_AGENT": "  scanner/1  ",
            "APISHIELD_VERIFY_TLS": "false",
        })
        assert settings.timeout == 2.5
        assert settings.probe_delay_ms == 100
        assert settings.user_agent == "scanner/1"
        assert settings.verify_tls is False

    def test_bad_numbers_fall_back(self, caplog):
        with caplog.at_level(logging.WARNING, logger="config_loader"):
            settings = load_settings({"APISHIELD_TIMEOUT": "soon"})
        assert settings.timeout == 5.0
        assert "APISHIELD_TIMEOUT" in caplog.text

    def test_dotenv_file_is_read(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        # registered so the value loaded from .env is removed afterwards
        monkeypatch.setenv("APISHIELD_PROBE_DELAY_MS", "0")
        monkeypatch.delenv("APISHIELD_PROBE_DELAY_MS")
        (tmp_path / ".env").write_text("APISHIELD_PROBE_DELAY_MS=42\n", encoding="utf-8")
        assert load_settings().probe_delay_ms == 42
