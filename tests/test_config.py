"""Tests for configuration loading."""

import json

import pytest

from refnorm.config import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    ClassifierSettings,
    ConfigManager,
    RefnormConfig,
)
from refnorm.errors import ConfigurationError

ENV_VARS = (
    "REFNORM_API_KEY",
    "ARLIAI_API_KEY",
    "REFNORM_MODEL",
    "REFNORM_PROVIDER",
    "REFNORM_BASE_URL",
    "REFNORM_TAXONOMY_PATH",
    "REFNORM_PRIORITY_STORE",
    "REFNORM_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Configuration without a file."""

    def test_defaults(self):
        """Test built-in defaults."""
        config = ConfigManager(load_env_file=False).load()

        assert isinstance(config, RefnormConfig)
        assert config.llm.provider == "openai"
        assert config.llm.model == DEFAULT_MODEL
        assert config.llm.base_url == DEFAULT_BASE_URL
        assert config.llm.api_key is None
        assert config.classifier.retry_attempts == 3
        assert config.classifier.default_ai_confidence == 0.5
        assert config.benchmark.max_retries == 5
        assert config.benchmark.retry_delay_ms == 200
        assert config.benchmark.category_hint == "общее"
        assert config.benchmark.models == ["GLM-4.5-Air", "GLM-4.5"]
        assert "ООО" in config.deduplication.legal_form_tokens
        assert config.log_level == "INFO"

    def test_settings_validation(self):
        """Test field constraints on settings models."""
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            ClassifierSettings(retry_attempts=0)
        with pytest.raises(ValidationError):
            ClassifierSettings(default_ai_confidence=1.5)


class TestFileAndEnvironment:
    """File merge and environment overrides."""

    def test_file_is_deep_merged(self, tmp_path):
        """Test that a partial file keeps unspecified defaults."""
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps({"llm": {"model": "GLM-4.5"}, "classifier": {"retry_attempts": 5}}),
            encoding="utf-8",
        )

        config = ConfigManager(str(path), load_env_file=False).load()

        assert config.llm.model == "GLM-4.5"
        assert config.llm.base_url == DEFAULT_BASE_URL
        assert config.classifier.retry_attempts == 5
        assert config.classifier.default_ai_confidence == 0.5

    def test_environment_overrides(self, monkeypatch, tmp_path):
        """Test that environment variables win over the file."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"llm": {"model": "GLM-4.5"}}), encoding="utf-8")
        monkeypatch.setenv("ARLIAI_API_KEY", "secret")
        monkeypatch.setenv("REFNORM_MODEL", "GLM-4.5-Air")
        monkeypatch.setenv("REFNORM_TAXONOMY_PATH", "/data/okpd2.json")
        monkeypatch.setenv("REFNORM_PRIORITY_STORE", "/data/priorities.json")
        monkeypatch.setenv("REFNORM_LOG_LEVEL", "debug")

        config = ConfigManager(str(path), load_env_file=False).load()

        assert config.llm.api_key == "secret"
        assert config.llm.model == "GLM-4.5-Air"
        assert config.classifier.taxonomy_path == "/data/okpd2.json"
        assert config.benchmark.priority_store == "/data/priorities.json"
        assert config.log_level == "DEBUG"

    def test_file_api_key_wins(self, monkeypatch, tmp_path):
        """Test that an API key in the file is not replaced by the environment."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"llm": {"api_key": "from-file"}}), encoding="utf-8")
        monkeypatch.setenv("REFNORM_API_KEY", "from-env")

        config = ConfigManager(str(path), load_env_file=False).load()

        assert config.llm.api_key == "from-file"

    def test_missing_file(self, tmp_path):
        """Test that a missing config file is a configuration error."""
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigManager(str(tmp_path / "missing.json"), load_env_file=False).load()

    def test_invalid_json(self, tmp_path):
        """Test that malformed JSON is a configuration error."""
        path = tmp_path / "config.json"
        path.write_text("{broken", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            ConfigManager(str(path), load_env_file=False).load()

    def test_invalid_values(self, tmp_path):
        """Test that out-of-range values are a configuration error."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"benchmark": {"max_concurrency": 0}}), encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            ConfigManager(str(path), load_env_file=False).load()


class TestValidationAndTemplate:
    """validate() and save_template()."""

    def test_validate_requires_api_key(self):
        """Test that a missing API key fails validation."""
        with pytest.raises(ConfigurationError, match="API key"):
            ConfigManager(load_env_file=False).validate()

    def test_validate_requires_taxonomy(self, monkeypatch):
        """Test that a missing taxonomy path fails validation."""
        monkeypatch.setenv("ARLIAI_API_KEY", "secret")
        with pytest.raises(ConfigurationError, match="Taxonomy"):
            ConfigManager(load_env_file=False).validate()

    def test_validate_ok(self, monkeypatch):
        """Test a complete configuration."""
        monkeypatch.setenv("ARLIAI_API_KEY", "secret")
        monkeypatch.setenv("REFNORM_TAXONOMY_PATH", "taxonomy.json")
        assert ConfigManager(load_env_file=False).validate() is True

    def test_template_round_trips(self, tmp_path):
        """Test that a saved template loads back."""
        path = tmp_path / "template.json"
        ConfigManager(load_env_file=False).save_template(str(path))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["llm"]["api_key"] == "YOUR_ARLIAI_API_KEY"

        config = ConfigManager(str(path), load_env_file=False).load()
        assert config.classifier.taxonomy_path == "taxonomy.json"

    def test_config_property_caches(self):
        """Test that the config property loads once."""
        manager = ConfigManager(load_env_file=False)
        assert manager.config is manager.config
