"""Configuration management for the normalization core."""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

DEFAULT_MODEL = "GLM-4.5-Air"
DEFAULT_BASE_URL = "https://api.arliai.com/v1"


class LLMSettings(BaseModel):
    """AI provider configuration."""

    provider: str = "openai"
    model: str = DEFAULT_MODEL
    api_key: Optional[str] = None
    base_url: Optional[str] = DEFAULT_BASE_URL
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: Optional[int] = 256
    requests_per_minute: int = Field(default=60, gt=0)
    tokens_per_minute: int = Field(default=60000, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)


class ClassifierSettings(BaseModel):
    """Hierarchical classifier tuning."""

    taxonomy_path: Optional[str] = None
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.5, ge=0.0)
    default_ai_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    local_exact_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    local_substring_confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    min_substring_length: int = Field(default=4, ge=1)
    fallback_confidence: float = Field(default=0.35, ge=0.0, le=1.0)
    default_product_code: str = "32.99.5"
    default_service_code: str = "96.09.1"
    manual_review_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


class BenchmarkSettings(BaseModel):
    """Model benchmark harness settings."""

    models: List[str] = Field(default_factory=lambda: [DEFAULT_MODEL, "GLM-4.5"])
    max_retries: int = 5
    retry_delay_ms: int = 200
    max_concurrency: int = Field(default=5, ge=1)
    sample_timeout: float = Field(default=60.0, gt=0)
    model_timeout: float = Field(default=300.0, gt=0)
    category_hint: str = "общее"
    priority_store: str = "model_priorities.json"
    history_path: Optional[str] = "benchmark_history.jsonl"


class DeduplicationSettings(BaseModel):
    """Duplicate analyzer settings."""

    legal_form_tokens: List[str] = Field(
        default_factory=lambda: ["ООО", "ИП", "ЗАО", "ОАО", "ПАО", "ТОО", "АО"]
    )


class PipelineSettings(BaseModel):
    """Normalization pipeline settings."""

    max_concurrent_classifications: int = Field(default=4, ge=1)
    default_category: str = "общее"


class RefnormConfig(BaseModel):
    """Complete configuration."""

    llm: LLMSettings = Field(default_factory=LLMSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    benchmark: BenchmarkSettings = Field(default_factory=BenchmarkSettings)
    deduplication: DeduplicationSettings = Field(default_factory=DeduplicationSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    log_level: str = "INFO"
    log_format: str = "console"


class ConfigManager:
    """Manages configuration loading and validation."""

    DEFAULT_CONFIG: Dict[str, Any] = {
        "llm": {"provider": "openai", "model": DEFAULT_MODEL, "base_url": DEFAULT_BASE_URL},
        "classifier": {"retry_attempts": 3, "default_ai_confidence": 0.5},
        "benchmark": {"max_retries": 5, "retry_delay_ms": 200, "category_hint": "общее"},
        "log_level": "INFO",
    }

    def __init__(self, config_path: Optional[str] = None, load_env_file: bool = True):
        """Initialize config manager.

        Args:
            config_path: Path to a JSON config file. If None, uses defaults + env vars
            load_env_file: Whether to read a ``.env`` file into the environment first
        """
        self.config_path = Path(config_path) if config_path else None
        self.load_env_file = load_env_file
        self._config: Optional[RefnormConfig] = None

    def load(self) -> RefnormConfig:
        """Load configuration from defaults, file and environment."""
        if self._config:
            return self._config

        if self.load_env_file:
            load_dotenv()

        config_dict = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path:
            if not self.config_path.exists():
                raise ConfigurationError(f"Config file not found: {self.config_path}")
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {self.config_path}: {e}", cause=e) from e
            config_dict = self._deep_merge(config_dict, file_config)

        config_dict = self._apply_env_overrides(config_dict)

        try:
            self._config = RefnormConfig(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e
        return self._config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        llm = config.setdefault("llm", {})

        if not llm.get("api_key"):
            api_key = os.getenv("REFNORM_API_KEY") or os.getenv("ARLIAI_API_KEY")
            if api_key:
                llm["api_key"] = api_key

        for env_key, field_name in (
            ("REFNORM_MODEL", "model"),
            ("REFNORM_PROVIDER", "provider"),
            ("REFNORM_BASE_URL", "base_url"),
        ):
            value = os.getenv(env_key)
            if value:
                llm[field_name] = value

        taxonomy_path = os.getenv("REFNORM_TAXONOMY_PATH")
        if taxonomy_path:
            config.setdefault("classifier", {})["taxonomy_path"] = taxonomy_path

        priority_store = os.getenv("REFNORM_PRIORITY_STORE")
        if priority_store:
            config.setdefault("benchmark", {})["priority_store"] = priority_store

        log_level = os.getenv("REFNORM_LOG_LEVEL")
        if log_level:
            config["log_level"] = log_level.upper()

        return config

    def save_template(self, path: str):
        """Save a configuration template file."""
        template = RefnormConfig().model_dump()
        template["llm"]["api_key"] = "YOUR_ARLIAI_API_KEY"
        template["classifier"]["taxonomy_path"] = "taxonomy.json"

        with open(path, "w", encoding="utf-8") as f:
            json.dump(template, f, indent=2, ensure_ascii=False)

    def validate(self) -> bool:
        """Validate that the loaded configuration can reach an AI backend."""
        config = self.load()

        if not config.llm.api_key:
            raise ConfigurationError("AI API key not configured (set ARLIAI_API_KEY)")

        if not config.classifier.taxonomy_path:
            raise ConfigurationError("Taxonomy path not configured (set REFNORM_TAXONOMY_PATH)")

        return True

    @property
    def config(self) -> RefnormConfig:
        """Get the loaded configuration."""
        if not self._config:
            self._config = self.load()
        return self._config
