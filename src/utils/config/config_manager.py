import copy
import hashlib
import json
import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger("compliance.config")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ValidatorSettings(BaseModel):
    max_workers: Optional[int] = None
    keyword_context_radius: int = Field(100, ge=0)
    keyword_risk_threshold: float = Field(0.6, ge=0.0, le=1.0)
    pattern_confidence: int = Field(85, ge=0, le=100)
    contradiction_detection_enabled: bool = True
    required_disclosures_enabled: bool = False
    industry_checkers_enabled: bool = True
    audit_each_violation: bool = True
    score_alert_threshold: int = Field(50, ge=0, le=100)


class AuditSettings(BaseModel):
    enabled: bool = True
    storage: str = "memory"  # memory | json_file
    audit_log_path: str = "./compliance_audit_logs"
    buffer_size: int = Field(1000, gt=0)
    retention_days: int = Field(365, gt=0)
    sanitize_pii: bool = True
    async_dispatch: bool = False

    @field_validator("storage")
    @classmethod
    def _known_storage(cls, value: str) -> str:
        if value not in ("memory", "json_file"):
            raise ValueError(f"Unknown audit storage: {value}")
        return value


class ReferenceSettings(BaseModel):
    documents_path: Optional[str] = None
    applicability_threshold: int = Field(30, ge=0, le=100)
    max_references: int = Field(3, gt=0)
    recency_days: int = Field(365, gt=0)
    cache_size: int = Field(256, gt=0)


class RuleSettings(BaseModel):
    rules_path: Optional[str] = None
    seed_default_rules: bool = True
    outdated_after_days: int = Field(365, gt=0)


class ReportingSettings(BaseModel):
    max_workers: Optional[int] = None
    default_report_type: str = "detailed_analysis"
    top_violation_types: int = Field(10, gt=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_file: Optional[str] = None
    format: str = LOG_FORMAT

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value


class EngineSettings(BaseModel):
    """Validated configuration for every engine component."""
    validator: ValidatorSettings = Field(default_factory=ValidatorSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    references: ReferenceSettings = Field(default_factory=ReferenceSettings)
    rules: RuleSettings = Field(default_factory=RuleSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigManager:
    """
    Configuration manager for the compliance engine.
    Handles loading, environment overrides and validation of configuration.
    """

    def __init__(self,
                 config_path: Optional[str] = None,
                 env_prefix: str = "COMPLIANCE_"):
        """
        Initialize the configuration manager

        Args:
            config_path: Path to a YAML or JSON configuration file
            env_prefix: Prefix for environment variable overrides
        """
        self.config_path = config_path
        self.env_prefix = env_prefix
        self.config: Dict[str, Any] = {}

        if config_path:
            self.load_config(config_path)
        else:
            self._apply_environment_overrides()

    def load_config(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration from file

        Args:
            config_path: Path to configuration file (override instance value)

        Returns:
            Loaded configuration
        """
        path = config_path or self.config_path
        if not path:
            raise ValueError("No configuration path provided")

        if not os.path.exists(path):
            raise FileNotFoundError(f"Configuration file not found: {path}")

        self.config = load_structured_file(path) or {}
        if not isinstance(self.config, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        self._apply_environment_overrides()

        logger.info(f"Loaded configuration from {path}")
        return self.config

    def save_config(self, config_path: Optional[str] = None) -> None:
        path = config_path or self.config_path
        if not path:
            raise ValueError("No configuration path provided")

        _, ext = os.path.splitext(path.lower())
        with open(path, 'w') as f:
            if ext == '.json':
                json.dump(self.config, f, indent=2)
            elif ext in ('.yaml', '.yml'):
                yaml.safe_dump(self.config, f, default_flow_style=False)
            else:
                raise ValueError(f"Unsupported configuration file type: {ext}")

        logger.info(f"Saved configuration to {path}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key

        Args:
            key: Configuration key (dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self.config
        for part in key.split('.'):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default

        return current

    def set(self, key: str, value: Any) -> None:
        parts = key.split('.')

        current = self.config
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = value

    def validate_required_fields(self, required_fields: List[str]) -> List[str]:
        """Return the required keys that are missing."""
        return [field for field in required_fields if self.get(field) is None]

    def generate_config_hash(self) -> str:
        """Stable hash of the configuration for change detection"""
        config_str = json.dumps(self.config, sort_keys=True, default=str)
        return hashlib.sha256(config_str.encode()).hexdigest()

    def settings(self) -> EngineSettings:
        """
        Validate the loaded configuration.

        Returns:
            Typed engine settings with defaults filled in

        Raises:
            ValueError: If any section fails validation
        """
        try:
            return EngineSettings.model_validate(copy.deepcopy(self.config))
        except ValidationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise ValueError(f"Invalid configuration: {e}") from e

    def _apply_environment_overrides(self) -> None:
        """Apply environment variable overrides to configuration"""
        for env_key, env_value in os.environ.items():
            if env_key.startswith(self.env_prefix):
                # COMPLIANCE_AUDIT__SANITIZE_PII -> audit.sanitize_pii
                config_key = env_key[len(self.env_prefix):].lower().replace('__', '.')
                self.set(config_key, yaml.safe_load(env_value) if env_value else env_value)
                logger.debug(f"Applied environment override for {config_key}")


def load_structured_file(path: str) -> Any:
    """Parse a YAML or JSON file selected by extension."""
    _, ext = os.path.splitext(path.lower())
    with open(path, 'r') as f:
        if ext == '.json':
            return json.load(f)
        if ext in ('.yaml', '.yml'):
            return yaml.safe_load(f)
    raise ValueError(f"Unsupported file type: {ext}")


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """Configure root logging once for an engine process."""
    settings = settings or LoggingSettings()
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.level),
        format=settings.format,
        handlers=handlers
    )
