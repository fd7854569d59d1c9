"""
Configuration management using Pydantic models loaded from YAML.
"""

import logging
from datetime import time
from pathlib import Path
from typing import Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class SchedulingDefaults(BaseModel):
    """Engine defaults used when a tenant or studio does not override them."""
    timezone: str = "UTC"
    slot_minutes: int = 20
    cancellation_window_hours: int = 48
    monthly_occurrence_limit: int = 12
    default_open: time = time(7, 0)
    default_close: time = time(21, 0)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("slot_minutes", "monthly_occurrence_limit")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"Value must be greater than zero, got {value}")
        return value

    @field_validator("cancellation_window_hours")
    @classmethod
    def validate_window(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"cancellation_window_hours cannot be negative, got {value}")
        return value

    @model_validator(mode="after")
    def validate_hours_order(self) -> "SchedulingDefaults":
        """Ensure the fallback window opens before it closes."""
        if self.default_close <= self.default_open:
            raise ValueError("default_close must be later than default_open")
        return self


class MailConfig(BaseModel):
    """Microsoft Graph mail delivery for booking confirmations."""
    enabled: bool = False
    client_id: str = ""
    tenant_id: str = ""
    client_secret: SecretStr = SecretStr("")
    sender: str = ""
    retries: int = 2
    retry_backoff_seconds: float = 0.5

    @model_validator(mode="after")
    def validate_credentials(self) -> "MailConfig":
        """Graph credentials are required only when delivery is enabled."""
        if not self.enabled:
            return self
        missing = [
            name for name in ("client_id", "tenant_id", "sender")
            if not getattr(self, name)
        ]
        if not self.client_secret.get_secret_value():
            missing.append("client_secret")
        if missing:
            raise ValueError(f"mail is enabled but missing: {', '.join(missing)}")
        return self

    @field_validator("retries")
    @classmethod
    def validate_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"retries cannot be negative, got {value}")
        return value

    @field_validator("retry_backoff_seconds")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError(f"retry_backoff_seconds cannot be negative, got {value}")
        return value

    def get_authority_url(self) -> str:
        """Get the formatted authority URL."""
        return f"https://login.microsoftonline.com/{self.tenant_id}"


class AppConfig(BaseModel):
    """Application configuration."""
    scheduling: SchedulingDefaults = Field(default_factory=SchedulingDefaults)
    mail: MailConfig = Field(default_factory=MailConfig)
    data_file: Optional[Path] = None
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
