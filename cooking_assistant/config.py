"""
Configuration and settings for the cooking assistant.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


def _optional_setting(value: str | None) -> str | None:
    """Treat empty and unexpanded build-variable values ("$(VAR)") as unset."""
    if value is None:
        return None
    value = value.strip()
    if not value or value.startswith("$("):
        return None
    return value


class VoiceConfig(BaseModel):
    """Voice session timing."""

    inactivity_timeout_s: float = Field(
        default_factory=lambda: _env_float("COOKING_ASSISTANT_INACTIVITY_TIMEOUT", 5.0),
        gt=0,
    )
    command_debounce_s: float = Field(
        default_factory=lambda: _env_float("COOKING_ASSISTANT_COMMAND_DEBOUNCE", 0.75),
        gt=0,
    )
    error_restart_delay_s: float = Field(default=0.3, gt=0)  # Backoff after recognition errors
    tick_interval_s: float = Field(default=0.1, gt=0)  # Buffer cadence of the line source


class QAConfig(BaseModel):
    """Question answering service."""

    worker_base_url: str | None = Field(
        default_factory=lambda: _optional_setting(os.environ.get("WORKER_BASE_URL"))
    )
    timeout_s: float = Field(default=30.0, gt=0)

    @field_validator("worker_base_url", mode="before")
    @classmethod
    def _normalize_url(cls, value):
        return _optional_setting(value)


class SpeechConfig(BaseModel):
    """Spoken answer output."""

    backend: Literal["command", "null"] = Field(default="command")
    command: str = Field(
        default_factory=lambda: os.environ.get("COOKING_ASSISTANT_TTS_COMMAND", "espeak")
    )
    voice: str | None = Field(default=None)


class Config(BaseModel):
    """Main configuration."""

    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    qa: QAConfig = Field(default_factory=QAConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    verbose: bool = Field(default=False)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """
        Load a config preset from a YAML file.

        Top-level keys other than voice/qa/speech/verbose are ignored, so presets
        can carry extra sections (e.g. a recipe) without failing validation.
        """
        import yaml

        yaml_path = Path(path).expanduser()
        with open(yaml_path) as f:
            raw = yaml.safe_load(f) or {}

        valid_keys = set(cls.model_fields)
        return cls.model_validate({k: v for k, v in raw.items() if k in valid_keys})


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration."""
    global _config
    _config = config
