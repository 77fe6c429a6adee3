"""Application configuration utilities."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError, model_validator


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json."""

    default_page_size: int = Field(default=30)
    min_page_size: int = Field(default=1)
    max_page_size: int = Field(default=100)
    overfetch_multiplier: int = Field(default=3, ge=1)
    overfetch_cap: int = Field(default=1000, ge=1)
    source_timeout_seconds: float = Field(default=10.0, gt=0)
    http_timeout_seconds: float = Field(default=15.0, gt=0)
    chat_message_concurrency: int = Field(default=10, ge=1)
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:3001",
        ]
    )

    @model_validator(mode="after")
    def _check_page_bounds(self) -> "AppConfig":
        if not 1 <= self.min_page_size <= self.default_page_size <= self.max_page_size:
            raise ValueError("page sizes must satisfy 1 <= min <= default <= max")
        return self

    def overfetch_limit(self, limit: int) -> int:
        """Per-source row budget for a page of ``limit`` merged items."""
        return min(limit * self.overfetch_multiplier, self.overfetch_cap)


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from config.json, falling back to defaults when absent."""

    config_file = path or _config_path()
    if not config_file.exists():
        return AppConfig()

    try:
        contents: Dict[str, Any] = json.loads(config_file.read_text())
        return AppConfig(**contents)
    except (json.JSONDecodeError, ValidationError) as exc:
        example = config_file.with_name("config.example.json")
        raise RuntimeError(
            f"Invalid timeline config at {config_file}: {exc}. Example file: {example}"
        ) from exc


CONFIG = load_config()
