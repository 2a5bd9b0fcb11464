import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AppConfig(BaseModel):
    """Application configuration"""

    db_path: Optional[str] = Field(
        default=None,
        description="SQLite database file, defaults to data.db in the config directory"
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for rotated log files, defaults to logs/ in the config directory"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level


class ConfigManager:
    """Manages application configuration"""

    CONFIG_FILE = "config.json"
    DB_FILE = "data.db"
    LOG_DIR = "logs"

    def __init__(self, config_dir: Optional[Path] = None):
        # Default to current working directory
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self.config_path = self.config_dir / self.CONFIG_FILE

    def ensure_config_dir(self) -> None:
        """Ensure config directory exists"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def load(self) -> Optional[AppConfig]:
        """Load configuration from file"""
        if not self.config_path.exists():
            return None
        with open(self.config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return AppConfig.model_validate(data)

    def load_or_default(self) -> AppConfig:
        return self.load() or AppConfig()

    def save(self, config: AppConfig) -> None:
        """Save configuration to file"""
        self.ensure_config_dir()
        with open(self.config_path, "w", encoding="utf-8") as f:
            # Only save non-None fields
            data = config.model_dump(exclude_none=True)
            json.dump(data, f, indent=2, ensure_ascii=False)

    def exists(self) -> bool:
        """Check if configuration file exists"""
        return self.config_path.exists()

    def _resolve(self, value: Optional[str], default: str) -> Path:
        path = Path(value) if value else Path(default)
        return path if path.is_absolute() else self.config_dir / path

    def get_db_path(self, config: Optional[AppConfig] = None) -> Path:
        """Get database file path"""
        config = config or self.load_or_default()
        return self._resolve(config.db_path, self.DB_FILE)

    def get_log_dir(self, config: Optional[AppConfig] = None) -> Path:
        config = config or self.load_or_default()
        return self._resolve(config.log_dir, self.LOG_DIR)
