import json
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from . import __version__
from .exceptions import ConfigError

CONFIG_DIR_ENV = "GATOR_CONFIG_DIR"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "30s", "1m30s", "500ms" or "1h"

    Raises ConfigError for malformed, zero or negative durations.
    """
    value = (text or "").strip()
    if not value:
        raise ConfigError("empty duration")

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(value):
        raise ConfigError(f"invalid duration {text!r}, expected e.g. 30s, 1m or 1h30m")
    if total <= 0:
        raise ConfigError(f"duration must be positive, got {text!r}")
    return timedelta(seconds=total)


class AppConfig(BaseModel):
    """Application configuration"""

    db_path: Optional[str] = Field(
        default=None,
        description="SQLite database file, relative paths resolve against the config dir"
    )
    current_user_name: Optional[str] = Field(
        default=None,
        description="User set by register/login"
    )
    fetch_timeout: float = Field(
        default=30,
        gt=0,
        description="HTTP timeout for one feed fetch in seconds"
    )
    user_agent: str = Field(
        default=f"gator/{__version__}",
        description="User-Agent header sent with every fetch"
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for rotating log files, stdout only when unset"
    )


class ConfigManager:
    """Manages the JSON configuration file"""

    CONFIG_FILE = ".gatorconfig.json"
    DB_FILE = "gator.db"

    def __init__(self, config_dir: Optional[Path] = None):
        # --config-dir, then $GATOR_CONFIG_DIR, then home
        if config_dir is None and os.environ.get(CONFIG_DIR_ENV):
            config_dir = os.environ[CONFIG_DIR_ENV]
        self.config_dir = Path(config_dir) if config_dir else Path.home()
        self.config_path = self.config_dir / self.CONFIG_FILE

    def ensure_config_dir(self) -> None:
        """Ensure config directory exists"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        """Check if configuration file exists"""
        return self.config_path.exists()

    def load(self) -> AppConfig:
        """Load configuration from file, defaults when the file is missing"""
        if not self.config_path.exists():
            return AppConfig()
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return AppConfig.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"cannot read {self.config_path}: {e}") from e

    def save(self, config: AppConfig) -> None:
        """Save configuration to file"""
        self.ensure_config_dir()
        with open(self.config_path, "w", encoding="utf-8") as f:
            # Only save non-None fields
            data = config.model_dump(exclude_none=True)
            json.dump(data, f, indent=2, ensure_ascii=False)

    def set_user(self, config: AppConfig, name: str) -> AppConfig:
        """Persist a new current user, returns the updated config"""
        updated = config.model_copy(update={"current_user_name": name})
        self.save(updated)
        return updated

    def get_db_path(self, config: AppConfig) -> Path:
        """Get database file path"""
        if config.db_path:
            path = Path(config.db_path).expanduser()
            return path if path.is_absolute() else self.config_dir / path
        return self.config_dir / self.DB_FILE

    def get_log_dir(self, config: AppConfig) -> Optional[Path]:
        if not config.log_dir:
            return None
        path = Path(config.log_dir).expanduser()
        return path if path.is_absolute() else self.config_dir / path
