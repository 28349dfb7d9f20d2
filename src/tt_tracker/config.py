"""Data directory and user configuration."""

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from tt_tracker.errors import StoreError

DATA_DIR_ENV = "TT_DATA_DIR"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "tt"
CONFIG_FILE_NAME = "config.json"
DEBUG_LOG_NAME = "tt-debug.log"


class TTConfig(BaseModel):
    """Settings read from ``config.json`` in the data directory."""

    model_config = ConfigDict(extra="ignore")

    overlap_tolerance_seconds: int = 60
    large_gap_hours: int = 8
    debug_log: bool = False


def get_data_dir() -> Path:
    override = os.environ.get(DATA_DIR_ENV)
    return Path(override).expanduser() if override else DEFAULT_DATA_DIR


def ensure_data_dir(data_dir: Optional[Path] = None) -> Path:
    data_dir = data_dir or get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def load_config(data_dir: Optional[Path] = None) -> TTConfig:
    """Load the config file, falling back to defaults when it is missing."""
    config_file = (data_dir or get_data_dir()) / CONFIG_FILE_NAME
    if not config_file.exists():
        return TTConfig()

    try:
        return TTConfig(**json.loads(config_file.read_text()))
    except (json.JSONDecodeError, PydanticValidationError, TypeError) as e:
        raise StoreError(f"Cannot read {config_file}: {e}") from e
