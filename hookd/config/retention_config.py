"""
Retention configuration loader.

Settings come from, in increasing priority: built-in defaults, the YAML file
(configs/retention.yaml) and environment variables (a .env file is loaded
first if present).
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from ..storage.retention_models import MIB, RetentionPolicy

DEFAULT_CONFIG_PATH = Path("configs/retention.yaml")

# setting name -> (YAML section, YAML key, environment variable)
_SOURCES = {
    'db_path': ('database', 'path', 'HOOKD_DB_PATH'),
    'max_age_months': ('retention', 'max_age_months', 'HOOKD_RETENTION_MONTHS'),
    'max_account_bytes': ('retention', 'max_account_bytes', 'HOOKD_MAX_ACCOUNT_BYTES'),
    'fine_tune_batch_size': ('retention', 'fine_tune_batch_size', 'HOOKD_FINE_TUNE_BATCH_SIZE'),
    'max_quota_deletions': ('retention', 'max_quota_deletions', 'HOOKD_MAX_QUOTA_DELETIONS'),
    'admin_email': ('notifications', 'admin_email', 'ADMIN_EMAIL'),
    'from_email': ('notifications', 'from_email', 'FROM_EMAIL'),
    'resend_api_key': ('notifications', 'resend_api_key', 'RESEND_API_KEY'),
    'cleanup_schedule': ('scheduler', 'cleanup_schedule', 'HOOKD_CLEANUP_SCHEDULE'),
    'check_interval_minutes': ('scheduler', 'check_interval_minutes', 'HOOKD_CHECK_INTERVAL_MINUTES'),
    'log_level': ('logging', 'level', 'HOOKD_LOG_LEVEL'),
    'log_json': ('logging', 'json', 'HOOKD_LOG_JSON'),
    'history_dir': ('logging', 'history_dir', 'HOOKD_HISTORY_DIR'),
}


class RetentionSettings(BaseModel):
    """Retention job configuration."""
    db_path: str = "data/hookd.db"
    max_age_months: int = Field(default=1, ge=1)
    max_account_bytes: int = Field(default=100 * MIB, gt=0)
    fine_tune_batch_size: int = Field(default=100, gt=0)
    max_quota_deletions: int = Field(default=200_000, gt=0)
    admin_email: Optional[str] = None
    from_email: Optional[str] = None
    resend_api_key: Optional[str] = None
    cleanup_schedule: str = "03:00"
    check_interval_minutes: int = Field(default=60, gt=0)
    log_level: str = "INFO"
    log_json: bool = False
    history_dir: str = "logs/retention"

    @field_validator('cleanup_schedule')
    @classmethod
    def _check_schedule(cls, value: str) -> str:
        try:
            hour, minute = map(int, value.split(':'))
        except ValueError:
            raise ValueError(f"cleanup_schedule must be HH:MM, got {value!r}")
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"cleanup_schedule out of range: {value!r}")
        return f"{hour:02d}:{minute:02d}"

    @field_validator('log_level')
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def to_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            max_age_months=self.max_age_months,
            max_account_bytes=self.max_account_bytes,
            fine_tune_batch_size=self.fine_tune_batch_size,
            max_quota_deletions=self.max_quota_deletions,
        )


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        return {}
    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_retention_settings(config_path: Optional[Path] = None) -> RetentionSettings:
    """Load retention settings from the YAML file and the environment."""

    # Load .env file if it exists
    load_dotenv()

    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_data = _read_yaml(Path(config_path))

    values: Dict[str, Any] = {}
    for name, (section, key, env_var) in _SOURCES.items():
        section_data = config_data.get(section) or {}
        if key in section_data and section_data[key] is not None:
            values[name] = section_data[key]

        # Environment variables win; empty values are treated as unset
        env_value = os.getenv(env_var)
        if env_value:
            values[name] = env_value

    return RetentionSettings(**values)
