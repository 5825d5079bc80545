"""Runtime settings for the reconciliation engine.

Settings come from the process environment. A ``.env`` file is loaded first
(via python-dotenv) so local runs and the CLI pick up the same values:

    ITC_AMOUNT_TOLERANCE=1.00
    ITC_FUZZY_MIN_SIMILARITY=40
    ITC_FUZZY_MAX_RESULTS=5
    ITC_FUZZY_MAX_POOL=500
    ITC_MAX_ENTRIES_PER_UPLOAD=50000
    ITC_DB_PATH=./itc_reconciliation.db
    LOG_LEVEL=INFO
    LOG_JSON=false
"""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "itc_reconciliation.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Engine settings with defaults suitable for a single taxpayer."""
    amount_tolerance: Decimal = Field(
        default=Decimal("1.00"),
        ge=0,
        description="Max absolute per-component tax difference still treated as equal",
    )
    fuzzy_min_similarity: Decimal = Field(
        default=Decimal("40"),
        ge=0,
        le=100,
        description="Min score (0-100) for a fuzzy suggestion",
    )
    fuzzy_max_results: int = Field(default=5, ge=1, description="Max suggestions returned")
    fuzzy_max_pool: int = Field(default=500, ge=1, description="Max candidates scored per entry")
    max_entries_per_upload: int = Field(default=50000, ge=1, description="Upload size bound")
    db_path: Path = Field(default=DEFAULT_DB_PATH, description="SQLite database path")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ValueError(f"Unknown log level: {value}")
        return value

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)

    def reconciliation_config(self):
        """Build the deterministic-pass config from these settings."""
        from reconciliation.models import ReconciliationConfig

        return ReconciliationConfig(amount_tolerance=self.amount_tolerance)

    def fuzzy_config(self):
        """Build the fuzzy-suggestion config from these settings."""
        from reconciliation.models import FuzzyMatchConfig

        return FuzzyMatchConfig(
            min_similarity=self.fuzzy_min_similarity,
            max_results=self.fuzzy_max_results,
            max_candidate_pool=self.fuzzy_max_pool,
        )


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from an environment mapping (defaults to ``os.environ``).

    Unset variables keep their defaults. Invalid values raise
    ``pydantic.ValidationError``.
    """
    env = os.environ if environ is None else environ

    values = {}
    if env.get("ITC_AMOUNT_TOLERANCE"):
        values["amount_tolerance"] = env["ITC_AMOUNT_TOLERANCE"]
    if env.get("ITC_FUZZY_MIN_SIMILARITY"):
        values["fuzzy_min_similarity"] = env["ITC_FUZZY_MIN_SIMILARITY"]
    if env.get("ITC_FUZZY_MAX_RESULTS"):
        values["fuzzy_max_results"] = env["ITC_FUZZY_MAX_RESULTS"]
    if env.get("ITC_FUZZY_MAX_POOL"):
        values["fuzzy_max_pool"] = env["ITC_FUZZY_MAX_POOL"]
    if env.get("ITC_MAX_ENTRIES_PER_UPLOAD"):
        values["max_entries_per_upload"] = env["ITC_MAX_ENTRIES_PER_UPLOAD"]
    if env.get("ITC_DB_PATH"):
        values["db_path"] = env["ITC_DB_PATH"]
    if env.get("LOG_LEVEL"):
        values["log_level"] = env["LOG_LEVEL"]
    if env.get("LOG_JSON"):
        values["log_json"] = _env_bool(env["LOG_JSON"])

    return Settings(**values)


def load_settings(env_file: Optional[Union[str, Path]] = None) -> Settings:
    """Load ``.env`` (or ``env_file``) into the environment, then read settings.

    Variables already present in the environment win over the file.
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()
    return settings_from_env()


DEFAULT_SETTINGS = Settings()
