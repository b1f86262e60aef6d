"""Engine configuration settings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _find_env_file() -> str | None:
    """Find .env file in common locations.

    Checks (in order):
    1. .env (running from project root)
    2. ../.env (running from a subdirectory, e.g. tests/)
    3. None (rely on environment variables)
    """
    candidates = [
        Path(".env"),
        Path("../.env"),
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class Settings(BaseSettings):
    """Engine defaults loaded from TRIAGE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Scoring
    algorithm: Literal["weighted", "ml-enhanced", "hybrid"] = "hybrid"
    severity_weight: float = 0.3
    impact_weight: float = 0.25
    effort_weight: float = 0.2
    business_value_weight: float = 0.25

    # Classification
    ml_enabled: bool = True
    ml_confidence_threshold: float = 0.7
    ml_retraining_threshold: int = 100
    min_model_accuracy: float = 0.5  # Below this training logs a warning

    # Rules
    rules_enabled: bool = True
    rules_auto_optimize: bool = False
    conflict_resolution: Literal["first-match", "highest-weight", "combine"] = "highest-weight"

    # Result cache
    cache_enabled: bool = True
    cache_ttl_seconds: int = 3600
    cache_max_size: int = 10_000

    # Batch execution
    max_workers: int = Field(default=8, ge=1)
    parallel_threshold: int = Field(default=64, ge=1)  # Smaller batches run inline

    @model_validator(mode="after")
    def validate_weights(self) -> "Settings":
        """Warn when the configured scoring weights do not sum to 1.

        Normalizing the weights is the caller's responsibility, so this
        only logs.
        """
        total = (
            self.severity_weight
            + self.impact_weight
            + self.effort_weight
            + self.business_value_weight
        )
        if abs(total - 1.0) > 1e-6:
            logger.warning(
                f"CONFIG WARNING: scoring weights sum to {total:.3f}, expected 1.0"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for scripts embedding the engine.

    Library code only creates module loggers; this is for entry points.
    """
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
