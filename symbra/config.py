"""
Engine configuration from environment variables via pydantic-settings.

Every limit can be overridden with a SYMBRA_-prefixed variable (or a .env
file), e.g. SYMBRA_MAX_INTEGRATION_DEPTH=6. get_settings() is cached, so
the environment is read once per process; explicit keyword arguments to
integrate(), RuleEngine(...) and friends take precedence over it.
"""

from functools import lru_cache
import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")


class EngineSettings(BaseSettings):
    """Limits and switches shared by the canonicalizer, matcher and integrator."""

    model_config = SettingsConfigDict(
        env_prefix="SYMBRA_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Integration budget
    max_integration_depth: int = 10
    max_integration_steps: int = 2000
    max_expression_size: int = 20_000
    max_expression_depth: int = 100
    verify_antiderivatives: bool = False

    # Rewriting and matching
    max_rewrite_steps: int = 1000
    max_match_operands: int = 16

    # Canonicalizer
    canonical_cache_size: int = 8192
    expand_sum_limit: int = 64

    # Observability
    log_level: str = "WARNING"

    @field_validator(
        "max_integration_depth", "max_integration_steps", "max_expression_size",
        "max_expression_depth", "max_rewrite_steps", "max_match_operands", "expand_sum_limit",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("limit must be at least 1")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        if isinstance(v, str):
            v = v.upper()
            if v not in _LEVELS:
                raise ValueError(f"unknown log level: {v}")
        return v


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings()


def configure_logging(level=None) -> None:
    """
    Attach a stream handler to the symbra logger.

    The library itself only installs a NullHandler; applications call this
    (or configure logging themselves) to see strategy choices and budget
    warnings.
    """
    if level is None:
        level = get_settings().log_level
    logger = logging.getLogger("symbra")
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
        logger.addHandler(handler)
