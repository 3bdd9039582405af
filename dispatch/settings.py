"""
Purpose: Process-level settings for the matching engine.
What it does:
Reads knobs that are deployment concerns (not algorithm tuning) from the environment.
A local .env file is honoured via python-dotenv.

Example .env:
MATCHING_REASSIGNMENT_BATCH_SIZE=10
MATCHING_MAX_REASSIGNMENT_ATTEMPTS=3
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from drivers.policy import DEFAULT_CONFIG_NAME

load_dotenv()


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class EngineSettings:
    # Queue items processed per sweep.
    reassignment_batch_size: int = 10
    # Attempts before a queue item is marked FAILED.
    max_reassignment_attempts: int = 3
    # Recent assignments returned alongside the statistics.
    statistics_sample_size: int = 50
    default_config_name: str = DEFAULT_CONFIG_NAME

    @classmethod
    def from_env(cls) -> EngineSettings:
        settings = cls(
            reassignment_batch_size=_int_from_env("MATCHING_REASSIGNMENT_BATCH_SIZE", 10),
            max_reassignment_attempts=_int_from_env("MATCHING_MAX_REASSIGNMENT_ATTEMPTS", 3),
            statistics_sample_size=_int_from_env("MATCHING_STATISTICS_SAMPLE_SIZE", 50),
            default_config_name=os.getenv("MATCHING_DEFAULT_CONFIG_NAME", DEFAULT_CONFIG_NAME),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.reassignment_batch_size <= 0:
            raise ValueError("reassignment_batch_size must be > 0")
        if self.max_reassignment_attempts <= 0:
            raise ValueError("max_reassignment_attempts must be > 0")
        if self.statistics_sample_size < 0:
            raise ValueError("statistics_sample_size must be >= 0")
