"""User settings persisted in the ``settings`` section of the data file."""

from pydantic import BaseModel, Field, field_validator

from .constants import (
    ALLOWED_DELIMITERS,
    DEFAULT_DELIMITER,
    DEFAULT_LEARNING_STEPS_MINUTES,
    DEFAULT_RELEARNING_STEPS_MINUTES,
    DEFAULT_REQUEST_RETENTION,
    MAX_REQUEST_RETENTION,
    MIN_REQUEST_RETENTION,
)

SETTINGS_VERSION = 2


class SchedulingSettings(BaseModel):
    learning_steps_minutes: list[float] = Field(
        default_factory=lambda: list(DEFAULT_LEARNING_STEPS_MINUTES)
    )
    relearning_steps_minutes: list[float] = Field(
        default_factory=lambda: list(DEFAULT_RELEARNING_STEPS_MINUTES)
    )
    request_retention: float = DEFAULT_REQUEST_RETENTION

    @field_validator("learning_steps_minutes", "relearning_steps_minutes")
    @classmethod
    def positive_steps(cls, v: list[float]) -> list[float]:
        return [float(s) for s in v if s > 0]

    @field_validator("request_retention")
    @classmethod
    def clamp_retention(cls, v: float) -> float:
        return min(MAX_REQUEST_RETENTION, max(MIN_REQUEST_RETENTION, v))


class IndexingSettings(BaseModel):
    delimiter: str = DEFAULT_DELIMITER
    ignore_in_code_fences: bool = True

    @field_validator("delimiter")
    @classmethod
    def known_delimiter(cls, v: str) -> str:
        if v not in ALLOWED_DELIMITERS:
            raise ValueError(f"delimiter must be one of {' '.join(ALLOWED_DELIMITERS)}")
        return v


class SproutSettings(BaseModel):
    version: int = SETTINGS_VERSION
    scheduling: SchedulingSettings = Field(default_factory=SchedulingSettings)
    indexing: IndexingSettings = Field(default_factory=IndexingSettings)
