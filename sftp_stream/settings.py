from __future__ import annotations

from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024
DEFAULT_VIDEO_EXTENSIONS = ("mp4", "mkv", "mov", "webm", "avi", "m4v")


class StreamSettings(BaseSettings):
    """Tuning knobs for the streaming engine."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    default_chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        gt=0,
        validation_alias="SFTP_STREAM_DEFAULT_CHUNK_SIZE",
    )
    mailbox_size: int = Field(
        default=32,
        gt=0,
        validation_alias="SFTP_STREAM_MAILBOX_SIZE",
    )
    connect_timeout: float = Field(
        default=15.0,
        gt=0,
        validation_alias="SFTP_STREAM_CONNECT_TIMEOUT",
    )
    lock_timeout: float = Field(
        default=5.0,
        gt=0,
        validation_alias="SFTP_STREAM_LOCK_TIMEOUT",
    )
    evict_failed_workers: bool = Field(
        default=False,
        validation_alias="SFTP_STREAM_EVICT_FAILED_WORKERS",
    )
    video_extensions: Annotated[frozenset[str], NoDecode] = Field(
        default=frozenset(DEFAULT_VIDEO_EXTENSIONS),
        validation_alias="SFTP_STREAM_VIDEO_EXTENSIONS",
    )

    @field_validator("video_extensions", mode="before")
    @classmethod
    def _parse_extensions(cls, value: object) -> frozenset[str]:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple, set, frozenset)):
            cleaned = {str(item).strip().lstrip(".").lower() for item in value}
            cleaned.discard("")
            return frozenset(cleaned)
        msg = "Invalid video extension list"
        raise ValueError(msg)


def load_settings_from_env() -> StreamSettings:
    """Load streaming settings from environment variables.

    Returns:
        StreamSettings instance populated from environment variables.
    """
    return StreamSettings()
