from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import ConfigurationError


DEFAULT_OUTPUT_PROFILES: dict[str, dict[str, Any]] = {
    "proxy": {
        "output_groups": [
            {
                "name": "proxy",
                "outputs": [
                    {
                        "name_modifier": "_proxy",
                        "extension": "mp4",
                        "container": "MP4",
                        "max_height": 720,
                        "max_bitrate": 2_500_000,
                    }
                ],
            }
        ]
    }
}


class Settings(BaseSettings):
    """Centralised runtime configuration for the video engine."""

    model_config = SettingsConfigDict(
        env_prefix="VIDEO_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Video Engine API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./video_engine.db",
        description="SQLAlchemy compatible DSN.",
    )
    storage_root: Path = Field(default_factory=lambda: Path("media"), description="Root for uploaded and derived blobs.")

    max_upload_size_bytes: int = Field(default=1024 * 1024 * 1024, description="Hard limit for ingest uploads.")
    allowed_mime_types: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("video/mp4", "video/webm", "video/ogg", "video/quicktime"),
        description="Container types accepted by ingest.",
    )

    event_log_capacity: int = Field(default=1000, ge=1, description="Maximum entries retained by the event log.")

    poll_interval_s: float = Field(default=5.0, ge=0, description="Delay between provider polls.")
    progress_log_step_percent: float = Field(default=5.0, gt=0, description="Minimum progress change that is re-logged.")
    max_active_pollers: int = Field(default=8, ge=1, description="Upper bound on concurrently polled jobs.")
    expected_transcode_ratio: float = Field(
        default=1.0,
        gt=0,
        description="Expected remote transcode time as a multiple of the media duration.",
    )
    min_expected_transcode_s: float = Field(default=30.0, gt=0, description="Floor for the expected transcode time.")

    retry_attempts: int = Field(default=3, ge=1, description="Attempts per provider call before giving up.")
    retry_base_delay_s: float = Field(default=0.5, ge=0, description="Initial delay before the first retry.")

    transcode_provider: Literal["mediaconvert"] = Field(default="mediaconvert")
    default_output_profile: str = Field(default="proxy")
    output_profiles: dict[str, dict[str, Any]] = Field(
        default_factory=lambda: json.loads(json.dumps(DEFAULT_OUTPUT_PROFILES)),
        description="Named output profiles (MediaConvert output group templates).",
    )

    aws_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_s3_bucket: Optional[str] = None
    mediaconvert_role_arn: Optional[str] = None
    mediaconvert_endpoint_url: Optional[str] = None

    @field_validator("allowed_mime_types", mode="before")
    @classmethod
    def _split_mime_types(cls, value: Any) -> Any:
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return tuple(json.loads(value))
            return tuple(item.strip() for item in value.split(",") if item.strip())
        return value

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def upload_root(self) -> Path:
        return self.storage_root / "uploads"


_REQUIRED_PROVIDER_SETTINGS: dict[str, tuple[str, ...]] = {
    "mediaconvert": (
        "aws_region",
        "aws_access_key_id",
        "aws_secret_access_key",
        "aws_s3_bucket",
        "mediaconvert_role_arn",
    ),
}


def validate_provider_settings(settings: Settings) -> None:
    """Fail fast when the configured transcode provider is missing credentials."""
    required = _REQUIRED_PROVIDER_SETTINGS.get(settings.transcode_provider, ())
    missing = [name for name in required if not getattr(settings, name)]
    if missing:
        raise ConfigurationError(
            f"Missing required configuration for {settings.transcode_provider}: {', '.join(missing)}",
            details={"provider": settings.transcode_provider, "missing": missing},
        )
    if settings.default_output_profile not in settings.output_profiles:
        raise ConfigurationError(
            f"Default output profile '{settings.default_output_profile}' is not defined",
            details={"profiles": sorted(settings.output_profiles)},
        )
    incomplete = sorted(
        name
        for name, profile in settings.output_profiles.items()
        if not profile.get("output_groups")
        or not all(group.get("outputs") for group in profile["output_groups"])
    )
    if incomplete:
        raise ConfigurationError(
            f"Output profiles without output groups: {', '.join(incomplete)}",
            details={"profiles": incomplete},
        )


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "VIDEO_ENGINE_ENV": "VIDEO_ENGINE_ENVIRONMENT",
        "VIDEO_ENGINE_DB_URL": "VIDEO_ENGINE_DATABASE_URL",
        "AWS_REGION": "VIDEO_ENGINE_AWS_REGION",
        "AWS_ACCESS_KEY_ID": "VIDEO_ENGINE_AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY": "VIDEO_ENGINE_AWS_SECRET_ACCESS_KEY",
        "AWS_S3_BUCKET": "VIDEO_ENGINE_AWS_S3_BUCKET",
        "MEDIA_CONVERT_TEMPLATES": "VIDEO_ENGINE_OUTPUT_PROFILES",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    return Settings()


__all__ = ["Settings", "get_settings", "validate_provider_settings", "DEFAULT_OUTPUT_PROFILES"]
