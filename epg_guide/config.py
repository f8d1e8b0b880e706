from pathlib import Path
from typing import Annotated
import logging

from croniter import croniter
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    epg_sources: Annotated[list[str], NoDecode] = []
    epg_refresh_cron: str = "0 * * * *"  # Hourly
    epg_refresh_misfire_grace_sec: int = 3600  # Allow 1 hour to run missed jobs
    epg_refresh_on_startup: bool = True
    epg_check_source_updates: bool = True  # Scheduled runs skip unchanged sources
    epg_fetch_timeout_sec: int = 300  # Per-source download timeout
    epg_parse_timeout_sec: int = 600  # XMLTV parsing timeout, 0 disables timeout
    epg_min_source_bytes: int = 1024  # Smaller sources are skipped as broken
    epg_staging_dir: str | None = None  # Defaults to the system temp directory
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("epg_sources", mode="before")
    @classmethod
    def parse_epg_sources(cls, value):
        """Parse comma-separated URLs or list."""
        if value is None:
            return []
        if isinstance(value, str):
            if not value.strip():
                return []
            return [url.strip() for url in value.split(",") if url.strip()]
        if isinstance(value, list):
            return value
        return []

    @field_validator("epg_sources", mode="after")
    @classmethod
    def validate_epg_sources(cls, value):
        """Validate EPG source URLs are HTTP/HTTPS."""
        for url in value:
            if not url.lower().startswith(("http://", "https://")):
                raise ValueError(f"EPG source URL must be HTTP/HTTPS: {url}")
        return value

    @field_validator("epg_staging_dir")
    @classmethod
    def validate_staging_dir(cls, value: str | None) -> str | None:
        """Validate staging directory is accessible."""
        if not value:
            return None
        path = Path(value)
        try:
            path.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access staging directory '{value}': {exc}") from exc

    @field_validator("epg_fetch_timeout_sec")
    @classmethod
    def validate_fetch_timeout(cls, value: int) -> int:
        """Validate download timeout (seconds)."""
        if value <= 0:
            raise ValueError("epg_fetch_timeout_sec must be > 0")
        return value

    @field_validator("epg_parse_timeout_sec")
    @classmethod
    def validate_parse_timeout(cls, value: int) -> int:
        """Validate XMLTV parsing timeout (seconds)."""
        if value < 0:
            raise ValueError("epg_parse_timeout_sec must be >= 0")
        return value

    @field_validator("epg_refresh_misfire_grace_sec", "epg_min_source_bytes")
    @classmethod
    def validate_non_negative(cls, value: int, info) -> int:
        """Ensure integer settings are non-negative."""
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate logging level name."""
        normalized = value.upper()
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @field_validator("epg_refresh_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @model_validator(mode="after")
    def validate_epg_configuration(self):
        """Validate cross-field configuration."""
        if not self.epg_sources:
            logger.warning(
                "No EPG sources configured - EPG refresh will not retrieve any data"
            )
        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  EPG Sources: %s configured", len(self.epg_sources))
        logger.info("  Refresh Schedule: %s", self.epg_refresh_cron)
        logger.info("  Refresh Misfire Grace: %ss", self.epg_refresh_misfire_grace_sec)
        logger.info("  Refresh On Startup: %s", self.epg_refresh_on_startup)
        logger.info("  Check Source Updates: %s", self.epg_check_source_updates)
        logger.info("  Fetch Timeout: %s seconds", self.epg_fetch_timeout_sec)
        logger.info(
            "  Parse Timeout: %s seconds",
            self.epg_parse_timeout_sec or "disabled",
        )
        logger.info("  Minimum Source Size: %s bytes", self.epg_min_source_bytes)
        logger.info("  Staging Directory: %s", self.epg_staging_dir or "system temp")


settings = CustomSettings()


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Request lines carry full source URLs, credentials included
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
