"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

import secrets

from pydantic import model_validator
from pydantic_settings import BaseSettings

# Ended events are swept every five minutes unless overridden.
DEFAULT_RECLAIM_INTERVAL_MINUTES = 5


class Settings(BaseSettings):
    """Muster configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Discord
    discord_bot_token: str = ""
    discord_guild_id: str = ""
    discord_enabled: bool = False
    discord_admin_role_id: str = ""  # Role treated as admin besides the Administrator permission

    # Channels that receive approve/deny controls
    equipment_request_channel_id: str = ""
    cert_request_channel_id: str = ""

    # Internal API shared with the dashboard
    bot_api_secret: str = ""

    # Database
    database_url: str = "sqlite+aiosqlite:///muster.db"

    # Environment
    muster_env: str = "development"

    # Background jobs
    muster_reclaim_interval_minutes: int = DEFAULT_RECLAIM_INTERVAL_MINUTES
    muster_reminders_enabled: bool = True
    muster_reminder_lead_minutes: int = 60

    # Admin-permission lookups are cached per user for this long
    muster_admin_cache_ttl_seconds: int = 300

    # Logging
    muster_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _ensure_api_secret(self) -> Settings:
        """Auto-generate the API secret in dev; reject a missing secret in production."""
        if not self.bot_api_secret:
            if self.muster_env == "production":
                msg = (
                    "BOT_API_SECRET must be set in production. "
                    "Generate one with: python -c "
                    '"import secrets; print(secrets.token_urlsafe(32))"'
                )
                raise ValueError(msg)
            self.bot_api_secret = secrets.token_urlsafe(32)
        return self

    @model_validator(mode="after")
    def _check_intervals(self) -> Settings:
        if self.muster_reclaim_interval_minutes < 1:
            raise ValueError("MUSTER_RECLAIM_INTERVAL_MINUTES must be at least 1")
        return self

    @property
    def guild_id(self) -> int | None:
        return int(self.discord_guild_id) if self.discord_guild_id else None
