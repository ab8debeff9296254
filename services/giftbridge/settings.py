"""
GiftBridge settings.

Read from environment variables and an optional .env file in the working
directory; environment variables win. Credentials default to empty so that
`init` and `auth-url` work before everything is filled in, and
`missing_sync_fields()` gates the sync command.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import GIFT_TYPES

# Largest pending-id list the state store accepts (comma-joined ids must fit
# a 4KB parameter value).
MAX_PENDING_IDS = 300

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")


class GiftBridgeSettings(BaseSettings):
    """Connection, mapping, state and logging settings for one deployment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # FundraiseUp
    fundraiseup_api_key: str = Field(
        default="",
        description="FundraiseUp API key (Dashboard -> Settings -> API keys)"
    )

    fundraiseup_base_url: str = Field(
        default="https://api.fundraiseup.com/v1",
        description="Base URL for the FundraiseUp API"
    )

    # Blackbaud SKY API
    blackbaud_client_id: str = Field(
        default="",
        description="OAuth application ID from the Blackbaud developer portal"
    )

    blackbaud_client_secret: str = Field(
        default="",
        description="OAuth application secret"
    )

    blackbaud_subscription_key: str = Field(
        default="",
        description="SKY API subscription key"
    )

    blackbaud_api_base_url: str = Field(
        default="https://api.sky.blackbaud.com",
        description="Base URL for the SKY API"
    )

    blackbaud_token_url: str = Field(
        default="https://oauth2.sky.blackbaud.com/token",
        description="OAuth token endpoint"
    )

    blackbaud_authorize_url: str = Field(
        default="https://app.blackbaud.com/oauth/authorize",
        description="OAuth authorization endpoint"
    )

    blackbaud_redirect_uri: str = Field(
        default="http://localhost:8080/callback",
        description="Redirect URI registered for the OAuth application"
    )

    # Gift defaults
    gift_fund_id: str = Field(
        default="",
        description="Raiser's Edge fund receiving every gift"
    )

    gift_campaign_id: str = Field(
        default="",
        description="Raiser's Edge campaign for gift splits (optional)"
    )

    gift_appeal_id: str = Field(
        default="",
        description="Raiser's Edge appeal for gift splits (optional)"
    )

    gift_type: str = Field(
        default="Donation",
        description="Gift type for one-off donations"
    )

    gift_batch_prefix: str = Field(
        default="FundraiseUp",
        description="Batch prefix set on every created gift"
    )

    gift_source_name: str = Field(
        default="FundraiseUp",
        description="Source name written into the gift origin"
    )

    # State
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL of the state store (unset = no persisted state)"
    )

    state_key_prefix: str = Field(
        default="giftbridge",
        description="Key prefix for rows in the state table"
    )

    token_file: Path = Field(
        default=Path("~/.giftbridge/token"),
        description="Refresh token file used when no database is configured"
    )

    # Batch
    max_batch_size: int = Field(
        default=MAX_PENDING_IDS,
        ge=1,
        le=MAX_PENDING_IDS,
        description="Maximum donations processed per run"
    )

    default_lookback_days: int = Field(
        default=30,
        ge=1,
        description="Lookback window for the first ever run"
    )

    # HTTP
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds"
    )

    http_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for 429, 5xx and timeouts before a request fails"
    )

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR or CRITICAL")

    log_format: str = Field(default="json", description="json for log shippers, text for a terminal")

    service_name: str = Field(default="giftbridge", description="Value of the service field on every event")

    environment: str = Field(default="development", description="Value of the environment field on every event")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        fmt = v.lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of: {', '.join(LOG_FORMATS)}")
        return fmt

    @field_validator("gift_type")
    @classmethod
    def validate_gift_type(cls, v):
        """Validate gift type is a Raiser's Edge gift type."""
        if v not in GIFT_TYPES:
            raise ValueError(f"gift_type must be one of: {', '.join(GIFT_TYPES)}")
        return v

    @field_validator(
        "fundraiseup_api_key",
        "blackbaud_client_id",
        "blackbaud_client_secret",
        "blackbaud_subscription_key",
        "gift_fund_id",
        "gift_campaign_id",
        "gift_appeal_id",
    )
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip()

    def missing_sync_fields(self) -> List[str]:
        """Names of settings a sync run requires but that are empty."""
        required = [
            "fundraiseup_api_key",
            "blackbaud_client_id",
            "blackbaud_client_secret",
            "blackbaud_subscription_key",
            "gift_fund_id",
        ]
        return [name for name in required if not getattr(self, name)]

    @property
    def token_path(self) -> Path:
        return self.token_file.expanduser()


@lru_cache()
def get_settings() -> GiftBridgeSettings:
    """Settings for this process, read once."""
    return GiftBridgeSettings()


settings = get_settings
