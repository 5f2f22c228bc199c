"""
Configuration for visitor analytics.
"""
import logging
import warnings
from dataclasses import dataclass, field
from typing import Annotated

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Placeholder API key policy: anything shorter is refused outright
MIN_API_KEY_LENGTH = 10

# Two years, matching the privacy retention window
DEFAULT_RETENTION_DAYS = 730

ENV_PREFIX = "ANALYTICS_"


@dataclass
class AnalyticsConfig:
    """Configuration for a single analytics instance."""

    # Required (remote store credentials)
    d1_database_id: str
    cf_account_id: str
    cf_api_token: str

    # Display settings
    site_name: str = "portfolio"

    # Geo enrichment (MaxMind GeoLite2-City .mmdb)
    geoip_database_path: str | None = None

    # Placeholder key for admin endpoints
    api_key: str | None = None

    # Data retention
    retention_days: int = DEFAULT_RETENTION_DAYS

    # Rate limiting (per client IP)
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60
    sensitive_rate_limit_max_requests: int = 10

    # HTTP boundary
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    environment: str = "development"
    block_high_risk_requests: bool = False

    # Default report window in days
    timeline_days: int = 30

    # Threat heuristics override (regex prefixes, e.g. r"^52\.")
    datacenter_prefixes: list[str] | None = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def __post_init__(self):
        """Validate configuration after initialization."""
        for name in ("d1_database_id", "cf_account_id", "cf_api_token"):
            if not getattr(self, name):
                raise ConfigurationError(f"Missing required setting: {name}")

        if self.retention_days <= 0:
            raise ConfigurationError("retention_days must be positive")
        if self.rate_limit_max_requests <= 0 or self.rate_limit_window_seconds <= 0:
            raise ConfigurationError("Rate limit settings must be positive")

        self._validate_api_key()

    def _validate_api_key(self) -> None:
        """Warn about a weak or missing API key.

        Without a configured key the admin endpoints fall back to the
        placeholder length check, which accepts any long enough string.
        """
        if not self.api_key:
            warnings.warn(
                f"Site {self.site_name}: no api_key configured. Admin endpoints "
                f"accept any key of {MIN_API_KEY_LENGTH}+ characters.",
                UserWarning,
                stacklevel=3,
            )
            return

        if len(self.api_key) < MIN_API_KEY_LENGTH:
            raise ConfigurationError(
                f"api_key must be at least {MIN_API_KEY_LENGTH} characters. "
                f"Got {len(self.api_key)} characters."
            )
        logger.debug(f"Site {self.site_name}: API key configured")

    @classmethod
    def from_env(cls, env_file: str | None = ".env") -> "AnalyticsConfig":
        """Build a config from environment variables.

        Required: CF_D1_DATABASE_ID, CF_ACCOUNT_ID, CF_API_TOKEN.
        Optional settings use the ANALYTICS_ prefix (ANALYTICS_API_KEY,
        ANALYTICS_RETENTION_DAYS, ANALYTICS_CORS_ORIGINS, ...). Values in
        env_file are used when the variable is not set.

        Raises:
            ConfigurationError: If a required credential is missing or a
                setting cannot be parsed
        """
        try:
            settings = EnvSettings(_env_file=env_file)
        except ValidationError as e:
            raise ConfigurationError(_describe_errors(e)) from None
        return settings.to_config()


class EnvSettings(BaseSettings):
    """
    Analytics settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """

    # Store credentials keep their Cloudflare names (no prefix)
    d1_database_id: str = Field(validation_alias="CF_D1_DATABASE_ID")
    cf_account_id: str = Field(validation_alias="CF_ACCOUNT_ID")
    cf_api_token: str = Field(validation_alias="CF_API_TOKEN")

    site_name: str = "portfolio"
    geoip_db_path: str | None = None
    api_key: str | None = None
    retention_days: int = DEFAULT_RETENTION_DAYS
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60
    sensitive_rate_limit_max_requests: int = 10
    cors_origins: Annotated[list[str], NoDecode] = ["*"]
    environment: str = "development"
    block_high_risk: bool = False
    timeline_days: int = 30
    datacenter_prefixes: Annotated[list[str], NoDecode] = []

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cors_origins", "datacenter_prefixes", mode="before")
    @classmethod
    def split_comma_list(cls, value):
        # Comma-separated in the environment: "https://a.com, https://b.com"
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    def to_config(self) -> AnalyticsConfig:
        return AnalyticsConfig(
            d1_database_id=self.d1_database_id,
            cf_account_id=self.cf_account_id,
            cf_api_token=self.cf_api_token,
            site_name=self.site_name,
            geoip_database_path=self.geoip_db_path,
            api_key=self.api_key or None,
            retention_days=self.retention_days,
            rate_limit_max_requests=self.rate_limit_max_requests,
            rate_limit_window_seconds=self.rate_limit_window_seconds,
            sensitive_rate_limit_max_requests=self.sensitive_rate_limit_max_requests,
            cors_origins=self.cors_origins or ["*"],
            environment=self.environment,
            block_high_risk_requests=self.block_high_risk,
            timeline_days=self.timeline_days,
            datacenter_prefixes=self.datacenter_prefixes or None,
        )


def _env_name(loc: tuple) -> str:
    name = str(loc[0]) if loc else ""
    if name.upper().startswith("CF_"):
        return name.upper()
    return f"{ENV_PREFIX}{name.upper()}"


def _describe_errors(error: ValidationError) -> str:
    missing = [_env_name(e["loc"]) for e in error.errors() if e["type"] == "missing"]
    if missing:
        return f"Missing required environment variables: {', '.join(missing)}"
    details = "; ".join(f"{_env_name(e['loc'])}: {e['msg']}" for e in error.errors())
    return f"Invalid environment setting: {details}"
