"""Tests for configuration loading and validation."""

import os

import pytest

from visitor_analytics.config import AnalyticsConfig
from visitor_analytics.errors import ConfigurationError

CREDENTIALS = {
    "d1_database_id": "test-db",
    "cf_account_id": "test-account",
    "cf_api_token": "test-token",
}

ENV = {
    "CF_D1_DATABASE_ID": "env-db",
    "CF_ACCOUNT_ID": "env-account",
    "CF_API_TOKEN": "env-token",
    "ANALYTICS_API_KEY": "env-api-key-123",
}


class TestAnalyticsConfig:
    """Test dataclass validation."""

    def test_defaults(self):
        config = AnalyticsConfig(api_key="long-enough-key", **CREDENTIALS)
        assert config.retention_days == 730
        assert config.rate_limit_max_requests == 100
        assert config.rate_limit_window_seconds == 900
        assert config.sensitive_rate_limit_max_requests == 10
        assert config.cors_origins == ["*"]
        assert config.is_production is False
        assert config.has_api_key is True

    def test_missing_credential(self):
        with pytest.raises(ConfigurationError, match="cf_api_token"):
            AnalyticsConfig(d1_database_id="db", cf_account_id="acct", cf_api_token="", api_key="long-enough-key")

    def test_missing_api_key_warns(self):
        with pytest.warns(UserWarning, match="no api_key configured"):
            config = AnalyticsConfig(**CREDENTIALS)
        assert config.has_api_key is False

    def test_short_api_key_rejected(self):
        with pytest.raises(ConfigurationError, match="at least 10 characters"):
            AnalyticsConfig(api_key="short", **CREDENTIALS)

    def test_non_positive_retention_rejected(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig(api_key="long-enough-key", retention_days=0, **CREDENTIALS)

    def test_non_positive_rate_limit_rejected(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig(api_key="long-enough-key", rate_limit_max_requests=0, **CREDENTIALS)


class TestFromEnv:
    """Test environment loading."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in list(os.environ):
            if name.startswith(("ANALYTICS_", "CF_")):
                monkeypatch.delenv(name)

    def _set_env(self, monkeypatch, values):
        for name, value in values.items():
            monkeypatch.setenv(name, value)

    def test_reads_credentials_and_options(self, monkeypatch):
        self._set_env(monkeypatch, {
            **ENV,
            "ANALYTICS_SITE_NAME": "example.com",
            "ANALYTICS_RETENTION_DAYS": "365",
            "ANALYTICS_CORS_ORIGINS": "https://a.com, https://b.com",
            "ANALYTICS_ENVIRONMENT": "production",
            "ANALYTICS_BLOCK_HIGH_RISK": "true",
            "ANALYTICS_DATACENTER_PREFIXES": r"^198\.51\.",
        })
        config = AnalyticsConfig.from_env(env_file=None)
        assert config.d1_database_id == "env-db"
        assert config.api_key == "env-api-key-123"
        assert config.site_name == "example.com"
        assert config.retention_days == 365
        assert config.cors_origins == ["https://a.com", "https://b.com"]
        assert config.is_production is True
        assert config.block_high_risk_requests is True
        assert config.datacenter_prefixes == [r"^198\.51\."]

    def test_defaults_when_unset(self, monkeypatch):
        self._set_env(monkeypatch, ENV)
        config = AnalyticsConfig.from_env(env_file=None)
        assert config.cors_origins == ["*"]
        assert config.block_high_risk_requests is False
        assert config.datacenter_prefixes is None
        assert config.retention_days == 730

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("\n".join(f"{k}={v}" for k, v in ENV.items()) + "\nANALYTICS_TIMELINE_DAYS=7\n")
        config = AnalyticsConfig.from_env(env_file=str(env_file))
        assert config.cf_account_id == "env-account"
        assert config.timeline_days == 7

    def test_missing_credentials_listed(self, monkeypatch):
        monkeypatch.setenv("CF_ACCOUNT_ID", "acct")
        with pytest.raises(ConfigurationError) as exc_info:
            AnalyticsConfig.from_env(env_file=None)
        message = str(exc_info.value)
        assert "CF_D1_DATABASE_ID" in message
        assert "CF_API_TOKEN" in message

    def test_bad_number(self, monkeypatch):
        self._set_env(monkeypatch, {**ENV, "ANALYTICS_RETENTION_DAYS": "forever"})
        with pytest.raises(ConfigurationError, match="ANALYTICS_RETENTION_DAYS"):
            AnalyticsConfig.from_env(env_file=None)

    def test_unrecognised_boolean_rejected(self, monkeypatch):
        self._set_env(monkeypatch, {**ENV, "ANALYTICS_BLOCK_HIGH_RISK": "maybe"})
        with pytest.raises(ConfigurationError, match="ANALYTICS_BLOCK_HIGH_RISK"):
            AnalyticsConfig.from_env(env_file=None)
