"""Tests for IP anonymization, consent state and retention."""

from datetime import datetime, timedelta, timezone

import pytest

from visitor_analytics.privacy import (
    RETENTION_WINDOW,
    ConsentState,
    anonymize_ip,
    is_within_retention,
    retention_cutoff,
    retention_window,
)

NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


class TestAnonymizeIp:
    """Test host-part truncation."""

    def test_ipv4_last_octet_zeroed(self):
        assert anonymize_ip("203.0.113.45") == "203.0.113.0"

    def test_ipv6_last_four_groups_zeroed(self):
        assert anonymize_ip("2001:db8:0:0:1:2:3:4") == "2001:db8:0:0:0:0:0:0"

    def test_ipv6_full_form(self):
        assert (
            anonymize_ip("2001:0db8:85a3:0000:0000:8a2e:0370:7334")
            == "2001:0db8:85a3:0000:0:0:0:0"
        )

    def test_short_ipv6_keeps_first_groups(self):
        assert anonymize_ip("::1") == "::1"

    def test_already_anonymized_is_stable(self):
        assert anonymize_ip(anonymize_ip("198.51.100.7")) == "198.51.100.0"

    @pytest.mark.parametrize("value", ["1.2.3", "1.2.3.4.5", "not-an-ip", "", None])
    def test_malformed_input_unchanged(self, value):
        assert anonymize_ip(value) == value


class TestConsentState:
    """Test the consent holder."""

    def test_defaults_to_granted(self):
        assert ConsentState().consent_granted() is True

    def test_set_consent(self):
        state = ConsentState()
        record = state.set_consent(False, {"analytics": False})
        assert state.consent_granted() is False
        assert record.options == {"analytics": False}
        assert state.record is record

    def test_options_copied_as_given(self):
        options = {"self": 1, "granted": False}
        record = ConsentState().set_consent(True, options)
        options["self"] = 2
        assert record.granted is True
        assert record.options == {"self": 1, "granted": False}

    def test_last_write_wins(self):
        state = ConsentState()
        state.set_consent(False)
        state.set_consent(True)
        assert state.consent_granted() is True

    def test_instances_are_independent(self):
        a, b = ConsentState(), ConsentState()
        a.set_consent(False)
        assert b.consent_granted() is True

    def test_record_to_dict(self):
        data = ConsentState(granted=False).record.to_dict()
        assert data["granted"] is False
        assert "timestamp" in data


class TestRetention:
    """Test the retention window."""

    def test_default_window_is_two_years(self):
        assert retention_window() == RETENTION_WINDOW == timedelta(days=730)

    def test_custom_window(self):
        assert retention_window(30) == timedelta(days=30)

    def test_recent_record_retained(self):
        assert is_within_retention(NOW - timedelta(days=1), now=NOW) is True

    def test_just_inside_boundary(self):
        ts = NOW - RETENTION_WINDOW + timedelta(seconds=1)
        assert is_within_retention(ts, now=NOW) is True

    def test_at_boundary_expired(self):
        assert is_within_retention(NOW - RETENTION_WINDOW, now=NOW) is False

    def test_old_record_expired(self):
        assert is_within_retention(NOW - timedelta(days=800), now=NOW) is False

    def test_naive_timestamp_treated_as_utc(self):
        naive = datetime(2026, 3, 14, 12, 0, 0)
        assert is_within_retention(naive, now=NOW) is True

    def test_store_timestamp_string(self):
        assert is_within_retention("2026-03-14 12:00:00", now=NOW) is True
        assert is_within_retention("2020-01-01T00:00:00Z", now=NOW) is False

    def test_custom_window_applies(self):
        ts = NOW - timedelta(days=10)
        assert is_within_retention(ts, now=NOW, window=timedelta(days=7)) is False

    def test_cutoff(self):
        assert retention_cutoff(now=NOW) == NOW - timedelta(days=730)
        assert retention_cutoff(now=NOW, window=timedelta(days=1)) == NOW - timedelta(days=1)
