"""Tests for the ingest pipeline."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from visitor_analytics.core.models import VisitorRow
from visitor_analytics.errors import ExternalDependencyError
from visitor_analytics.geo import GeoLocation, GeoLocator
from visitor_analytics.ingest import IngestHandler, IngestStatus, build_visitor_row
from visitor_analytics.privacy import ConsentState

CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _valid_payload(**overrides):
    payload = {
        "user_agent": CHROME_UA,
        "browser_name": "Chrome",
        "browser_version": "120.0.0.0",
        "os_name": "MacOS",
        "device_type": "Desktop",
        "screen_width": 1920,
        "screen_height": 1080,
        "language": "en-US",
        "page_visited": "https://example.com/",
        "touch_support": False,
    }
    payload.update(overrides)
    return payload


def _get_handler(geo=None, consent=None, block_high_risk=False):
    store = MagicMock()
    store.insert_visitor = AsyncMock(return_value=1)
    if geo is None:
        geo = GeoLocator(None)
    handler = IngestHandler(
        store, geo, consent or ConsentState(), block_high_risk=block_high_risk
    )
    return handler, store


class TestBuildVisitorRow:
    """Test mapping sanitized data onto stored columns."""

    def test_integer_fields_rounded(self):
        row = build_visitor_row(
            {"screen_width": 1920.0, "timezone_offset": -60.0, "color_depth": 23.6},
            "203.0.113.0", GeoLocation(), True,
        )
        assert row.screen_width == 1920
        assert row.timezone_offset == -60
        assert row.color_depth == 24

    def test_unknown_fields_not_stored(self):
        row = build_visitor_row({"campaign": "spring"}, "203.0.113.0", GeoLocation(), True)
        assert "campaign" not in row.model_dump()

    def test_empty_strings_stored_as_null(self):
        row = build_visitor_row({"referrer": ""}, "203.0.113.0", GeoLocation(), True)
        assert row.referrer is None

    def test_geo_overrides_client_values(self):
        row = build_visitor_row(
            {"country_code": "XX", "city": "Nowhere"},
            "203.0.113.0",
            GeoLocation(country_code="DE", city="Berlin", latitude=52.5, longitude=13.4),
            True,
        )
        assert (row.country_code, row.city, row.latitude) == ("DE", "Berlin", 52.5)


class TestIngest:
    """Test the full ingest flow."""

    def test_valid_record_is_stored(self):
        handler, store = _get_handler()

        result = run_async(handler.ingest(_valid_payload(), "203.0.113.45", CHROME_UA))

        assert result.status == IngestStatus.ACCEPTED
        assert result.success is True
        assert result.id == 1
        row = store.insert_visitor.call_args[0][0]
        assert isinstance(row, VisitorRow)
        assert row.ip_address == "203.0.113.0"
        assert row.screen_width == 1920
        assert row.browser_name == "Chrome"
        assert row.consent_granted is True

    def test_request_ip_overrides_client_claim(self):
        handler, store = _get_handler()

        run_async(handler.ingest(_valid_payload(ip_address="1.1.1.1"), "198.51.100.9"))

        assert store.insert_visitor.call_args[0][0].ip_address == "198.51.100.0"

    def test_invalid_record_rejected_without_insert(self):
        handler, store = _get_handler()

        result = run_async(handler.ingest(
            {"device_type": "Phone", "screen_width": 99999}, "10.0.0.5"
        ))

        assert result.status == IngestStatus.REJECTED
        assert result.success is False
        assert len(result.errors) == 2
        store.insert_visitor.assert_not_called()

    def test_unparseable_request_ip_rejected(self):
        handler, store = _get_handler()

        result = run_async(handler.ingest(_valid_payload(), "unknown"))

        assert result.errors == ["Field 'ip_address' failed validation"]
        store.insert_visitor.assert_not_called()

    def test_non_object_payload_rejected(self):
        handler, _ = _get_handler()
        result = run_async(handler.ingest(["not", "a", "dict"], "203.0.113.45"))
        assert result.status == IngestStatus.REJECTED

    def test_consent_off_skips_storage(self):
        consent = ConsentState()
        consent.set_consent(False)
        handler, store = _get_handler(consent=consent)

        result = run_async(handler.ingest(_valid_payload(), "203.0.113.45"))

        assert result.status == IngestStatus.SKIPPED
        assert result.success is True
        assert result.message == "Tracking consent not granted"
        store.insert_visitor.assert_not_called()

    def test_header_user_agent_used_when_missing(self):
        handler, store = _get_handler()
        payload = _valid_payload()
        del payload["user_agent"]

        run_async(handler.ingest(payload, "203.0.113.45", CHROME_UA))

        assert store.insert_visitor.call_args[0][0].user_agent == CHROME_UA

    def test_geo_lookup_uses_anonymized_ip(self):
        geo = MagicMock()
        geo.lookup.return_value = GeoLocation(country_code="US", region="CA", city="San Jose")
        handler, store = _get_handler(geo=geo)

        run_async(handler.ingest(_valid_payload(), "203.0.113.45"))

        geo.lookup.assert_called_once_with("203.0.113.0")
        row = store.insert_visitor.call_args[0][0]
        assert (row.country_code, row.region, row.city) == ("US", "CA", "San Jose")

    def test_store_failure_is_reported(self):
        handler, store = _get_handler()
        store.insert_visitor = AsyncMock(side_effect=ExternalDependencyError("D1 query", detail="boom"))

        result = run_async(handler.ingest(_valid_payload(), "203.0.113.45"))

        assert result.status == IngestStatus.FAILED
        assert result.message == "Failed to record visitor data"
        assert "boom" not in result.message

    def test_high_risk_is_advisory_by_default(self):
        handler, store = _get_handler()

        payload = _valid_payload(
            user_agent="sqlmap/1.7 python",
            webgl_renderer="<script>x</script>' UNION SELECT ../",
        )

        result = run_async(handler.ingest(payload, "52.1.2.3"))

        assert result.assessment.is_high_risk is True
        assert result.status == IngestStatus.ACCEPTED
        store.insert_visitor.assert_called_once()

    def test_high_risk_blocked_when_configured(self):
        handler, store = _get_handler(block_high_risk=True)
        payload = _valid_payload(user_agent="sqlmap/1.7 python", webgl_renderer="<script>' UNION ../")

        result = run_async(handler.ingest(payload, "52.1.2.3"))

        assert result.status == IngestStatus.BLOCKED
        store.insert_visitor.assert_not_called()

    @pytest.mark.parametrize("bad", ["javascript:alert(1)", "<script>x</script>"])
    def test_free_text_sanitized_before_storage(self, bad):
        handler, store = _get_handler()

        run_async(handler.ingest(_valid_payload(platform=f"MacIntel{bad}"), "203.0.113.45"))

        platform = store.insert_visitor.call_args[0][0].platform
        assert "script" not in platform.lower()
