"""Tests for heuristic threat scoring."""

import pytest

from visitor_analytics.threats import (
    RiskLevel,
    ThreatAnalyzer,
    ThreatSignatures,
    classify,
)

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.fixture
def analyzer():
    return ThreatAnalyzer()


class TestClassify:
    """Test score thresholds."""

    def test_thresholds_are_strict(self):
        assert classify(0.7) == RiskLevel.MEDIUM
        assert classify(0.71) == RiskLevel.HIGH
        assert classify(0.4) == RiskLevel.LOW
        assert classify(0.41) == RiskLevel.MEDIUM


class TestUserAgent:
    """Test user-agent analysis."""

    def test_absent_user_agent_is_unknown(self, analyzer):
        result = analyzer.analyze_user_agent(None)
        assert result.risk == RiskLevel.UNKNOWN
        assert result.score == 0.2
        assert result.to_dict() == {"risk": "unknown", "score": 0.2, "threats": []}

    def test_empty_user_agent_is_unknown(self, analyzer):
        result = analyzer.analyze_user_agent("")
        assert (result.risk, result.score) == (RiskLevel.UNKNOWN, 0.2)

    def test_sqlmap_is_high(self, analyzer):
        result = analyzer.analyze_user_agent("sqlmap/1.7.2#stable (https://sqlmap.org)")
        assert result.risk == RiskLevel.HIGH
        assert "Known attack tool detected: sqlmap" in result.threats

    def test_regular_browser_is_low(self, analyzer):
        result = analyzer.analyze_user_agent(CHROME_UA)
        assert result.risk == RiskLevel.LOW
        assert result.score == 0
        assert result.threats == ()

    def test_curl_scores_token_and_missing_engine(self, analyzer):
        result = analyzer.analyze_user_agent("curl/8.4.0")
        assert result.score == pytest.approx(0.5)
        assert result.risk == RiskLevel.MEDIUM
        assert result.threats == ("Suspicious browser: curl", "Non-standard user agent")

    def test_score_is_clamped(self, analyzer):
        result = analyzer.analyze_user_agent("python scrapy bot crawler spider nikto")
        assert result.score == 1.0
        assert result.risk == RiskLevel.HIGH

    def test_matching_is_case_insensitive(self, analyzer):
        result = analyzer.analyze_user_agent("Mozilla/5.0 (compatible; GoogleBot)")
        assert "Suspicious browser: bot" in result.threats


class TestIp:
    """Test source address analysis."""

    @pytest.mark.parametrize("ip", ["10.1.2.3", "172.20.0.1", "192.168.1.1", "127.0.0.1", "::1"])
    def test_private_addresses(self, analyzer, ip):
        result = analyzer.analyze_ip(ip)
        assert result.score == pytest.approx(0.1)
        assert result.threats == ("Private IP address",)

    def test_datacenter_prefix(self, analyzer):
        result = analyzer.analyze_ip("52.14.1.9")
        assert result.score == pytest.approx(0.4)
        assert result.risk == RiskLevel.LOW
        assert result.threats == ("Datacenter/VPS IP detected",)

    def test_public_address(self, analyzer):
        assert analyzer.analyze_ip("203.0.113.45").score == 0

    def test_missing_address_is_neutral(self, analyzer):
        result = analyzer.analyze_ip(None)
        assert (result.risk, result.score) == (RiskLevel.LOW, 0)

    def test_custom_datacenter_prefixes(self):
        analyzer = ThreatAnalyzer(ThreatSignatures(datacenter_ip_prefixes=(r"^203\.0\.113\.",)))
        assert analyzer.is_datacenter_ip("203.0.113.45") is True
        assert analyzer.is_datacenter_ip("52.14.1.9") is False


class TestPayloadPatterns:
    """Test payload pattern detection."""

    def test_sql_injection(self, analyzer):
        result = analyzer.detect_suspicious_patterns({"page_visited": "x'; DROP TABLE visitors"})
        assert result.score >= 0.8
        assert "SQL injection pattern detected" in result.threats

    def test_xss(self, analyzer):
        result = analyzer.detect_suspicious_patterns({"referrer": "<script>alert(1)</script>"})
        assert result.threats == ("XSS pattern detected",)
        assert result.score == pytest.approx(0.7)

    def test_path_traversal(self, analyzer):
        result = analyzer.detect_suspicious_patterns({"page_visited": "https://x.com/../../etc/passwd"})
        assert result.threats == ("Path traversal pattern detected",)

    def test_each_family_counts_once(self, analyzer):
        result = analyzer.detect_suspicious_patterns({
            "a": "UNION SELECT", "b": "DROP TABLE", "c": "-- comment",
        })
        assert result.score == pytest.approx(0.8)

    def test_all_families_clamp(self, analyzer):
        result = analyzer.detect_suspicious_patterns({
            "a": "select", "b": "javascript:x", "c": "../",
        })
        assert result.score == 1.0
        assert result.risk == RiskLevel.HIGH

    def test_clean_payload(self, analyzer):
        payload = {
            "user_agent": CHROME_UA,
            "page_visited": "https://example.com/about",
            "screen_width": 1920,
        }
        result = analyzer.detect_suspicious_patterns(payload)
        assert result.score == 0
        assert result.threats == ()

    def test_unserializable_payload_does_not_raise(self, analyzer):
        result = analyzer.detect_suspicious_patterns({"obj": object()})
        assert result.risk == RiskLevel.LOW


class TestAssess:
    """Test the combined assessment."""

    def test_overall_is_mean_of_components(self, analyzer):
        assessment = analyzer.assess(
            {"page_visited": "'; DROP TABLE visitors"},
            ip_address="10.0.0.5",
            user_agent="curl/8.4.0",
        )
        # (0.5 + 0.1 + 0.8) / 3
        assert assessment.overall_score == 47
        assert assessment.overall_risk == RiskLevel.MEDIUM

    def test_threats_ordered_by_dimension(self, analyzer):
        assessment = analyzer.assess(
            {"q": "<script>"},
            ip_address="192.168.0.2",
            user_agent="wget/1.21",
        )
        assert assessment.threats == (
            "Suspicious browser: wget",
            "Non-standard user agent",
            "Private IP address",
            "XSS pattern detected",
        )

    def test_defaults_come_from_payload(self, analyzer):
        assessment = analyzer.assess({"ip_address": "10.0.0.5", "user_agent": CHROME_UA})
        assert assessment.ip.threats == ("Private IP address",)
        assert assessment.user_agent.risk == RiskLevel.LOW

    def test_high_overall(self, analyzer):
        assessment = analyzer.assess(
            {"x": "select * from users -- <script> ../"},
            ip_address="52.1.1.1",
            user_agent="sqlmap python",
        )
        assert assessment.overall_risk == RiskLevel.HIGH
        assert assessment.is_high_risk is True

    def test_non_dict_payload_is_neutral(self, analyzer):
        assessment = analyzer.assess(None)
        assert assessment.user_agent.risk == RiskLevel.UNKNOWN
        assert assessment.overall_risk == RiskLevel.LOW

    def test_to_dict(self, analyzer):
        data = analyzer.assess({}, ip_address="203.0.113.1", user_agent=CHROME_UA).to_dict()
        assert data["overall_risk"] == "low"
        assert data["overall_score"] == 0
        assert set(data["components"]) == {"user_agent", "ip", "patterns"}
