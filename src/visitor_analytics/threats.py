"""
Heuristic threat scoring for inbound tracking requests.

Three independent signals are scored in [0, 1]:

- User-Agent: automation/scripting tokens, known attack tools, and the
  absence of any mainstream browser marker.
- IP: private/loopback ranges and a short list of cloud provider prefixes.
- Payload: SQL injection, XSS and path traversal patterns anywhere in the
  serialized request body.

The overall score is the mean of the three. Scores are advisory: nothing
here blocks a request, and nothing here raises. Missing or odd input
degrades to a neutral score.

The IP prefix lists are approximate. They catch the obvious cases and are
meant to be replaced through `ThreatSignatures` when better data exists.
"""

import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class RiskLevel(str, Enum):
    """Risk classification."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNKNOWN = "unknown"  # No user-agent to judge


HIGH_THRESHOLD = 0.7
MEDIUM_THRESHOLD = 0.4


def classify(score: float) -> RiskLevel:
    """Map a score to a risk level (strictly greater than each threshold)."""
    if score > HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score > MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# =============================================================================
# SIGNATURES
# =============================================================================
# Substring tokens are matched against the lowercased user-agent. IP
# prefixes are regexes anchored at the start of the address.

SUSPICIOUS_BROWSER_TOKENS = (
    "curl", "wget", "python", "scrapy", "bot", "crawler", "spider",
)

ATTACK_TOOL_TOKENS = (
    "sqlmap", "nikto", "nmap", "masscan", "metasploit",
)

BROWSER_ENGINE_MARKERS = (
    "mozilla", "chrome", "safari", "firefox",
)

PRIVATE_IP_PREFIXES = (
    r"^10\.",
    r"^172\.(1[6-9]|2[0-9]|3[01])\.",
    r"^192\.168\.",
    r"^127\.",
    r"^::1$",
    r"^fc00:",
)

DATACENTER_IP_PREFIXES = (
    r"^102\.159\.",  # Tunisie Telecom
    r"^37\.3\.",
    r"^52\.",   # AWS
    r"^54\.",   # AWS
    r"^35\.",   # Google Cloud
    r"^104\.",  # Google Cloud
    r"^34\.",   # Google Cloud
    r"^40\.",   # Azure
    r"^13\.",   # Azure
)

SQL_INJECTION_PATTERN = (
    r"(\b(union|select|insert|delete|update|drop|create|alter|exec|execute)\b)"
    r"|(-{2}|/\*|\*/)"
)
XSS_PATTERN = r"<script|javascript:|onerror=|onload="
PATH_TRAVERSAL_PATTERN = r"\.\./"


@dataclass(frozen=True)
class ThreatSignatures:
    """Replaceable signature data for the analyzer."""
    suspicious_browsers: tuple = SUSPICIOUS_BROWSER_TOKENS
    attack_tools: tuple = ATTACK_TOOL_TOKENS
    browser_markers: tuple = BROWSER_ENGINE_MARKERS
    private_ip_prefixes: tuple = PRIVATE_IP_PREFIXES
    datacenter_ip_prefixes: tuple = DATACENTER_IP_PREFIXES
    sql_injection: str = SQL_INJECTION_PATTERN
    xss: str = XSS_PATTERN
    path_traversal: str = PATH_TRAVERSAL_PATTERN


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class RiskAssessment:
    """
    Score for one dimension.

    Attributes:
        risk: Classification of the score
        score: Clamped to [0, 1]
        threats: Human-readable findings
    """
    risk: RiskLevel
    score: float
    threats: tuple = ()

    def to_dict(self) -> dict:
        return {"risk": self.risk.value, "score": self.score, "threats": list(self.threats)}


@dataclass(frozen=True)
class ThreatAssessment:
    """Combined assessment of a request."""
    user_agent: RiskAssessment
    ip: RiskAssessment
    patterns: RiskAssessment
    overall_risk: RiskLevel
    overall_score: int  # 0-100
    threats: tuple = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_high_risk(self) -> bool:
        return self.overall_risk == RiskLevel.HIGH

    def to_dict(self) -> dict:
        return {
            "overall_risk": self.overall_risk.value,
            "overall_score": self.overall_score,
            "components": {
                "user_agent": self.user_agent.to_dict(),
                "ip": self.ip.to_dict(),
                "patterns": self.patterns.to_dict(),
            },
            "threats": list(self.threats),
            "timestamp": self.timestamp.isoformat(),
        }


def _result(score: float, threats: list[str]) -> RiskAssessment:
    return RiskAssessment(risk=classify(score), score=min(score, 1.0), threats=tuple(threats))


# =============================================================================
# ANALYZER
# =============================================================================

class ThreatAnalyzer:
    """Scores user-agents, IPs and payloads against `ThreatSignatures`."""

    def __init__(self, signatures: Optional[ThreatSignatures] = None):
        self.signatures = signatures or ThreatSignatures()
        self._private = [re.compile(p, re.IGNORECASE) for p in self.signatures.private_ip_prefixes]
        self._datacenter = [re.compile(p, re.IGNORECASE) for p in self.signatures.datacenter_ip_prefixes]
        self._sql = re.compile(self.signatures.sql_injection, re.IGNORECASE)
        self._xss = re.compile(self.signatures.xss, re.IGNORECASE)
        self._traversal = re.compile(self.signatures.path_traversal)

    def analyze_user_agent(self, user_agent: Optional[str]) -> RiskAssessment:
        """Score a user-agent string.

        An attack tool match classifies the user-agent as high risk even
        when its numeric score sits at the threshold.
        """
        if not user_agent or not isinstance(user_agent, str):
            return RiskAssessment(risk=RiskLevel.UNKNOWN, score=0.2)

        ua = user_agent.lower()
        score = 0.0
        threats = []

        for token in self.signatures.suspicious_browsers:
            if token in ua:
                score += 0.3
                threats.append(f"Suspicious browser: {token}")

        attack_tool = False
        for tool in self.signatures.attack_tools:
            if tool in ua:
                score += 0.5
                attack_tool = True
                threats.append(f"Known attack tool detected: {tool}")

        if not any(marker in ua for marker in self.signatures.browser_markers):
            score += 0.2
            threats.append("Non-standard user agent")

        result = _result(score, threats)
        if attack_tool and result.risk != RiskLevel.HIGH:
            return RiskAssessment(risk=RiskLevel.HIGH, score=result.score, threats=result.threats)
        return result

    def is_private_ip(self, ip: str) -> bool:
        return any(p.search(ip) for p in self._private)

    def is_datacenter_ip(self, ip: str) -> bool:
        return any(p.search(ip) for p in self._datacenter)

    def analyze_ip(self, ip: Optional[str]) -> RiskAssessment:
        """Score a source address."""
        score = 0.0
        threats = []
        if not ip or not isinstance(ip, str):
            return _result(score, threats)

        if self.is_private_ip(ip):
            score += 0.1
            threats.append("Private IP address")

        if self.is_datacenter_ip(ip):
            score += 0.4
            threats.append("Datacenter/VPS IP detected")

        return _result(score, threats)

    def detect_suspicious_patterns(self, payload: Any) -> RiskAssessment:
        """Scan the serialized payload; each pattern family counts once."""
        try:
            text = json.dumps(payload, default=str)
        except (TypeError, ValueError):
            text = str(payload)

        score = 0.0
        threats = []

        if self._sql.search(text):
            score += 0.8
            threats.append("SQL injection pattern detected")

        if self._xss.search(text):
            score += 0.7
            threats.append("XSS pattern detected")

        if self._traversal.search(text):
            score += 0.6
            threats.append("Path traversal pattern detected")

        return _result(score, threats)

    def assess(
        self,
        payload: Any,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ThreatAssessment:
        """Combine the three dimensions into one assessment.

        Args:
            payload: Raw request body, before any sanitization
            ip_address: Source address; defaults to payload["ip_address"]
            user_agent: Defaults to payload["user_agent"]
        """
        if isinstance(payload, dict):
            if ip_address is None:
                ip_address = payload.get("ip_address")
            if user_agent is None:
                user_agent = payload.get("user_agent")

        ua_result = self.analyze_user_agent(user_agent)
        ip_result = self.analyze_ip(ip_address)
        pattern_result = self.detect_suspicious_patterns(payload)

        mean = (ua_result.score + ip_result.score + pattern_result.score) / 3

        return ThreatAssessment(
            user_agent=ua_result,
            ip=ip_result,
            patterns=pattern_result,
            overall_risk=classify(mean),
            overall_score=int(math.floor(mean * 100 + 0.5)),
            threats=ua_result.threats + ip_result.threats + pattern_result.threats,
        )
