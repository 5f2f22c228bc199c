"""
Request-level security helpers: rate limiting, bot detection, the
placeholder API key check, client IP derivation and security headers.
"""

import hashlib
import logging
import re
import secrets
import time
from threading import Lock
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .config import MIN_API_KEY_LENGTH

logger = logging.getLogger(__name__)

# Rate limiting constants
RATE_LIMIT_MAX_REQUESTS = 100
SENSITIVE_RATE_LIMIT_MAX_REQUESTS = 10
RATE_LIMIT_WINDOW_SEC = 15 * 60  # 15 minutes

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."
SENSITIVE_RATE_LIMIT_MESSAGE = "Too many requests to sensitive endpoint, please try again later."


class RateLimiter:
    """In-memory sliding-window rate limiter keyed by client IP.

    IPs are hashed before they are used as keys. Thread-safe.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_sec: int = RATE_LIMIT_WINDOW_SEC,
        salt: str = "",
    ):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self.salt = salt or secrets.token_hex(8)
        self._hits: dict[str, list[float]] = {}
        self._last_purge = 0.0
        self._lock = Lock()

    def _key(self, ip: str) -> str:
        return hashlib.sha256(f"{self.salt}:{ip}".encode()).hexdigest()[:16]

    def _cleanup(self, key: str, now: float) -> list[float]:
        """Remove expired hits. Keys with no hits left are dropped."""
        cutoff = now - self.window_sec
        hits = [t for t in self._hits.get(key, ()) if t > cutoff]
        if hits:
            self._hits[key] = hits
        else:
            self._hits.pop(key, None)
        return hits

    def hit(self, ip: str, now: Optional[float] = None) -> bool:
        """Record a request. Returns False when the IP is over its limit."""
        key = self._key(ip)
        now = time.time() if now is None else now

        with self._lock:
            hits = self._cleanup(key, now)
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            self._hits[key] = hits
            self._purge_expired(now)
            return True

    def _purge_expired(self, now: float) -> None:
        """Drop every key whose newest hit has left the window.

        Runs at most once per window.
        """
        if now - self._last_purge < self.window_sec:
            return
        self._last_purge = now
        cutoff = now - self.window_sec
        expired = [key for key, hits in self._hits.items() if hits[-1] <= cutoff]
        for key in expired:
            del self._hits[key]

    def remaining(self, ip: str, now: Optional[float] = None) -> int:
        key = self._key(ip)
        now = time.time() if now is None else now

        with self._lock:
            return max(0, self.max_requests - len(self._cleanup(key, now)))

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


# Generic automation markers; matches are logged, never blocked
BOT_PATTERNS = (
    "bot", "crawler", "spider", "slurp", "wget", "curl",
    "scrapy", "python", "selenium", "phantomjs", "headless",
)

_BOT_REGEX = re.compile("|".join(BOT_PATTERNS), re.IGNORECASE)


def detect_bot(user_agent: Optional[str]) -> Optional[str]:
    """Return the first bot marker found in the user-agent, if any."""
    if not user_agent:
        return None
    match = _BOT_REGEX.search(user_agent)
    return match.group(0).lower() if match else None


def verify_api_key(provided: Optional[str], configured: Optional[str] = None) -> bool:
    """Placeholder API key check.

    With a configured key, compare in constant time. Without one, accept
    any key of at least MIN_API_KEY_LENGTH characters.
    """
    if not provided or not isinstance(provided, str):
        return False
    if configured:
        return secrets.compare_digest(provided.encode(), configured.encode())
    return len(provided) >= MIN_API_KEY_LENGTH


def client_ip(request: Request) -> str:
    """First X-Forwarded-For entry, else the socket peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return ""


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds hardening headers to every response. HSTS only in production."""

    def __init__(self, app, production: bool = False):
        super().__init__(app)
        self.production = production

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        if self.production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
