"""
Validation and sanitization of inbound tracking records.

Every tracking submission is a flat mapping of field name to raw value.
Each recognized field has a rule (type, length, range, allowed values,
custom predicate, custom sanitizer). Records are checked field by field:

- Unknown fields pass through untouched so newer clients can send extra
  data without being rejected.
- Checks for one field stop at its first failure, but every field is
  checked, so a rejected record reports all of its bad fields at once.
- A record with any error is rejected as a whole. There is no partial
  insert.

Known limitation: the IPv6 check accepts only the full eight-group form
plus the literal `::1` and `::` shortcuts. Compressed addresses such as
`2001:db8::1` are refused.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlparse

# =============================================================================
# FORMAT PATTERNS
# =============================================================================

_IPV4_REGEX = re.compile(
    r"^(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$"
)

# Full form only; see module docstring
_IPV6_REGEX = re.compile(r"^([0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}$|^::1$|^::$")

_LANGUAGE_REGEX = re.compile(r"^[a-zA-Z]{2,3}(-[a-zA-Z]{2,3})?$")

VALID_BROWSERS = ("Chrome", "Firefox", "Safari", "Edge", "Opera", "IE", "Unknown")
VALID_OPERATING_SYSTEMS = ("Windows", "MacOS", "Linux", "Android", "iOS", "Unknown")
DEVICE_TYPES = ("Mobile", "Tablet", "Desktop")

# Markup and URI schemes stripped from free-text fields
_SANITIZE_PATTERNS = (
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
)


# =============================================================================
# FIELD VALIDATORS
# =============================================================================

def is_valid_ip(value: Any) -> bool:
    """Check for a dotted-quad IPv4 or a full-form IPv6 address."""
    if not value or not isinstance(value, str):
        return False
    return bool(_IPV4_REGEX.match(value) or _IPV6_REGEX.match(value))


def is_valid_browser_name(value: Any) -> bool:
    if not value:
        return True
    return value in VALID_BROWSERS


def is_valid_os_name(value: Any) -> bool:
    if not value:
        return True
    return value in VALID_OPERATING_SYSTEMS


def is_valid_language_code(value: Any) -> bool:
    """Two or three letters, optionally followed by a 2-3 letter region."""
    if not value:
        return True
    return bool(_LANGUAGE_REGEX.match(value))


def is_valid_url(value: Any) -> bool:
    """Accept only absolute URLs (scheme plus location or path)."""
    if not value:
        return True
    try:
        parsed = urlparse(value)
    except (TypeError, ValueError):
        return False
    if not parsed.scheme or not re.match(r"^[a-zA-Z][a-zA-Z0-9+.\-]*$", parsed.scheme):
        return False
    return bool(parsed.netloc or parsed.path)


# =============================================================================
# SANITIZERS
# =============================================================================

def sanitize_string(value: Any) -> Optional[str]:
    """Strip script/iframe blocks, script URIs and inline event handlers.

    Returns None for non-string input. Already-clean strings come back
    unchanged apart from surrounding whitespace.
    """
    if not isinstance(value, str):
        return None
    for pattern in _SANITIZE_PATTERNS:
        value = pattern.sub("", value)
    return value.strip()


def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def sanitize_number(value: Any) -> Optional[float]:
    """Coerce to float, or None when the value is not numeric."""
    return _parse_number(value)


def sanitize_boolean(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


# =============================================================================
# RULE TABLE
# =============================================================================

@dataclass(frozen=True)
class FieldRule:
    """
    Validation rule for one tracking field.

    Attributes:
        type: "string", "number" or "boolean"
        required: Missing, None or "" is an error
        max_length: Maximum string length
        minimum: Inclusive numeric lower bound
        maximum: Inclusive numeric upper bound
        choices: Allowed raw values
        validator: Extra predicate, run after the built-in checks
        sanitizer: Replaces the type's default sanitizer
    """
    type: str = "string"
    required: bool = False
    max_length: Optional[int] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Optional[tuple] = None
    validator: Optional[Callable[[Any], bool]] = None
    sanitizer: Optional[Callable[[Any], Any]] = None


DEFAULT_RULES: dict[str, FieldRule] = {
    "ip_address": FieldRule(required=True, validator=is_valid_ip),
    "user_agent": FieldRule(max_length=500, sanitizer=sanitize_string),
    "browser_name": FieldRule(max_length=50, validator=is_valid_browser_name),
    "browser_version": FieldRule(max_length=50),
    "os_name": FieldRule(max_length=50, validator=is_valid_os_name),
    "device_type": FieldRule(choices=DEVICE_TYPES),
    "screen_width": FieldRule(type="number", minimum=0, maximum=10000),
    "screen_height": FieldRule(type="number", minimum=0, maximum=10000),
    "viewport_width": FieldRule(type="number", minimum=0, maximum=10000),
    "viewport_height": FieldRule(type="number", minimum=0, maximum=10000),
    # Minutes from UTC, as reported by Date.getTimezoneOffset()
    "timezone_offset": FieldRule(type="number", minimum=-840, maximum=840),
    "language": FieldRule(max_length=10, validator=is_valid_language_code),
    "referrer": FieldRule(max_length=1000, validator=is_valid_url),
    "page_visited": FieldRule(max_length=1000, validator=is_valid_url),
    "canvas_fingerprint": FieldRule(max_length=1000),
    "audio_fingerprint": FieldRule(max_length=1000),
    "webgl_renderer": FieldRule(max_length=200),
    "touch_support": FieldRule(type="boolean"),
    "hardware_concurrency": FieldRule(type="number", minimum=0, maximum=1024),
    "color_depth": FieldRule(type="number", minimum=0, maximum=64),
    "timezone": FieldRule(max_length=100),
    "user_language": FieldRule(max_length=10),
    "platform": FieldRule(max_length=50),
}


def _format_bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


# =============================================================================
# VALIDATION
# =============================================================================

@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validating one tracking record.

    Attributes:
        errors: One message per failing field, in input order
        sanitized_data: Cleaned values (only meaningful when valid)
    """
    errors: list[str] = field(default_factory=list)
    sanitized_data: dict[str, Any] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "sanitized_data": dict(self.sanitized_data),
        }


class DataValidator:
    """Applies a rule table to tracking records."""

    def __init__(self, rules: Optional[Mapping[str, FieldRule]] = None):
        self.rules = dict(DEFAULT_RULES if rules is None else rules)

    def _check_field(self, name: str, value: Any, rule: FieldRule) -> Optional[str]:
        """Return the first error for a non-empty value, or None."""
        number = None

        if rule.type == "string" and not isinstance(value, str):
            return f"Field '{name}' must be a string"
        if rule.type == "number":
            number = _parse_number(value)
            if number is None:
                return f"Field '{name}' must be a number"
        if rule.type == "boolean" and not isinstance(value, bool):
            return f"Field '{name}' must be a boolean"

        if rule.max_length is not None and isinstance(value, str) and len(value) > rule.max_length:
            return f"Field '{name}' exceeds maximum length of {rule.max_length}"

        if number is not None:
            if rule.minimum is not None and number < rule.minimum:
                return f"Field '{name}' must be at least {_format_bound(rule.minimum)}"
            if rule.maximum is not None and number > rule.maximum:
                return f"Field '{name}' must be at most {_format_bound(rule.maximum)}"

        if rule.choices is not None and value not in rule.choices:
            return f"Field '{name}' must be one of [{', '.join(rule.choices)}]"

        if rule.validator is not None and not rule.validator(value):
            return f"Field '{name}' failed validation"

        return None

    def _sanitize(self, value: Any, rule: FieldRule) -> Any:
        if rule.sanitizer is not None:
            return rule.sanitizer(value)
        if rule.type == "string":
            return sanitize_string(value)
        if rule.type == "number":
            return sanitize_number(value)
        if rule.type == "boolean":
            return sanitize_boolean(value)
        return value

    def validate_and_sanitize(self, data: Mapping[str, Any]) -> ValidationResult:
        """Validate every field of a record and sanitize the ones that pass.

        Args:
            data: Raw field mapping (already carrying the derived ip_address)

        Returns:
            ValidationResult listing every failing field
        """
        errors: list[str] = []
        sanitized: dict[str, Any] = {}

        for name, value in data.items():
            rule = self.rules.get(name)
            if rule is None:
                sanitized[name] = value
                continue

            if _is_empty(value):
                if rule.required:
                    errors.append(f"Field '{name}' is required")
                else:
                    sanitized[name] = value
                continue

            error = self._check_field(name, value, rule)
            if error:
                errors.append(error)
                continue

            sanitized[name] = self._sanitize(value, rule)

        # Required fields that were not sent at all
        for name, rule in self.rules.items():
            if rule.required and name not in data:
                errors.append(f"Field '{name}' is required")

        return ValidationResult(errors=errors, sanitized_data=sanitized)


_default_validator = DataValidator()


def validate_and_sanitize(data: Mapping[str, Any]) -> ValidationResult:
    """Validate a record against the default rule table."""
    return _default_validator.validate_and_sanitize(data)
