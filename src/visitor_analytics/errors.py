"""
Error types for visitor analytics.

Validation failures are returned as data by the ingest pipeline and only
raised for malformed query parameters. External dependency failures keep
their detail in the log; callers only ever see the generic message.
"""


class AnalyticsError(Exception):
    """Base class for analytics errors."""
    pass


class ValidationError(AnalyticsError):
    """One or more field-level violations."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class ExternalDependencyError(AnalyticsError):
    """The store or another remote collaborator failed.

    `public_message` is safe to return to clients. The underlying
    exception is chained with `raise ... from` and logged by the caller.
    """

    def __init__(
        self,
        operation: str,
        public_message: str = "Operation failed",
        detail: str | None = None,
    ):
        self.operation = operation
        self.public_message = public_message
        self.detail = detail
        message = f"{operation} failed"
        super().__init__(f"{message}: {detail}" if detail else message)


class ConfigurationError(AnalyticsError):
    """Required configuration (usually credentials) is missing or invalid."""
    pass


class RateLimitExceeded(AnalyticsError):
    """A client went over its request budget."""

    def __init__(self, message: str = "Too many requests, please try again later."):
        self.message = message
        super().__init__(message)
