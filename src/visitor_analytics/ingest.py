"""
Ingest pipeline for one tracking submission.

    raw payload
      -> threat assessment (logged; blocks only when configured to)
      -> validation + sanitization (reject whole record on any error)
      -> consent gate
      -> IP anonymization
      -> geo enrichment
      -> insert

Validation failures and store failures come back as an `IngestResult`;
nothing raised by a collaborator escapes `IngestHandler.ingest`.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .core.client import VisitorStore
from .core.models import INTEGER_FIELDS, VisitorRow
from .errors import ExternalDependencyError
from .geo import GeoLocation, GeoLocator
from .privacy import ConsentState, anonymize_ip
from .threats import ThreatAnalyzer, ThreatAssessment
from .validation import DataValidator, sanitize_string

logger = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 500


class IngestStatus(str, Enum):
    ACCEPTED = "accepted"
    SKIPPED = "skipped"    # consent not granted, nothing stored
    REJECTED = "rejected"  # validation failed
    FAILED = "failed"      # store error
    BLOCKED = "blocked"    # high risk and blocking enabled


@dataclass
class IngestResult:
    """Outcome of one ingest call."""
    status: IngestStatus
    id: Optional[int] = None
    errors: list[str] = field(default_factory=list)
    message: Optional[str] = None
    assessment: Optional[ThreatAssessment] = None

    @property
    def success(self) -> bool:
        return self.status in (IngestStatus.ACCEPTED, IngestStatus.SKIPPED)


def _to_column_value(name: str, value: Any) -> Any:
    if name in INTEGER_FIELDS and isinstance(value, float):
        return int(round(value))
    if value == "":
        return None
    return value


def build_visitor_row(
    data: dict[str, Any],
    ip_address: str,
    geo: GeoLocation,
    consent_granted: bool,
) -> VisitorRow:
    """Map sanitized fields onto the stored columns.

    Unknown fields are dropped here; geo columns always come from the
    lookup, never from the client.
    """
    columns = set(VisitorRow.column_names())
    values = {
        name: _to_column_value(name, value)
        for name, value in data.items()
        if name in columns
    }
    values.update(geo.to_dict())
    values["ip_address"] = ip_address
    values["consent_granted"] = consent_granted
    return VisitorRow(**values)


class IngestHandler:
    """Runs the ingest pipeline against a store."""

    def __init__(
        self,
        store: VisitorStore,
        geo: GeoLocator,
        consent: ConsentState,
        analyzer: Optional[ThreatAnalyzer] = None,
        validator: Optional[DataValidator] = None,
        block_high_risk: bool = False,
    ):
        self.store = store
        self.geo = geo
        self.consent = consent
        self.analyzer = analyzer or ThreatAnalyzer()
        self.validator = validator or DataValidator()
        self.block_high_risk = block_high_risk

    async def ingest(
        self,
        payload: Any,
        ip_address: str,
        user_agent: Optional[str] = None,
    ) -> IngestResult:
        """Validate, enrich and store one tracking record.

        Args:
            payload: Client-submitted record (decoded JSON body)
            ip_address: Address derived from the request, never the client's claim
            user_agent: User-Agent header, used when the payload has none
        """
        if not isinstance(payload, dict):
            return IngestResult(
                status=IngestStatus.REJECTED,
                errors=["Request body must be a JSON object"],
                message="Validation failed",
            )

        ua = payload.get("user_agent") or user_agent
        assessment = self.analyzer.assess(payload, ip_address=ip_address, user_agent=ua)
        if assessment.is_high_risk:
            logger.warning(
                f"High risk tracking request from {ip_address} "
                f"(score {assessment.overall_score}): {', '.join(assessment.threats)}"
            )
            if self.block_high_risk:
                return IngestResult(
                    status=IngestStatus.BLOCKED,
                    message="Request contains potentially malicious content",
                    assessment=assessment,
                )

        record = dict(payload)
        record["ip_address"] = ip_address
        validation = self.validator.validate_and_sanitize(record)

        if not validation.valid:
            logger.warning(
                f"Invalid tracking data received from {ip_address}: {validation.errors}"
            )
            return IngestResult(
                status=IngestStatus.REJECTED,
                errors=validation.errors,
                message="Validation failed",
                assessment=assessment,
            )

        if not self.consent.consent_granted():
            logger.info(f"Tracking blocked due to privacy consent for {ip_address}")
            return IngestResult(
                status=IngestStatus.SKIPPED,
                message="Tracking consent not granted",
                assessment=assessment,
            )

        data = validation.sanitized_data
        if not data.get("user_agent") and user_agent:
            data["user_agent"] = sanitize_string(user_agent[:MAX_USER_AGENT_LENGTH])

        anonymized = anonymize_ip(data["ip_address"])
        location = self.geo.lookup(anonymized)
        row = build_visitor_row(data, anonymized, location, consent_granted=True)

        try:
            row_id = await self.store.insert_visitor(row)
        except ExternalDependencyError as e:
            logger.error(f"Error inserting visitor data for {anonymized}: {e}", exc_info=True)
            return IngestResult(
                status=IngestStatus.FAILED,
                message="Failed to record visitor data",
                assessment=assessment,
            )

        logger.info(f"Visitor data recorded successfully (id={row_id}, ip={anonymized})")
        return IngestResult(status=IngestStatus.ACCEPTED, id=row_id, assessment=assessment)
