"""
User reports for FondCAS.

Builds immutable report records from submissions. The submitter is kept
only as a salted SHA-256 fingerprint so repeated submissions can be
recognized without storing the raw identifier.
"""

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union

from ..domain.models import ReportKind, UserReport
from ..normalize.text import collapse_whitespace, is_blank

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 500
SUBMISSION_COOLDOWN = timedelta(hours=1)


class ReportValidationError(ValueError):
    """Raised when a submitted report cannot be accepted."""


def as_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC, keeping the offset of aware ones."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def fingerprint_submitter(identifier: str, provider_id: str) -> str:
    """
    Hash a submitter identifier for abuse control.
    
    Args:
        identifier: Raw identifier such as the client IP address
        provider_id: Provider the report is about
        
    Returns:
        Hex SHA-256 digest of identifier + provider ID
    """
    return hashlib.sha256(f"{identifier}{provider_id}".encode("utf-8")).hexdigest()


def parse_report_kind(kind: Union[str, ReportKind]) -> ReportKind:
    """
    Parse a report kind, accepting enum values and hyphenated spellings.
    
    Raises:
        ReportValidationError: If the kind is not one of the known kinds
    """
    if isinstance(kind, ReportKind):
        return kind
    if is_blank(kind):
        raise ReportValidationError("Report kind is required")
    try:
        return ReportKind(str(kind).strip().lower().replace("-", "_"))
    except ValueError:
        raise ReportValidationError(f"Invalid report kind: {kind!r}")


def build_user_report(provider_id: str, kind: Union[str, ReportKind],
                      submitter_identifier: str,
                      comment: Optional[str] = None,
                      reported_at: Optional[datetime] = None,
                      max_comment_length: int = MAX_COMMENT_LENGTH) -> UserReport:
    """
    Validate a submission and build an immutable user report.
    
    Args:
        provider_id: Provider the report is about
        kind: Report kind
        submitter_identifier: Raw submitter identifier, hashed before storing
        comment: Optional free-text comment, trimmed and length-bounded
        reported_at: Submission instant (defaults to now, UTC)
        max_comment_length: Maximum stored comment length
        
    Returns:
        UserReport
        
    Raises:
        ReportValidationError: On missing provider, submitter or invalid kind
    """
    if is_blank(provider_id):
        raise ReportValidationError("Provider ID is required")
    if is_blank(submitter_identifier):
        raise ReportValidationError("Submitter identifier is required")
    
    report_kind = parse_report_kind(kind)
    
    cleaned_comment = None
    if not is_blank(comment):
        cleaned_comment = collapse_whitespace(str(comment))[:max_comment_length]
    
    return UserReport(
        provider_id=provider_id,
        kind=report_kind,
        reported_at=as_utc(reported_at or datetime.now(timezone.utc)),
        submitter_hash=fingerprint_submitter(submitter_identifier, provider_id),
        comment=cleaned_comment,
    )


def reports_in_window(reports: Iterable[UserReport], now: datetime,
                      window_hours: float = 48) -> List[UserReport]:
    """
    Select reports inside the trailing window ending at ``now``.
    
    Reports timestamped after ``now`` are excluded.
    
    Args:
        reports: Candidate reports
        now: Reference instant
        window_hours: Window length in hours
        
    Returns:
        Reports in the window, most recent first
    """
    now = as_utc(now)
    start = now - timedelta(hours=window_hours)
    selected = [r for r in reports if start <= as_utc(r.reported_at) <= now]
    return sorted(selected, key=lambda r: as_utc(r.reported_at), reverse=True)


def has_recent_submission(reports: Iterable[UserReport], submitter_hash: str,
                          provider_id: str, now: datetime,
                          cooldown: timedelta = SUBMISSION_COOLDOWN) -> bool:
    """
    Check whether a fingerprint already reported a provider within the cooldown.
    
    Args:
        reports: Existing reports
        submitter_hash: Fingerprint of the new submission
        provider_id: Provider of the new submission
        now: Reference instant
        cooldown: Minimum spacing between submissions
        
    Returns:
        True if the new submission should be refused
    """
    now = as_utc(now)
    for report in reports:
        if report.provider_id != provider_id or report.submitter_hash != submitter_hash:
            continue
        if now - cooldown <= as_utc(report.reported_at) <= now:
            logger.debug(f"Duplicate submission for provider {provider_id} within cooldown")
            return True
    return False


class UserReportPolicy:
    """
    Applies the configured submission limits to user reports.
    
    Reads the ``reports`` configuration section: ``max_comment_length``
    bounds stored comments and ``cooldown_minutes`` spaces repeated
    submissions from one fingerprint about one provider.
    """
    
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize report policy.
        
        Args:
            config: ``reports`` configuration section (optional)
        """
        config = config or {}
        self.max_comment_length = int(config.get("max_comment_length", MAX_COMMENT_LENGTH))
        self.cooldown = timedelta(
            minutes=config.get("cooldown_minutes", SUBMISSION_COOLDOWN.total_seconds() / 60)
        )
        
        logger.info(f"Initialized UserReportPolicy (comments <= {self.max_comment_length}, "
                    f"cooldown {self.cooldown})")
    
    def build(self, provider_id: str, kind: Union[str, ReportKind], submitter_identifier: str,
              comment: Optional[str] = None,
              reported_at: Optional[datetime] = None) -> UserReport:
        """Build a report with the configured comment bound."""
        return build_user_report(provider_id, kind, submitter_identifier, comment=comment,
                                 reported_at=reported_at,
                                 max_comment_length=self.max_comment_length)
    
    def is_duplicate(self, reports: Iterable[UserReport], submitter_hash: str,
                     provider_id: str, now: datetime) -> bool:
        """Check a new submission against the configured cooldown."""
        return has_recent_submission(reports, submitter_hash, provider_id, now,
                                     cooldown=self.cooldown)
