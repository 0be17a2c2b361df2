"""
Unit tests for user report helpers.
"""

import hashlib
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src to path
sys.path.append(str(Path(__file__).parent.parent))

from src.domain.models import ReportKind, UserReport
from src.reports.user_reports import (
    ReportValidationError,
    build_user_report,
    fingerprint_submitter,
    has_recent_submission,
    parse_report_kind,
    reports_in_window,
    UserReportPolicy,
)
from src.normalize.config import get_default_config, merge_configs

NOW = datetime(2025, 3, 20, 12, 0, tzinfo=timezone.utc)


class TestBuildUserReport:
    """Test cases for report construction and validation."""

    def test_builds_hashed_report(self):
        """Test the raw identifier is replaced by its fingerprint."""
        report = build_user_report("PROV-1", "funds-exhausted", "10.0.0.1",
                                   comment="  Nu mai sunt fonduri  ", reported_at=NOW)

        assert report.kind == ReportKind.FUNDS_EXHAUSTED
        assert report.comment == "Nu mai sunt fonduri"
        assert report.submitter_hash == hashlib.sha256(b"10.0.0.1PROV-1").hexdigest()
        assert "10.0.0.1" not in report.submitter_hash
        assert report.reported_at == NOW

    def test_comment_bounded(self):
        report = build_user_report("PROV-1", ReportKind.LONG_WAIT, "ip", comment="x" * 600)
        assert len(report.comment) == 500

        report = build_user_report("PROV-1", ReportKind.LONG_WAIT, "ip", comment="x" * 600,
                                   max_comment_length=100)
        assert len(report.comment) == 100

    def test_blank_comment_dropped(self):
        report = build_user_report("PROV-1", "good_service", "ip", comment="   ")
        assert report.comment is None

    def test_naive_timestamp_is_utc(self):
        report = build_user_report("PROV-1", "funds_available", "ip",
                                   reported_at=datetime(2025, 3, 20, 12, 0))
        assert report.reported_at == NOW

    def test_invalid_input_rejected(self):
        with pytest.raises(ReportValidationError):
            build_user_report("PROV-1", "funds-maybe", "ip")
        with pytest.raises(ReportValidationError):
            build_user_report("", "funds_available", "ip")
        with pytest.raises(ReportValidationError):
            build_user_report("PROV-1", "funds_available", "  ")

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_report_kind(None)

    def test_parse_report_kind(self):
        assert parse_report_kind("FUNDS-AVAILABLE") == ReportKind.FUNDS_AVAILABLE
        assert parse_report_kind(ReportKind.GOOD_SERVICE) == ReportKind.GOOD_SERVICE

    def test_fingerprint_depends_on_provider(self):
        assert fingerprint_submitter("ip", "PROV-1") != fingerprint_submitter("ip", "PROV-2")


class TestReportWindows:
    """Test cases for window selection and duplicate detection."""

    def setup_method(self):
        """Setup test fixtures."""
        self.fingerprint = fingerprint_submitter("10.0.0.1", "PROV-1")
        self.reports = [
            UserReport("PROV-1", ReportKind.FUNDS_AVAILABLE, NOW - timedelta(hours=30), self.fingerprint),
            UserReport("PROV-1", ReportKind.FUNDS_EXHAUSTED, NOW - timedelta(minutes=20), self.fingerprint),
            UserReport("PROV-1", ReportKind.LONG_WAIT, NOW - timedelta(hours=50), "other"),
            UserReport("PROV-1", ReportKind.LONG_WAIT, NOW + timedelta(hours=1), "other"),
        ]

    def test_reports_in_window(self):
        """Test the trailing window excludes old and future reports, newest first."""
        selected = reports_in_window(self.reports, NOW, window_hours=48)
        assert [r.kind for r in selected] == [ReportKind.FUNDS_EXHAUSTED, ReportKind.FUNDS_AVAILABLE]

    def test_has_recent_submission(self):
        """Test a second report within the cooldown is detected."""
        assert has_recent_submission(self.reports, self.fingerprint, "PROV-1", NOW)
        assert not has_recent_submission(self.reports, self.fingerprint, "PROV-2", NOW)
        assert not has_recent_submission(self.reports, self.fingerprint, "PROV-1",
                                         NOW + timedelta(hours=2))
        assert not has_recent_submission(self.reports, "someone-else", "PROV-1", NOW)


class TestUserReportPolicy:
    """Test cases for the configured submission limits."""

    def setup_method(self):
        """Setup test fixtures."""
        self.fingerprint = fingerprint_submitter("10.0.0.1", "PROV-1")
        self.reports = [
            UserReport("PROV-1", ReportKind.FUNDS_EXHAUSTED, NOW - timedelta(minutes=90),
                       self.fingerprint),
        ]

    def test_defaults_follow_repository_config(self):
        policy = UserReportPolicy(get_default_config()["reports"])
        assert policy.max_comment_length == 500
        assert policy.cooldown == timedelta(minutes=60)
        assert not policy.is_duplicate(self.reports, self.fingerprint, "PROV-1", NOW)

    def test_configured_cooldown_changes_duplicate_check(self):
        """Test a longer cooldown refuses a submission the default would accept."""
        config = merge_configs(get_default_config(), {"reports": {"cooldown_minutes": 120}})
        policy = UserReportPolicy(config["reports"])

        assert policy.is_duplicate(self.reports, self.fingerprint, "PROV-1", NOW)
        assert not policy.is_duplicate(self.reports, self.fingerprint, "PROV-1",
                                       NOW + timedelta(hours=1))

    def test_configured_comment_length(self):
        policy = UserReportPolicy({"max_comment_length": 10})
        report = policy.build("PROV-1", "long_wait", "ip", comment="x" * 50, reported_at=NOW)

        assert len(report.comment) == 10
        assert report.submitter_hash == fingerprint_submitter("ip", "PROV-1")


if __name__ == "__main__":
    pytest.main([__file__])
