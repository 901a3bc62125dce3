"""Tests for ComplianceService monitors, reports and health."""

from datetime import timedelta

import pytest

from models.exceptions import ComplianceReportNotFoundException
from repositories.db_models import (
    AssessmentSession,
    SecurityAlert,
    SecurityAssessment,
    UserSessionRecord,
)
from services.audit_service import AuditEventType
from services.compliance_service import BASELINE_SECURITY_RECOMMENDATIONS


@pytest.fixture
def compliance(security_system):
    return security_system.compliance


@pytest.fixture
def audit(security_system):
    return security_system.audit


def _alerts(db_session, alert_type: str) -> list[SecurityAlert]:
    return db_session.query(SecurityAlert).filter_by(alert_type=alert_type).all()


class TestFailedLoginMonitor:
    """One alert per identifier while the condition persists."""

    def _fail(self, audit, db_session, identifier: str, times: int) -> None:  # type: ignore[no-untyped-def]
        for _ in range(times):
            audit.log_audit_event(
                db_session, AuditEventType.LOGIN_FAILED, identifier=identifier, source="auth"
            )

    def test_alert_at_threshold(self, compliance, audit, db_session, test_settings) -> None:
        self._fail(audit, db_session, "victim@example.com", test_settings.ALERT_FAILED_LOGINS_PER_HOUR)
        self._fail(audit, db_session, "typo@example.com", 2)

        assert compliance.monitor_failed_logins(db_session) == 1
        alert = _alerts(db_session, "excessive_failed_logins")[0]
        assert alert.details["subject"] == "victim@example.com"
        assert alert.severity == "warning"

    def test_below_threshold_no_alert(self, compliance, audit, db_session, test_settings) -> None:
        self._fail(audit, db_session, "a@example.com", test_settings.ALERT_FAILED_LOGINS_PER_HOUR - 1)
        assert compliance.monitor_failed_logins(db_session) == 0

    def test_no_duplicate_while_unresolved(self, compliance, audit, db_session, test_settings) -> None:
        self._fail(audit, db_session, "a@example.com", test_settings.ALERT_FAILED_LOGINS_PER_HOUR)
        compliance.monitor_failed_logins(db_session)
        assert compliance.monitor_failed_logins(db_session) == 0

    def test_realerts_after_resolution(self, compliance, audit, db_session, test_settings) -> None:
        self._fail(audit, db_session, "a@example.com", test_settings.ALERT_FAILED_LOGINS_PER_HOUR)
        compliance.monitor_failed_logins(db_session)
        alert = _alerts(db_session, "excessive_failed_logins")[0]
        audit.resolve_alert(db_session, alert.id, "admin")

        assert compliance.monitor_failed_logins(db_session) == 1

    def test_old_failures_ignored(self, compliance, audit, db_session, clock, test_settings) -> None:
        self._fail(audit, db_session, "a@example.com", test_settings.ALERT_FAILED_LOGINS_PER_HOUR)
        clock.advance(hours=1, seconds=1)
        assert compliance.monitor_failed_logins(db_session) == 0


class TestOtherMonitors:
    def test_unusual_data_access(self, compliance, audit, db_session, test_user, test_settings) -> None:
        for _ in range(test_settings.ALERT_DATA_ACCESS_PER_HOUR):
            audit.log_data_access(db_session, test_user["user_id"], "retention_policies", "read")

        assert compliance.monitor_data_access(db_session) == 1
        assert _alerts(db_session, "unusual_data_access")[0].details["subject"] == test_user["user_id"]

    def test_overdue_privacy_requests(
        self, compliance, security_system, db_session, test_user, clock, test_settings
    ) -> None:
        for _ in range(test_settings.ALERT_OVERDUE_PRIVACY_REQUESTS):
            security_system.privacy.handle_privacy_request(
                db_session, test_user["user_id"], "objection"
            )

        assert compliance.monitor_privacy_requests(db_session) == 0

        clock.advance(days=test_settings.PRIVACY_REQUEST_MAX_PENDING_DAYS + 1)
        assert compliance.monitor_privacy_requests(db_session) == 1
        assert _alerts(db_session, "overdue_privacy_requests")[0].severity == "error"
        assert compliance.monitor_privacy_requests(db_session) == 0


class TestReports:
    def _window(self, clock):  # type: ignore[no-untyped-def]
        return clock() - timedelta(days=1), clock() + timedelta(days=1)

    def test_clean_report(self, compliance, db_session, test_user, clock) -> None:
        start, end = self._window(clock)
        report = compliance.generate_compliance_report(db_session, "ad_hoc", start, end)

        assert report.metrics["total_users"] == 1
        assert report.metrics["new_users"] == 1
        assert report.metrics["consent_rate"] == 1.0
        assert report.violations == []
        assert report.recommendations == []

    def test_missing_consent_violation(
        self, compliance, security_system, db_session, test_user, clock
    ) -> None:
        security_system.consent.withdraw_consent(db_session, test_user["user_id"], "data_processing")
        start, end = self._window(clock)
        report = compliance.generate_compliance_report(db_session, "ad_hoc", start, end)

        assert report.metrics["users_without_consent"] == 1
        assert [v["type"] for v in report.violations] == ["missing_consent"]
        assert report.recommendations[0] == "Improve consent collection process"
        assert "Obtain explicit consent" in report.recommendations

    def test_retention_violation(
        self, compliance, db_session, test_user, clock, test_settings
    ) -> None:
        db_session.add(
            AssessmentSession(
                user_id=test_user["user_id"],
                assessment_type="readiness",
                status="completed",
                created_at=clock() - timedelta(days=test_settings.DATA_RETENTION_DAYS + 1),
            )
        )
        db_session.commit()

        start, end = self._window(clock)
        report = compliance.generate_compliance_report(db_session, "ad_hoc", start, end)
        violation = report.violations[0]
        assert violation["type"] == "data_retention_violation"
        assert violation["severity"] == "medium"

    def test_unfinished_sessions_are_not_retention_violations(
        self, compliance, db_session, test_user, clock, test_settings
    ) -> None:
        """Retention only acts on completed sessions, so only those can be overdue."""
        db_session.add(
            AssessmentSession(
                user_id=test_user["user_id"],
                assessment_type="readiness",
                status="in_progress",
                created_at=clock() - timedelta(days=test_settings.DATA_RETENTION_DAYS + 1),
            )
        )
        db_session.commit()

        start, end = self._window(clock)
        report = compliance.generate_compliance_report(db_session, "ad_hoc", start, end)
        assert report.violations == []

    def test_retention_run_clears_violation(
        self, compliance, security_system, db_session, test_user, clock, test_settings
    ) -> None:
        db_session.add(
            AssessmentSession(
                user_id=test_user["user_id"],
                assessment_type="readiness",
                status="completed",
                created_at=clock() - timedelta(days=test_settings.DATA_RETENTION_DAYS + 1),
            )
        )
        db_session.commit()

        job = security_system.retention.execute_manual_retention(db_session, "assessment_sessions")
        assert job.status == "completed"

        start, end = self._window(clock)
        report = compliance.generate_compliance_report(db_session, "ad_hoc", start, end)
        assert report.violations == []

    def test_processed_requests_and_response_time(
        self, compliance, security_system, db_session, test_user, clock
    ) -> None:
        request_id = security_system.privacy.handle_privacy_request(
            db_session, test_user["user_id"], "objection"
        )
        clock.advance(days=2)
        security_system.privacy.process_request(db_session, request_id)

        start, end = clock() - timedelta(days=3), clock() + timedelta(days=1)
        metrics = compliance.generate_compliance_report(db_session, "ad_hoc", start, end).metrics
        assert metrics["privacy_requests_processed"] == 1
        assert metrics["average_response_time_days"] == 2.0

    def test_weekly_report_and_latest(self, compliance, db_session, clock) -> None:
        with pytest.raises(ComplianceReportNotFoundException):
            compliance.get_latest_report(db_session)

        report = compliance.generate_weekly_report(db_session)
        assert report.report_type == "weekly"
        assert compliance.get_latest_report(db_session).id == report.id
        with pytest.raises(ComplianceReportNotFoundException):
            compliance.get_latest_report(db_session, "monthly")


class TestSystemHealth:
    def test_healthy(self, compliance, db_session) -> None:
        health = compliance.get_system_health(db_session)
        assert health["status"] == "healthy"
        assert health["checks"] == {"database": True, "cache": True}
        assert health["alerts"]["total"] == 0

    def test_activity_metrics(
        self, compliance, security_system, audit, db_session, test_user, clock
    ) -> None:
        security_system.privacy.handle_privacy_request(db_session, test_user["user_id"], "objection")
        audit.create_security_alert(db_session, "test_alert", "warning", "msg")

        metrics = compliance.get_system_health(db_session)["metrics"]
        assert metrics["events_24h"] > 0
        assert metrics["alerts_24h"] == 1
        assert metrics["active_sessions"] == 1
        assert metrics["pending_privacy_requests"] == 1

        clock.advance(hours=24, seconds=1)
        metrics = compliance.get_system_health(db_session)["metrics"]
        assert metrics["events_24h"] == 0
        assert metrics["alerts_24h"] == 0
        assert metrics["active_sessions"] == 0
        assert metrics["pending_privacy_requests"] == 1

    def test_critical_alert_makes_critical(self, compliance, audit, db_session) -> None:
        audit.create_security_alert(db_session, "data_breach", "critical", "Breach")
        health = compliance.get_system_health(db_session)
        assert health["status"] == "critical"
        assert health["alerts"]["critical"] == 1

    def test_many_alerts_make_warning(self, compliance, audit, db_session, test_settings) -> None:
        for _ in range(test_settings.HEALTH_ALERT_WARNING_THRESHOLD + 1):
            audit.create_security_alert(db_session, "test_alert", "warning", "msg")
        assert compliance.get_system_health(db_session)["status"] == "warning"

    def test_old_alerts_do_not_count(self, compliance, audit, db_session, clock, test_settings) -> None:
        audit.create_security_alert(db_session, "data_breach", "critical", "Breach")
        clock.advance(hours=test_settings.HEALTH_ALERT_WINDOW_HOURS, seconds=1)
        assert compliance.get_system_health(db_session)["status"] == "healthy"

    def test_high_violation_in_latest_report(
        self, compliance, security_system, db_session, test_user, clock
    ) -> None:
        security_system.consent.withdraw_consent(db_session, test_user["user_id"], "data_processing")
        compliance.generate_compliance_report(
            db_session, "ad_hoc", clock() - timedelta(days=1), clock() + timedelta(days=1)
        )
        health = compliance.get_system_health(db_session)
        assert health["status"] == "critical"
        assert health["violations"][0]["type"] == "missing_consent"

    def test_cache_failure_is_critical(self, compliance, db_session, cache, monkeypatch) -> None:
        def down() -> bool:
            raise ConnectionError("cache down")

        monkeypatch.setattr(cache, "ping", down)
        health = compliance.get_system_health(db_session)
        assert health["checks"]["cache"] is False
        assert health["status"] == "critical"


class TestSecurityAssessment:
    @pytest.fixture
    def hardened(self, compliance, monkeypatch):  # type: ignore[no-untyped-def]
        """Settings with no configuration findings."""
        monkeypatch.setattr(compliance.settings, "BCRYPT_ROUNDS", 12)
        monkeypatch.setattr(compliance.settings, "REQUIRE_EMAIL_VERIFICATION", True)
        return compliance

    def _check(self, assessment, name: str) -> dict:  # type: ignore[no-untyped-def]
        return next(c for c in assessment.checks if c["check"] == name)

    def test_clean_assessment_passes(self, hardened, db_session, test_user) -> None:
        assessment = hardened.run_security_assessment(db_session)

        assert assessment.overall_status == "pass"
        assert {c["status"] for c in assessment.checks} == {"pass"}
        assert assessment.vulnerabilities == []
        assert assessment.recommendations == BASELINE_SECURITY_RECOMMENDATIONS

    def test_stale_password_fails(self, hardened, db_session, test_user, clock, test_settings) -> None:
        clock.advance(days=test_settings.PASSWORD_MAX_AGE_DAYS + 1)
        assessment = hardened.run_security_assessment(db_session)

        check = self._check(assessment, "password_age")
        assert check["status"] == "fail"
        assert check["count"] == 1
        assert assessment.overall_status == "fail"
        assert assessment.recommendations[0] == "Require password rotation for stale credentials"

    def test_long_lived_session_warns(
        self, hardened, db_session, test_user, clock, test_settings
    ) -> None:
        db_session.add(
            UserSessionRecord(
                session_id="long-lived",
                user_id=test_user["user_id"],
                role="user",
                created_at=clock() - timedelta(hours=test_settings.INACTIVE_SESSION_HOURS + 1),
                expires_at=clock() + timedelta(hours=1),
            )
        )
        db_session.commit()

        assessment = hardened.run_security_assessment(db_session)
        check = self._check(assessment, "inactive_sessions")
        assert check["status"] == "warning"
        assert check["count"] == 1
        assert assessment.overall_status == "warning"

    def test_invalidated_old_session_ignored(
        self, hardened, db_session, test_user, clock, test_settings
    ) -> None:
        db_session.add(
            UserSessionRecord(
                session_id="revoked",
                user_id=test_user["user_id"],
                role="user",
                created_at=clock() - timedelta(hours=test_settings.INACTIVE_SESSION_HOURS + 1),
                expires_at=clock() + timedelta(hours=1),
                invalidated_at=clock(),
            )
        )
        db_session.commit()

        assert self._check(hardened.run_security_assessment(db_session), "inactive_sessions")["count"] == 0

    def test_weak_configuration_reported(self, compliance, db_session, monkeypatch) -> None:
        monkeypatch.setattr(compliance.settings, "CORS_ORIGINS", ["*"])
        assessment = compliance.run_security_assessment(db_session)

        severities = {v["id"]: v["severity"] for v in assessment.vulnerabilities}
        assert severities == {
            "weak_password_hashing": "high",
            "permissive_cors": "medium",
            "unverified_logins": "low",
        }
        assert assessment.overall_status == "fail"
        assert "Restrict CORS_ORIGINS to known front-ends" in assessment.recommendations

    def test_assessments_are_stored(self, compliance, db_session, clock) -> None:
        assert compliance.get_latest_security_assessment(db_session) is None

        compliance.run_security_assessment(db_session)
        clock.advance(days=1)
        latest = compliance.run_security_assessment(db_session)

        assert db_session.query(SecurityAssessment).count() == 2
        assert compliance.get_latest_security_assessment(db_session).id == latest.id
