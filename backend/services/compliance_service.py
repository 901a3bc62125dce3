"""
Compliance monitoring: threshold monitors, compliance reports, security
assessments and system health.

Monitors run as independent scheduler tasks. Each one scans a rolling
window of the audit trail and raises at most one unresolved alert per
subject, so a persisting condition does not flood the alert table.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.orm import Session

from core.scheduler import PeriodicTaskScheduler
from helpers.time_utils import Clock, days_between, ensure_utc, format_iso8601, utc_now
from models.config import Settings
from models.exceptions import ComplianceReportNotFoundException
from repositories.assessment_repository import AssessmentRepository
from repositories.audit_repository import (
    AuditEventRepository,
    ComplianceReportRepository,
    SecurityAlertRepository,
    SecurityAssessmentRepository,
)
from repositories.cache import CacheStore
from repositories.consent_repository import ConsentRepository
from repositories.db_models import (
    AlertSeverity,
    ComplianceReport,
    ConsentType,
    SecurityAssessment,
)
from repositories.privacy_repository import PrivacyRequestRepository
from repositories.retention_repository import RetentionPolicyRepository
from repositories.session_repository import SessionRecordRepository
from repositories.user_repository import CredentialRepository, UserRepository
from services.audit_service import AuditEventType, AuditService

log = logger.bind(component="compliance")

CONSENT_RATE_TARGET = 0.95
MAX_RESPONSE_DAYS = 30
REPORT_PERIOD_DAYS = 7

# Event types counted as data-processing activities in reports
PROCESSING_EVENT_TYPES = [
    AuditEventType.DATA_ACCESS,
    AuditEventType.USER_INTERACTION,
    AuditEventType.PRIVACY_REQUEST,
    AuditEventType.RETENTION_RUN,
]

VIOLATION_REMEDIATION = {
    "missing_consent": ["Obtain explicit consent", "Review consent collection process"],
    "data_retention_violation": ["Execute data retention policy", "Anonymize expired records"],
}

MIN_BCRYPT_ROUNDS = 10

# Keyed by check name or vulnerability id
SECURITY_REMEDIATION = {
    "password_age": "Require password rotation for stale credentials",
    "inactive_sessions": "Shorten session lifetime or revoke idle sessions",
    "weak_password_hashing": "Raise BCRYPT_ROUNDS to at least 10",
    "permissive_cors": "Restrict CORS_ORIGINS to known front-ends",
    "unverified_logins": "Enable REQUIRE_EMAIL_VERIFICATION",
}

BASELINE_SECURITY_RECOMMENDATIONS = [
    "Regularly update dependencies",
    "Implement automated security scanning",
    "Review access controls quarterly",
    "Conduct penetration testing annually",
]

SessionFactory = Callable[[], Session]


def report_to_dict(report: ComplianceReport) -> dict[str, Any]:
    return {
        "id": report.id,
        "report_type": report.report_type,
        "period_start": format_iso8601(report.period_start),
        "period_end": format_iso8601(report.period_end),
        "metrics": report.metrics,
        "violations": report.violations,
        "recommendations": report.recommendations,
        "generated_at": format_iso8601(report.generated_at),
    }


class ComplianceService:
    """Service for alert monitors, compliance reports, security assessments and health."""

    def __init__(
        self,
        settings: Settings,
        audit: AuditService,
        cache: CacheStore,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.audit = audit
        self.cache = cache
        self.clock = clock

    def register_tasks(
        self, scheduler: PeriodicTaskScheduler, session_factory: SessionFactory
    ) -> None:
        def with_session(func: Callable[[Session], Any]) -> Callable[[], Any]:
            def task() -> Any:
                db = session_factory()
                try:
                    return func(db)
                finally:
                    db.close()

            return task

        scheduler.add_interval_task(
            "audit.failed_logins",
            with_session(self.monitor_failed_logins),
            self.settings.MONITOR_FAILED_LOGINS_INTERVAL_SECONDS,
            "Alert on excessive failed logins",
        )
        scheduler.add_interval_task(
            "audit.data_access",
            with_session(self.monitor_data_access),
            self.settings.MONITOR_DATA_ACCESS_INTERVAL_SECONDS,
            "Alert on unusual data access volume",
        )
        scheduler.add_interval_task(
            "audit.privacy_requests",
            with_session(self.monitor_privacy_requests),
            self.settings.MONITOR_PRIVACY_REQUESTS_INTERVAL_SECONDS,
            "Alert on overdue privacy requests",
        )
        scheduler.add_cron_task(
            "audit.compliance_report",
            with_session(self.generate_weekly_report),
            self.settings.COMPLIANCE_REPORT_SCHEDULE,
            "Generate weekly compliance report",
        )
        scheduler.add_cron_task(
            "audit.security_assessment",
            with_session(self.run_security_assessment),
            self.settings.SECURITY_ASSESSMENT_SCHEDULE,
            "Run security assessment",
        )

    # ------------------------------------------------------------------
    # Monitors
    # ------------------------------------------------------------------

    def _open_subjects(self, db: Session, alert_type: str, since: datetime) -> set[str]:
        """Subjects that already have an unresolved alert of this type in the window."""
        subjects = set()
        for alert in SecurityAlertRepository(db).get_unresolved_of_type(alert_type, since):
            subject = (alert.details or {}).get("subject")
            if subject:
                subjects.add(str(subject))
        return subjects

    def monitor_failed_logins(self, db: Session) -> int:
        """
        Alert per identifier with too many failed logins in the last hour.

        Returns:
            Number of alerts raised
        """
        since = self.clock() - timedelta(hours=1)
        offenders = AuditEventRepository(db).get_identifiers_over_threshold(
            AuditEventType.LOGIN_FAILED, since, self.settings.ALERT_FAILED_LOGINS_PER_HOUR
        )
        open_subjects = self._open_subjects(db, "excessive_failed_logins", since)

        raised = 0
        for identifier, count in offenders:
            if identifier in open_subjects:
                continue
            self.audit.create_security_alert(
                db,
                alert_type="excessive_failed_logins",
                severity=AlertSeverity.WARNING.value,
                message=f"{count} failed logins in the last hour",
                details={"subject": identifier, "count": count},
            )
            raised += 1
        return raised

    def monitor_data_access(self, db: Session) -> int:
        since = self.clock() - timedelta(hours=1)
        offenders = AuditEventRepository(db).get_users_over_threshold(
            AuditEventType.DATA_ACCESS, since, self.settings.ALERT_DATA_ACCESS_PER_HOUR
        )
        open_subjects = self._open_subjects(db, "unusual_data_access", since)

        raised = 0
        for user_id, count in offenders:
            if user_id in open_subjects:
                continue
            self.audit.create_security_alert(
                db,
                alert_type="unusual_data_access",
                severity=AlertSeverity.WARNING.value,
                message=f"{count} data access events in the last hour",
                details={"subject": user_id, "count": count},
            )
            raised += 1
        return raised

    def monitor_privacy_requests(self, db: Session) -> int:
        now = self.clock()
        cutoff = now - timedelta(days=self.settings.PRIVACY_REQUEST_MAX_PENDING_DAYS)
        overdue = PrivacyRequestRepository(db).count_pending_before(cutoff)
        if overdue < self.settings.ALERT_OVERDUE_PRIVACY_REQUESTS:
            return 0
        if self._open_subjects(db, "overdue_privacy_requests", now - timedelta(days=1)):
            return 0

        self.audit.create_security_alert(
            db,
            alert_type="overdue_privacy_requests",
            severity=AlertSeverity.ERROR.value,
            message=f"{overdue} privacy requests pending for more than "
            f"{self.settings.PRIVACY_REQUEST_MAX_PENDING_DAYS} days",
            details={"subject": "privacy_requests", "count": overdue},
        )
        return 1

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def _metrics(self, db: Session, start: datetime, end: datetime) -> dict[str, Any]:
        users = UserRepository(db)
        new_user_ids = users.get_ids_created_between(start, end)
        consented = ConsentRepository(db).count_given(
            new_user_ids, ConsentType.DATA_PROCESSING.value
        )
        consent_rate = consented / len(new_user_ids) if new_user_ids else 1.0

        completed = PrivacyRequestRepository(db).get_completed_between(start, end)
        response_days = [
            days_between(r.request_date, r.completion_date)
            for r in completed
            if r.completion_date is not None
        ]
        average_response = sum(response_days) / len(response_days) if response_days else 0.0

        alerts = SecurityAlertRepository(db)
        return {
            "total_users": users.count(),
            "new_users": len(new_user_ids),
            "users_without_consent": len(new_user_ids) - consented,
            "active_users": SessionRecordRepository(db).count_distinct_users_between(start, end),
            "data_processing_activities": AuditEventRepository(db).count_between(
                start, end, PROCESSING_EVENT_TYPES
            ),
            "consent_rate": round(consent_rate, 4),
            "privacy_requests_processed": len(completed),
            "average_response_time_days": round(average_response, 2),
            "security_incidents": alerts.count_between(
                start, end, severities=[AlertSeverity.ERROR.value, AlertSeverity.CRITICAL.value]
            ),
            "data_breaches": alerts.count_between(start, end, alert_type="data_breach"),
        }

    def _violations(self, db: Session, metrics: dict[str, Any]) -> list[dict[str, Any]]:
        violations = []
        if metrics["users_without_consent"] > 0:
            violations.append(
                {
                    "type": "missing_consent",
                    "severity": "high",
                    "description": f"{metrics['users_without_consent']} users without "
                    f"data processing consent",
                    "remediation": VIOLATION_REMEDIATION["missing_consent"],
                }
            )

        policy = RetentionPolicyRepository(db).get_by_data_type("assessment_sessions")
        if policy is not None:
            cutoff = self.clock() - timedelta(days=policy.retention_period_days)
            overdue = AssessmentRepository(db).count_completed_identified_before(cutoff)
            if overdue > 0:
                violations.append(
                    {
                        "type": "data_retention_violation",
                        "severity": "medium",
                        "description": f"{overdue} assessment sessions exceed the "
                        f"{policy.retention_period_days}-day retention period",
                        "remediation": VIOLATION_REMEDIATION["data_retention_violation"],
                    }
                )
        return violations

    @staticmethod
    def _recommendations(
        metrics: dict[str, Any], violations: list[dict[str, Any]]
    ) -> list[str]:
        candidates = []
        if metrics["consent_rate"] < CONSENT_RATE_TARGET:
            candidates.append("Improve consent collection process")
        if metrics["average_response_time_days"] > MAX_RESPONSE_DAYS:
            candidates.append("Reduce privacy request response time")
        if metrics["security_incidents"] > 0:
            candidates.append("Strengthen security controls")
        for violation in violations:
            candidates.extend(violation["remediation"])
        # dict preserves first-seen order
        return list(dict.fromkeys(candidates))

    def generate_compliance_report(
        self, db: Session, report_type: str, start: datetime, end: datetime
    ) -> ComplianceReport:
        """Compute, persist and return a compliance snapshot for [start, end]."""
        metrics = self._metrics(db, start, end)
        violations = self._violations(db, metrics)
        report = ComplianceReportRepository(db).create(
            ComplianceReport(
                report_type=report_type,
                period_start=start,
                period_end=end,
                metrics=metrics,
                violations=violations,
                recommendations=self._recommendations(metrics, violations),
                generated_at=self.clock(),
            )
        )
        log.info(
            f"Compliance report {report.id} ({report_type}): "
            f"{len(violations)} violations, consent rate {metrics['consent_rate']}"
        )
        return report

    def generate_weekly_report(self, db: Session) -> ComplianceReport:
        end = self.clock()
        return self.generate_compliance_report(
            db, "weekly", end - timedelta(days=REPORT_PERIOD_DAYS), end
        )

    def get_latest_report(
        self, db: Session, report_type: Optional[str] = None
    ) -> ComplianceReport:
        report = ComplianceReportRepository(db).get_latest(report_type)
        if report is None:
            raise ComplianceReportNotFoundException("No compliance report has been generated")
        return report

    # ------------------------------------------------------------------
    # Security assessment
    # ------------------------------------------------------------------

    def _security_checks(self, db: Session, now: datetime) -> list[dict[str, Any]]:
        max_age = self.settings.PASSWORD_MAX_AGE_DAYS
        stale_passwords = CredentialRepository(db).count_password_changed_before(
            now - timedelta(days=max_age)
        )
        inactive_hours = self.settings.INACTIVE_SESSION_HOURS
        long_lived = SessionRecordRepository(db).count_live(
            now, created_before=now - timedelta(hours=inactive_hours)
        )
        return [
            {
                "check": "password_age",
                "status": "pass" if stale_passwords == 0 else "fail",
                "count": stale_passwords,
                "details": f"{stale_passwords} users with passwords older than {max_age} days",
            },
            {
                "check": "inactive_sessions",
                "status": "pass" if long_lived == 0 else "warning",
                "count": long_lived,
                "details": f"{long_lived} sessions open for more than {inactive_hours} hours",
            },
        ]

    def _configuration_vulnerabilities(self) -> list[dict[str, Any]]:
        found = []
        if self.settings.BCRYPT_ROUNDS < MIN_BCRYPT_ROUNDS:
            found.append(
                {
                    "id": "weak_password_hashing",
                    "severity": "high",
                    "description": f"bcrypt cost factor {self.settings.BCRYPT_ROUNDS} "
                    f"is below {MIN_BCRYPT_ROUNDS}",
                }
            )
        if "*" in self.settings.CORS_ORIGINS:
            found.append(
                {
                    "id": "permissive_cors",
                    "severity": "medium",
                    "description": "CORS accepts requests from any origin",
                }
            )
        if not self.settings.REQUIRE_EMAIL_VERIFICATION:
            found.append(
                {
                    "id": "unverified_logins",
                    "severity": "low",
                    "description": "Accounts can log in before verifying their email",
                }
            )
        return found

    def run_security_assessment(self, db: Session) -> SecurityAssessment:
        """
        Check credential and session hygiene plus risky configuration, then
        persist the result.

        ``overall_status`` is ``fail`` for any failed check or high severity
        vulnerability, ``warning`` for any other finding and ``pass``
        otherwise.
        """
        now = self.clock()
        checks = self._security_checks(db, now)
        vulnerabilities = self._configuration_vulnerabilities()

        statuses = {c["status"] for c in checks}
        if "fail" in statuses or any(v["severity"] == "high" for v in vulnerabilities):
            overall = "fail"
        elif "warning" in statuses or vulnerabilities:
            overall = "warning"
        else:
            overall = "pass"

        candidates = [
            SECURITY_REMEDIATION[c["check"]] for c in checks if c["status"] != "pass"
        ]
        candidates += [SECURITY_REMEDIATION[v["id"]] for v in vulnerabilities]
        candidates += BASELINE_SECURITY_RECOMMENDATIONS

        assessment = SecurityAssessmentRepository(db).create(
            SecurityAssessment(
                overall_status=overall,
                checks=checks,
                vulnerabilities=vulnerabilities,
                recommendations=list(dict.fromkeys(candidates)),
                created_at=now,
            )
        )
        log.info(
            f"Security assessment {assessment.id}: {overall}, "
            f"{len(vulnerabilities)} vulnerabilities"
        )
        return assessment

    def get_latest_security_assessment(self, db: Session) -> Optional[SecurityAssessment]:
        return SecurityAssessmentRepository(db).get_latest()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _health_metrics(self, db: Session, now: datetime) -> dict[str, int]:
        day_ago = now - timedelta(hours=24)
        return {
            "events_24h": AuditEventRepository(db).count_between(day_ago, now),
            "alerts_24h": SecurityAlertRepository(db).count_between(day_ago, now),
            "active_sessions": SessionRecordRepository(db).count_live(now),
            "pending_privacy_requests": PrivacyRequestRepository(db).count_pending(),
        }

    def _check_database(self, db: Session) -> bool:
        try:
            db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            log.error(f"Database health check failed: {e}")
            return False

    def _check_cache(self) -> bool:
        try:
            return self.cache.ping()
        except Exception as e:
            log.error(f"Cache health check failed: {e}")
            return False

    def get_system_health(self, db: Session) -> dict[str, Any]:
        """
        Aggregate recent alerts, report violations, storage checks and 24h
        activity metrics.

        Status is ``critical`` for any critical alert, high or critical
        violation or failed storage check; ``warning`` when alert volume
        exceeds the threshold or any violation is open; ``healthy`` otherwise.
        """
        now = self.clock()
        database_ok = self._check_database(db)
        cache_ok = self._check_cache()

        alerts = []
        violations: list[dict[str, Any]] = []
        metrics: Optional[dict[str, int]] = None
        if database_ok:
            since = now - timedelta(hours=self.settings.HEALTH_ALERT_WINDOW_HOURS)
            alerts = SecurityAlertRepository(db).get_recent(limit=1000, since=since)
            latest = ComplianceReportRepository(db).get_latest()
            if latest is not None:
                violations = list(latest.violations or [])
            metrics = self._health_metrics(db, now)

        critical_alerts = [a for a in alerts if a.severity == AlertSeverity.CRITICAL.value]
        serious_violations = [v for v in violations if v.get("severity") in ("high", "critical")]

        if critical_alerts or serious_violations or not database_ok or not cache_ok:
            status = "critical"
        elif len(alerts) > self.settings.HEALTH_ALERT_WARNING_THRESHOLD or violations:
            status = "warning"
        else:
            status = "healthy"

        last_alert = ensure_utc(alerts[0].triggered_at) if alerts else None
        return {
            "status": status,
            "checked_at": format_iso8601(now),
            "checks": {"database": database_ok, "cache": cache_ok},
            "alerts": {
                "total": len(alerts),
                "critical": len(critical_alerts),
                "last_triggered_at": format_iso8601(last_alert),
            },
            "violations": violations,
            "metrics": metrics,
        }
