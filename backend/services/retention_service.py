"""
Data retention enforcement.

Each retention policy names a data type, a retention period and a deletion
method. Running a policy creates a job that moves
``pending -> running -> completed | failed`` and is immutable afterwards.
Records are processed in bounded batches and each record commits on its
own, so no transaction spans a table scan and one bad record never aborts
the rest of the run.

Scheduled and manual runs share ``execute_retention_policy``.
"""

import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Optional

from loguru import logger
from sqlalchemy.orm import Session

from core.scheduler import PeriodicTaskScheduler
from helpers.time_utils import Clock, format_iso8601, utc_now
from models.config import Settings
from models.exceptions import (
    InvalidJobTransitionException,
    RetentionPolicyInUseException,
    RetentionPolicyNotFoundException,
    ValidationException,
)
from models.policies import DEFAULT_RETENTION_POLICIES
from repositories.db_models import (
    AssessmentSession,
    AuditEvent,
    DeletionMethod,
    RetentionAuditReport,
    RetentionJobRecord,
    RetentionJobStatus,
    RetentionPolicyRecord,
    UserAnalytics,
    UserSessionRecord,
)
from repositories.privacy_repository import LegalObligationRepository
from repositories.retention_repository import (
    RetentionJobRepository,
    RetentionPolicyRepository,
    RetentionReportRepository,
)
from services.audit_service import AuditEventType, AuditService
from services.retention_targets import ANONYMIZE, HARD_DELETE, SOFT_DELETE, RetentionTarget
from services.session_service import SessionService

log = logger.bind(component="retention")

JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    RetentionJobStatus.PENDING.value: frozenset({RetentionJobStatus.RUNNING.value}),
    RetentionJobStatus.RUNNING.value: frozenset(
        {RetentionJobStatus.COMPLETED.value, RetentionJobStatus.FAILED.value}
    ),
    RetentionJobStatus.COMPLETED.value: frozenset(),
    RetentionJobStatus.FAILED.value: frozenset(),
}

UPDATABLE_POLICY_FIELDS = frozenset(
    {
        "retention_period_days",
        "anonymization_delay_days",
        "deletion_method",
        "legal_basis",
        "exceptions",
    }
)

# Tables counted in the retention audit report
_VOLUME_MODELS = {
    "assessment_sessions": AssessmentSession,
    "user_analytics": UserAnalytics,
    "audit_logs": AuditEvent,
    "user_sessions": UserSessionRecord,
}

SessionFactory = Callable[[], Session]


def transition_job(job: RetentionJobRecord, target: str) -> None:
    """
    Move a job to ``target``.

    Raises:
        InvalidJobTransitionException: The move is not allowed from the current status
    """
    if target not in JOB_TRANSITIONS.get(job.status, frozenset()):
        raise InvalidJobTransitionException(job.id, job.status, target)
    job.status = target


def policy_to_dict(policy: RetentionPolicyRecord) -> dict[str, Any]:
    return {
        "id": policy.id,
        "data_type": policy.data_type,
        "retention_period_days": policy.retention_period_days,
        "anonymization_delay_days": policy.anonymization_delay_days,
        "deletion_method": policy.deletion_method,
        "legal_basis": policy.legal_basis,
        "exceptions": list(policy.exceptions or []),
    }


def job_to_dict(job: RetentionJobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "policy_id": job.policy_id,
        "data_type": job.data_type,
        "trigger": job.trigger,
        "status": job.status,
        "start_time": format_iso8601(job.start_time),
        "end_time": format_iso8601(job.end_time),
        "records_processed": job.records_processed,
        "records_deleted": job.records_deleted,
        "records_anonymized": job.records_anonymized,
        "records_skipped": job.records_skipped,
        "errors": list(job.errors or []),
    }


class RetentionService:
    """
    Service for enforcing data retention policies.

    Runs from the background scheduler or on demand from the admin API.
    """

    def __init__(
        self,
        settings: Settings,
        targets: dict[str, RetentionTarget],
        sessions: SessionService,
        audit: Optional[AuditService] = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.targets = targets
        self.sessions = sessions
        self.audit = audit
        self.clock = clock
        self.batch_size = settings.RETENTION_BATCH_SIZE
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """In-flight runs finish their current batch, then stop."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

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

        scheduler.add_cron_task(
            "retention.policies",
            with_session(self.execute_retention_policies),
            self.settings.RETENTION_SCHEDULE,
            "Execute all retention policies",
        )
        scheduler.add_interval_task(
            "retention.session_cleanup",
            with_session(self.cleanup_expired_sessions),
            self.settings.SESSION_CLEANUP_INTERVAL_SECONDS,
            "Purge expired sessions",
        )
        scheduler.add_cron_task(
            "retention.audit_report",
            with_session(self.generate_retention_audit_report),
            self.settings.RETENTION_REPORT_SCHEDULE,
            "Generate retention audit report",
        )

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def seed_default_policies(self, db: Session) -> int:
        """Insert the default policies that do not exist yet. Returns how many were added."""
        repo = RetentionPolicyRepository(db)
        created = 0
        for default in DEFAULT_RETENTION_POLICIES:
            if repo.get_by_data_type(default.data_type) is not None:
                continue
            period = default.retention_period_days
            if default.data_type == "assessment_sessions":
                period = self.settings.DATA_RETENTION_DAYS
            repo.add(
                RetentionPolicyRecord(
                    data_type=default.data_type,
                    retention_period_days=period,
                    anonymization_delay_days=self.settings.ANONYMIZATION_DELAY_DAYS,
                    deletion_method=default.deletion_method.value,
                    legal_basis=default.legal_basis,
                    exceptions=list(default.exceptions),
                )
            )
            created += 1
        repo.commit()
        if created:
            log.info(f"Seeded {created} retention policies")
        return created

    def list_policies(self, db: Session) -> list[RetentionPolicyRecord]:
        return RetentionPolicyRepository(db).list_all()

    def get_policy(self, db: Session, data_type: str) -> RetentionPolicyRecord:
        policy = RetentionPolicyRepository(db).get_by_data_type(data_type)
        if policy is None:
            raise RetentionPolicyNotFoundException(data_type)
        return policy

    def update_policy(
        self, db: Session, data_type: str, changes: dict[str, Any]
    ) -> RetentionPolicyRecord:
        """
        Update a policy.

        Raises:
            RetentionPolicyNotFoundException: No policy for the data type
            ValidationException: Unknown field or invalid value
        """
        policy = self.get_policy(db, data_type)

        unknown = set(changes) - UPDATABLE_POLICY_FIELDS
        if unknown:
            raise ValidationException(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "retention_period_days" in changes and int(changes["retention_period_days"]) <= 0:
            raise ValidationException("retention_period_days must be positive")
        if "anonymization_delay_days" in changes and int(changes["anonymization_delay_days"]) < 0:
            raise ValidationException("anonymization_delay_days cannot be negative")
        if "deletion_method" in changes:
            try:
                DeletionMethod(changes["deletion_method"])
            except ValueError:
                raise ValidationException(f"Unknown deletion method: {changes['deletion_method']}")

        for name, value in changes.items():
            setattr(policy, name, list(value) if name == "exceptions" else value)
        policy.updated_at = self.clock()
        return RetentionPolicyRepository(db).save(policy)

    def delete_policy(self, db: Session, data_type: str) -> None:
        """
        Delete a policy that no job references.

        Raises:
            RetentionPolicyInUseException: Job history references the policy
        """
        policy = self.get_policy(db, data_type)
        if RetentionJobRepository(db).count_for_policy(policy.id) > 0:
            raise RetentionPolicyInUseException(data_type)
        repo = RetentionPolicyRepository(db)
        repo.remove(policy)
        repo.commit()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_retention_policies(self, db: Session) -> list[RetentionJobRecord]:
        """
        Run every policy once. A failed policy never stops the next one.
        """
        jobs: list[RetentionJobRecord] = []
        for policy in self.list_policies(db):
            if self.stop_requested:
                log.info("Retention run stopped before remaining policies")
                break
            try:
                jobs.append(self.execute_retention_policy(db, policy))
            except Exception as e:
                db.rollback()
                log.exception(f"Retention policy {policy.data_type} crashed: {e!r}")
        return jobs

    def execute_manual_retention(self, db: Session, data_type: str) -> RetentionJobRecord:
        return self.execute_retention_policy(db, self.get_policy(db, data_type), trigger="manual")

    def execute_retention_policy(
        self, db: Session, policy: RetentionPolicyRecord, trigger: str = "scheduled"
    ) -> RetentionJobRecord:
        """
        Run one policy and return its terminal job.

        The cutoff is ``now - retention_period_days``.
        """
        jobs = RetentionJobRepository(db)
        job = RetentionJobRecord(
            policy_id=policy.id,
            data_type=policy.data_type,
            trigger=trigger,
            status=RetentionJobStatus.PENDING.value,
            start_time=self.clock(),
            errors=[],
        )
        jobs.add(job)
        transition_job(job, RetentionJobStatus.RUNNING.value)
        jobs.commit()
        job_id = job.id
        log.info(f"Retention job {job_id} started for {policy.data_type} ({trigger})")

        try:
            self._run_policy(db, job, policy)
            transition_job(job, RetentionJobStatus.COMPLETED.value)
        except Exception as e:
            db.rollback()
            job = jobs.get_by_id(job_id)  # type: ignore[assignment]
            job.errors = list(job.errors or []) + [f"Job failed: {e}"]
            transition_job(job, RetentionJobStatus.FAILED.value)
            log.error(f"Retention job {job_id} for {policy.data_type} failed: {e}")

        job.end_time = self.clock()
        jobs.commit()

        log.info(
            f"Retention job {job_id} {job.status}: processed={job.records_processed} "
            f"deleted={job.records_deleted} anonymized={job.records_anonymized} "
            f"skipped={job.records_skipped} errors={len(job.errors or [])}"
        )
        if self.audit is not None:
            self.audit.log_system_event(
                db,
                AuditEventType.RETENTION_RUN,
                details=job_to_dict(job),
            )
        return job

    def _run_policy(
        self, db: Session, job: RetentionJobRecord, policy: RetentionPolicyRecord
    ) -> None:
        target = self.targets.get(policy.data_type)
        if target is None:
            raise RetentionPolicyNotFoundException(policy.data_type)
        method = policy.deletion_method
        target.check_method(method)

        now = self.clock()
        cutoff = now - timedelta(days=policy.retention_period_days)
        exempt_types = list(policy.exceptions or [])
        obligations = LegalObligationRepository(db)
        exempt_cache: dict[str, bool] = {}

        processed = deleted = anonymized = skipped = 0
        errors: list[str] = []
        after_id: Optional[str] = None

        while True:
            batch = target.select(db, method, cutoff, after_id, self.batch_size)
            if not batch:
                break
            batch_ids = [target.record_id(record) for record in batch]
            after_id = batch_ids[-1]

            for record, record_id in zip(batch, batch_ids):
                processed += 1
                try:
                    owner = target.owner_id(record)
                    if owner and exempt_types:
                        if owner not in exempt_cache:
                            exempt_cache[owner] = obligations.has_active(owner, now, exempt_types)
                        if exempt_cache[owner]:
                            skipped += 1
                            continue

                    target.apply(db, record, method, now)
                    db.commit()
                except Exception as e:
                    db.rollback()
                    errors.append(f"{record_id}: {e}")
                    log.warning(f"Retention failed for {policy.data_type} record {record_id}: {e}")
                    continue

                target.after_commit(record_id, method)
                if method == ANONYMIZE:
                    anonymized += 1
                elif method in (HARD_DELETE, SOFT_DELETE):
                    deleted += 1

            if self.stop_requested or len(batch) < self.batch_size:
                break

        job.records_processed = processed
        job.records_deleted = deleted
        job.records_anonymized = anonymized
        job.records_skipped = skipped
        job.errors = list(job.errors or []) + errors

    def cleanup_expired_sessions(self, db: Session) -> int:
        count = self.sessions.cleanup_expired_sessions(db)
        if count:
            log.info(f"Cleaned up {count} expired sessions")
        return count

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _policy_summaries(self, db: Session) -> list[dict[str, Any]]:
        jobs = RetentionJobRepository(db)
        summaries = []
        for policy in self.list_policies(db):
            last = jobs.get_last_for_data_type(policy.data_type)
            summary = policy_to_dict(policy)
            summary["last_run"] = job_to_dict(last) if last is not None else None
            summaries.append(summary)
        return summaries

    def get_retention_status(self, db: Session) -> dict[str, Any]:
        return {
            "policies": self._policy_summaries(db),
            "job_counts": RetentionJobRepository(db).count_by_status(),
            "stop_requested": self.stop_requested,
        }

    def generate_retention_audit_report(self, db: Session) -> RetentionAuditReport:
        """
        Snapshot of policies, recent jobs and data volumes.

        ``compliance_status`` is ``compliant`` only when every policy has
        run and its last job completed.
        """
        policies = self._policy_summaries(db)
        never_run = [p["data_type"] for p in policies if p["last_run"] is None]
        failing = [
            p["data_type"]
            for p in policies
            if p["last_run"] is not None
            and p["last_run"]["status"] != RetentionJobStatus.COMPLETED.value
        ]

        report_data = {
            "generated_at": format_iso8601(self.clock()),
            "policies": policies,
            "recent_jobs": [job_to_dict(j) for j in RetentionJobRepository(db).get_recent(20)],
            "data_volumes": {
                name: db.query(model).count() for name, model in _VOLUME_MODELS.items()
            },
            "never_run": never_run,
            "failing": failing,
            "compliance_status": "compliant"
            if not never_run and not failing
            else "attention_required",
        }
        report = RetentionReportRepository(db).create(RetentionAuditReport(report_data=report_data))
        log.info(f"Retention audit report {report.id}: {report_data['compliance_status']}")
        return report

    def get_latest_report(self, db: Session) -> Optional[RetentionAuditReport]:
        return RetentionReportRepository(db).get_latest()
