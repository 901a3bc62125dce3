"""
Consent ledger, processing restriction and regional requirements.

Consent is stored as the current state per (user, consent type) plus an
append-only log of every grant and withdrawal. Withdrawing the baseline
data-processing consent restricts processing of the user's data. The
restriction is stored on the profile in the same transaction as the
withdrawal; a cache copy with a bounded TTL only short-circuits the lookup
done by the authentication dependencies.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from loguru import logger
from sqlalchemy.orm import Session

from helpers.time_utils import Clock, ensure_utc, format_iso8601, utc_now
from models.config import Settings
from models.exceptions import UserNotFoundException, ValidationException
from models.policies import REGIONAL_REQUIREMENTS, RegionalRequirements
from repositories.cache import CacheStore
from repositories.consent_repository import ConsentLogRepository, ConsentRepository
from repositories.db_models import ConsentRecord, ConsentType, RiskLevel
from repositories.user_repository import UserRepository
from services.audit_service import AuditEventType, AuditService

RESTRICTION_KEY_PREFIX = "processing_restricted:"

log = logger.bind(component="consent")


def restriction_key(user_id: str) -> str:
    return f"{RESTRICTION_KEY_PREFIX}{user_id}"


@dataclass
class ConsentInput:
    user_id: str
    consent_type: str
    consent_given: bool
    consent_version: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def _check_type(consent_type: str) -> str:
    try:
        return ConsentType(consent_type).value
    except ValueError:
        raise ValidationException(f"Unknown consent type: {consent_type}")


class ConsentService:
    """Service for consent records and processing restriction."""

    def __init__(
        self,
        cache: CacheStore,
        settings: Settings,
        audit: Optional[AuditService] = None,
        clock: Clock = utc_now,
    ):
        self.cache = cache
        self.settings = settings
        self.audit = audit
        self.clock = clock

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def stage_consent(self, db: Session, consent: ConsentInput) -> ConsentRecord:
        """
        Upsert the consent row and append a log entry without committing.

        Used directly by registration, which writes the profile, credential
        and consent in one transaction.
        """
        consent_type = _check_type(consent.consent_type)
        version = consent.consent_version or self.settings.CONSENT_POLICY_VERSION
        now = self.clock()

        repo = ConsentRepository(db)
        record = repo.get(consent.user_id, consent_type)
        if record is None:
            record = ConsentRecord(user_id=consent.user_id, consent_type=consent_type)
            repo.add(record)

        record.consent_given = consent.consent_given
        record.consent_date = now
        record.consent_version = version
        record.ip_address = consent.ip_address
        record.user_agent = consent.user_agent
        record.withdrawal_date = None

        ConsentLogRepository(db).add_entry(
            user_id=consent.user_id,
            consent_type=consent_type,
            action="granted" if consent.consent_given else "declined",
            policy_version=version,
            ip_address=consent.ip_address,
            user_agent=consent.user_agent,
        )
        return record

    def record_consent(self, db: Session, consent: ConsentInput) -> ConsentRecord:
        """
        Record a consent decision.

        A fresh data-processing grant lifts the cached processing restriction.
        """
        if UserRepository(db).get_by_id(consent.user_id) is None:
            raise UserNotFoundException("User not found")

        record = self.stage_consent(db, consent)
        lifts_restriction = (
            consent.consent_given
            and record.consent_type == ConsentType.DATA_PROCESSING.value
        )
        if lifts_restriction:
            self.stage_processing_restriction(db, consent.user_id, restricted=False)
        db.commit()

        if lifts_restriction:
            self.cache.delete(restriction_key(consent.user_id))

        if self.audit is not None:
            self.audit.log_audit_event(
                db,
                AuditEventType.CONSENT_GRANTED if consent.consent_given else AuditEventType.CONSENT_WITHDRAWN,
                user_id=consent.user_id,
                event_data={"consent_type": record.consent_type, "version": record.consent_version},
                source="consent",
                ip_address=consent.ip_address,
                user_agent=consent.user_agent,
            )
        return record

    def stage_withdrawal(
        self,
        db: Session,
        user_id: str,
        consent_type: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ConsentRecord:
        consent_type = _check_type(consent_type)
        now = self.clock()

        repo = ConsentRepository(db)
        record = repo.get(user_id, consent_type)
        if record is None:
            record = ConsentRecord(
                user_id=user_id,
                consent_type=consent_type,
                consent_version=self.settings.CONSENT_POLICY_VERSION,
            )
            repo.add(record)

        record.consent_given = False
        record.consent_date = record.consent_date or now
        record.withdrawal_date = now

        if consent_type == ConsentType.DATA_PROCESSING.value:
            self.stage_processing_restriction(db, user_id, restricted=True)

        ConsentLogRepository(db).add_entry(
            user_id=user_id,
            consent_type=consent_type,
            action="withdrawn",
            policy_version=record.consent_version,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return record

    def withdraw_consent(
        self,
        db: Session,
        user_id: str,
        consent_type: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ConsentRecord:
        """
        Withdraw consent. Idempotent.

        Withdrawing data-processing consent restricts processing: the profile
        flag is committed with the withdrawal and mirrored into the cache for
        ``PROCESSING_RESTRICTION_TTL_SECONDS``.
        """
        if UserRepository(db).get_by_id(user_id) is None:
            raise UserNotFoundException("User not found")

        record = self.stage_withdrawal(db, user_id, consent_type, ip_address, user_agent)
        db.commit()

        if record.consent_type == ConsentType.DATA_PROCESSING.value:
            self.restrict_processing_cache(user_id)

        if self.audit is not None:
            self.audit.log_audit_event(
                db,
                AuditEventType.CONSENT_WITHDRAWN,
                user_id=user_id,
                risk_level=RiskLevel.MEDIUM.value,
                event_data={"consent_type": record.consent_type},
                source="consent",
                ip_address=ip_address,
                user_agent=user_agent,
            )
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate_consent(self, db: Session, user_id: str, purpose: str) -> bool:
        """
        True only if consent is given and younger than CONSENT_VALIDITY_DAYS.
        """
        record = ConsentRepository(db).get(user_id, purpose)
        if record is None or not record.consent_given:
            return False

        consent_date = ensure_utc(record.consent_date)
        if consent_date is None:
            return False
        max_age = timedelta(days=self.settings.CONSENT_VALIDITY_DAYS)
        return self.clock() - consent_date <= max_age

    def get_consent_status(self, db: Session, user_id: str) -> dict[str, dict[str, Any]]:
        """Current state for every consent type."""
        records = {r.consent_type: r for r in ConsentRepository(db).get_for_user(user_id)}
        status: dict[str, dict[str, Any]] = {}
        for consent_type in ConsentType:
            record = records.get(consent_type.value)
            status[consent_type.value] = {
                "given": bool(record and record.consent_given),
                "valid": self.validate_consent(db, user_id, consent_type.value),
                "consent_date": format_iso8601(record.consent_date) if record else None,
                "consent_version": record.consent_version if record else None,
                "withdrawal_date": format_iso8601(record.withdrawal_date) if record else None,
            }
        return status

    def get_consent_history(self, db: Session, user_id: str) -> list[dict[str, Any]]:
        return [
            {
                "consent_type": entry.consent_type,
                "action": entry.action,
                "policy_version": entry.policy_version,
                "created_at": format_iso8601(entry.created_at),
            }
            for entry in ConsentLogRepository(db).get_by_user(user_id, limit=1000)
        ]

    # ------------------------------------------------------------------
    # Processing restriction
    # ------------------------------------------------------------------

    def stage_processing_restriction(self, db: Session, user_id: str, restricted: bool) -> None:
        """Set or lift the profile's restriction flag without committing."""
        profile = UserRepository(db).get_by_id(user_id)
        if profile is None:
            return
        profile.processing_restricted = restricted
        profile.restriction_date = self.clock() if restricted else None

    def restrict_processing_cache(self, user_id: str) -> None:
        self.cache.set(
            restriction_key(user_id),
            "1",
            self.settings.PROCESSING_RESTRICTION_TTL_SECONDS,
        )
        log.info(f"Processing restricted for user {user_id}")

    def is_processing_restricted(self, db: Session, user_id: str) -> bool:
        if self.cache.exists(restriction_key(user_id)):
            return True
        profile = UserRepository(db).get_by_id(user_id)
        return bool(profile and profile.processing_restricted)

    def clear_processing_restriction(self, db: Session, user_id: str) -> None:
        profile = UserRepository(db).get_by_id(user_id)
        if profile is not None and profile.processing_restricted:
            profile.processing_restricted = False
            profile.restriction_date = None
            db.commit()
        self.cache.delete(restriction_key(user_id))

    # ------------------------------------------------------------------
    # Regional requirements
    # ------------------------------------------------------------------

    def get_regional_requirements(self, region: Optional[str]) -> RegionalRequirements:
        """Requirements for a jurisdiction tag, falling back to DEFAULT_REGION."""
        if region and region.upper() in REGIONAL_REQUIREMENTS:
            return REGIONAL_REQUIREMENTS[region.upper()]
        return REGIONAL_REQUIREMENTS.get(
            self.settings.DEFAULT_REGION, REGIONAL_REQUIREMENTS["EU"]
        )

    def validate_regional_compliance(self, db: Session, user_id: str) -> bool:
        """Whether the user satisfies their region's consent requirement."""
        profile = UserRepository(db).get_by_id(user_id)
        if profile is None:
            return False
        requirements = self.get_regional_requirements(profile.geographic_region)
        if requirements.consent_required:
            return self.validate_consent(db, user_id, ConsentType.DATA_PROCESSING.value)
        return True
