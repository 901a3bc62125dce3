"""
Static policy tables: role permissions, regional requirements, default
retention policies and field-level anonymization rules.
"""

from dataclasses import dataclass, field
from typing import Optional

from repositories.db_models import DeletionMethod, UserRole

# ============================================================================
# Roles
# ============================================================================

_USER_PERMISSIONS = ["assessment:take", "profile:read", "profile:update"]

ROLE_PERMISSIONS: dict[str, list[str]] = {
    UserRole.USER.value: list(_USER_PERMISSIONS),
    UserRole.ADMIN.value: _USER_PERMISSIONS
    + ["assessment:manage", "users:manage", "compliance:manage"],
    UserRole.ANALYST.value: _USER_PERMISSIONS + ["assessment:view", "analytics:read"],
}


def permissions_for_role(role: str) -> list[str]:
    """Permissions granted to ``role``; unknown roles get the user set."""
    return list(ROLE_PERMISSIONS.get(role, ROLE_PERMISSIONS[UserRole.USER.value]))


# ============================================================================
# Regional requirements
# ============================================================================


@dataclass(frozen=True)
class RegionalRequirements:
    region: str
    regime: str
    consent_required: bool
    data_retention_max_days: int
    right_to_erasure: bool = False
    right_to_portability: bool = False
    right_to_delete: bool = False
    right_to_know: bool = False
    opt_out_required: bool = False
    dpo_required: bool = False


REGIONAL_REQUIREMENTS: dict[str, RegionalRequirements] = {
    "EU": RegionalRequirements(
        region="EU",
        regime="gdpr",
        consent_required=True,
        data_retention_max_days=1095,
        right_to_erasure=True,
        right_to_portability=True,
        dpo_required=True,
    ),
    "US-CA": RegionalRequirements(
        region="US-CA",
        regime="ccpa",
        consent_required=True,
        data_retention_max_days=365,
        right_to_delete=True,
        right_to_know=True,
        opt_out_required=True,
    ),
    "UK": RegionalRequirements(
        region="UK",
        regime="uk_gdpr",
        consent_required=True,
        data_retention_max_days=1095,
        right_to_erasure=True,
        right_to_portability=True,
        dpo_required=False,
    ),
}


# ============================================================================
# Retention
# ============================================================================


@dataclass(frozen=True)
class RetentionPolicyDefault:
    data_type: str
    retention_period_days: int
    deletion_method: DeletionMethod
    legal_basis: str
    exceptions: list[str] = field(default_factory=list)


DEFAULT_RETENTION_POLICIES: list[RetentionPolicyDefault] = [
    RetentionPolicyDefault(
        data_type="assessment_sessions",
        retention_period_days=1095,
        deletion_method=DeletionMethod.ANONYMIZE,
        legal_basis="Legitimate interest for service improvement",
        exceptions=["legal_hold", "active_dispute"],
    ),
    RetentionPolicyDefault(
        data_type="user_analytics",
        retention_period_days=730,
        deletion_method=DeletionMethod.ANONYMIZE,
        legal_basis="Legitimate interest for analytics",
        exceptions=["legal_hold"],
    ),
    RetentionPolicyDefault(
        data_type="audit_logs",
        retention_period_days=2555,
        deletion_method=DeletionMethod.HARD_DELETE,
        legal_basis="Legal obligation for security monitoring",
        exceptions=["regulatory_requirement"],
    ),
    RetentionPolicyDefault(
        data_type="user_sessions",
        retention_period_days=90,
        deletion_method=DeletionMethod.HARD_DELETE,
        legal_basis="Technical necessity",
    ),
]


# ============================================================================
# Anonymization
# ============================================================================


@dataclass(frozen=True)
class AnonymizationRule:
    """
    How one field is anonymized.

    ``method`` is one of hash, mask, remove, generalize, keep. ``pattern``
    is only used by generalize; ``replacement`` by mask and generalize.
    """

    field: str
    method: str
    pattern: Optional[str] = None
    replacement: Optional[str] = None


_KEEP_FIELDS = [
    "id",
    "event_type",
    "event_name",
    "assessment_type",
    "status",
    "risk_level",
    "source",
    "timestamp",
    "created_at",
    "updated_at",
    "persona",
    "scores",
    "geographic_region",
    "question_id",
    "response_type",
    "properties",
]

DEFAULT_ANONYMIZATION_RULES: list[AnonymizationRule] = [
    AnonymizationRule("email", "hash"),
    AnonymizationRule("ip_address", "mask", replacement="***.***.***"),
    AnonymizationRule("user_agent", "generalize", pattern=r"\d+\.\d+\.\d+", replacement="X.X.X"),
    AnonymizationRule("user_id", "hash"),
    AnonymizationRule("session_id", "hash"),
    AnonymizationRule("identifier", "hash"),
    AnonymizationRule("first_name", "remove"),
    AnonymizationRule("last_name", "remove"),
    AnonymizationRule("organization", "remove"),
    AnonymizationRule("professional_info", "remove"),
    AnonymizationRule("response_value", "remove"),
] + [AnonymizationRule(name, "keep") for name in _KEEP_FIELDS]


# ============================================================================
# Audit
# ============================================================================

# Stored user agents are cut to this length
MAX_USER_AGENT_LENGTH = 500
