from enum import Enum


class YearStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PROMOTING = "promoting"
    CLOSING = "closing"
    CLOSED = "closed"


class PromotionCriteria(str, Enum):
    PROMOTE_ALL = "promote_all"
    REQUIRE_PASS = "require_pass"
    MANUAL_REVIEW = "manual_review"


class DecisionType(str, Enum):
    PROMOTED = "promoted"
    RETAINED = "retained"
    TRANSFERRED = "transferred"
    GRADUATED = "graduated"
    EXCLUDED = "excluded"


class RunMode(str, Enum):
    DRY_RUN = "dry_run"
    COMMIT = "commit"


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class EnrollmentStatus(str, Enum):
    """Status of a student_academic_records row (one per student per academic year)."""

    ACTIVE = "ACTIVE"
    PROMOTED = "PROMOTED"
    RETAINED = "RETAINED"
    GRADUATED = "GRADUATED"
    LEFT = "LEFT"


class AuditEntityType(str, Enum):
    ACADEMIC_YEAR = "academic_year"
    PROMOTION_RUN = "promotion_run"
    STUDENT_PROMOTION = "student_promotion"
    PROMOTION_RULE = "promotion_rule"


class AuditAction(str, Enum):
    YEAR_CREATED = "academic_year.created"
    YEAR_TRANSITIONED = "academic_year.transitioned"
    YEAR_CLOSED = "academic_year.closed"
    RUN_COMMITTED = "promotion_run.committed"
    RUN_FAILED = "promotion_run.failed"
    RUN_ROLLED_BACK = "promotion_run.rolled_back"
    DECISION_RECORDED = "student_promotion.recorded"
    DECISION_CORRECTED = "student_promotion.corrected"
    RULE_UPSERTED = "promotion_rule.upserted"
    RULE_DEACTIVATED = "promotion_rule.deactivated"
