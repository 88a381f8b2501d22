from app.auth.models import Role, User
from app.core.models.academic_year import AcademicYear
from app.core.models.audit_log import AuditLogEntry
from app.core.models.class_model import SchoolClass
from app.core.models.exam_summary import ExamSummary
from app.core.models.lifecycle_lock import LifecycleLock
from app.core.models.promotion_rule import PromotionRule
from app.core.models.promotion_run import PromotionRun
from app.core.models.section_model import Section
from app.core.models.student_academic_record import StudentAcademicRecord
from app.core.models.student_promotion_decision import StudentPromotionDecision
from app.core.models.tenant import Tenant

__all__ = [
    "AcademicYear",
    "AuditLogEntry",
    "ExamSummary",
    "LifecycleLock",
    "PromotionRule",
    "PromotionRun",
    "Role",
    "SchoolClass",
    "Section",
    "StudentAcademicRecord",
    "StudentPromotionDecision",
    "Tenant",
    "User",
]
