"""
Promotion rules: per class (optionally per section) target class and pass/fail criteria.

PromotionRuleSet is an immutable copy of the live rules and the class ladder taken when a run
starts; later rule edits never reach an in-flight run.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.audit_logs.service import append_audit
from app.core.collaborators import ExamOutcome
from app.core.enums import AuditAction, AuditEntityType, DecisionType, PromotionCriteria
from app.core.exceptions import NotFoundError, ValidationError
from app.core.models import PromotionRule, SchoolClass, Tenant

from .schemas import PromotionRuleUpsert

logger = logging.getLogger(__name__)


def natural_class_key(name: str) -> Tuple:
    """Order class names numerically where they are numbers ("2" < "10"), else case-insensitively."""
    parts = re.split(r"(\d+)", name.strip().lower())
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


@dataclass(frozen=True)
class RuleSnapshot:
    id: Optional[UUID]
    from_class: str
    from_section: Optional[str]
    to_class: Optional[str]
    criteria: PromotionCriteria
    version: int = 1


@dataclass(frozen=True)
class Resolution:
    to_class: Optional[str]
    to_section: Optional[str]
    decision_hint: DecisionType


class PromotionRuleSet:
    def __init__(self, rules: Iterable[RuleSnapshot], class_ladder: Sequence[str]) -> None:
        self._exact: Dict[Tuple[str, str], RuleSnapshot] = {}
        self._class_wide: Dict[str, RuleSnapshot] = {}
        for rule in rules:
            if rule.from_section is None:
                self._class_wide[rule.from_class] = rule
            else:
                self._exact[(rule.from_class, rule.from_section)] = rule
        self._ladder: Tuple[str, ...] = tuple(class_ladder)
        self._position = {name: i for i, name in enumerate(self._ladder)}

    @classmethod
    async def snapshot(cls, db: AsyncSession, tenant_id: UUID) -> "PromotionRuleSet":
        rules_result = await db.execute(
            select(PromotionRule).where(PromotionRule.tenant_id == tenant_id, PromotionRule.is_active.is_(True))
        )
        rules = [
            RuleSnapshot(
                id=r.id,
                from_class=r.from_class,
                from_section=r.from_section,
                to_class=r.to_class,
                criteria=PromotionCriteria(r.criteria),
                version=r.version,
            )
            for r in rules_result.scalars().all()
        ]
        classes_result = await db.execute(
            select(SchoolClass.name, SchoolClass.display_order).where(
                SchoolClass.tenant_id == tenant_id,
                SchoolClass.is_active.is_(True),
            )
        )
        classes = classes_result.all()
        ladder = [
            name
            for name, _ in sorted(
                classes,
                key=lambda c: (c[1] is None, c[1] if c[1] is not None else 0, natural_class_key(c[0])),
            )
        ]
        return cls(rules, ladder)

    @property
    def class_ladder(self) -> Tuple[str, ...]:
        return self._ladder

    def to_json(self) -> Dict[str, Any]:
        rules = list(self._class_wide.values()) + list(self._exact.values())
        return {
            "class_ladder": list(self._ladder),
            "rules": [
                {**asdict(r), "id": str(r.id) if r.id else None, "criteria": r.criteria.value} for r in rules
            ],
        }

    def find_rule(self, from_class: str, from_section: Optional[str]) -> Optional[RuleSnapshot]:
        if from_section is not None:
            rule = self._exact.get((from_class, from_section))
            if rule:
                return rule
        return self._class_wide.get(from_class)

    def next_class(self, from_class: str) -> Optional[str]:
        pos = self._position.get(from_class)
        if pos is None or pos + 1 >= len(self._ladder):
            return None
        return self._ladder[pos + 1]

    def is_terminal(self, from_class: str) -> bool:
        return bool(self._ladder) and self._ladder[-1] == from_class

    def requires_exam_outcome(self, from_class: str, from_section: Optional[str]) -> bool:
        rule = self.find_rule(from_class, from_section)
        return rule is not None and rule.criteria == PromotionCriteria.REQUIRE_PASS

    def resolve(
        self,
        from_class: str,
        from_section: Optional[str],
        exam_outcome: Optional[ExamOutcome] = None,
    ) -> Resolution:
        """exam_outcome None means no exam summary exists for the student."""
        rule = self.find_rule(from_class, from_section)
        criteria = rule.criteria if rule else PromotionCriteria.PROMOTE_ALL

        if criteria == PromotionCriteria.PROMOTE_ALL:
            return self._promote(from_class, from_section, rule)
        elif criteria == PromotionCriteria.REQUIRE_PASS:
            if exam_outcome is None:
                return Resolution(None, None, DecisionType.EXCLUDED)
            if exam_outcome.passed:
                return self._promote(from_class, from_section, rule)
            return Resolution(from_class, from_section, DecisionType.RETAINED)
        elif criteria == PromotionCriteria.MANUAL_REVIEW:
            return Resolution(None, None, DecisionType.EXCLUDED)
        raise ValueError(f"Unhandled promotion criteria: {criteria!r}")

    def _promote(self, from_class: str, from_section: Optional[str], rule: Optional[RuleSnapshot]) -> Resolution:
        if rule and rule.to_class:
            return Resolution(rule.to_class, from_section, DecisionType.PROMOTED)
        if from_class not in self._position:
            # Unknown class: no ladder to follow, leave it to a person.
            return Resolution(None, None, DecisionType.EXCLUDED)
        if self.is_terminal(from_class):
            return Resolution(None, None, DecisionType.GRADUATED)
        return Resolution(self.next_class(from_class), from_section, DecisionType.PROMOTED)


# ----- Rule management -----


def _snapshot_rule(rule: PromotionRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "from_class": rule.from_class,
        "from_section": rule.from_section,
        "to_class": rule.to_class,
        "criteria": rule.criteria,
        "version": rule.version,
        "is_active": rule.is_active,
    }


async def list_rules(db: AsyncSession, tenant_id: UUID, include_inactive: bool = False) -> List[PromotionRule]:
    stmt = select(PromotionRule).where(PromotionRule.tenant_id == tenant_id)
    if not include_inactive:
        stmt = stmt.where(PromotionRule.is_active.is_(True))
    stmt = stmt.order_by(PromotionRule.from_class, PromotionRule.from_section)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def upsert_rule(
    db: AsyncSession,
    tenant: Tenant,
    payload: PromotionRuleUpsert,
    actor_id: Optional[UUID] = None,
) -> PromotionRule:
    """Create or replace the rule for (from_class, from_section). Each change bumps version."""
    from_class = payload.from_class.strip()
    from_section = payload.from_section.strip() if payload.from_section else None
    to_class = payload.to_class.strip() if payload.to_class else None

    ladder_result = await db.execute(select(SchoolClass.name).where(SchoolClass.tenant_id == tenant.id))
    known_classes = set(ladder_result.scalars().all())
    unknown = [c for c in (from_class, to_class) if c and known_classes and c not in known_classes]
    if unknown:
        raise ValidationError("Unknown class in promotion rule", entity_ids=unknown)

    stmt = select(PromotionRule).where(
        PromotionRule.tenant_id == tenant.id,
        PromotionRule.from_class == from_class,
    )
    if from_section is None:
        stmt = stmt.where(PromotionRule.from_section.is_(None))
    else:
        stmt = stmt.where(PromotionRule.from_section == from_section)
    rule = (await db.execute(stmt)).scalar_one_or_none()

    before = _snapshot_rule(rule) if rule else None
    if rule:
        rule.to_class = to_class
        rule.criteria = payload.criteria.value
        rule.is_active = True
        rule.version = rule.version + 1
    else:
        rule = PromotionRule(
            tenant_id=tenant.id,
            from_class=from_class,
            from_section=from_section,
            to_class=to_class,
            criteria=payload.criteria.value,
            version=1,
            is_active=True,
        )
        db.add(rule)
    await db.flush()
    await append_audit(
        db,
        tenant,
        AuditAction.RULE_UPSERTED,
        AuditEntityType.PROMOTION_RULE,
        rule.id,
        before=before,
        after=_snapshot_rule(rule),
        actor_id=actor_id,
    )
    logger.info("Promotion rule saved: tenant=%s rule=%s version=%s", tenant.id, rule.id, rule.version)
    return rule


async def deactivate_rule(
    db: AsyncSession,
    tenant: Tenant,
    rule_id: UUID,
    actor_id: Optional[UUID] = None,
) -> PromotionRule:
    rule = (
        await db.execute(
            select(PromotionRule).where(PromotionRule.id == rule_id, PromotionRule.tenant_id == tenant.id)
        )
    ).scalar_one_or_none()
    if not rule:
        raise NotFoundError("Promotion rule not found", entity_ids=[rule_id])
    before = _snapshot_rule(rule)
    rule.is_active = False
    rule.version = rule.version + 1
    await db.flush()
    await append_audit(
        db,
        tenant,
        AuditAction.RULE_DEACTIVATED,
        AuditEntityType.PROMOTION_RULE,
        rule.id,
        before=before,
        after=_snapshot_rule(rule),
        actor_id=actor_id,
    )
    return rule
