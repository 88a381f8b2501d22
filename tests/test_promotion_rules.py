from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.promotions.rules import PromotionRuleSet, RuleSnapshot, natural_class_key
from app.api.v1.promotions.schemas import PromotionRuleUpsert
from app.core.collaborators import ExamOutcome
from app.core.enums import AuditAction, DecisionType, PromotionCriteria
from app.core.exceptions import NotFoundError, ValidationError
from app.core.models import AuditLogEntry

LADDER = [str(n) for n in range(1, 11)]


def _rule(from_class, criteria, from_section=None, to_class=None) -> RuleSnapshot:
    return RuleSnapshot(id=None, from_class=from_class, from_section=from_section, to_class=to_class, criteria=criteria)


def test_terminal_class_graduates_under_promote_all() -> None:
    rules = PromotionRuleSet([_rule("10", PromotionCriteria.PROMOTE_ALL)], LADDER)
    resolution = rules.resolve("10", "A")
    assert resolution.decision_hint == DecisionType.GRADUATED
    assert resolution.to_class is None


def test_default_promotes_to_next_class_keeping_section() -> None:
    rules = PromotionRuleSet([], LADDER)
    resolution = rules.resolve("9", "B")
    assert (resolution.to_class, resolution.to_section, resolution.decision_hint) == ("10", "B", DecisionType.PROMOTED)


def test_require_pass_without_exam_summary_is_excluded() -> None:
    rules = PromotionRuleSet([_rule("5", PromotionCriteria.REQUIRE_PASS, to_class="6")], LADDER)
    assert rules.resolve("5", "A", None).decision_hint == DecisionType.EXCLUDED
    assert rules.resolve("5", "A", ExamOutcome(passed=True)).to_class == "6"

    failed = rules.resolve("5", "A", ExamOutcome(passed=False))
    assert (failed.to_class, failed.to_section, failed.decision_hint) == ("5", "A", DecisionType.RETAINED)


def test_section_rule_wins_over_class_rule() -> None:
    rules = PromotionRuleSet(
        [
            _rule("3", PromotionCriteria.PROMOTE_ALL),
            _rule("3", PromotionCriteria.MANUAL_REVIEW, from_section="C"),
        ],
        LADDER,
    )
    assert rules.resolve("3", "C").decision_hint == DecisionType.EXCLUDED
    assert rules.resolve("3", "A").decision_hint == DecisionType.PROMOTED
    assert rules.requires_exam_outcome("3", "A") is False


def test_unknown_class_is_left_for_review() -> None:
    rules = PromotionRuleSet([], LADDER)
    assert rules.resolve("Nursery", "A").decision_hint == DecisionType.EXCLUDED


def test_natural_ordering_of_class_names() -> None:
    assert sorted(["10", "2", "1", "LKG"], key=natural_class_key) == ["1", "2", "10", "LKG"]


@pytest.mark.asyncio
async def test_snapshot_orders_ladder_by_display_order(db_session: AsyncSession, school) -> None:
    rules = await PromotionRuleSet.snapshot(db_session, school.tenant_id)
    assert rules.class_ladder == tuple(LADDER)
    assert rules.is_terminal("10")
    assert rules.to_json()["class_ladder"] == LADDER


@pytest.mark.asyncio
async def test_upsert_bumps_version_and_audits(coordinator, school, db_session: AsyncSession) -> None:
    first = await coordinator.upsert_rule(
        PromotionRuleUpsert(from_class="5", to_class="6", criteria=PromotionCriteria.REQUIRE_PASS),
        school.admin_id,
    )
    second = await coordinator.upsert_rule(
        PromotionRuleUpsert(from_class="5", criteria=PromotionCriteria.PROMOTE_ALL),
        school.admin_id,
    )
    assert second.id == first.id
    assert second.version == 2
    assert second.to_class is None

    entries = (
        await db_session.execute(select(AuditLogEntry).where(AuditLogEntry.action == AuditAction.RULE_UPSERTED.value).order_by(AuditLogEntry.id))
    ).scalars().all()
    assert len(entries) == 2
    assert entries[1].before_state["criteria"] == "require_pass"


@pytest.mark.asyncio
async def test_upsert_rejects_unknown_class(coordinator, school) -> None:
    with pytest.raises(ValidationError) as exc:
        await coordinator.upsert_rule(PromotionRuleUpsert(from_class="42"), school.admin_id)
    assert exc.value.entity_ids == ["42"]


@pytest.mark.asyncio
async def test_deactivated_rule_is_not_snapshotted(coordinator, school, db_session: AsyncSession) -> None:
    rule = await coordinator.upsert_rule(
        PromotionRuleUpsert(from_class="4", criteria=PromotionCriteria.MANUAL_REVIEW),
        school.admin_id,
    )
    await coordinator.deactivate_rule(rule.id, school.admin_id)

    rules = await PromotionRuleSet.snapshot(db_session, school.tenant_id)
    assert rules.find_rule("4", None) is None

    with pytest.raises(NotFoundError):
        await coordinator.deactivate_rule(uuid4(), school.admin_id)
