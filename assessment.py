"""Weighted condition assessment of a pending return.

Each criterion is scored 1..5 with a weight; the overall score is the
weighted mean and maps onto a condition tier through descending
thresholds.  The outcome is stored on the return as a recommendation and
only takes effect when staff approve the return.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

import audit
import config
import crud
import errors
import permissions
from models import (
    Actor,
    Assessment,
    AssessmentIn,
    ConditionThresholds,
    CriterionIn,
    CriterionScore,
    ItemCondition,
    ReturnStatus,
)
from returns import condition_penalty, get_return_or_404, lock_return

logger = logging.getLogger(__name__)

ACTION = "SUBMIT_CONDITION_ASSESSMENT"


def default_thresholds() -> ConditionThresholds:
    return ConditionThresholds(**config.DEFAULT_CONDITION_THRESHOLDS)


def validate_thresholds(t: ConditionThresholds) -> None:
    if not (t.excellent > t.good > t.fair > t.poor):
        raise errors.ValidationError("thresholds must be strictly descending: excellent > good > fair > poor")


def weighted_score(criteria: list[CriterionIn]) -> tuple[float, list[CriterionScore]]:
    total_weight = sum(c.weight for c in criteria)
    if total_weight <= 0:
        raise errors.ValidationError("criteria weights must add up to more than zero")

    detailed = [
        CriterionScore(
            name=c.name,
            value=c.value,
            weight=c.weight,
            weighted_value=c.value * c.weight,
            notes=c.notes,
        )
        for c in criteria
    ]
    overall = sum(d.weighted_value for d in detailed) / total_weight
    return round(overall, 4), detailed


def condition_for_score(score: float, thresholds: ConditionThresholds) -> ItemCondition:
    if score >= thresholds.excellent:
        return ItemCondition.EXCELLENT
    if score >= thresholds.good:
        return ItemCondition.GOOD
    if score >= thresholds.fair:
        return ItemCondition.FAIR
    if score >= thresholds.poor:
        return ItemCondition.POOR
    return ItemCondition.DAMAGED


def submit_assessment(
    db: Session,
    actor: Actor,
    return_id: str,
    body: AssessmentIn,
    *,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Assessment:
    permissions.require_staff(actor, "submit condition assessments")
    now = now or crud.utcnow()
    thresholds = body.thresholds or default_thresholds()
    validate_thresholds(thresholds)
    names = [c.name for c in body.criteria]
    if len(set(names)) != len(names):
        raise errors.ValidationError("each criterion may only be scored once")

    overall, detailed = weighted_score(body.criteria)
    determined = condition_for_score(overall, thresholds)
    final = body.override_condition or determined

    existing = get_return_or_404(db, return_id)
    with crud.unit_of_work(db, commit=commit):
        item = crud.lock_item(db, existing.item_id, now)
        ret = lock_return(db, return_id, now)
        if ret.status != ReturnStatus.PENDING:
            raise errors.StateError(f"cannot assess a return with status {ret.status.value}")

        original = item.condition
        calculated = condition_penalty(original, final)
        recommended = body.penalty_points if body.penalty_points is not None else calculated
        if recommended > 0:
            penalty_reason = f"Condition assessment penalty: {body.penalty_reason or 'Condition degradation'}"
        else:
            penalty_reason = None

        ret.condition_on_return = final
        ret.penalty_amount = recommended if recommended > 0 else None
        ret.penalty_reason = penalty_reason
        ret.updated_at = now

        audit.record(
            db,
            actor.user_id,
            "Return",
            ret.id,
            audit.SubmitConditionAssessmentPayload(
                return_id=ret.id,
                overall_score=overall,
                original_condition=original,
                determined_condition=determined,
                final_condition=final,
                detailed_scores=detailed,
                calculated_penalty=calculated,
                recommended_penalty=recommended,
                penalty_reason=penalty_reason,
                notes=body.notes,
            ),
            now=now,
        )

    logger.info(
        "condition assessed return_id=%s score=%s condition=%s recommended_penalty=%s",
        return_id,
        overall,
        final.value,
        recommended,
    )
    return Assessment(
        return_id=return_id,
        overall_score=overall,
        original_condition=original,
        determined_condition=determined,
        final_condition=final,
        detailed_scores=detailed,
        calculated_penalty=calculated,
        recommended_penalty=recommended,
        penalty_reason=penalty_reason,
        assessed_by=actor.user_id,
        assessed_at=now,
    )


def list_assessments(db: Session, actor: Actor, return_id: str) -> list[Assessment]:
    ret = get_return_or_404(db, return_id)
    permissions.require_owner_or_staff(actor, ret.user_id, "view assessments for this return")

    out = []
    for row in audit.list_entries(db, entity_type="Return", entity_id=return_id, action=ACTION):
        p = audit.parse_payload(row)
        out.append(
            Assessment(
                return_id=p.return_id,
                overall_score=p.overall_score,
                original_condition=p.original_condition,
                determined_condition=p.determined_condition,
                final_condition=p.final_condition,
                detailed_scores=p.detailed_scores,
                calculated_penalty=p.calculated_penalty,
                recommended_penalty=p.recommended_penalty,
                penalty_reason=p.penalty_reason,
                assessed_by=row.user_id or "",
                assessed_at=row.created_at,
            )
        )
    return out
