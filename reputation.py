"""Trust-score ledger.

The score a user has is the newest ledger entry's ``new_score``; the
``trust_scores`` row is a cache of it and is only written by
:func:`apply_delta`, in the same flush as the entry it mirrors.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

import audit
import config
from models import Reputation, ReputationEntry
from orm import ReputationEntryORM, TrustScoreORM

logger = logging.getLogger(__name__)


def _latest_entry(db: Session, user_id: str) -> Optional[ReputationEntryORM]:
    stmt = (
        select(ReputationEntryORM)
        .where(ReputationEntryORM.user_id == user_id)
        .order_by(ReputationEntryORM.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def current_score(db: Session, user_id: str) -> int:
    cached = db.get(TrustScoreORM, user_id)
    if cached is not None:
        return cached.score
    entry = _latest_entry(db, user_id)
    if entry is not None:
        return entry.new_score
    return config.INITIAL_TRUST_SCORE


def _lock_score(db: Session, user_id: str, now: datetime) -> TrustScoreORM:
    db.execute(
        update(TrustScoreORM)
        .where(TrustScoreORM.user_id == user_id)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    stmt = (
        select(TrustScoreORM)
        .where(TrustScoreORM.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    row = db.execute(stmt).scalar_one_or_none()
    if row is None:
        # first change for this user; seed from any ledger history
        entry = _latest_entry(db, user_id)
        score = entry.new_score if entry is not None else config.INITIAL_TRUST_SCORE
        row = TrustScoreORM(user_id=user_id, score=score, created_at=now, updated_at=now)
        db.add(row)
        db.flush()
    return row


def apply_delta(
    db: Session,
    user_id: str,
    delta: int,
    reason: str,
    *,
    acting_user_id: Optional[str],
    now: datetime,
) -> ReputationEntryORM:
    """Append a ledger entry and move the cached score with it.

    Runs inside the caller's transaction: nothing is committed here, so the
    entry lands or disappears together with the event that caused it.
    The score never drops below zero.
    """
    score_row = _lock_score(db, user_id, now)
    previous = score_row.score
    new = max(0, previous + delta)

    entry = ReputationEntryORM(
        user_id=user_id,
        change=delta,
        reason=reason,
        previous_score=previous,
        new_score=new,
        created_at=now,
    )
    db.add(entry)
    score_row.score = new
    score_row.updated_at = now
    db.flush()

    audit.record(
        db,
        acting_user_id,
        "User",
        user_id,
        audit.ReputationChangePayload(
            entry_id=entry.id,
            change=delta,
            reason=reason,
            previous_score=previous,
            new_score=new,
        ),
        now=now,
    )
    logger.info("reputation change user_id=%s delta=%s previous=%s new=%s", user_id, delta, previous, new)
    return entry


def list_entries(db: Session, user_id: str, *, newest_first: bool = True) -> list[ReputationEntryORM]:
    order = ReputationEntryORM.id.desc() if newest_first else ReputationEntryORM.id.asc()
    stmt = select(ReputationEntryORM).where(ReputationEntryORM.user_id == user_id).order_by(order)
    return list(db.execute(stmt).scalars().all())


def recompute_score(db: Session, user_id: str) -> int:
    """Initial score plus every applied change, clamping included."""
    score = config.INITIAL_TRUST_SCORE
    for entry in list_entries(db, user_id, newest_first=False):
        score += entry.new_score - entry.previous_score
    return score


def get_reputation(db: Session, user_id: str) -> Reputation:
    history = list_entries(db, user_id)
    return Reputation(
        user_id=user_id,
        score=current_score(db, user_id),
        recomputed_score=recompute_score(db, user_id),
        history=[ReputationEntry.model_validate(e) for e in history],
    )
