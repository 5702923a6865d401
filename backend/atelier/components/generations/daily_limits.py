"""Per-account, per-UTC-day cap on free feedback regenerations."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.daily_limit import UserDailyLimit
from ...platform.errors import DailyLimitReachedError

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _ensure_row(db: Session, user_id: str, day: date) -> None:
    exists = db.execute(
        select(UserDailyLimit.id).where(UserDailyLimit.user_id == user_id, UserDailyLimit.date == day)
    ).scalar_one_or_none()
    if exists is not None:
        return
    db.add(UserDailyLimit(user_id=user_id, date=day, dislike_count=0))
    try:
        db.commit()
    except IntegrityError:
        # Another request created today's row first.
        db.rollback()


def consume_slot(db: Session, user_id: str, limit: int, *, day: Optional[date] = None) -> int:
    """Atomically take one slot; returns the new count or raises DailyLimitReachedError."""
    day = day or utc_today()
    _ensure_row(db, user_id, day)
    count = db.execute(
        update(UserDailyLimit)
        .where(
            UserDailyLimit.user_id == user_id,
            UserDailyLimit.date == day,
            UserDailyLimit.dislike_count < limit,
        )
        .values(dislike_count=UserDailyLimit.dislike_count + 1)
        .returning(UserDailyLimit.dislike_count)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()
    if count is None:
        db.rollback()
        logger.info("Daily feedback limit reached user_id=%s limit=%d", user_id, limit)
        raise DailyLimitReachedError(limit)
    db.commit()
    return int(count)


def release_slot(db: Session, user_id: str, *, day: Optional[date] = None) -> None:
    """Give back a slot taken for a request that did not go through."""
    day = day or utc_today()
    db.execute(
        update(UserDailyLimit)
        .where(
            UserDailyLimit.user_id == user_id,
            UserDailyLimit.date == day,
            UserDailyLimit.dislike_count > 0,
        )
        .values(dislike_count=UserDailyLimit.dislike_count - 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def used_today(db: Session, user_id: str, *, day: Optional[date] = None) -> int:
    day = day or utc_today()
    count = db.execute(
        select(UserDailyLimit.dislike_count).where(
            UserDailyLimit.user_id == user_id, UserDailyLimit.date == day
        )
    ).scalar_one_or_none()
    return int(count or 0)
