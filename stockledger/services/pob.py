"""
Personnel on board.

Un relevé par jour et par site : équipage + extras. La somme sur la
période donne les mandays qui servent au coût par manday de la
réconciliation.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import ValidationError
from stockledger.app.db.models.models_v1 import Period, POBEntry
from stockledger.app.schemas.transactions import POBSave
from stockledger.services.common import current_open_period, get_actor, get_location, get_or_404, open_period_location

logger = logging.getLogger(__name__)


def _validate(payload: POBSave, period: Period) -> None:
    problems = []
    if not payload.entries:
        problems.append({"line": None, "message": "At least one POB entry is required"})
    seen = set()
    for i, entry in enumerate(payload.entries, start=1):
        if entry.crew_count < 0 or entry.extra_count < 0:
            problems.append({"line": i, "message": f"Line {i}: counts cannot be negative"})
        if not period.start_date <= entry.entry_date <= period.end_date:
            problems.append(
                {
                    "line": i,
                    "message": f"Line {i}: {entry.entry_date} is outside period {period.start_date} to {period.end_date}",
                }
            )
        if entry.entry_date in seen:
            problems.append({"line": i, "message": f"Line {i}: {entry.entry_date} appears twice"})
        seen.add(entry.entry_date)
    if problems:
        raise ValidationError.from_problems(problems)


def save_pob_entries(db: Session, location_id: int, payload: POBSave, actor_id: int) -> list[POBEntry]:
    """Upsert par jour ; la période doit être ouverte pour le site."""
    try:
        actor = get_actor(db, actor_id)
        get_location(db, location_id)
        period = get_or_404(db, Period, payload.period_id, "Period") if payload.period_id else current_open_period(db)
        open_period_location(db, location_id, period)
        _validate(payload, period)

        dates = [e.entry_date for e in payload.entries]
        existing = {
            row.entry_date: row
            for row in db.execute(
                select(POBEntry)
                .where(POBEntry.period_id == period.id)
                .where(POBEntry.location_id == location_id)
                .where(POBEntry.entry_date.in_(dates))
                .with_for_update()
            ).scalars()
        }
        rows = []
        for entry in payload.entries:
            row = existing.get(entry.entry_date)
            if row is None:
                row = POBEntry(period_id=period.id, location_id=location_id, entry_date=entry.entry_date)
                db.add(row)
            row.crew_count = entry.crew_count
            row.extra_count = entry.extra_count
            row.entered_by = actor.id
            rows.append(row)
        db.commit()
    except Exception:
        db.rollback()
        raise
    for row in rows:
        db.refresh(row)
    logger.info("pob saved location=%s period=%s days=%d by %s", location_id, period.id, len(rows), actor.username)
    return sorted(rows, key=lambda r: r.entry_date)


def list_pob_entries(db: Session, period_id: int, location_id: int) -> list[POBEntry]:
    return list(
        db.execute(
            select(POBEntry)
            .where(POBEntry.period_id == period_id)
            .where(POBEntry.location_id == location_id)
            .order_by(POBEntry.entry_date)
        ).scalars()
    )


def total_mandays(db: Session, period_id: int, location_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(POBEntry.crew_count + POBEntry.extra_count), 0))
        .where(POBEntry.period_id == period_id)
        .where(POBEntry.location_id == location_id)
    ).scalar_one()
    return int(total)
