"""
Issue processor: consumption at the current WAC.

Un bon de sortie est toujours posté directement (pas de brouillon).
Le WAC est figé sur chaque ligne au moment de la sortie.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import ValidationError
from stockledger.app.db.models.core_types import IssueStatus
from stockledger.app.db.models.models_v1 import Issue, IssueLine, Item
from stockledger.app.schemas.transactions import IssueCreate, IssueLineIn
from stockledger.services.common import get_actor, get_location, next_document_number, open_period_location
from stockledger.services.ledger import apply_consumption, lock_lots
from stockledger.services.stock_validation import StockCheck, check_availability, ensure_sufficient
from stockledger.services.valuation import ZERO, line_value, round_money, round_qty, to_decimal

logger = logging.getLogger(__name__)


def _validate_lines(db: Session, lines: list[IssueLineIn]) -> dict[int, Item]:
    problems = []
    if not lines:
        problems.append({"line": None, "message": "An issue needs at least one line"})
    item_ids = {ln.item_id for ln in lines}
    items = {i.id: i for i in db.execute(select(Item).where(Item.id.in_(sorted(item_ids)))).scalars()} if item_ids else {}
    for i, ln in enumerate(lines, start=1):
        item = items.get(ln.item_id)
        if item is None or not item.is_active:
            problems.append({"line": i, "message": f"Line {i}: item {ln.item_id} not found or inactive"})
        if to_decimal(ln.quantity) <= 0:
            problems.append({"line": i, "message": f"Line {i}: quantity must be greater than zero"})
    if problems:
        raise ValidationError.from_problems(problems)
    return items


def check_issue_availability(db: Session, location_id: int, lines: list[IssueLineIn]) -> StockCheck:
    """Advisory: may be stale by the time the issue is posted."""
    return check_availability(db, location_id, [(ln.item_id, to_decimal(ln.quantity)) for ln in lines])


def post_issue(db: Session, location_id: int, payload: IssueCreate, actor_id: int) -> Issue:
    try:
        actor = get_actor(db, actor_id)
        get_location(db, location_id)
        pl = open_period_location(db, location_id)
        items = _validate_lines(db, payload.lines)

        lots = lock_lots(db, [(location_id, ln.item_id) for ln in payload.lines])
        # contrôle faisant foi : sur les lots verrouillés, toutes les lignes
        ensure_sufficient(
            location_id,
            {item_id: lot.on_hand for (_, item_id), lot in lots.items()},
            [(ln.item_id, to_decimal(ln.quantity)) for ln in payload.lines],
            items,
        )

        issue = Issue(
            issue_no=next_document_number(db, Issue.issue_no, "ISS"),
            location_id=location_id,
            period_id=pl.period_id,
            issue_date=payload.issue_date,
            cost_centre=payload.cost_centre,
            status=IssueStatus.posted,
            notes=payload.notes,
            created_by=actor.id,
        )
        total = ZERO
        for i, ln in enumerate(payload.lines, start=1):
            change = apply_consumption(db, location_id, ln.item_id, ln.quantity, lot=lots[(location_id, ln.item_id)])
            value = line_value(ln.quantity, change.wac_before)
            issue.lines.append(
                IssueLine(
                    line_no=i,
                    item_id=ln.item_id,
                    quantity=round_qty(ln.quantity),
                    wac_at_issue=change.wac_before,
                    line_value=value,
                )
            )
            total += value
        issue.total_value = round_money(total)
        db.add(issue)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("issue rejected at location %s: %s", location_id, exc)
        raise
    db.refresh(issue)
    logger.info(
        "issue %s posted by %s lines=%d total=%s", issue.issue_no, actor.username, len(issue.lines), issue.total_value
    )
    return issue
