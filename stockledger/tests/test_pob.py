from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stockledger.app.core.errors import PeriodNotOpen, ValidationError
from stockledger.app.db.models.core_types import PeriodLocationStatus
from stockledger.app.db.models.models_v1 import PeriodLocation, POBEntry
from stockledger.app.schemas.transactions import IssueCreate, IssueLineIn, POBEntryIn, POBSave
from stockledger.services.issues import post_issue
from stockledger.services.pob import list_pob_entries, save_pob_entries, total_mandays
from stockledger.services.reconciliation import calculate_manday_cost, reconciliation_summary
from stockledger.tests.factories import receive


def _day(world, n):
    return world.period.start_date + timedelta(days=n)


def _save(world, *entries, location=None):
    payload = POBSave(entries=[POBEntryIn(entry_date=d, crew_count=c, extra_count=x) for d, c, x in entries])
    return save_pob_entries(world.db, (location or world.kitchen).id, payload, world.operator.id)


def test_save_is_an_upsert_per_day(world):
    rows = _save(world, (_day(world, 1), 10, 2), (_day(world, 0), 12, 0))

    assert [(r.entry_date, r.mandays) for r in rows] == [(_day(world, 0), 12), (_day(world, 1), 12)]
    assert total_mandays(world.db, world.period.id, world.kitchen.id) == 24

    _save(world, (_day(world, 1), 8, 0))

    assert world.db.scalar(select(func.count(POBEntry.id))) == 2
    assert total_mandays(world.db, world.period.id, world.kitchen.id) == 20
    assert [r.crew_count for r in list_pob_entries(world.db, world.period.id, world.kitchen.id)] == [12, 8]
    assert total_mandays(world.db, world.period.id, world.store.id) == 0


def test_invalid_entries_all_reported(world):
    with pytest.raises(ValidationError) as exc:
        _save(
            world,
            (_day(world, 0), -1, 0),
            (world.period.end_date + timedelta(days=1), 5, 0),
            (_day(world, 0), 3, 0),
        )

    assert len(exc.value.details["problems"]) == 3
    assert world.db.scalar(select(func.count(POBEntry.id))) == 0

    with pytest.raises(ValidationError):
        save_pob_entries(world.db, world.kitchen.id, POBSave(), world.operator.id)


def test_pob_needs_open_location(world):
    pl = world.db.get(PeriodLocation, (world.period.id, world.kitchen.id))
    pl.status = PeriodLocationStatus.ready
    world.db.commit()

    with pytest.raises(PeriodNotOpen):
        _save(world, (_day(world, 0), 10, 0))


def test_calculate_manday_cost():
    # 34500 / 2100 = 16.428...
    assert calculate_manday_cost(Decimal("34500"), 2100) == Decimal("16.43")
    assert calculate_manday_cost(Decimal("100"), 0) is None


def test_summary_carries_manday_cost(world):
    """
    GIVEN consommation 300.00 et 24 mandays au POB
    WHEN on calcule le résumé
    THEN coût par manday = 12.50 ; sans POB il reste vide
    """
    receive(world, world.kitchen, world.rice, 100, 10)
    post_issue(
        world.db,
        world.kitchen.id,
        IssueCreate(lines=[IssueLineIn(item_id=world.rice.id, quantity=Decimal("30"))]),
        world.operator.id,
    )

    empty = reconciliation_summary(world.db, world.period.id, world.kitchen.id)
    assert empty.total_mandays == 0
    assert empty.manday_cost is None

    _save(world, (_day(world, 0), 10, 2), (_day(world, 1), 12, 0))
    summary = reconciliation_summary(world.db, world.period.id, world.kitchen.id)

    assert summary.consumption == Decimal("300.00")
    assert summary.total_mandays == 24
    assert summary.manday_cost == Decimal("12.50")
