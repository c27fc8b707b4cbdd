from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from stockledger.app.core.errors import InvalidStateTransition, PeriodNotOpen, PermissionDenied, ValidationError
from stockledger.app.db.models.core_types import (
    DeliveryStatus,
    PeriodLocationStatus,
    PeriodStatus,
    SnapshotKind,
)
from stockledger.app.db.models.models_v1 import ItemPrice, PeriodLocation, StockSnapshot
from stockledger.app.schemas.periods import PeriodCreate
from stockledger.app.schemas.transactions import (
    DeliveryCreate,
    DeliveryLineIn,
    ReconciliationIn,
    TransferCreate,
    TransferLineIn,
)
from stockledger.services.deliveries import create_delivery
from stockledger.services.periods import (
    close_period,
    create_period,
    mark_location_ready,
    mark_location_unready,
    open_period,
    readiness_blockers,
    set_item_price,
)
from stockledger.services.reconciliation import save_reconciliation
from stockledger.services.transfers import request_transfer
from stockledger.tests.factories import receive


def _snapshots(db, period_id, kind):
    rows = db.execute(
        select(StockSnapshot)
        .where(StockSnapshot.period_id == period_id)
        .where(StockSnapshot.kind == kind)
        .order_by(StockSnapshot.location_id, StockSnapshot.item_id)
    ).scalars()
    return [(s.location_id, s.item_id, s.quantity, s.wac, s.value) for s in rows]


def _make_ready(world, *locations):
    for loc in locations or (world.kitchen, world.store):
        save_reconciliation(world.db, world.period.id, loc.id, ReconciliationIn(), world.supervisor.id)
        mark_location_ready(world.db, world.period.id, loc.id, world.supervisor.id)


def test_create_period_attaches_active_locations(world):
    start = world.period.end_date + timedelta(days=10)

    period = create_period(
        world.db, PeriodCreate(name="Later", start_date=start, end_date=start + timedelta(days=27)), world.admin.id
    )

    assert period.status == PeriodStatus.draft
    assert sorted(pl.location_id for pl in period.period_locations) == sorted([world.kitchen.id, world.store.id])


def test_create_period_rules(world):
    with pytest.raises(PermissionDenied):
        create_period(
            world.db,
            PeriodCreate(name="X", start_date=world.period.end_date + timedelta(days=1), end_date=world.period.end_date + timedelta(days=5)),
            world.supervisor.id,
        )

    with pytest.raises(ValidationError) as exc:
        create_period(
            world.db,
            PeriodCreate(name="Overlap", start_date=world.period.end_date, end_date=world.period.end_date + timedelta(days=5)),
            world.admin.id,
        )
    assert exc.value.code == "PERIOD_OVERLAP"

    with pytest.raises(ValidationError):
        start = world.period.end_date + timedelta(days=10)
        create_period(world.db, PeriodCreate(name="Back", start_date=start, end_date=start - timedelta(days=1)), world.admin.id)


def test_only_one_period_open(world):
    start = world.period.end_date + timedelta(days=1)
    nxt = create_period(world.db, PeriodCreate(name="Next", start_date=start, end_date=start + timedelta(days=29)), world.admin.id)

    with pytest.raises(InvalidStateTransition) as exc:
        open_period(world.db, nxt.id, world.admin.id)
    assert exc.value.code == "PERIOD_ALREADY_OPEN"


def test_item_prices_admin_only(world):
    with pytest.raises(PermissionDenied):
        set_item_price(world.db, world.period.id, world.rice.id, Decimal("10"), world.supervisor.id)

    set_item_price(world.db, world.period.id, world.rice.id, Decimal("10"), world.admin.id)
    row = set_item_price(world.db, world.period.id, world.rice.id, Decimal("10.5"), world.admin.id)

    assert row.price == Decimal("10.5")
    assert row.set_by == world.admin.id
    with pytest.raises(ValidationError):
        set_item_price(world.db, world.period.id, world.rice.id, Decimal("-1"), world.admin.id)


def test_ready_lists_every_blocker(world):
    """
    GIVEN une livraison brouillon, un transfert en attente, pas de réconciliation
    WHEN on marque le site prêt
    THEN refus avec les trois bloquants
    """
    receive(world, world.store, world.rice, 10, 5)
    create_delivery(
        world.db,
        world.kitchen.id,
        DeliveryCreate(
            supplier_id=world.supplier.id,
            post=False,
            lines=[DeliveryLineIn(item_id=world.rice.id, quantity=Decimal("1"), unit_price=Decimal("1"))],
        ),
        world.operator.id,
    )
    request_transfer(
        world.db,
        world.store.id,
        world.kitchen.id,
        TransferCreate(
            from_location_id=world.store.id,
            to_location_id=world.kitchen.id,
            lines=[TransferLineIn(item_id=world.rice.id, quantity=Decimal("2"))],
        ),
        world.operator.id,
    )

    with pytest.raises(InvalidStateTransition) as exc:
        mark_location_ready(world.db, world.period.id, world.kitchen.id, world.supervisor.id)

    assert exc.value.code == "LOCATION_NOT_READY"
    assert [b["type"] for b in exc.value.details["blockers"]] == ["delivery", "transfer", "reconciliation"]
    assert world.db.get(PeriodLocation, (world.period.id, world.kitchen.id)).status == PeriodLocationStatus.open


def test_ready_and_unready(world):
    save_reconciliation(world.db, world.period.id, world.kitchen.id, ReconciliationIn(), world.supervisor.id)
    assert readiness_blockers(world.db, world.period.id, world.kitchen.id) == []

    with pytest.raises(PermissionDenied):
        mark_location_ready(world.db, world.period.id, world.kitchen.id, world.operator.id)

    pl = mark_location_ready(world.db, world.period.id, world.kitchen.id, world.supervisor.id)
    assert pl.status == PeriodLocationStatus.ready
    assert pl.ready_by == world.supervisor.id

    with pytest.raises(PeriodNotOpen):
        receive(world, world.kitchen, world.rice, 1, 1)

    pl = mark_location_unready(world.db, world.period.id, world.kitchen.id, world.admin.id)
    assert pl.status == PeriodLocationStatus.open
    receive(world, world.kitchen, world.rice, 1, 1)


def test_close_needs_every_location_ready(world):
    _make_ready(world, world.kitchen)

    with pytest.raises(InvalidStateTransition) as exc:
        close_period(world.db, world.period.id, world.admin.id)

    assert exc.value.code == "LOCATIONS_NOT_READY"
    assert exc.value.details["location_ids"] == [world.store.id]


def test_close_requires_admin(world):
    _make_ready(world)

    with pytest.raises(PermissionDenied):
        close_period(world.db, world.period.id, world.supervisor.id)


def test_close_and_roll_forward(world, notifier):
    """
    GIVEN deux sites prêts avec du stock et un prix de période
    WHEN l'admin clôture
    THEN snapshots de clôture, période suivante en brouillon, ouverture = clôture ligne à ligne
    """
    # ARRANGE
    receive(world, world.kitchen, world.rice, 100, 10)
    receive(world, world.kitchen, world.rice, 50, 12)
    receive(world, world.store, world.oil, 10, 4)
    set_item_price(world.db, world.period.id, world.oil.id, Decimal("4"), world.admin.id)
    _make_ready(world)

    # ACT
    result = close_period(world.db, world.period.id, world.admin.id, notifier)

    # ASSERT
    period, nxt = result.period, result.next_period
    assert period.status == PeriodStatus.closed
    assert period.closed_by == world.admin.id
    assert all(pl.status == PeriodLocationStatus.closed for pl in period.period_locations)

    closing = _snapshots(world.db, period.id, SnapshotKind.closing)
    assert closing == sorted(
        [
            (world.kitchen.id, world.rice.id, Decimal("150"), Decimal("10.6667"), Decimal("1600.01")),
            (world.store.id, world.oil.id, Decimal("10"), Decimal("4"), Decimal("40.00")),
        ]
    )
    assert _snapshots(world.db, nxt.id, SnapshotKind.opening) == closing

    assert nxt.status == PeriodStatus.draft
    assert nxt.start_date == period.end_date + timedelta(days=1)
    assert nxt.end_date - nxt.start_date == period.end_date - period.start_date
    assert nxt.name == nxt.start_date.strftime("%B %Y")
    opening = {pl.location_id: pl.opening_value for pl in nxt.period_locations}
    assert opening == {world.kitchen.id: Decimal("1600.01"), world.store.id: Decimal("40.00")}
    assert world.db.get(ItemPrice, (nxt.id, world.oil.id)).price == Decimal("4")
    assert notifier.events[-1][0] == "period.closed"

    # plus aucune écriture possible tant que la suivante n'est pas ouverte
    with pytest.raises(PeriodNotOpen):
        receive(world, world.kitchen, world.rice, 1, 10)
    with pytest.raises(InvalidStateTransition):
        set_item_price(world.db, period.id, world.rice.id, Decimal("1"), world.admin.id)

    opened = open_period(world.db, nxt.id, world.admin.id)
    assert opened.status == PeriodStatus.open
    assert _snapshots(world.db, nxt.id, SnapshotKind.opening) == closing
    posted = receive(world, world.kitchen, world.rice, 1, 10)
    assert posted.delivery.status == DeliveryStatus.posted
    assert posted.delivery.period_id == nxt.id


def test_first_period_opening_seeded_from_lots(world):
    receive(world, world.kitchen, world.rice, 20, 5)
    _make_ready(world)
    # période brouillon sans snapshot d'ouverture
    start = world.period.end_date + timedelta(days=40)
    later = create_period(world.db, PeriodCreate(name="Later", start_date=start, end_date=start + timedelta(days=9)), world.admin.id)
    close_period(world.db, world.period.id, world.admin.id)

    opened = open_period(world.db, later.id, world.admin.id)

    assert _snapshots(world.db, later.id, SnapshotKind.opening) == [
        (world.kitchen.id, world.rice.id, Decimal("20"), Decimal("5"), Decimal("100.00"))
    ]
    opening = {pl.location_id: pl.opening_value for pl in opened.period_locations}
    assert opening[world.kitchen.id] == Decimal("100.00")
    assert opening[world.store.id] == Decimal("0.00")
