from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stockledger.app.core.errors import InsufficientStock, ValidationError
from stockledger.app.db.models.core_types import CostCentre, IssueStatus
from stockledger.app.db.models.models_v1 import Issue, StockLot
from stockledger.app.schemas.transactions import IssueCreate, IssueLineIn
from stockledger.services.issues import check_issue_availability, post_issue
from stockledger.tests.factories import receive


def _issue(world, *lines, cost_centre=CostCentre.food):
    payload = IssueCreate(
        cost_centre=cost_centre,
        lines=[IssueLineIn(item_id=item.id, quantity=Decimal(str(qty))) for item, qty in lines],
    )
    return post_issue(world.db, world.kitchen.id, payload, world.operator.id)


@pytest.fixture
def stocked(world):
    receive(world, world.kitchen, world.rice, 100, "10.00")
    receive(world, world.kitchen, world.rice, 50, "12.00")
    receive(world, world.kitchen, world.oil, 20, "4.00")
    return world


def test_issue_consumes_at_current_wac(stocked):
    """
    GIVEN 150 sacs à WAC 10.6667
    WHEN on sort 30 sacs
    THEN valeur 320.00, stock 120, WAC inchangé
    """
    world = stocked

    # ACT
    issue = _issue(world, (world.rice, 30))

    # ASSERT
    assert issue.status == IssueStatus.posted
    assert issue.issue_no == f"ISS-{date.today().year}-001"
    [line] = issue.lines
    assert line.wac_at_issue == Decimal("10.6667")
    assert line.line_value == Decimal("320.00")
    assert issue.total_value == Decimal("320.00")

    lot = world.db.get(StockLot, (world.kitchen.id, world.rice.id))
    assert lot.on_hand == Decimal("120")
    assert lot.wac == Decimal("10.6667")


def test_insufficient_stock_writes_nothing(stocked):
    world = stocked

    with pytest.raises(InsufficientStock) as exc:
        _issue(world, (world.rice, 200))

    [short] = exc.value.items
    assert short["item_code"] == "RICE-5KG"
    assert short["requested"] == "200"
    assert Decimal(short["available"]) == Decimal("150")
    assert Decimal(short["shortfall"]) == Decimal("50")
    assert world.db.scalar(select(func.count(Issue.id))) == 0
    assert world.db.get(StockLot, (world.kitchen.id, world.rice.id)).on_hand == Decimal("150")


def test_every_short_item_is_reported(stocked):
    world = stocked

    with pytest.raises(InsufficientStock) as exc:
        _issue(world, (world.rice, 151), (world.oil, 25))

    assert [i["item_id"] for i in exc.value.items] == sorted([world.rice.id, world.oil.id])
    assert exc.value.code == "INSUFFICIENT_STOCK"
    assert world.db.get(StockLot, (world.kitchen.id, world.oil.id)).on_hand == Decimal("20")


def test_lines_on_same_item_are_checked_together(stocked):
    """Deux lignes de 80 sur un lot de 150 : refusé même si chaque ligne passe seule."""
    world = stocked

    with pytest.raises(InsufficientStock) as exc:
        _issue(world, (world.rice, 80), (world.rice, 80))

    assert exc.value.items[0]["requested"] == "160"


def test_issue_from_empty_location(world):
    with pytest.raises(InsufficientStock):
        _issue(world, (world.oil, 1))


def test_invalid_lines(stocked):
    world = stocked

    with pytest.raises(ValidationError) as exc:
        _issue(world, (world.rice, 0))
    assert len(exc.value.details["problems"]) == 1

    with pytest.raises(ValidationError):
        post_issue(world.db, world.kitchen.id, IssueCreate(lines=[]), world.operator.id)


def test_advisory_check(stocked):
    world = stocked

    ok = check_issue_availability(
        world.db, world.kitchen.id, [IssueLineIn(item_id=world.rice.id, quantity=Decimal("150"))]
    )
    short = check_issue_availability(
        world.db, world.kitchen.id, [IssueLineIn(item_id=world.oil.id, quantity=Decimal("21"))]
    )

    assert ok.ok
    assert not short.ok
    assert short.insufficient[0].shortfall == Decimal("1")
