from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from stockledger.app.api.deps import get_db, get_notifier
from stockledger.app.main import app
from stockledger.tests.factories import RecordingNotifier, receive


@pytest.fixture
def client(world):
    notifier = RecordingNotifier()

    def _db():
        # la session du test reste ouverte : les objets de `world` restent utilisables
        yield world.db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_notifier] = lambda: notifier
    try:
        with TestClient(app) as c:
            c.notifier = notifier
            yield c
    finally:
        app.dependency_overrides.clear()


def _as(user):
    return {"X-User-Id": str(user.id)}


def test_health(client):
    resp = client.get("/v1/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_post_delivery_then_read_stock(client, world):
    body = {
        "supplier_id": world.supplier.id,
        "invoice_no": "INV-API-1",
        "lines": [{"item_id": world.rice.id, "quantity": "100", "unit_price": "10"}],
    }

    resp = client.post(f"/v1/locations/{world.kitchen.id}/deliveries", json=body, headers=_as(world.operator))

    assert resp.status_code == 201
    data = resp.json()
    assert data["state"] == "POSTED"
    assert data["delivery"]["status"] == "POSTED"
    assert not data["approval_required"]
    assert client.notifier.events[0][0] == "delivery.posted"

    stock = client.get(f"/v1/locations/{world.kitchen.id}/stock").json()
    assert [(row["item_id"], Decimal(row["on_hand"])) for row in stock] == [(world.rice.id, Decimal("100"))]
    value = client.get(f"/v1/locations/{world.kitchen.id}/stock/value").json()
    assert Decimal(value["total_value"]) == Decimal("1000.00")


def test_issue_short_is_409(client, world):
    receive(world, world.kitchen, world.rice, 10, 5)
    body = {"lines": [{"item_id": world.rice.id, "quantity": "11"}]}

    resp = client.post(f"/v1/locations/{world.kitchen.id}/issues", json=body, headers=_as(world.operator))

    assert resp.status_code == 409
    err = resp.json()
    assert err["code"] == "INSUFFICIENT_STOCK"
    assert Decimal(err["details"]["items"][0]["shortfall"]) == Decimal("1")


def test_issue_created(client, world):
    receive(world, world.kitchen, world.rice, 10, 5)

    resp = client.post(
        f"/v1/locations/{world.kitchen.id}/issues",
        json={"cost_centre": "CLEAN", "lines": [{"item_id": world.rice.id, "quantity": "4"}]},
        headers=_as(world.operator),
    )

    assert resp.status_code == 201
    assert Decimal(resp.json()["total_value"]) == Decimal("20.00")


def test_invalid_delivery_is_400(client, world):
    body = {"supplier_id": world.supplier.id, "lines": [{"item_id": world.rice.id, "quantity": "1", "unit_price": "1"}]}

    resp = client.post(f"/v1/locations/{world.kitchen.id}/deliveries", json=body, headers=_as(world.operator))

    assert resp.status_code == 400
    assert resp.json()["code"] == "INVOICE_REQUIRED"


def test_missing_user_header_is_422(client, world):
    resp = client.post(f"/v1/locations/{world.kitchen.id}/issues", json={"lines": []})

    assert resp.status_code == 422


def test_unknown_user_is_403(client, world):
    resp = client.post(
        f"/v1/locations/{world.kitchen.id}/issues",
        json={"lines": [{"item_id": world.rice.id, "quantity": "1"}]},
        headers={"X-User-Id": "9999"},
    )

    assert resp.status_code == 403
    assert resp.json()["code"] == "UNKNOWN_ACTOR"


def test_unknown_delivery_is_404(client):
    resp = client.get("/v1/deliveries/424242")

    assert resp.status_code == 404
    assert resp.json()["code"] == "DELIVERY_NOT_FOUND"


def test_operator_cannot_approve_transfer(client, world):
    receive(world, world.store, world.rice, 10, 5)
    created = client.post(
        "/v1/transfers",
        json={
            "from_location_id": world.store.id,
            "to_location_id": world.kitchen.id,
            "lines": [{"item_id": world.rice.id, "quantity": "3"}],
        },
        headers=_as(world.operator),
    )
    assert created.status_code == 201
    transfer_id = created.json()["id"]

    denied = client.post(f"/v1/transfers/{transfer_id}/approve", headers=_as(world.operator))
    approved = client.post(f"/v1/transfers/{transfer_id}/approve", headers=_as(world.supervisor))

    assert denied.status_code == 403
    assert approved.status_code == 200
    assert approved.json()["status"] == "COMPLETED"


def test_master_data(client, world):
    created = client.post(
        "/v1/items",
        json={"code": "FLOUR-25KG", "name": "Flour 25kg", "unit": "BAG"},
        headers=_as(world.admin),
    )
    duplicate = client.post(
        "/v1/items", json={"code": "FLOUR-25KG", "name": "Flour again"}, headers=_as(world.admin)
    )
    denied = client.post(
        "/v1/locations", json={"code": "BAR", "name": "Bar"}, headers=_as(world.operator)
    )

    assert created.status_code == 201
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "DUPLICATE_CODE"
    assert denied.status_code == 403
    codes = [row["code"] for row in client.get("/v1/items").json()]
    assert codes == ["FLOUR-25KG", "OIL-1L", "RICE-5KG"]
    assert [row["code"] for row in client.get("/v1/locations").json()] == ["KIT", "STR"]
    assert client.get("/v1/suppliers").json()[0]["code"] == "SUP1"


def test_draft_with_duplicate_invoice_is_400(client, world):
    body = {
        "supplier_id": world.supplier.id,
        "invoice_no": "INV-DUP",
        "post": False,
        "lines": [{"item_id": world.rice.id, "quantity": "1", "unit_price": "1"}],
    }
    url = f"/v1/locations/{world.kitchen.id}/deliveries"

    first = client.post(url, json=body, headers=_as(world.operator))
    second = client.post(url, json=body, headers=_as(world.operator))

    assert first.status_code == 201
    assert second.status_code == 400
    assert second.json()["code"] == "DUPLICATE_INVOICE"


def test_ncr_and_pob_routes(client, world):
    created = client.post(
        "/v1/ncrs",
        json={"location_id": world.kitchen.id, "reason": "Short weight", "value": "12.50"},
        headers=_as(world.operator),
    )
    assert created.status_code == 201
    ncr_id = created.json()["id"]

    denied = client.patch(f"/v1/ncrs/{ncr_id}", json={"status": "SENT"}, headers=_as(world.operator))
    sent = client.patch(f"/v1/ncrs/{ncr_id}", json={"status": "SENT"}, headers=_as(world.buyer))
    back = client.patch(f"/v1/ncrs/{ncr_id}", json={"status": "OPEN"}, headers=_as(world.buyer))

    assert denied.status_code == 403
    assert sent.json()["status"] == "SENT"
    assert back.status_code == 409
    assert back.json()["code"] == "INVALID_NCR_TRANSITION"

    day = world.period.start_date.isoformat()
    saved = client.post(
        f"/v1/locations/{world.kitchen.id}/pob",
        json={"entries": [{"entry_date": day, "crew_count": 40, "extra_count": 5}]},
        headers=_as(world.operator),
    )
    assert saved.status_code == 200
    assert saved.json()[0]["mandays"] == 45
    listed = client.get(f"/v1/locations/{world.kitchen.id}/pob").json()
    assert [row["entry_date"] for row in listed] == [day]

    summary = client.get(f"/v1/periods/{world.period.id}/locations/{world.kitchen.id}/reconciliation").json()
    assert summary["total_mandays"] == 45
    assert Decimal(str(summary["manday_cost"])) == Decimal("0")
