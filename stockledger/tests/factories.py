"""Petits helpers partagés par les tests (hors fixtures)."""
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

from stockledger.app.db.models.core_types import (
    LocationType,
    PeriodLocationStatus,
    PeriodStatus,
    POStatus,
    PRFStatus,
    Role,
)
from stockledger.app.db.models.models_v1 import (
    Item,
    Location,
    Period,
    PeriodLocation,
    PurchaseOrder,
    PurchaseOrderLine,
    Requisition,
    RequisitionLine,
    Supplier,
    User,
)
from stockledger.app.schemas.transactions import DeliveryCreate, DeliveryLineIn
from stockledger.services.deliveries import create_delivery


_invoice_counter = {"n": 0}


def build_world(db):
    """Deux sites, quatre rôles, deux articles, un fournisseur, une période ouverte."""
    users = {
        role: User(username=role.value.lower(), full_name=role.value.title(), role=role, is_active=True)
        for role in Role
    }
    kitchen = Location(code="KIT", name="Main Kitchen", type=LocationType.kitchen, is_active=True)
    store = Location(code="STR", name="Central Store", type=LocationType.central, is_active=True)
    rice = Item(code="RICE-5KG", name="Rice 5kg", unit="BAG", is_active=True)
    oil = Item(code="OIL-1L", name="Cooking Oil 1L", unit="BTL", is_active=True)
    supplier = Supplier(code="SUP1", name="Gulf Foods", is_active=True)
    db.add_all([*users.values(), kitchen, store, rice, oil, supplier])
    db.flush()

    start = date.today().replace(day=1)
    period = Period(
        name="Current",
        start_date=start,
        end_date=start + timedelta(days=29),
        status=PeriodStatus.open,
    )
    for loc in (kitchen, store):
        period.period_locations.append(PeriodLocation(location_id=loc.id, status=PeriodLocationStatus.open))
    db.add(period)
    db.commit()

    return SimpleNamespace(
        db=db,
        admin=users[Role.admin],
        supervisor=users[Role.supervisor],
        operator=users[Role.operator],
        buyer=users[Role.procurement],
        kitchen=kitchen,
        store=store,
        rice=rice,
        oil=oil,
        supplier=supplier,
        period=period,
    )


def receive(world, location, item, qty, price, *, actor=None, po_id=None, po_line_id=None, notifier=None):
    """Poste une livraison d'une ligne et renvoie le DeliveryResult."""
    _invoice_counter["n"] += 1
    payload = DeliveryCreate(
        supplier_id=world.supplier.id,
        po_id=po_id,
        invoice_no=f"INV-{_invoice_counter['n']}",
        post=True,
        lines=[DeliveryLineIn(item_id=item.id, quantity=Decimal(str(qty)), unit_price=Decimal(str(price)), po_line_id=po_line_id)],
    )
    return create_delivery(world.db, location.id, payload, (actor or world.operator).id, notifier)


def make_order(world, qty=100, price=10, *, item=None, location=None):
    """PRF approuvée + PO ouvert d'une ligne (insertion directe)."""
    db = world.db
    item = item or world.rice
    location = location or world.kitchen
    prf = Requisition(
        prf_no=f"PRF-TEST-{item.id}-{location.id}",
        location_id=location.id,
        period_id=world.period.id,
        status=PRFStatus.approved,
        requested_by=world.operator.id,
        lines=[RequisitionLine(line_no=1, item_id=item.id, quantity=Decimal(qty), estimated_price=Decimal(price), line_value=Decimal(qty) * Decimal(price))],
    )
    db.add(prf)
    db.flush()
    po = PurchaseOrder(
        po_no=f"PO-TEST-{prf.id}",
        prf_id=prf.id,
        supplier_id=world.supplier.id,
        location_id=location.id,
        status=POStatus.open,
        created_by=world.buyer.id,
        lines=[
            PurchaseOrderLine(
                line_no=1,
                item_id=item.id,
                quantity=Decimal(qty),
                delivered_qty=Decimal("0"),
                unit_price=Decimal(price),
            )
        ],
    )
    db.add(po)
    db.commit()
    return po


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def send(self, event, payload):
        self.events.append((event, payload))


