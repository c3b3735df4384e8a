import asyncio

import pytest

from config import EngineContext
from database import Database
from models import (
    CartSnapshot, CatalogItem, CatalogUnit, FulfillmentMethod, LineItem, Order,
    OrderStatus, PaymentIntent, ReviewResult,
)


# ── Shared stubs ───────────────────────────────────────────────

class FakePricing:
    """Prices lines locally; optional per-call delays and promotion discounts."""
    def __init__(self, discounts=None):
        self.calls = []
        self.delays = []
        self.discounts = discounts or {}
        self.fail = None

    async def review(self, lines, promotion_id=None):
        lines = list(lines)
        self.calls.append(([(l.catalog_unit_id, l.quantity) for l in lines], promotion_id))
        delay = self.delays.pop(0) if self.delays else 0
        await asyncio.sleep(delay)
        if self.fail is not None:
            raise self.fail
        subtotal = sum(l.quantity * l.unit_price for l in lines)
        discount = self.discounts.get(promotion_id, 0)
        return ReviewResult(
            subtotal=subtotal,
            discount_amount=discount,
            total_amount=subtotal - discount,
            applied_promotion_descriptions=[f"Promotion {promotion_id}"] if discount else [],
        )


class FakeOrderClient:
    def __init__(self, order_id=101):
        self.order_id = order_id
        self.calls = []
        self.status_payloads = []
        self.create_requests = []
        self.create_error = None
        self.fail_on = {}
        self.paid_error = None
        self.intent_error = None
        self.cancel_error = None
        self.detail = None
        self.match_results = []
        self.match_calls = []
        self.match_gate = None
        self.match_started = None

    async def create_order(self, request):
        self.create_requests.append(request)
        if self.create_error is not None:
            raise self.create_error
        return Order(id=self.order_id, status=OrderStatus.PENDING)

    async def get_order(self, order_id):
        if self.detail is not None:
            return self.detail
        return Order(id=order_id, status=OrderStatus.COMPLETED)

    async def update_status(self, order_id, status, note=None, warehouse_id=None,
                            stock_location_id=None):
        self.status_payloads.append({
            'status': status, 'note': note,
            'warehouseId': warehouse_id, 'stockLocationId': stock_location_id,
        })
        if status in self.fail_on:
            raise self.fail_on[status]
        self.calls.append(('status', status))
        return Order(id=order_id, status=status)

    async def update_payment_status(self, order_id, payment_status=None):
        if self.paid_error is not None:
            raise self.paid_error
        self.calls.append(('paid',))

    async def cancel_order(self, order_id):
        if self.cancel_error is not None:
            raise self.cancel_error
        self.calls.append(('cancel', order_id))

    async def create_payment_intent(self, order_id, amount, description, bank_code):
        self.calls.append(('intent', amount, bank_code))
        if self.intent_error is not None:
            raise self.intent_error
        return PaymentIntent(
            account_number="123456", account_name="SHOP", bank_code=bank_code,
            transfer_content=f"DH{order_id}", qr_content="qr", amount=amount,
        )

    async def match_payment(self, content, amount, limit=20):
        self.match_calls.append((content, amount))
        if self.match_gate is not None:
            self.match_started.set()
            await self.match_gate.wait()
        result = self.match_results.pop(0) if self.match_results else False
        if isinstance(result, Exception):
            raise result
        return result


class FakeProducts:
    def __init__(self, items=None, units=None):
        self.items = items or {}
        self.units = units or {}
        self.error = None
        self.lookups = []

    async def find_by_code(self, code):
        self.lookups.append(code)
        if self.error is not None:
            raise self.error
        return self.items.get(code)

    async def get_unit(self, unit_id):
        return self.units.get(unit_id)


def make_unit(unit_id=1, price=50000, name="Milk", unit_name="box"):
    return CatalogUnit(unit_id=unit_id, product_name=name, unit_name=unit_name, price=price)


def make_item(*units, name="Milk"):
    return CatalogItem(product_id=1, name=name, units=list(units))


def make_snapshot(*lines, review_result=None, promotion_id=None):
    if not lines:
        lines = (LineItem(1, "Milk", "box", 2, 50000),)
    return CartSnapshot(
        items=tuple(lines),
        review_result=review_result,
        applied_promotion_id=promotion_id,
        fulfillment_method=FulfillmentMethod.DELIVERY,
    )


@pytest.fixture
def ctx():
    return EngineContext(
        access_token="test-token",
        warehouse_id=3,
        stock_location_id=4,
        review_debounce=0.01,
        step_delay=0,
        poll_interval=0.001,
        poll_max_attempts=50,
        scan_interval=0.005,
        scan_dedup_window=2.0,
        camera_check_interval=0.01,
        error_display_seconds=0,
    )


@pytest.fixture
def store(tmp_path):
    db = Database(str(tmp_path / "pos.db"))
    yield db
    db.close()


@pytest.fixture
def pricing():
    return FakePricing(discounts={7: 10000})


@pytest.fixture
def orders():
    return FakeOrderClient()
