# models.py
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Optional


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DELIVERING = "DELIVERING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    COD = "COD"
    BANK_TRANSFER = "BANK_TRANSFER"


class PaymentStatus(str, Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"


class FulfillmentMethod(str, Enum):
    """Values match the backend's deliveryMethod field."""
    PICKUP = "PICKUP_AT_STORE"
    DELIVERY = "HOME_DELIVERY"


class CheckoutStage(str, Enum):
    DRAFT = "DRAFT"
    ORDER_CREATED = "ORDER_CREATED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    DELIVERING = "DELIVERING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"


@dataclass
class CatalogUnit:
    """A sellable unit of a product (e.g. "Apple - kg")."""
    unit_id: int
    product_name: str
    unit_name: str
    price: float
    available_quantity: Optional[int] = None
    is_default: bool = False


@dataclass
class CatalogItem:
    """A product as returned by the catalog, with its units in priority order."""
    product_id: Optional[int]
    name: str
    units: List[CatalogUnit] = field(default_factory=list)

    def pick_unit(self, unit_id: Optional[int] = None) -> Optional[CatalogUnit]:
        if unit_id is not None:
            return next((u for u in self.units if u.unit_id == unit_id), None)
        default = next((u for u in self.units if u.is_default), None)
        return default or (self.units[0] if self.units else None)


@dataclass
class LineItem:
    """One line in the current cart."""
    catalog_unit_id: int
    name: str
    unit_label: str
    quantity: int
    unit_price: float
    stock_hint: Optional[int] = None

    @property
    def subtotal(self):
        return self.quantity * self.unit_price

    def to_dict(self):
        data = asdict(self)
        data['subtotal'] = self.subtotal
        return data

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            catalog_unit_id=int(data['catalog_unit_id']),
            name=data.get('name', ''),
            unit_label=data.get('unit_label', ''),
            quantity=int(data['quantity']),
            unit_price=float(data['unit_price']),
            stock_hint=data.get('stock_hint'),
        )


@dataclass
class AppliedPromotion:
    id: Optional[int]
    name: str
    type: str = "DISCOUNT"
    discount_amount: float = 0


@dataclass
class GiftItem:
    catalog_unit_id: Optional[int]
    name: str
    quantity: int = 1


@dataclass
class ReviewResult:
    """Server-authoritative pricing for a cart; supersedes local totals."""
    subtotal: float
    discount_amount: float
    total_amount: float
    applied_promotion: Optional[AppliedPromotion] = None
    applied_promotion_descriptions: List[str] = field(default_factory=list)
    gift_items: List[GiftItem] = field(default_factory=list)
    shipping_fee: float = 0
    vat_amount: float = 0


@dataclass
class CartState:
    items: List[LineItem] = field(default_factory=list)
    total_items: int = 0
    total_amount: float = 0
    review_result: Optional[ReviewResult] = None
    review_seq: int = 0
    fulfillment_method: FulfillmentMethod = FulfillmentMethod.DELIVERY
    applied_promotion_id: Optional[int] = None
    loading: bool = False
    error: Optional[str] = None

    def find(self, unit_id: int) -> Optional[LineItem]:
        return next((i for i in self.items if i.catalog_unit_id == unit_id), None)

    def recompute(self):
        self.total_items = sum(i.quantity for i in self.items)
        self.total_amount = sum(i.subtotal for i in self.items)


@dataclass(frozen=True)
class CartSnapshot:
    """Immutable copy of the cart handed to checkout."""
    items: tuple
    review_result: Optional[ReviewResult]
    applied_promotion_id: Optional[int]
    fulfillment_method: FulfillmentMethod

    @property
    def subtotal(self):
        return sum(i.subtotal for i in self.items)

    def find(self, unit_id: int) -> Optional[LineItem]:
        return next((i for i in self.items if i.catalog_unit_id == unit_id), None)


@dataclass
class OrderLine:
    catalog_unit_id: int
    quantity: int
    unit_price: float = 0
    subtotal: float = 0
    name: Optional[str] = None
    unit_label: Optional[str] = None


@dataclass
class Order:
    id: int
    status: OrderStatus
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    lines: List[OrderLine] = field(default_factory=list)
    total_amount: float = 0
    discount_amount: float = 0
    payment_info: Optional[dict] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class PaymentIntent:
    """Bank-transfer details generated once per order."""
    account_number: str
    account_name: str
    bank_code: str
    transfer_content: str
    qr_content: str
    amount: float


@dataclass(frozen=True)
class PendingTransition:
    order_id: int
    from_status: OrderStatus
    to_status: OrderStatus
    step: int


@dataclass
class OrderTotals:
    subtotal: float
    discount: float
    shipping: float
    vat: float
    total: float


@dataclass
class AdvanceResult:
    """
    Outcome of the auto-advance sequence. `halted_at` is the last status
    that was successfully applied when a step failed.
    """
    order_id: int
    completed: bool
    halted_at: Optional[OrderStatus] = None
    failed_step: Optional[int] = None
    error: Optional[str] = None
    payment_error: Optional[str] = None


@dataclass
class StockShortage:
    unit_id: Optional[int]
    required_qty: Optional[int]
    available_qty: Optional[int]

    @property
    def shortfall(self):
        if self.required_qty is None or self.available_qty is None:
            return None
        return self.required_qty - self.available_qty


@dataclass
class InvoiceLine:
    name: str
    unit_label: str
    quantity: int
    unit_price: float
    subtotal: float


@dataclass
class Invoice:
    order_id: int
    lines: List[InvoiceLine]
    subtotal: float
    discount: float
    total: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat(timespec='seconds'))
