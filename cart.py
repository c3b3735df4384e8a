# cart.py
import asyncio
import sqlite3
import logging
from typing import Callable, Optional

from config import EngineContext
from database import Database
from errors import SESSION_EXPIRED_MESSAGE, describe_error
from models import (
    CartSnapshot, CartState, CatalogItem, CatalogUnit, FulfillmentMethod, LineItem,
)
from timing import Debouncer, TransientMessage

logger = logging.getLogger("pos_system.cart")

# Durable storage keys
CART_KEY = "cart"
FULFILLMENT_KEY = "fulfillmentMethod"
PROMOTION_KEY = "appliedPromotionId"


class CartEngine:
    """
    Owns the cart line items and keeps the server review in step with them.

    Mutations settle synchronously (totals recomputed, snapshot written to
    the store) and schedule a debounced review. Reviews carry a sequence
    number; a response is applied only if no newer review was started.
    """
    def __init__(self, context: EngineContext, pricing_client, store: Database,
                 on_change: Optional[Callable[[CartState], None]] = None):
        self.context = context
        self.pricing = pricing_client
        self.store = store
        self._on_change = on_change
        self._issued_seq = 0
        self._debouncer = Debouncer(context.review_debounce, self.review_now)
        self._error = TransientMessage(context.error_display_seconds, self._set_error_field)
        self.state = self._load()

    # Persistence
    def _load(self) -> CartState:
        state = CartState()
        saved = self.store.get_json(CART_KEY)
        if isinstance(saved, dict):
            try:
                state.items = [LineItem.from_dict(d) for d in saved.get('items', [])]
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Error loading cart from storage: {e}")
                state.items = []
        state.recompute()

        method = self.store.get(FULFILLMENT_KEY)
        try:
            state.fulfillment_method = FulfillmentMethod(method) if method else FulfillmentMethod.DELIVERY
        except ValueError:
            state.fulfillment_method = FulfillmentMethod.DELIVERY

        promo = self.store.get(PROMOTION_KEY)
        if promo is not None:
            try:
                state.applied_promotion_id = int(promo)
            except ValueError:
                self.store.delete(PROMOTION_KEY)
        logger.debug(f"Cart restored with {len(state.items)} line(s)")
        return state

    def _persist(self):
        try:
            self.store.set_json(CART_KEY, {
                'items': [i.to_dict() for i in self.state.items],
                'totalItems': self.state.total_items,
                'totalAmount': self.state.total_amount,
            })
        except sqlite3.Error as e:
            logger.error(f"Error saving cart to storage: {e}")

    def _settle(self, review=True):
        self.state.recompute()
        self._persist()
        self._notify()
        if review:
            self.schedule_review()

    def _notify(self):
        if self._on_change is not None:
            self._on_change(self.state)

    def _set_error_field(self, message):
        self.state.error = message
        self._notify()

    # Line item operations
    def add(self, unit: CatalogUnit) -> bool:
        """Add one of `unit`; returns False when the unit has no usable price."""
        if unit.price is None or unit.price <= 0:
            logger.warning(f"Refusing to add unit {unit.unit_id}: no price")
            return False
        existing = self.state.find(unit.unit_id)
        if existing:
            existing.quantity += 1
        else:
            self.state.items.append(LineItem(
                catalog_unit_id=unit.unit_id,
                name=unit.product_name,
                unit_label=unit.unit_name,
                quantity=1,
                unit_price=unit.price,
                stock_hint=unit.available_quantity,
            ))
        logger.info(f"Added {unit.product_name} - {unit.unit_name}")
        self._settle()
        return True

    def add_product(self, item: CatalogItem, unit_id: Optional[int] = None) -> bool:
        unit = item.pick_unit(unit_id)
        if unit is None:
            logger.warning(f"Product {item.name} has no sellable unit")
            return False
        return self.add(unit)

    def remove(self, unit_id: int) -> bool:
        if self.state.find(unit_id) is None:
            return False
        self.state.items = [i for i in self.state.items if i.catalog_unit_id != unit_id]
        self._settle()
        return True

    def set_quantity(self, unit_id: int, quantity: int) -> bool:
        if quantity <= 0:
            return self.remove(unit_id)
        line = self.state.find(unit_id)
        if line is None:
            return False
        line.quantity = int(quantity)
        self._settle()
        return True

    def clear(self):
        self._debouncer.cancel()
        # Any review still in flight is now stale
        self._issued_seq += 1
        self.state = CartState(
            fulfillment_method=self.state.fulfillment_method,
            review_seq=self._issued_seq,
        )
        self._error.clear()
        self.store.delete(CART_KEY)
        self.store.delete(PROMOTION_KEY)
        self._notify()
        logger.info("Cart cleared")

    def set_fulfillment_method(self, method: FulfillmentMethod):
        self.state.fulfillment_method = FulfillmentMethod(method)
        self.store.set(FULFILLMENT_KEY, self.state.fulfillment_method.value)
        self._notify()

    # Promotions
    async def apply_promotion(self, promotion_id: int):
        self.state.applied_promotion_id = int(promotion_id)
        self.store.set(PROMOTION_KEY, str(promotion_id))
        await self.review_now()

    async def remove_promotion(self):
        self.state.applied_promotion_id = None
        self.store.delete(PROMOTION_KEY)
        await self.review_now()

    # Review
    def schedule_review(self):
        self._debouncer.schedule()

    async def review_now(self):
        """Ask the pricing service for authoritative totals of the current cart."""
        self._debouncer.cancel()
        self._issued_seq += 1
        seq = self._issued_seq

        if not self.state.items:
            self.state.review_result = None
            self.state.review_seq = seq
            self.state.loading = False
            self._error.clear()
            return

        if not self.context.has_valid_token():
            self.state.loading = False
            self._error.set(SESSION_EXPIRED_MESSAGE)
            return

        lines = [LineItem(**vars(i)) for i in self.state.items]
        promotion_id = self.state.applied_promotion_id
        self.state.loading = True
        self._notify()
        try:
            result = await self.pricing.review(lines, promotion_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if seq != self._issued_seq:
                logger.debug(f"Ignoring failure of superseded review #{seq}")
                return
            logger.error(f"Error reviewing cart: {e}")
            self.state.loading = False
            self._error.set(describe_error(e, lines))
            return

        if seq != self._issued_seq:
            logger.debug(f"Discarding stale review #{seq} (latest #{self._issued_seq})")
            return
        self.state.review_result = result
        self.state.review_seq = seq
        self.state.loading = False
        self._error.clear()
        self._notify()

    @property
    def display_total(self):
        if self.state.review_result is not None:
            return self.state.review_result.total_amount
        return self.state.total_amount

    @property
    def error(self):
        return self.state.error

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=tuple(LineItem(**vars(i)) for i in self.state.items),
            review_result=self.state.review_result,
            applied_promotion_id=self.state.applied_promotion_id,
            fulfillment_method=self.state.fulfillment_method,
        )

    async def wait_idle(self):
        """Wait until no review is scheduled or running."""
        await self._debouncer.drain()

    def close(self):
        self._debouncer.close()
        self._error.clear()
