# orchestrator.py
"""
POS checkout state machine.

Creates the order from a cart snapshot, then either runs the automatic
status advance (cash on delivery) or waits for a matching bank transfer
before running it. The advance is one cancellable task that awaits each
status patch before issuing the next; a failed step halts the sequence
and is reported through `AdvanceResult`.
"""
import asyncio
import logging
from typing import Callable, Optional

from clients import order_request
from config import EngineContext
from errors import CheckoutValidationError, PaymentIntentError, describe_error
from lifecycle import AUTO_ADVANCE_STEPS, InvalidTransitionError, validate_transition
from models import (
    AdvanceResult, CartSnapshot, CheckoutStage, Invoice, InvoiceLine, Order, OrderLine,
    OrderStatus, OrderTotals, PaymentIntent, PaymentMethod, PaymentStatus, PendingTransition,
)
from poller import PaymentPoller
from timing import TransientMessage

logger = logging.getLogger("pos_system.orchestrator")


def compute_totals(snapshot: CartSnapshot) -> OrderTotals:
    """Server review wins; otherwise subtotal - discount + shipping + vat."""
    review = snapshot.review_result
    subtotal = snapshot.subtotal
    if review is None:
        return OrderTotals(subtotal=subtotal, discount=0, shipping=0, vat=0, total=subtotal)
    return OrderTotals(
        subtotal=review.subtotal,
        discount=review.discount_amount,
        shipping=review.shipping_fee,
        vat=review.vat_amount,
        total=review.total_amount,
    )


class OrderOrchestrator:
    def __init__(self, context: EngineContext, order_client, product_client=None,
                 on_invoice_ready: Optional[Callable[[Invoice], None]] = None,
                 on_change: Optional[Callable[["OrderOrchestrator"], None]] = None):
        self.context = context
        self.client = order_client
        self.products = product_client
        self._on_invoice_ready = on_invoice_ready
        self._on_change = on_change
        self._error = TransientMessage(context.error_display_seconds)
        self._success = TransientMessage(context.error_display_seconds)
        self._task: Optional[asyncio.Task] = None
        self._reset_fields()

    def _reset_fields(self):
        self.stage = CheckoutStage.DRAFT
        self.order: Optional[Order] = None
        self.snapshot: Optional[CartSnapshot] = None
        self.totals: Optional[OrderTotals] = None
        self.payment_intent: Optional[PaymentIntent] = None
        self.pending_transition: Optional[PendingTransition] = None
        self.poller: Optional[PaymentPoller] = None
        self.advance_result: Optional[AdvanceResult] = None
        self.invoice: Optional[Invoice] = None
        self.status_history = []
        self._advance_started = False

    @property
    def error(self):
        return self._error.value

    @property
    def success(self):
        return self._success.value

    @property
    def busy(self):
        """True while waiting for a transfer or running the status sequence."""
        if self.poller is not None and self.poller.running:
            return True
        return self._task is not None and not self._task.done()

    def _set_stage(self, stage: CheckoutStage):
        self.stage = stage
        logger.debug(f"Checkout stage -> {stage.value}")
        if self._on_change is not None:
            self._on_change(self)

    def _fail(self, message: str):
        logger.error(message)
        self._error.set(message)

    # Order creation
    def _validate(self, snapshot: CartSnapshot, customer):
        if not self.context.pos_mode and customer is None:
            raise CheckoutValidationError("Please select a customer.")
        if not snapshot.items:
            raise CheckoutValidationError("Add at least one product to the cart.")

    async def create_order(self, snapshot: CartSnapshot, payment_method: PaymentMethod,
                           customer=None, shipping_address: Optional[str] = None,
                           phone_number: Optional[str] = None) -> Optional[Order]:
        if self.stage != CheckoutStage.DRAFT:
            self._fail("An order is already in progress.")
            return None
        try:
            self._validate(snapshot, customer)
        except CheckoutValidationError as e:
            self._fail(str(e))
            return None

        totals = compute_totals(snapshot)
        request = order_request(
            snapshot.items,
            payment_method=payment_method,
            fulfillment_method=snapshot.fulfillment_method,
            promotion_id=snapshot.applied_promotion_id,
            shipping_address=shipping_address or getattr(customer, 'address', None),
            warehouse_id=self.context.warehouse_id,
            stock_location_id=self.context.stock_location_id,
            phone_number=phone_number,
        )
        try:
            order = await self.client.create_order(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(describe_error(e, snapshot.items))
            return None

        order.status = OrderStatus.PENDING
        order.payment_method = payment_method
        if not order.total_amount:
            order.total_amount = totals.total
        self.order = order
        self.snapshot = snapshot
        self.totals = totals
        self.status_history = [OrderStatus.PENDING]
        self._success.set(f"Order #{order.id} created.")
        logger.info(f"Order #{order.id} created ({payment_method.value}, total {totals.total})")
        self._set_stage(CheckoutStage.ORDER_CREATED)
        return order

    async def checkout(self, snapshot: CartSnapshot, payment_method: PaymentMethod,
                       customer=None, shipping_address: Optional[str] = None,
                       phone_number: Optional[str] = None) -> Optional[Order]:
        """Create the order and start the flow for its payment method."""
        order = await self.create_order(snapshot, payment_method, customer,
                                        shipping_address, phone_number)
        if order is None:
            return None
        if payment_method == PaymentMethod.BANK_TRANSFER:
            await self._start_bank_transfer()
        elif self.context.pos_mode:
            self._start_advance(mark_paid=True)
        return order

    # Bank transfer
    async def _start_bank_transfer(self) -> bool:
        order = self.order
        amount = self.totals.total
        info = order.payment_info or {}
        try:
            if info.get('transferContent'):
                intent = PaymentIntent(
                    account_number=str(info.get('accountNumber', '')),
                    account_name=str(info.get('accountName', '')),
                    bank_code=str(info.get('bankCode', self.context.bank_code)),
                    transfer_content=str(info['transferContent']),
                    qr_content=str(info.get('qrContent', '')),
                    amount=float(info.get('amount') or amount),
                )
            else:
                intent = await self.client.create_payment_intent(
                    order.id, amount, f"Payment for order #{order.id}", self.context.bank_code
                )
            if not intent.transfer_content:
                raise PaymentIntentError("Payment intent has no transfer reference.")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(f"Could not create the transfer QR: {describe_error(e)}")
            return False

        self.payment_intent = intent
        self._set_stage(CheckoutStage.AWAITING_PAYMENT)
        self.poller = PaymentPoller(
            self.client,
            intent.transfer_content,
            intent.amount or amount,
            on_match=self._on_payment_matched,
            on_expired=self._on_payment_expired,
            interval=self.context.poll_interval,
            max_attempts=self.context.poll_max_attempts,
            timeout=self.context.poll_timeout,
        )
        self.poller.start()
        self._success.set(f"Order #{order.id}: scan the QR code to pay.")
        return True

    def _on_payment_matched(self):
        if self._advance_started or self.stage != CheckoutStage.AWAITING_PAYMENT:
            return
        self._advance_started = True
        self._success.set("Payment received. Processing order...")
        self._task = asyncio.get_running_loop().create_task(self._settle_payment())

    def _on_payment_expired(self):
        if self.stage != CheckoutStage.AWAITING_PAYMENT:
            return
        self._fail(f"No matching transfer received for order #{self.order.id}; payment expired.")
        self._set_stage(CheckoutStage.PAYMENT_EXPIRED)

    async def _settle_payment(self):
        await self._mark_paid()
        if self.context.pos_mode:
            return await self._auto_advance(mark_paid=False)
        self._set_stage(CheckoutStage.ORDER_CREATED)
        return None

    async def _mark_paid(self) -> Optional[str]:
        order = self.order
        try:
            await self.client.update_payment_status(order.id, PaymentStatus.PAID)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = f"Could not update payment status: {describe_error(e)}"
            self._fail(message)
            return message
        order.payment_status = PaymentStatus.PAID
        logger.info(f"Order #{order.id} marked PAID")
        return None

    # Auto-advance
    def _start_advance(self, mark_paid: bool):
        if self._advance_started:
            return
        self._advance_started = True
        self._task = asyncio.get_running_loop().create_task(self._auto_advance(mark_paid))

    async def _auto_advance(self, mark_paid: bool) -> AdvanceResult:
        order = self.order
        for step, (from_status, to_status) in enumerate(AUTO_ADVANCE_STEPS, start=1):
            await asyncio.sleep(self.context.step_delay)
            try:
                validate_transition(order=order, target_status=to_status)
            except InvalidTransitionError as e:
                return self._halt(step, str(e))

            self.pending_transition = PendingTransition(order.id, from_status, to_status, step)
            try:
                updated = await self.client.update_status(
                    order.id,
                    to_status,
                    note=f"POS: status changed to {to_status.value}",
                    warehouse_id=self.context.warehouse_id,
                    stock_location_id=self.context.stock_location_id,
                )
            except asyncio.CancelledError:
                self.pending_transition = None
                raise
            except Exception as e:
                self.pending_transition = None
                return self._halt(step, describe_error(e, self.snapshot.items))

            self.pending_transition = None
            order.status = to_status
            if updated is not None and updated.payment_status == PaymentStatus.PAID:
                order.payment_status = PaymentStatus.PAID
            self.status_history.append(to_status)
            logger.info(f"Order #{order.id}: {from_status.value} -> {to_status.value}")
            self._set_stage(CheckoutStage(to_status.value))

        payment_error = await self._mark_paid() if mark_paid else None
        self.invoice = await self._build_invoice()
        self.advance_result = AdvanceResult(order_id=order.id, completed=True,
                                            payment_error=payment_error)
        self._success.set(f"Order #{order.id} completed.")
        if self._on_invoice_ready is not None:
            try:
                self._on_invoice_ready(self.invoice)
            except Exception:
                logger.exception("Invoice callback failed")
        return self.advance_result

    def _halt(self, step: int, message: str) -> AdvanceResult:
        order = self.order
        self.advance_result = AdvanceResult(
            order_id=order.id,
            completed=False,
            halted_at=order.status,
            failed_step=step,
            error=message,
        )
        self._fail(f"Order #{order.id} stopped at {order.status.value} (step {step}): {message}")
        return self.advance_result

    # Invoice
    async def _build_invoice(self) -> Invoice:
        order = self.order
        detail = None
        try:
            detail = await self.client.get_order(order.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Could not fetch order #{order.id} for the invoice: {e}")

        if detail is not None and detail.lines:
            source = detail.lines
        else:
            source = [
                OrderLine(catalog_unit_id=i.catalog_unit_id, quantity=i.quantity,
                          unit_price=i.unit_price, subtotal=i.subtotal)
                for i in self.snapshot.items
            ]
        lines = [await self._invoice_line(l) for l in source]
        total = detail.total_amount if detail is not None and detail.total_amount else self.totals.total
        return Invoice(
            order_id=order.id,
            lines=lines,
            subtotal=self.totals.subtotal,
            discount=self.totals.discount,
            total=total,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
        )

    async def _invoice_line(self, line: OrderLine) -> InvoiceLine:
        cart_line = self.snapshot.find(line.catalog_unit_id) if self.snapshot else None
        name = cart_line.name if cart_line else line.name
        unit_label = cart_line.unit_label if cart_line else line.unit_label
        if not name and self.products is not None:
            try:
                unit = await self.products.get_unit(line.catalog_unit_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Unit lookup failed for PU#{line.catalog_unit_id}: {e}")
                unit = None
            if unit is not None:
                name, unit_label = unit.product_name, unit.unit_name
        unit_price = line.unit_price or (cart_line.unit_price if cart_line else 0)
        return InvoiceLine(
            name=name or f"PU#{line.catalog_unit_id}",
            unit_label=unit_label or "unit",
            quantity=line.quantity,
            unit_price=unit_price,
            subtotal=line.subtotal or unit_price * line.quantity,
        )

    # Cancellation / teardown
    def _stop_background(self):
        if self.poller is not None:
            self.poller.stop()
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.pending_transition = None

    async def cancel(self) -> bool:
        order = self.order
        if order is None or order.status != OrderStatus.PENDING:
            self._fail("Only pending orders can be cancelled.")
            return False
        self._stop_background()
        try:
            await self.client.cancel_order(order.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(f"Could not cancel order #{order.id}: {describe_error(e)}")
            return False
        order.status = OrderStatus.CANCELLED
        self.status_history.append(OrderStatus.CANCELLED)
        self._success.set(f"Order #{order.id} cancelled.")
        self._set_stage(CheckoutStage.CANCELLED)
        return True

    def stop(self):
        """Tear down: no more polling and no further status steps."""
        self._stop_background()

    def reset(self):
        """Back to DRAFT for the next sale."""
        self.stop()
        self._task = None
        self._error.clear()
        self._success.clear()
        self._reset_fields()

    async def wait(self) -> Optional[AdvanceResult]:
        """Wait for payment polling and the advance sequence to finish."""
        if self.poller is not None:
            await self.poller.wait()
        task = self._task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self.advance_result
