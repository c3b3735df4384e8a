# main.py
import os
import sys
import asyncio
import logging
import argparse
from pathlib import Path

from cart import CartEngine
from clients import OrderClient, PricingClient, ProductClient
from config import EngineContext, load_config
from database import Database
from logger import setup_logger, set_debug
from models import CheckoutStage, PaymentMethod
from orchestrator import OrderOrchestrator
from scanner import BarcodeCartAdapter, QueueBarcodeSource
from utils import format_currency, write_receipts

logger = logging.getLogger("pos_system.main")

HELP = """Scan or type a barcode and press Enter. Commands:
  :qty <unit_id> <n>   set quantity (0 removes)
  :rm <unit_id>        remove a line
  :promo <id>          apply a promotion
  :nopromo             remove the promotion
  :pay cod|bank        check out
  :cancel              cancel the pending order
  :clear               empty the cart
  :cart                show the cart
  :quit                exit"""


def setup_directories(config):
    """Create required directories if they don't exist."""
    dirs = [
        config.get('receipt', {}).get('receipt_dir', 'receipts'),
        os.path.dirname(config.get('logging', {}).get('file', 'logs/pos.log')),
    ]
    for dir_path in dirs:
        if not dir_path:
            continue
        path = Path(dir_path)
        if not path.exists():
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created directory: {path}")


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description="POS checkout terminal")
    parser.add_argument("--config", help="Path to configuration file", default="config.json")
    parser.add_argument("--debug", help="Enable debug mode", action="store_true")
    return parser.parse_args(argv)


class PosSession:
    """Wires the engine together and drives it from terminal input."""
    def __init__(self, config, context: EngineContext, db: Database):
        self.config = config
        self.context = context
        self.db = db
        self.pricing = PricingClient(context)
        self.orders = OrderClient(context)
        self.products = ProductClient(context)
        self.cart = CartEngine(context, self.pricing, db)
        self.source = QueueBarcodeSource()
        self.scanner = BarcodeCartAdapter(context, self.source, self.products, self.cart)
        self.checkout = OrderOrchestrator(context, self.orders, self.products,
                                          on_invoice_ready=self.on_invoice_ready)
        self._receipt_tasks = set()

    def on_invoice_ready(self, invoice):
        task = asyncio.get_running_loop().create_task(self.save_receipts(invoice))
        self._receipt_tasks.add(task)
        task.add_done_callback(self._receipt_tasks.discard)
        self.cart.clear()

    async def save_receipts(self, invoice):
        """Write receipts in a worker thread, off the event loop."""
        receipt = self.config.get('receipt', {})
        loop = asyncio.get_running_loop()
        try:
            paths = await loop.run_in_executor(
                None, write_receipts, invoice,
                receipt.get('receipt_dir', 'receipts'), receipt.get('pdf', True),
            )
        except OSError as e:
            logger.error(f"Error writing receipt: {e}")
            return []
        print(f"Receipt saved: {', '.join(paths)}")
        return paths

    async def wait_receipts(self):
        if self._receipt_tasks:
            await asyncio.gather(*list(self._receipt_tasks))

    def show_cart(self):
        state = self.cart.state
        if not state.items:
            print("Cart is empty.")
            return
        for line in state.items:
            print(f"  [{line.catalog_unit_id}] {line.name} - {line.unit_label} "
                  f"x{line.quantity}  {format_currency(line.subtotal)}")
        review = state.review_result
        if review is not None:
            print(f"  Subtotal: {format_currency(review.subtotal)}")
            if review.discount_amount:
                print(f"  Discount: -{format_currency(review.discount_amount)}")
            for text in review.applied_promotion_descriptions:
                print(f"  Promotion: {text}")
            for gift in review.gift_items:
                print(f"  Gift: {gift.name} x{gift.quantity}")
        print(f"  Total: {format_currency(self.cart.display_total)}")

    def show_messages(self):
        for message in (self.cart.error, self.scanner.error, self.checkout.error):
            if message:
                print(f"! {message}")
        for message in (self.scanner.message, self.checkout.success):
            if message:
                print(message)

    async def pay(self, method_name):
        methods = {'cod': PaymentMethod.COD, 'bank': PaymentMethod.BANK_TRANSFER}
        method = methods.get(method_name)
        if method is None:
            print("Usage: :pay cod|bank")
            return
        if self.checkout.busy:
            print(f"Order #{self.checkout.order.id} is still in progress ({self.checkout.stage.value}).")
            return
        if self.checkout.stage != CheckoutStage.DRAFT:
            self.checkout.reset()
        await self.cart.wait_idle()
        order = await self.checkout.checkout(self.cart.snapshot(), method)
        if order is None:
            return
        intent = self.checkout.payment_intent
        if intent is not None:
            print(f"Transfer {format_currency(intent.amount)} to {intent.account_name} "
                  f"({intent.bank_code} {intent.account_number}), reference: {intent.transfer_content}")

    async def handle_command(self, line):
        parts = line[1:].split()
        if not parts:
            return True
        cmd, args = parts[0], parts[1:]
        try:
            if cmd == 'quit':
                return False
            elif cmd == 'qty' and len(args) == 2:
                if not self.cart.set_quantity(int(args[0]), int(args[1])):
                    print(f"No line for unit {args[0]}")
            elif cmd == 'rm' and len(args) == 1:
                if not self.cart.remove(int(args[0])):
                    print(f"No line for unit {args[0]}")
            elif cmd == 'promo' and len(args) == 1:
                await self.cart.apply_promotion(int(args[0]))
                self.show_cart()
            elif cmd == 'nopromo':
                await self.cart.remove_promotion()
                self.show_cart()
            elif cmd == 'pay' and len(args) == 1:
                await self.pay(args[0].lower())
            elif cmd == 'cancel':
                if await self.checkout.cancel():
                    self.checkout.reset()
            elif cmd == 'clear':
                self.cart.clear()
            elif cmd == 'cart':
                await self.cart.wait_idle()
                self.show_cart()
            else:
                print(HELP)
        except ValueError:
            print(HELP)
        return True

    async def run(self):
        loop = asyncio.get_running_loop()
        self.scanner.start()
        print(HELP)
        try:
            while True:
                self.show_messages()
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                if line.startswith(':'):
                    if not await self.handle_command(line):
                        break
                else:
                    self.source.push(line)
                    # let the scan loop pick the code up
                    await asyncio.sleep(self.context.scan_interval * 2)
        finally:
            await self.close()

    async def close(self):
        self.scanner.stop()
        self.checkout.stop()
        await self.wait_receipts()
        self.cart.close()
        for client in (self.pricing, self.orders, self.products):
            await client.aclose()
        self.db.close()


def main(argv=None):
    try:
        args = parse_arguments(argv)

        config = load_config(args.config)
        setup_logger(config)
        if args.debug:
            set_debug(True)
            logger.debug("Debug mode enabled")

        setup_directories(config)

        db_path = config["database"].get("name", "pos.db")
        db = Database(db_path)
        logger.info(f"Database initialized: {db_path}")

        context = EngineContext.from_config(config)
        if not context.has_valid_token():
            logger.warning("No valid access token configured; set POS_ACCESS_TOKEN")

        logger.info("Starting POS session")
        asyncio.run(PosSession(config, context, db).run())

    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
