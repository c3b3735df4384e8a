import asyncio

from cart import CartEngine
from errors import ApiError
from scanner import BarcodeCartAdapter, QueueBarcodeSource, decode_stream

from conftest import FakeProducts, make_item, make_unit


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_adapter(ctx, store, pricing, products, clock=None):
    cart = CartEngine(ctx, pricing, store)
    source = QueueBarcodeSource()
    kwargs = {'clock': clock} if clock is not None else {}
    return BarcodeCartAdapter(ctx, source, products, cart, **kwargs), cart, source


class TestHandleCode:

    def test_repeat_scan_inside_window_is_ignored(self, ctx, store, pricing):
        products = FakeProducts(items={"893": make_item(make_unit(1, 50000))})
        clock = FakeClock()

        async def scenario():
            adapter, cart, _ = make_adapter(ctx, store, pricing, products, clock)
            first = await adapter.handle_code("893")
            clock.now = 1.0
            second = await adapter.handle_code("893")
            clock.now = 2.5
            third = await adapter.handle_code("893")
            cart.close()
            return first, second, third, cart

        first, second, third, cart = asyncio.run(scenario())
        assert first.added and third.added
        assert not second.accepted
        assert products.lookups == ["893", "893"]
        assert cart.state.items[0].quantity == 2
        assert third.message == "Added Milk - box"

    def test_first_unit_is_used(self, ctx, store, pricing):
        crate = make_unit(2, 500000, unit_name="crate")
        crate.is_default = True
        products = FakeProducts(items={"893": make_item(make_unit(1, 50000), crate)})

        async def scenario():
            adapter, cart, _ = make_adapter(ctx, store, pricing, products)
            await adapter.handle_code(" 893 ")
            cart.close()
            return cart

        cart = asyncio.run(scenario())
        assert cart.state.items[0].catalog_unit_id == 1

    def test_unpriced_unit_is_reported(self, ctx, store, pricing):
        products = FakeProducts(items={"893": make_item(make_unit(1, 0))})

        async def scenario():
            adapter, cart, _ = make_adapter(ctx, store, pricing, products)
            result = await adapter.handle_code("893")
            cart.close()
            return adapter, cart, result

        adapter, cart, result = asyncio.run(scenario())
        assert not result.added
        assert "has no price" in adapter.error
        assert cart.state.items == []

    def test_unknown_code_is_reported(self, ctx, store, pricing):
        async def scenario():
            adapter, cart, _ = make_adapter(ctx, store, pricing, FakeProducts())
            await adapter.handle_code("000")
            cart.close()
            return adapter

        adapter = asyncio.run(scenario())
        assert adapter.error == "No product found for code: 000"

    def test_product_without_units_is_reported(self, ctx, store, pricing):
        products = FakeProducts(items={"893": make_item()})

        async def scenario():
            adapter, cart, _ = make_adapter(ctx, store, pricing, products)
            await adapter.handle_code("893")
            cart.close()
            return adapter

        adapter = asyncio.run(scenario())
        assert "no sellable unit" in adapter.error

    def test_lookup_failure_is_reported(self, ctx, store, pricing):
        products = FakeProducts()
        products.error = ApiError(None, "Connection error: refused")

        async def scenario():
            adapter, cart, _ = make_adapter(ctx, store, pricing, products)
            result = await adapter.handle_code("893")
            cart.close()
            return adapter, result

        adapter, result = asyncio.run(scenario())
        assert not result.added
        assert "Connection error: refused" in adapter.error


class TestScanLoop:

    def test_pushed_codes_reach_the_cart(self, ctx, store, pricing):
        products = FakeProducts(items={
            "893": make_item(make_unit(1, 50000)),
            "894": make_item(make_unit(2, 20000, name="Bread", unit_name="loaf"), name="Bread"),
        })

        async def scenario():
            adapter, cart, source = make_adapter(ctx, store, pricing, products)
            adapter.start()
            source.push("893")
            source.push("894")
            await asyncio.sleep(0.05)
            adapter.stop()
            cart.close()
            return cart

        cart = asyncio.run(scenario())
        assert [i.catalog_unit_id for i in cart.state.items] == [1, 2]

    def test_dead_source_is_restarted(self, ctx, store, pricing):
        async def scenario():
            adapter, cart, source = make_adapter(ctx, store, pricing, FakeProducts())
            source.close()
            adapter.start()
            await asyncio.sleep(0.05)
            alive = source.is_alive()
            adapter.stop()
            cart.close()
            return source, alive

        source, alive = asyncio.run(scenario())
        assert alive
        assert source.restarts >= 1

    def test_decode_stream_strips_and_skips_blanks(self):
        async def scenario():
            source = QueueBarcodeSource()
            for code in ("  ", "893\n", "", "894"):
                source.push(code)
            stream = decode_stream(source, 0.001)
            codes = [await stream.__anext__(), await stream.__anext__()]
            await stream.aclose()
            return codes

        assert asyncio.run(scenario()) == ["893", "894"]
