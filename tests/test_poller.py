import asyncio

from errors import ApiError
from poller import PaymentPoller, PollOutcome

from conftest import FakeOrderClient


def make_poller(client, matched, expired=None, **kwargs):
    kwargs.setdefault('interval', 0.001)
    return PaymentPoller(client, "DH101", 100000,
                         on_match=lambda: matched.append(1),
                         on_expired=(lambda: expired.append(1)) if expired is not None else None,
                         **kwargs)


class TestPaymentPoller:

    def test_match_fires_once(self):
        client = FakeOrderClient()
        client.match_results = [False, False, True, True]
        matched = []

        async def scenario():
            poller = make_poller(client, matched)
            poller.start()
            await poller.wait()
            return poller

        poller = asyncio.run(scenario())
        assert matched == [1]
        assert poller.outcome == PollOutcome.MATCHED
        assert poller.attempts == 3
        assert client.match_calls[0] == ("DH101", 100000)

    def test_transport_errors_keep_polling(self):
        client = FakeOrderClient()
        client.match_results = [ApiError(None, "Connection error"), True]
        matched = []

        async def scenario():
            poller = make_poller(client, matched)
            poller.start()
            await poller.wait()

        asyncio.run(scenario())
        assert matched == [1]

    def test_stop_with_check_in_flight(self):
        client = FakeOrderClient()
        client.match_results = [True]
        matched = []

        async def scenario():
            client.match_gate = asyncio.Event()
            client.match_started = asyncio.Event()
            poller = make_poller(client, matched)
            poller.start()
            await client.match_started.wait()
            poller.stop()
            poller.stop()
            client.match_gate.set()
            await asyncio.sleep(0.01)
            return poller

        poller = asyncio.run(scenario())
        assert matched == []
        assert poller.outcome == PollOutcome.STOPPED
        assert not poller.running

    def test_stop_from_inside_callback(self):
        client = FakeOrderClient()
        client.match_results = [True]
        calls = []

        async def scenario():
            poller = PaymentPoller(client, "DH101", 100000,
                                   on_match=lambda: (calls.append(1), poller.stop()),
                                   interval=0.001)
            poller.start()
            await poller.wait()
            return poller

        poller = asyncio.run(scenario())
        assert calls == [1]
        assert poller.outcome == PollOutcome.MATCHED

    def test_attempt_bound_expires(self):
        client = FakeOrderClient()
        matched, expired = [], []

        async def scenario():
            poller = make_poller(client, matched, expired, max_attempts=3)
            poller.start()
            await poller.wait()
            return poller

        poller = asyncio.run(scenario())
        assert matched == []
        assert expired == [1]
        assert poller.outcome == PollOutcome.PAYMENT_EXPIRED
        assert poller.attempts == 3

    def test_timeout_bound_expires(self):
        client = FakeOrderClient()
        ticks = iter(range(100))
        matched, expired = [], []

        async def scenario():
            poller = make_poller(client, matched, expired, timeout=5, clock=lambda: next(ticks))
            poller.start()
            await poller.wait()
            return poller

        poller = asyncio.run(scenario())
        assert expired == [1]
        assert poller.attempts == 5

    def test_stop_before_start(self):
        client = FakeOrderClient()
        matched = []

        async def scenario():
            poller = make_poller(client, matched)
            poller.stop()
            poller.start()
            await asyncio.sleep(0.01)

        asyncio.run(scenario())
        assert client.match_calls == []
