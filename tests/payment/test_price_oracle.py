"""Tests for the reference price lookup."""

import httpx
import pytest

from athenut_mint.payment.errors import RailError
from athenut_mint.payment.services.price_oracle import DEFAULT_PRICE_URL, PriceOracle


def oracle_with(handler, **kwargs) -> PriceOracle:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PriceOracle(client=client, **kwargs)


@pytest.mark.asyncio
class TestPriceOracle:
    """PriceOracle against a mocked price service."""

    async def test_returns_currency_price(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"time": 1700000000, "USD": 60123, "EUR": 55000})

        assert await oracle_with(handler).fetch_reference_rate() == 60123
        assert str(requests[0].url) == DEFAULT_PRICE_URL

    async def test_other_currency(self):
        def handler(request):
            return httpx.Response(200, json={"USD": 60000, "EUR": 55000})

        assert await oracle_with(handler, currency="EUR").fetch_reference_rate() == 55000

    async def test_every_call_hits_the_network(self):
        """No caching: two calls, two requests."""
        prices = iter([60000, 61000])

        def handler(request):
            return httpx.Response(200, json={"USD": next(prices)})

        oracle = oracle_with(handler)
        assert await oracle.fetch_reference_rate() == 60000
        assert await oracle.fetch_reference_rate() == 61000

    async def test_http_error_is_rail_error(self):
        def handler(request):
            return httpx.Response(503, json={"error": "down"})

        with pytest.raises(RailError) as exc_info:
            await oracle_with(handler).fetch_reference_rate()
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    async def test_transport_error_is_rail_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RailError):
            await oracle_with(handler).fetch_reference_rate()

    async def test_missing_currency_is_rail_error(self):
        def handler(request):
            return httpx.Response(200, json={"EUR": 55000})

        with pytest.raises(RailError):
            await oracle_with(handler).fetch_reference_rate()

    async def test_non_json_is_rail_error(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(RailError):
            await oracle_with(handler).fetch_reference_rate()
