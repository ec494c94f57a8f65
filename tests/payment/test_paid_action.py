"""Tests for the remote paid action client."""

import httpx
import pytest

from athenut_mint.payment.errors import RailError
from athenut_mint.payment.services.paid_action import PaidActionClient


@pytest.mark.asyncio
class TestPaidActionClient:
    """PaidActionClient against a mocked search API."""

    async def test_sends_query_with_bot_token(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"title": "Cashu"}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        action = PaidActionClient("secret-token", endpoint="https://search.test/api", client=client)

        result = await action.run("what is ecash")

        assert result == {"data": [{"title": "Cashu"}]}
        assert seen[0].headers["Authorization"] == "Bot secret-token"
        assert seen[0].url.params["q"] == "what is ecash"

    async def test_error_status_is_rail_error(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, json={}))
        )
        action = PaidActionClient("bad-token", client=client)

        with pytest.raises(RailError):
            await action.run("query")


def test_requires_token():
    with pytest.raises(ValueError):
        PaidActionClient("")
