"""Tests for the operational HTTP surface."""

import httpx
import pytest
import pytest_asyncio

from athenut_mint.api import create_app
from athenut_mint.payment.base import CurrencyUnit
from athenut_mint.payment.errors import RailError
from athenut_mint.payment.providers.cashu_wallet import CashuWalletBackend
from athenut_mint.payment.services.cost_ledger import (
    PRIMARY_NAMESPACE,
    SECONDARY_NAMESPACE,
    QuoteCostRecord,
)

pytestmark = pytest.mark.asyncio


@pytest.fixture
def backend(wallet, ledger, price_oracle, converter, paid_action, metrics):
    return CashuWalletBackend(wallet, ledger, price_oracle, converter, paid_action, metrics=metrics)


@pytest_asyncio.fixture
async def client(backend, ledger, session_factory):
    app = create_app(backend=backend, ledger=ledger, session_factory=session_factory)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestHealth:
    """Health, readiness and metrics."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "healthy"
        assert body["backend"] == "cashu_wallet"
        assert body["wait_stream_active"] is False

    async def test_live_and_ready(self, client):
        assert (await client.get("/live")).json() == {"status": "alive"}
        assert (await client.get("/ready")).json() == {"status": "ready"}

    async def test_not_ready_without_backend(self):
        app = create_app()
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/ready")

        assert response.status_code == 503

    async def test_metrics_exposition(self, client, metrics):
        metrics.payments_received.inc(2)

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "athenut_payments_received_total 2" in response.text


class TestQuotes:
    """Quote cost lookups and backend settings."""

    async def test_quote_cost(self, client, ledger):
        await ledger.write(QuoteCostRecord("quote-1", 150, CurrencyUnit.SAT, 3, CurrencyUnit.XSR))

        response = await client.get("/v1/quotes/quote-1/cost")

        assert response.status_code == 200
        assert response.json() == {
            "quote_id": "quote-1",
            "cost": 150,
            "cost_unit": "sat",
            "credited_amount": 3,
            "credited_unit": "xsr",
        }

    async def test_unknown_quote(self, client):
        assert (await client.get("/v1/quotes/nope/cost")).status_code == 404

    async def test_corrupt_record_conflicts(self, client, store):
        await store.kv_write(PRIMARY_NAMESPACE, SECONDARY_NAMESPACE, "quote-1", b"{")

        assert (await client.get("/v1/quotes/quote-1/cost")).status_code == 409

    async def test_backend_settings(self, client):
        body = (await client.get("/v1/backend/settings")).json()

        assert body["backend"] == "cashu_wallet"
        assert body["unit"] == "xsr"
        assert body["bolt11"] == {"mpp": False, "amountless": False, "invoice_description": True}

    async def test_rail_failure_is_bad_gateway(self, session_factory):
        class BrokenBackend:
            provider_name = "broken"

            async def get_settings(self):
                raise RailError("node unreachable")

        app = create_app(backend=BrokenBackend(), session_factory=session_factory)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/v1/backend/settings")

        assert response.status_code == 502
        assert response.json() == {"detail": "node unreachable", "code": "RailError"}
