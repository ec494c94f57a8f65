"""Reference exchange rate lookup.

Every call is a fresh network round trip with no cache and no retry.
Failures propagate to the caller as RailError.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from athenut_mint.payment.errors import RailError

logger = logging.getLogger(__name__)

DEFAULT_PRICE_URL = "https://mempool.space/api/v1/prices"


class PriceOracle:
    """Fetches the price of one bitcoin in whole fiat units."""

    def __init__(
        self,
        url: str = DEFAULT_PRICE_URL,
        currency: str = "USD",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.currency = currency
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def fetch_reference_rate(self) -> int:
        """Return the current reference price.

        Raises:
            RailError: on any transport, status or payload failure.
        """
        try:
            if self._client is not None:
                response = await self._client.get(self.url, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(self.url)
            response.raise_for_status()
            payload: Any = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Price lookup at %s failed: %s", self.url, exc)
            raise RailError(f"Price lookup failed: {exc}") from exc

        price = payload.get(self.currency) if isinstance(payload, dict) else None
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise RailError(f"Price response has no numeric '{self.currency}' field")

        logger.debug("Reference price %s %s", price, self.currency)
        return int(price)
