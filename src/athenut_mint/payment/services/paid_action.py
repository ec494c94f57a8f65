"""Remote paid action.

The cashu-wallet backend does not move money on melt. Spending one settlement
unit instead triggers a single query against an external service; the raw
response is returned as the proof that the action was performed.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from athenut_mint.payment.errors import RailError

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_ENDPOINT = "https://kagi.com/api/v0/search"


class PaidActionClient:
    """Runs one search query against the configured search API."""

    def __init__(
        self,
        auth_token: str,
        endpoint: str = DEFAULT_SEARCH_ENDPOINT,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not auth_token:
            raise ValueError("auth_token is required")
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._auth_token = auth_token
        self._client = client

    async def run(self, query: str) -> Any:
        """Execute the action and return its decoded JSON response.

        Raises:
            RailError: on transport, status or decoding failure.
        """
        headers = {"Authorization": f"Bot {self._auth_token}"}
        params = {"q": query}
        try:
            if self._client is not None:
                response = await self._client.get(
                    self.endpoint, headers=headers, params=params, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(self.endpoint, headers=headers, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Paid action against %s failed: %s", self.endpoint, exc)
            raise RailError(f"Paid action failed: {exc}") from exc
