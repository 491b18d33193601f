"""Stacks node API status source."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .base import StatusSource

logger = logging.getLogger(__name__)


class StacksApiStatusSource(StatusSource):
    """Reads ``tx_status`` from ``GET {base_url}/extended/v1/tx/{txid}``."""

    def __init__(
        self,
        base_url: str = "http://localhost:3999",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def get_status(self, ref: str) -> str:
        client = self._get_client()
        response = await client.get(f"{self.base_url}/extended/v1/tx/{ref}")
        response.raise_for_status()
        data = response.json()
        status = data.get("tx_status")
        if not isinstance(status, str):
            raise ValueError(f"Missing tx_status for transaction {ref}")
        logger.debug(f"Transaction {ref} status: {status}")
        return status

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
