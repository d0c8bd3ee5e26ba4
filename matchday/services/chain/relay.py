"""Oracle relayer client.

The relayer holds the oracle key: it signs and broadcasts resolution
transactions to the prediction contract and reports their receipts. This
client submits a cycle's resolution, then polls until the transaction is
confirmed or ``confirmation_timeout`` runs out.
"""

import asyncio
import time
from typing import Any

import httpx
import structlog

from matchday.config import get_settings
from matchday.services.errors import ChainSubmissionError
from matchday.services.gateways import ResolutionReceipt

logger = structlog.get_logger(__name__)


class OracleRelayClient:
    """``ChainGateway`` over the relayer's HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        confirmation_timeout: float | None = None,
        poll_interval: float = 3.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.chain_relay_url).rstrip("/")
        self.token = token or settings.chain_relay_token
        self.confirmation_timeout = (
            confirmation_timeout
            if confirmation_timeout is not None
            else settings.chain_confirmation_timeout
        )
        self.poll_interval = poll_interval
        self._http_client = http_client

    async def __aenter__(self) -> "OracleRelayClient":
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                headers={"Authorization": f"Bearer {self.token}"} if self.token else {},
            )
        return self._http_client

    async def _call(self, method: str, path: str, cycle_id: int, **kwargs: Any) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, f"{self.base_url}{path}", **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ChainSubmissionError(
                f"Relayer returned {e.response.status_code}: {e.response.text[:200]}",
                cycle_id=cycle_id,
                retryable=e.response.status_code >= 500 or e.response.status_code == 429,
            ) from e
        except httpx.HTTPError as e:
            raise ChainSubmissionError(f"Relayer unreachable: {e}", cycle_id=cycle_id) from e

    async def is_cycle_resolved(self, cycle_id: int) -> bool:
        data = await self._call("GET", f"/cycles/{cycle_id}", cycle_id)
        return bool(data.get("is_resolved"))

    async def submit_resolution(self, cycle_id: int, payload: dict[str, Any]) -> ResolutionReceipt:
        """
        Submit and wait for confirmation.

        Raises:
            ChainSubmissionError: If the relayer rejects the submission, the
                transaction reverts, or no receipt arrives in time
        """
        data = await self._call("POST", f"/cycles/{cycle_id}/resolve", cycle_id, json=payload)
        tx_hash = data.get("tx_hash")
        if not tx_hash:
            raise ChainSubmissionError("Relayer returned no transaction hash", cycle_id=cycle_id)

        logger.info("resolution_submitted", cycle_id=cycle_id, tx_hash=tx_hash)
        receipt = await self.wait_for_receipt(cycle_id, tx_hash)

        if not receipt.succeeded:
            raise ChainSubmissionError(
                f"Resolution transaction {tx_hash} reverted",
                cycle_id=cycle_id,
                tx_hash=tx_hash,
            )
        logger.info(
            "resolution_confirmed",
            cycle_id=cycle_id,
            tx_hash=tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
        )
        return receipt

    async def wait_for_receipt(self, cycle_id: int, tx_hash: str) -> ResolutionReceipt:
        deadline = time.monotonic() + self.confirmation_timeout

        while True:
            data = await self._call("GET", f"/transactions/{tx_hash}", cycle_id)
            status = data.get("status")
            if status is not None:
                return ResolutionReceipt(
                    tx_hash=tx_hash,
                    status=int(status),
                    block_number=data.get("block_number"),
                    gas_used=data.get("gas_used"),
                    raw=data,
                )
            if time.monotonic() + self.poll_interval > deadline:
                raise ChainSubmissionError(
                    f"Transaction {tx_hash} not confirmed within {self.confirmation_timeout}s",
                    cycle_id=cycle_id,
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self.poll_interval)
