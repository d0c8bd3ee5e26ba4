"""Unit tests for the oracle relayer client."""

import httpx
import pytest

from matchday.services.chain import OracleRelayClient
from matchday.services.errors import ChainSubmissionError

PAYLOAD = {"cycle_id": 3, "results": [{"fixture_id": 1, "moneyline": 1, "over_under": 2, "line": 2.5}]}


def make_client(handler, **kwargs) -> OracleRelayClient:
    return OracleRelayClient(
        base_url="https://relay.test",
        token="secret",
        confirmation_timeout=kwargs.pop("confirmation_timeout", 1.0),
        poll_interval=0.0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestOracleRelayClient:
    @pytest.mark.asyncio
    async def test_is_cycle_resolved(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/cycles/3"
            return httpx.Response(200, json={"cycle_id": 3, "is_resolved": True})

        async with make_client(handler) as client:
            assert await client.is_cycle_resolved(3) is True

    @pytest.mark.asyncio
    async def test_submit_waits_for_confirmation(self):
        polls = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                assert request.url.path == "/cycles/3/resolve"
                return httpx.Response(202, json={"tx_hash": "0xabc"})
            polls.append(request)
            if len(polls) < 3:
                return httpx.Response(200, json={"tx_hash": "0xabc", "status": None})
            return httpx.Response(200, json={"tx_hash": "0xabc", "status": 1, "block_number": 99})

        async with make_client(handler) as client:
            receipt = await client.submit_resolution(3, PAYLOAD)

        assert receipt.succeeded
        assert receipt.tx_hash == "0xabc"
        assert receipt.block_number == 99
        assert len(polls) == 3

    @pytest.mark.asyncio
    async def test_reverted_transaction_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(202, json={"tx_hash": "0xdead"})
            return httpx.Response(200, json={"status": 0})

        async with make_client(handler) as client:
            with pytest.raises(ChainSubmissionError, match="reverted") as excinfo:
                await client.submit_resolution(3, PAYLOAD)

        assert excinfo.value.tx_hash == "0xdead"

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(202, json={"tx_hash": "0xslow"})
            return httpx.Response(200, json={"status": None})

        async with make_client(handler, confirmation_timeout=0.0) as client:
            with pytest.raises(ChainSubmissionError, match="not confirmed"):
                await client.submit_resolution(3, PAYLOAD)

    @pytest.mark.asyncio
    async def test_relayer_rejection_is_not_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text="cycle not ended")

        async with make_client(handler) as client:
            with pytest.raises(ChainSubmissionError) as excinfo:
                await client.submit_resolution(3, PAYLOAD)

        assert excinfo.value.retryable is False

    @pytest.mark.asyncio
    async def test_relayer_outage_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with make_client(handler) as client:
            with pytest.raises(ChainSubmissionError) as excinfo:
                await client.is_cycle_resolved(3)

        assert excinfo.value.retryable is True
