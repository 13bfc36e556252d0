"""Tests for the TronGrid constant-call client.

HTTP is served by httpx.MockTransport so no request leaves the process.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from blockserved.core.config import Settings
from blockserved.core.exceptions import ChainUnavailable, ContractCallReverted
from blockserved.services.chain.tron_client import TokenBucket, TronClient
from tests.conftest import RECIPIENT


def _word(value: int) -> str:
    return value.to_bytes(32, "big").hex()


def _ok(constant_result: str) -> dict[str, object]:
    return {
        "result": {"result": True},
        "constant_result": [constant_result],
        "transaction": {"ret": [{}]},
    }


def _client(
    settings: Settings,
    handler: Callable[[httpx.Request], httpx.Response],
) -> TronClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TronClient(settings, http_client=http)


class TestCall:
    async def test_decodes_constant_result(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_ok(_word(3)))

        client = _client(test_settings, handler)
        result = await client.call("balanceOf(address)", ["address"], [RECIPIENT], ["uint256"])

        assert result == (3,)
        request = seen[0]
        assert request.url.path == "/wallet/triggerconstantcontract"
        body = json.loads(request.content)
        assert body["function_selector"] == "balanceOf(address)"
        assert body["visible"] is True
        assert body["contract_address"] == test_settings.tron_contract_address
        assert len(body["parameter"]) == 64
        assert "TRON-PRO-API-KEY" not in request.headers

    async def test_sends_api_key_when_configured(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_ok(_word(0)))

        settings = test_settings.model_copy(update={"tron_api_key": "secret-key"})
        await _client(settings, handler).call("totalSupply()", [], [], ["uint256"])

        assert seen[0].headers["TRON-PRO-API-KEY"] == "secret-key"

    async def test_rejected_call_raises_reverted_with_message(
        self, test_settings: Settings
    ) -> None:
        message = "REVERT opcode executed".encode().hex()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"result": {"code": "CONTRACT_EXE_ERROR", "message": message}}
            )

        with pytest.raises(ContractCallReverted, match="REVERT opcode executed"):
            await _client(test_settings, handler).call(
                "alertNotices(uint256)", ["uint256"], [1], ["uint256"]
            )

    async def test_contract_ret_revert_raises_reverted(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = _ok("")
            body["transaction"] = {"ret": [{"contractRet": "REVERT"}]}
            return httpx.Response(200, json=body)

        with pytest.raises(ContractCallReverted, match="REVERT"):
            await _client(test_settings, handler).call(
                "recipientAlerts(address,uint256)",
                ["address", "uint256"],
                [RECIPIENT, 0],
                ["uint256"],
            )

    async def test_empty_result_raises_reverted(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_ok(""))

        with pytest.raises(ContractCallReverted, match="no data"):
            await _client(test_settings, handler).call(
                "balanceOf(address)", ["address"], [RECIPIENT], ["uint256"]
            )

    async def test_transport_error_retried_then_unavailable(self, test_settings: Settings) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ChainUnavailable, match="unreachable"):
            await _client(test_settings, handler).call(
                "balanceOf(address)", ["address"], [RECIPIENT], ["uint256"]
            )
        assert attempts == 2

    async def test_server_error_raises_unavailable(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        with pytest.raises(ChainUnavailable, match="502"):
            await _client(test_settings, handler).call(
                "balanceOf(address)", ["address"], [RECIPIENT], ["uint256"]
            )

    async def test_rate_limit_is_not_retried(self, test_settings: Settings) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(429, headers={"Retry-After": "2"})

        with pytest.raises(ChainUnavailable):
            await _client(test_settings, handler).call(
                "balanceOf(address)", ["address"], [RECIPIENT], ["uint256"]
            )
        assert attempts == 1


class TestTokenBucket:
    async def test_allows_burst_up_to_capacity(self) -> None:
        bucket = TokenBucket(rate=1, max_tokens=3)
        for _ in range(3):
            await bucket.acquire()
        assert bucket._tokens < 1.0
