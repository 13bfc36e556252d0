"""Async TronGrid client for constant (read-only) contract calls.

Rate-limited and retry-enabled wrapper over
``POST /wallet/triggerconstantcontract``. Uses an in-memory token bucket
for rate limiting. Transport failures and timeouts surface as
ChainUnavailable; a call that executes but reverts surfaces as
ContractCallReverted so callers can treat it as an end-of-index marker.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from blockserved.core.exceptions import ChainUnavailable, ContractCallReverted, RateLimitError
from blockserved.services.chain.abi import AbiDecodeError, decode_values, encode_arguments

if TYPE_CHECKING:
    from blockserved.core.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


# ---------------------------------------------------------------------------
# In-memory token bucket rate limiter
# ---------------------------------------------------------------------------


class TokenBucket:
    """Async token bucket rate limiter.

    Refills at ``rate`` tokens per second up to ``max_tokens`` capacity.
    ``acquire()`` blocks until a token is available.
    """

    def __init__(self, rate: float, max_tokens: int | None = None) -> None:
        self._rate = rate
        self._max_tokens = float(max_tokens or int(rate * 2) or 1)
        self._tokens = self._max_tokens
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self._rate)
                self._refill()
            self._tokens -= 1.0

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self._max_tokens, self._tokens + elapsed * self._rate)
        self._last_refill = now


# ---------------------------------------------------------------------------
# TronGrid client
# ---------------------------------------------------------------------------


def _decode_message(raw: str | None) -> str:
    """TronGrid hex-encodes error messages; fall back to the raw text."""
    if not raw:
        return ""
    try:
        return bytes.fromhex(raw).decode("utf-8", errors="replace")
    except ValueError:
        return raw


class TronClient:
    """Async HTTP client for read-only calls against one contract.

    Features:
    - Token-bucket rate limiting (configurable requests/sec)
    - Exponential backoff retry via tenacity for transport errors and 5xx
    - Explicit per-call timeout
    - Structured logging for every contract call
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._base_url = settings.tron_api_url.rstrip("/")
        self._api_key = settings.tron_api_key
        self._contract_address = settings.tron_contract_address
        self._rate_limiter = TokenBucket(
            rate=settings.tron_rate_limit,
            max_tokens=settings.tron_rate_limit * 2,
        )
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.chain_call_timeout_seconds
        )
        self._owns_client = http_client is None

    @property
    def contract_address(self) -> str:
        return self._contract_address

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        if self._api_key:
            headers["TRON-PRO-API-KEY"] = self._api_key
        return headers

    @retry(
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.TransportError)),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Rate-limited POST with retry. Returns parsed JSON."""
        await self._rate_limiter.acquire()

        url = f"{self._base_url}{path}"
        response = await self._client.post(url, headers=self._headers(), json=payload)

        if response.status_code == 429:
            retry_after = float(response.headers.get("Retry-After", "1"))
            logger.warning("trongrid_rate_limited", retry_after=retry_after)
            raise RateLimitError("TronGrid rate limit hit", retry_after=retry_after)

        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return data

    async def call(
        self,
        function_selector: str,
        arg_types: Sequence[str],
        args: Sequence[object],
        return_types: Sequence[str],
    ) -> tuple[object, ...]:
        """Execute a constant contract call and decode its return values."""
        payload = {
            "owner_address": self._contract_address,
            "contract_address": self._contract_address,
            "function_selector": function_selector,
            "parameter": encode_arguments(arg_types, args),
            "visible": True,
        }
        logger.debug("contract_call", function=function_selector, args=[str(a) for a in args])

        try:
            data = await self._post("/wallet/triggerconstantcontract", payload)
        except (httpx.TransportError, RateLimitError) as exc:
            msg = f"TronGrid unreachable: {exc}"
            raise ChainUnavailable(msg, details={"function": function_selector}) from exc
        except httpx.HTTPStatusError as exc:
            msg = f"TronGrid API error: {exc.response.status_code}"
            raise ChainUnavailable(msg, details={"function": function_selector}) from exc

        result = data.get("result") or {}
        if result.get("result") is not True:
            raise ContractCallReverted(
                _decode_message(result.get("message")) or "Contract call rejected",
                details={"function": function_selector, "code": result.get("code")},
            )

        ret = (data.get("transaction") or {}).get("ret") or [{}]
        contract_ret = ret[0].get("contractRet", "SUCCESS")
        if contract_ret != "SUCCESS":
            raise ContractCallReverted(
                f"Contract call returned {contract_ret}",
                details={"function": function_selector},
            )

        constant_result: list[str] = data.get("constant_result") or []
        if not constant_result or not constant_result[0]:
            raise ContractCallReverted(
                "Contract call returned no data",
                details={"function": function_selector},
            )

        try:
            return decode_values(return_types, constant_result[0])
        except AbiDecodeError as exc:
            raise ContractCallReverted(
                f"Undecodable return data: {exc}",
                details={"function": function_selector},
            ) from exc
