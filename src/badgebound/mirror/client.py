"""Read-only mirror node client.

Every query is bounded: per-request timeout, retries with exponential
backoff for transient failures, and a hard cap on records across pages.
Failures never raise. Callers get an empty result and cannot tell "no data"
apart from "query failed"; the failure is logged here instead.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from badgebound.mirror.records import (
    AccountInfo,
    AccountTransactions,
    ContractResult,
    TimeWindow,
    TokenBalance,
    TransactionRecord,
)
from badgebound.mirror.units import to_mirror_timestamp

logger = structlog.get_logger()

MAX_RESULTS = 200
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def window_params(window: TimeWindow | None) -> list[tuple[str, str]]:
    """Encode a [start, end) window as mirror range filters."""
    params: list[tuple[str, str]] = []
    if window is None:
        return params
    if window.start is not None:
        params.append(("timestamp", f"gte:{to_mirror_timestamp(window.start)}"))
    if window.end is not None:
        params.append(("timestamp", f"lt:{to_mirror_timestamp(window.end)}"))
    return params


class MirrorClient:
    """Async client for the handful of mirror node queries the evaluator needs."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        result_limit: int = MAX_RESULTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.max_retries = max(0, max_retries)
        self.backoff = backoff
        self.result_limit = max(1, min(result_limit, MAX_RESULTS))
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> MirrorClient:
        return cls(
            base_url=settings.mirror_base_url,
            timeout=settings.mirror_timeout_seconds,
            max_retries=settings.mirror_max_retries,
            backoff=settings.mirror_backoff_seconds,
            result_limit=settings.mirror_result_limit,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> MirrorClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ── Queries ──

    async def contract_results(
        self,
        wallet: str,
        window: TimeWindow | None = None,
        contract_id: str | None = None,
        limit: int | None = None,
    ) -> list[ContractResult]:
        """Successful contract call results sent by `wallet` inside `window`.

        When `contract_id` is given only exact matches are kept. The mirror
        cannot filter by callee, so the filter runs on the fetched page.
        """
        cap = self._cap(limit)
        params = [("from", wallet.lower()), *window_params(window),
                  ("order", "desc"), ("limit", str(cap))]
        rows = await self._paginate("/contracts/results", params, "results", cap)

        results = [ContractResult.from_json(r) for r in rows]
        filtered = [
            r for r in results
            if r.succeeded and (contract_id is None or r.contract_id == contract_id)
        ]
        logger.debug(
            "mirror_contract_results",
            wallet=wallet.lower(),
            contract_id=contract_id,
            fetched=len(results),
            matched=len(filtered),
        )
        return filtered

    async def account_transactions(
        self,
        wallet: str,
        window: TimeWindow | None = None,
        limit: int | None = None,
    ) -> AccountTransactions:
        """Account id plus its transactions (HBAR and token transfers) inside `window`."""
        cap = self._cap(limit)
        wallet = wallet.lower()
        params = [("transactions", "true"), *window_params(window),
                  ("order", "desc"), ("limit", str(cap))]

        first = await self._get_json(f"/accounts/{wallet}", params)
        if first is None:
            return AccountTransactions(account_id=None)

        rows = list(first.get("transactions") or [])
        next_link = (first.get("links") or {}).get("next")
        rows += await self._follow(next_link, "transactions", cap - len(rows))

        return AccountTransactions(
            account_id=first.get("account"),
            transactions=[TransactionRecord.from_json(r) for r in rows[:cap]],
        )

    async def token_balances(self, wallet: str, limit: int | None = None) -> list[TokenBalance]:
        """Token associations and balances currently held by `wallet`."""
        cap = self._cap(limit)
        rows = await self._paginate(
            f"/accounts/{wallet.lower()}/tokens", [("limit", str(cap))], "tokens", cap
        )
        return [TokenBalance.from_json(r) for r in rows]

    async def account_info(self, wallet: str) -> AccountInfo | None:
        """Current HBAR balance and staking target, or None if unavailable."""
        data = await self._get_json(f"/accounts/{wallet.lower()}", [("transactions", "false")])
        if data is None:
            return None
        return AccountInfo.from_json(data)

    # ── Transport ──

    def _cap(self, limit: int | None) -> int:
        if limit is None:
            return self.result_limit
        return max(1, min(limit, self.result_limit))

    async def _paginate(
        self,
        path: str,
        params: list[tuple[str, str]],
        key: str,
        cap: int,
    ) -> list[dict[str, Any]]:
        first = await self._get_json(path, params)
        if first is None:
            return []
        rows = list(first.get(key) or [])
        next_link = (first.get("links") or {}).get("next")
        rows += await self._follow(next_link, key, cap - len(rows))
        return rows[:cap]

    async def _follow(self, next_link: str | None, key: str, remaining: int) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        while next_link and remaining > 0:
            url = str(self._client.base_url.join(next_link))
            page = await self._get_json(url, None)
            if page is None:
                break
            batch = list(page.get(key) or [])
            if not batch:
                break
            rows += batch[:remaining]
            remaining -= len(batch)
            next_link = (page.get("links") or {}).get("next")
        return rows

    async def _get_json(
        self,
        url: str,
        params: list[tuple[str, str]] | None,
    ) -> dict[str, Any] | None:
        """GET with retry. Returns None (after logging) on any failure."""
        attempt = 0
        while True:
            try:
                response = await self._client.get(url, params=params)
            except httpx.HTTPError as exc:
                if attempt < self.max_retries:
                    await self._sleep(attempt)
                    attempt += 1
                    continue
                logger.error("mirror_request_failed", url=url, error=str(exc), attempts=attempt + 1)
                return None

            if response.status_code in RETRYABLE_STATUS and attempt < self.max_retries:
                await self._sleep(attempt)
                attempt += 1
                continue

            if not response.is_success:
                logger.error(
                    "mirror_request_error",
                    url=str(response.request.url),
                    status=response.status_code,
                    reason=response.reason_phrase,
                )
                return None

            try:
                data = response.json()
            except ValueError:
                logger.error("mirror_invalid_json", url=str(response.request.url))
                return None
            return data if isinstance(data, dict) else None

    async def _sleep(self, attempt: int) -> None:
        if self.backoff > 0:
            await asyncio.sleep(self.backoff * (2**attempt))
