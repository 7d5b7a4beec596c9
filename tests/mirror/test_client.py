"""Mirror client tests against an httpx.MockTransport."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from badgebound.mirror.client import MirrorClient
from badgebound.mirror.records import TimeWindow

BASE_URL = "https://mirror.test/api/v1"
WALLET = "0x" + "AB" * 20
ROUTER = "0.0.1414040"


def _client(handler, **kwargs) -> MirrorClient:
    return MirrorClient(BASE_URL, backoff=0, transport=httpx.MockTransport(handler), **kwargs)


def _result(contract_id: str, result: str = "SUCCESS") -> dict:
    return {
        "contract_id": contract_id,
        "result": result,
        "timestamp": "1709726400.000000001",
        "from": WALLET.lower(),
    }


class TestContractResults:
    @pytest.mark.asyncio
    async def test_query_params_and_filtering(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "results": [
                    _result(ROUTER),
                    _result(ROUTER, "CONTRACT_REVERT_EXECUTED"),
                    _result("0.0.999"),
                ],
                "links": {"next": None},
            })

        window = TimeWindow(
            datetime(2024, 3, 4, tzinfo=timezone.utc),
            datetime(2024, 3, 11, tzinfo=timezone.utc),
        )
        async with _client(handler) as mirror:
            results = await mirror.contract_results(WALLET, window, contract_id=ROUTER)

        assert [r.contract_id for r in results] == [ROUTER]
        request = seen[0]
        assert request.url.path == "/api/v1/contracts/results"
        assert request.url.params["from"] == WALLET.lower()
        assert request.url.params.get_list("timestamp") == [
            "gte:1709510400.000000000",
            "lt:1710115200.000000000",
        ]
        assert request.url.params["order"] == "desc"
        assert request.url.params["limit"] == "200"

    @pytest.mark.asyncio
    async def test_follows_next_links_up_to_cap(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            if "page=2" in str(request.url):
                return httpx.Response(200, json={
                    "results": [_result(ROUTER), _result(ROUTER)],
                    "links": {"next": "/api/v1/contracts/results?page=3"},
                })
            return httpx.Response(200, json={
                "results": [_result(ROUTER), _result(ROUTER)],
                "links": {"next": "/api/v1/contracts/results?page=2"},
            })

        async with _client(handler) as mirror:
            results = await mirror.contract_results(WALLET, limit=3)

        assert len(results) == 3
        assert len(calls) == 2
        assert calls[1] == "https://mirror.test/api/v1/contracts/results?page=2"

    @pytest.mark.asyncio
    async def test_error_status_returns_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"_status": {"messages": [{"message": "Not found"}]}})

        async with _client(handler) as mirror:
            assert await mirror.contract_results(WALLET) == []

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"results": [_result(ROUTER)], "links": {}})

        async with _client(handler, max_retries=3) as mirror:
            results = await mirror.contract_results(WALLET)

        assert len(attempts) == 3
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler, max_retries=2) as mirror:
            assert await mirror.contract_results(WALLET) == []
        assert len(attempts) == 3


class TestAccounts:
    @pytest.mark.asyncio
    async def test_account_transactions(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/api/v1/accounts/{WALLET.lower()}"
            assert request.url.params["transactions"] == "true"
            return httpx.Response(200, json={
                "account": "0.0.1234",
                "transactions": [{
                    "transaction_id": "0.0.1234-1709726400-000000000",
                    "consensus_timestamp": "1709726400.000000000",
                    "result": "SUCCESS",
                    "transfers": [
                        {"account": "0.0.1234", "amount": -100},
                        {"account": "0.0.98", "amount": 100},
                    ],
                }],
                "links": {"next": None},
            })

        async with _client(handler) as mirror:
            activity = await mirror.account_transactions(WALLET)

        assert activity.account_id == "0.0.1234"
        assert activity.transactions[0].net_amount("0.0.1234") == -100

    @pytest.mark.asyncio
    async def test_account_info(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "account": "0.0.1234",
                "balance": {"balance": 12_300_000_000, "tokens": []},
                "staked_node_id": 3,
                "staked_account_id": None,
            })

        async with _client(handler) as mirror:
            info = await mirror.account_info(WALLET)

        assert info is not None
        assert info.balance == 12_300_000_000
        assert info.is_staking

    @pytest.mark.asyncio
    async def test_account_info_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with _client(handler, max_retries=0) as mirror:
            assert await mirror.account_info(WALLET) is None

    @pytest.mark.asyncio
    async def test_token_balances(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/tokens")
            return httpx.Response(200, json={
                "tokens": [{
                    "token_id": "0.0.1310436",
                    "balance": 100,
                    "automatic_association": False,
                    "created_timestamp": "1708000000.000000000",
                }],
                "links": {"next": None},
            })

        async with _client(handler) as mirror:
            tokens = await mirror.token_balances(WALLET)

        assert tokens[0].token_id == "0.0.1310436"
        assert tokens[0].balance == 100
        assert tokens[0].created_timestamp == datetime.fromtimestamp(1708000000, tz=timezone.utc)
