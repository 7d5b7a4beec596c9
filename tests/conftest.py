"""Shared test fixtures.

Integration tests run against an in-memory SQLite database (one per test)
with the schema created from the ORM metadata. The mirror node and the
badge contract are replaced by in-process fakes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from badgebound.chain.client import MintReceipt
from badgebound.config import Settings
from badgebound.db import models  # noqa: F401
from badgebound.db.base import Base
from badgebound.db.models import Quest, QuestType
from badgebound.mirror.records import AccountInfo, AccountTransactions, ContractResult, TokenBalance

class FakeMirror:
    """Stands in for MirrorClient; records every query it answers."""

    def __init__(self) -> None:
        self.contract_results_by_wallet: dict[str, list[ContractResult]] = {}
        self.transactions_by_wallet: dict[str, AccountTransactions] = {}
        self.tokens_by_wallet: dict[str, list[TokenBalance]] = {}
        self.info_by_wallet: dict[str, AccountInfo] = {}
        self.failing_wallets: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def _check(self, name: str, wallet: str) -> None:
        self.calls.append((name, wallet))
        if wallet in self.failing_wallets:
            raise RuntimeError(f"mirror exploded for {wallet}")

    async def contract_results(self, wallet, window=None, contract_id=None, limit=None):
        self._check("contract_results", wallet)
        results = self.contract_results_by_wallet.get(wallet, [])
        return [r for r in results if contract_id is None or r.contract_id == contract_id]

    async def account_transactions(self, wallet, window=None, limit=None):
        self._check("account_transactions", wallet)
        return self.transactions_by_wallet.get(wallet, AccountTransactions(account_id=None))

    async def token_balances(self, wallet, limit=None):
        self._check("token_balances", wallet)
        return self.tokens_by_wallet.get(wallet, [])

    async def account_info(self, wallet):
        self._check("account_info", wallet)
        return self.info_by_wallet.get(wallet)


class FakeChain:
    """Stands in for BadgeContractClient."""

    def __init__(self) -> None:
        self.minted: list[tuple[str, int]] = []
        self.registered: list[tuple[int, str, str, str, bool]] = []
        self.error: Exception | None = None
        self.token_id: int | None = 7
        self.on_mint = None

    async def mint_badge(self, to: str, quest_id: int) -> MintReceipt:
        if self.on_mint is not None:
            await self.on_mint()
        if self.error is not None:
            raise self.error
        self.minted.append((to, quest_id))
        return MintReceipt(tx_hash="0x" + "11" * 32, token_id=self.token_id, block_number=1)

    async def register_quest(self, quest_id, name, description, uri, repeatable) -> str:
        if self.error is not None:
            raise self.error
        self.registered.append((quest_id, name, description, uri, repeatable))
        return "0x" + "22" * 32


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        redis_url="",
        log_format="console",
        sweep_concurrency=1,
    )


@pytest.fixture
def fake_mirror() -> FakeMirror:
    return FakeMirror()


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory schema per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 6, 12, 0, 0, tzinfo=timezone.utc)  # a Wednesday


@pytest.fixture
def make_quest(db_session: AsyncSession):
    """Insert and commit a quest. Keyword overrides go straight to the model."""

    async def _make(**overrides) -> Quest:
        values = {
            "type": QuestType.ONBOARDING.value,
            "title": "First swap",
            "description": "Swap once on SaucerSwap",
            "requirement": {"type": "SWAP_COUNT", "protocol": "saucerswap", "minCount": 1},
            "reward": {"xp": 100},
            "is_active": True,
        }
        values.update(overrides)
        quest = Quest(**values)
        db_session.add(quest)
        await db_session.commit()
        return quest

    return _make
