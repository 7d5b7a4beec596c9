"""Typed records normalized from mirror node JSON."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from badgebound.mirror.units import parse_mirror_timestamp


@dataclass(frozen=True)
class TimeWindow:
    """Half-open [start, end) activity window. A None bound is unbounded."""

    start: datetime | None = None
    end: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return self.start is not None and self.end is not None and self.start >= self.end


@dataclass(frozen=True)
class ContractResult:
    contract_id: str
    result: str
    timestamp: datetime | None
    sender: str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ContractResult:
        return cls(
            contract_id=str(data.get("contract_id") or ""),
            result=str(data.get("result") or ""),
            timestamp=parse_mirror_timestamp(data.get("timestamp")),
            sender=str(data.get("from") or "").lower(),
        )

    @property
    def succeeded(self) -> bool:
        return self.result == "SUCCESS"


@dataclass(frozen=True)
class Transfer:
    account: str
    amount: int
    token_id: str | None = None


@dataclass(frozen=True)
class TransactionRecord:
    transaction_id: str
    consensus_timestamp: datetime | None
    result: str
    transfers: list[Transfer] = field(default_factory=list)
    token_transfers: list[Transfer] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> TransactionRecord:
        return cls(
            transaction_id=str(data.get("transaction_id") or data.get("entity_id") or ""),
            consensus_timestamp=parse_mirror_timestamp(data.get("consensus_timestamp")),
            result=str(data.get("result") or "SUCCESS"),
            transfers=[
                Transfer(account=str(t.get("account") or ""), amount=int(t.get("amount") or 0))
                for t in data.get("transfers") or []
            ],
            token_transfers=[
                Transfer(
                    account=str(t.get("account") or ""),
                    amount=int(t.get("amount") or 0),
                    token_id=str(t.get("token_id") or ""),
                )
                for t in data.get("token_transfers") or []
            ],
        )

    @property
    def succeeded(self) -> bool:
        return self.result == "SUCCESS"

    def net_amount(self, account: str) -> int:
        """Net HBAR movement (tinybars) for one account in this transaction."""
        return sum(t.amount for t in self.transfers if t.account == account)

    def net_token_amount(self, account: str, token_id: str) -> int:
        return sum(
            t.amount for t in self.token_transfers
            if t.account == account and t.token_id == token_id
        )


@dataclass(frozen=True)
class AccountTransactions:
    account_id: str | None
    transactions: list[TransactionRecord] = field(default_factory=list)


@dataclass(frozen=True)
class TokenBalance:
    token_id: str
    balance: int
    associated: bool
    created_timestamp: datetime | None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> TokenBalance:
        return cls(
            token_id=str(data.get("token_id") or ""),
            balance=int(data.get("balance") or 0),
            associated=bool(data.get("associated", True)),
            created_timestamp=parse_mirror_timestamp(data.get("created_timestamp")),
        )


@dataclass(frozen=True)
class AccountInfo:
    account_id: str
    balance: int
    staked_node_id: int | None
    staked_account_id: str | None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AccountInfo:
        balance = data.get("balance") or {}
        return cls(
            account_id=str(data.get("account") or ""),
            balance=int(balance.get("balance") or 0) if isinstance(balance, dict) else int(balance),
            staked_node_id=data.get("staked_node_id"),
            staked_account_id=data.get("staked_account_id"),
        )

    @property
    def is_staking(self) -> bool:
        return self.staked_node_id is not None or bool(self.staked_account_id)
