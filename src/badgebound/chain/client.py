"""QuestBadges contract client.

Constructed explicitly with its own provider and signer and closed by its
owner; nothing here is module-global. Only two contract functions are ever
called: registerQuest and mintBadge.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog
from web3 import AsyncWeb3, Web3
from web3.logs import DISCARD

from badgebound.errors import ChainConfigError, ChainTransactionError

logger = structlog.get_logger()

QUEST_BADGES_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "registerQuest",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "questId", "type": "uint256"},
            {"name": "name", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "uri", "type": "string"},
            {"name": "repeatable", "type": "bool"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "mintBadge",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "questId", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "BadgeMinted",
        "anonymous": False,
        "inputs": [
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
            {"name": "questId", "type": "uint256", "indexed": True},
        ],
    },
]


@dataclass(frozen=True)
class MintReceipt:
    tx_hash: str
    token_id: int | None
    block_number: int | None = None


def to_checksum_address(address: str) -> str:
    """EIP-55 checksum an EVM address. Raises ValueError if it is not one."""
    if not Web3.is_address(address):
        raise ValueError(f"Not an EVM address: {address!r}")
    return Web3.to_checksum_address(address)


class BadgeContractClient:
    """Signs and sends QuestBadges transactions, waiting (bounded) for receipts."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        receipt_timeout: float = 120.0,
        request_timeout: float = 30.0,
    ) -> None:
        self.contract_address = contract_address
        self.receipt_timeout = receipt_timeout
        self._private_key = private_key
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self._send_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Any) -> BadgeContractClient:
        return cls(
            rpc_url=settings.hedera_rpc_url,
            contract_address=settings.quest_badges_address,
            private_key=settings.hedera_private_key,
            receipt_timeout=settings.chain_receipt_timeout_seconds,
        )

    async def aclose(self) -> None:
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    def _contract(self) -> Any:
        if not self.contract_address:
            raise ChainConfigError("QuestBadges address is not configured")
        if not self._private_key:
            raise ChainConfigError("Hedera private key is not configured")
        return self._w3.eth.contract(
            address=Web3.to_checksum_address(self.contract_address),
            abi=QUEST_BADGES_ABI,
        )

    async def _transact(self, function: Any) -> Any:
        """Build, sign, send and await one transaction. Returns the receipt.

        Sends are serialized so concurrent claims never reuse a nonce.
        """
        account = self._w3.eth.account.from_key(self._private_key)
        async with self._send_lock:
            nonce = await self._w3.eth.get_transaction_count(account.address, "pending")
            chain_id = await self._w3.eth.chain_id
            tx = await function.build_transaction({
                "from": account.address,
                "nonce": nonce,
                "chainId": chain_id,
            })
            signed = account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)

        # Raises web3.exceptions.TimeExhausted if not mined in time.
        receipt = await self._w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.receipt_timeout
        )
        if receipt["status"] != 1:
            raise ChainTransactionError("Transaction reverted", tx_hash=Web3.to_hex(tx_hash))
        return receipt

    async def mint_badge(self, to: str, quest_id: int) -> MintReceipt:
        """Mint the quest badge to `to` and return the tx hash and minted token id.

        A receipt without a parseable BadgeMinted log still counts as minted;
        token_id is then None.
        """
        contract = self._contract()
        recipient = to_checksum_address(to)
        receipt = await self._transact(contract.functions.mintBadge(recipient, quest_id))

        token_id: int | None = None
        for event in contract.events.BadgeMinted().process_receipt(receipt, errors=DISCARD):
            token_id = int(event["args"]["tokenId"])
            break
        if token_id is None:
            logger.info("badge_minted_event_missing", quest_id=quest_id, to=recipient)

        tx_hash = Web3.to_hex(receipt["transactionHash"])
        logger.info("badge_minted", quest_id=quest_id, to=recipient, tx_hash=tx_hash, token_id=token_id)
        return MintReceipt(tx_hash=tx_hash, token_id=token_id, block_number=receipt.get("blockNumber"))

    async def register_quest(
        self,
        quest_id: int,
        name: str,
        description: str,
        uri: str,
        repeatable: bool,
    ) -> str:
        """Register a quest on chain under the same numeric id as its DB row."""
        contract = self._contract()
        receipt = await self._transact(
            contract.functions.registerQuest(quest_id, name, description, uri, repeatable)
        )
        tx_hash = Web3.to_hex(receipt["transactionHash"])
        logger.info("quest_registered", quest_id=quest_id, tx_hash=tx_hash)
        return tx_hash
