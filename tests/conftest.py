"""Shared fixtures: an in-memory chain client and signed sample transactions."""

from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from eth_account import Account
from eth_utils import to_canonical_address, to_checksum_address
from hexbytes import HexBytes

from app.chain import (
    ChainBlock,
    ChainReceipt,
    ChainTransaction,
    ErrorKind,
    Lookup,
)


SEPOLIA_CHAIN_ID = 11155111
SENDER = Account.from_key("0x" + "4c" * 32)
RECIPIENT = to_checksum_address("0x" + "ab" * 20)
BLOCK_HASH = bytes.fromhex("11" * 32)


def sign_legacy(chain_id: Optional[int] = SEPOLIA_CHAIN_ID, **fields: Any) -> ChainTransaction:
    """Sign a legacy transaction and return it as the chain client would."""
    tx_dict: Dict[str, Any] = {
        "nonce": 7,
        "gasPrice": 20_000_000_000,
        "gas": 21_000,
        "to": RECIPIENT,
        "value": 10**18,
        "data": b"",
    }
    if chain_id is not None:
        tx_dict["chainId"] = chain_id
    tx_dict.update(fields)
    signed = SENDER.sign_transaction(tx_dict)

    return ChainTransaction(
        hash=bytes(signed.hash),
        type=0,
        chain_id=chain_id,
        nonce=tx_dict["nonce"],
        gas_price=tx_dict["gasPrice"],
        gas=tx_dict["gas"],
        to=to_canonical_address(tx_dict["to"]),
        value=tx_dict["value"],
        input=bytes(HexBytes(tx_dict["data"])),
        v=signed.v,
        r=signed.r,
        s=signed.s,
        sender=to_canonical_address(SENDER.address),
    )


def sign_dynamic_fee(chain_id: int = SEPOLIA_CHAIN_ID, **fields: Any) -> ChainTransaction:
    """Sign an EIP-1559 transaction and return it as the chain client would."""
    tx_dict: Dict[str, Any] = {
        "type": 2,
        "chainId": chain_id,
        "nonce": 3,
        "maxPriorityFeePerGas": 1_500_000_000,
        "maxFeePerGas": 30_000_000_000,
        "gas": 60_000,
        "to": RECIPIENT,
        "value": 12345,
        "data": "0xa9059cbb",
    }
    tx_dict.update(fields)
    # Contract creation: no recipient at all
    if tx_dict["to"] is None:
        del tx_dict["to"]
    signed = SENDER.sign_transaction(tx_dict)

    return ChainTransaction(
        hash=bytes(signed.hash),
        type=2,
        chain_id=chain_id,
        nonce=tx_dict["nonce"],
        gas_price=tx_dict["maxFeePerGas"],
        gas=tx_dict["gas"],
        to=to_canonical_address(tx_dict["to"]) if "to" in tx_dict else None,
        value=tx_dict["value"],
        input=bytes(HexBytes(tx_dict["data"])),
        v=signed.v,
        r=signed.r,
        s=signed.s,
        max_priority_fee_per_gas=tx_dict["maxPriorityFeePerGas"],
        max_fee_per_gas=tx_dict["maxFeePerGas"],
        sender=to_canonical_address(SENDER.address),
    )


def make_block(number: int = 5_000_000, **overrides: Any) -> ChainBlock:
    block = ChainBlock(
        number=number,
        hash=BLOCK_HASH,
        parent_hash=bytes.fromhex("22" * 32),
        state_root=bytes.fromhex("33" * 32),
        nonce=0,
        difficulty=0,
        timestamp=1_700_000_000,
        transactions=(bytes.fromhex("aa" * 32), bytes.fromhex("bb" * 32)),
        withdrawal_count=16,
    )
    return replace(block, **overrides)


def make_receipt(tx: ChainTransaction, **overrides: Any) -> ChainReceipt:
    receipt = ChainReceipt(
        transaction_hash=tx.hash,
        status=1,
        gas_used=21_000,
        block_hash=BLOCK_HASH,
        block_number=5_000_000,
    )
    return replace(receipt, **overrides)


class FakeChainClient:
    """In-memory stand-in for ChainClient; records every lookup made."""

    def __init__(self) -> None:
        self.blocks_by_number: Dict[int, ChainBlock] = {}
        self.blocks_by_hash: Dict[bytes, ChainBlock] = {}
        self.transactions: Dict[bytes, ChainTransaction] = {}
        self.receipts: Dict[bytes, ChainReceipt] = {}
        self.failures: Dict[str, Lookup[Any]] = {}
        self.calls: List[str] = []

    def add_block(self, block: ChainBlock) -> None:
        self.blocks_by_number[block.number] = block
        self.blocks_by_hash[block.hash] = block

    def add_transaction(self, tx: ChainTransaction, receipt: ChainReceipt) -> None:
        self.transactions[tx.hash] = tx
        self.receipts[tx.hash] = receipt

    def fail(self, method: str, kind: ErrorKind, message: str = "boom") -> None:
        self.failures[method] = Lookup.failed(kind, message)

    def _get(self, method: str, table: Dict[Any, Any], key: Any) -> Lookup[Any]:
        self.calls.append(method)
        if method in self.failures:
            return self.failures[method]
        if key not in table:
            return Lookup.failed(ErrorKind.NOT_FOUND, f"{key!r} not found")
        return Lookup.found(table[key])

    async def get_block_by_number(self, number: int) -> Lookup[ChainBlock]:
        return self._get("get_block_by_number", self.blocks_by_number, number)

    async def get_block_by_hash(self, block_hash: bytes) -> Lookup[ChainBlock]:
        return self._get("get_block_by_hash", self.blocks_by_hash, block_hash)

    async def get_transaction_by_hash(self, tx_hash: bytes) -> Lookup[ChainTransaction]:
        return self._get("get_transaction_by_hash", self.transactions, tx_hash)

    async def get_transaction_receipt(self, tx_hash: bytes) -> Lookup[ChainReceipt]:
        return self._get("get_transaction_receipt", self.receipts, tx_hash)

    async def get_chain_id(self) -> Lookup[int]:
        self.calls.append("get_chain_id")
        if "get_chain_id" in self.failures:
            return self.failures["get_chain_id"]
        return Lookup.found(SEPOLIA_CHAIN_ID)

    async def get_latest_block_number(self) -> Lookup[int]:
        self.calls.append("get_latest_block_number")
        if "get_latest_block_number" in self.failures:
            return self.failures["get_latest_block_number"]
        return Lookup.found(max(self.blocks_by_number, default=0))


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()
