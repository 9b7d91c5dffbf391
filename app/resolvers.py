"""Block and transaction resolvers: raw chain records to client-facing views."""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, Optional, Type

from eth_utils import to_checksum_address

from app.chain import ChainClient, ErrorKind, Lookup, T
from app.errors import (
    ConsistencyError,
    InvalidInputError,
    NotFoundError,
    ResolverError,
    UpstreamUnavailableError,
)
from app.models import BlockDetails, BlockView, TransactionView
from app.signing import recover_sender

logger = logging.getLogger(__name__)

BLOCK_NUMBER_PATTERN = re.compile(r"[0-9]+")
TX_HASH_PATTERN = re.compile(r"(0[xX])?[0-9a-fA-F]{64}")

STATUS_FINALIZED = "finalized"
STATUS_NOT_FINALIZED = "not finalized"
STATUS_SUCCESS = "success"
STATUS_FAIL = "fail"

DEFAULT_FAILURES: Dict[ErrorKind, Type[ResolverError]] = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.UPSTREAM_UNAVAILABLE: UpstreamUnavailableError,
}


# --- formatting / derivation helpers ---

def parse_block_number(identifier: str) -> int:
    """Parse a base-10 block height. No sign, no prefix, no whitespace."""
    if not BLOCK_NUMBER_PATTERN.fullmatch(identifier or ""):
        raise InvalidInputError("Invalid block number", identifier=identifier, step="parse")
    return int(identifier)


def parse_tx_hash(identifier: str) -> bytes:
    """Decode a 32-byte transaction hash, with or without 0x prefix."""
    if not TX_HASH_PATTERN.fullmatch(identifier or ""):
        raise InvalidInputError("Invalid transaction hash", identifier=identifier, step="parse")
    return bytes.fromhex(identifier[-64:])


def format_timestamp(epoch_seconds: int) -> str:
    """Render epoch seconds as ISO-8601 UTC, e.g. 2023-11-14T22:13:20Z."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def encode_hex(data):
    return "0x" + data.hex()


def finality_status(difficulty):
    # Post-merge blocks carry zero difficulty; used as a finality heuristic only
    return STATUS_FINALIZED if difficulty == 0 else STATUS_NOT_FINALIZED


def receipt_status(status_code):
    return STATUS_SUCCESS if status_code == 1 else STATUS_FAIL


def compute_fee(gas_used: int, gas_price: int) -> str:
    """Fee in wei as a decimal string. Python ints do not overflow."""
    return str(gas_used * gas_price)


def _unwrap(
    lookup: Lookup[T],
    identifier: str,
    step: str,
    failures: Optional[Dict[ErrorKind, Type[ResolverError]]] = None,
) -> T:
    """Return the lookup value or raise the resolver error for its failure kind."""
    if lookup.ok:
        return lookup.value
    error_cls = (failures or DEFAULT_FAILURES).get(lookup.error, UpstreamUnavailableError)
    raise error_cls(lookup.message, identifier=identifier, step=step)


# --- resolvers ---

async def resolve_block(client: ChainClient, identifier: str) -> BlockView:
    """
    Resolve /block/{identifier} into a BlockView.

    Raises:
        InvalidInputError: identifier is not a base-10 non-negative integer
        NotFoundError: no block at that height
        UpstreamUnavailableError: chain node failure or timeout
    """
    number = parse_block_number(identifier)

    block = _unwrap(await client.get_block_by_number(number), identifier, "get_block_by_number")

    transactions = [encode_hex(tx_hash) for tx_hash in block.transactions]
    view = BlockView(
        block_number=block.number,
        status=finality_status(block.difficulty),
        timestamp=format_timestamp(block.timestamp),
        transaction_count=len(transactions),
        transactions=transactions,
        withdrawals=block.withdrawal_count,
        details=BlockDetails(
            block_hash=encode_hex(block.hash),
            parent_hash=encode_hex(block.parent_hash),
            state_root=encode_hex(block.state_root),
            nonce=block.nonce,
        ),
    )

    logger.info(f"Block {identifier} info retrieved")
    return view


async def resolve_transaction(
    client: ChainClient,
    identifier: str,
    expected_chain_id: Optional[int] = None,
) -> TransactionView:
    """
    Resolve /tx/{identifier} into a TransactionView.

    Pipeline: transaction -> receipt -> containing block -> sender recovery.
    Each step needs the previous one and the first failure aborts the request.

    Raises:
        InvalidInputError: identifier is not a 32-byte hex hash
        NotFoundError: unknown or pending transaction
        UpstreamUnavailableError: chain node failure or timeout
        ConsistencyError: receipt's block cannot be fetched or disagrees with the receipt
        SignatureRecoveryError: sender cannot be recovered from the signature
    """
    tx_hash = parse_tx_hash(identifier)

    tx = _unwrap(await client.get_transaction_by_hash(tx_hash), identifier, "get_transaction_by_hash")
    receipt = _unwrap(await client.get_transaction_receipt(tx_hash), identifier, "get_transaction_receipt")
    block = _unwrap(
        await client.get_block_by_hash(receipt.block_hash),
        identifier,
        "get_block_by_hash",
        failures={
            ErrorKind.NOT_FOUND: ConsistencyError,
            ErrorKind.UPSTREAM_UNAVAILABLE: UpstreamUnavailableError,
        },
    )

    if block.number != receipt.block_number or block.hash != receipt.block_hash:
        raise ConsistencyError(
            f"receipt points at block {receipt.block_number} ({encode_hex(receipt.block_hash)}) "
            f"but block {block.number} ({encode_hex(block.hash)}) was returned",
            identifier=identifier,
            step="check_block",
        )

    try:
        sender = recover_sender(tx, expected_chain_id=expected_chain_id)
    except ResolverError as e:
        e.identifier = identifier
        e.step = "recover_sender"
        raise

    view = TransactionView(
        tx_hash=encode_hex(tx.hash),
        status=receipt_status(receipt.status),
        block_number=receipt.block_number,
        timestamp=format_timestamp(block.timestamp),
        from_address=sender,
        to=to_checksum_address(tx.to) if tx.to is not None else None,
        value=str(tx.value),
        tx_fee=compute_fee(receipt.gas_used, tx.gas_price),
        gas_price=str(tx.gas_price),
        input_data=encode_hex(tx.input),
    )

    logger.info(f"Transaction {identifier} info retrieved")
    return view
