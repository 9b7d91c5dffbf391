"""Chain node adapter: typed block/transaction/receipt records over web3.py."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, TypeVar, Union

import aiohttp
from hexbytes import HexBytes
from prometheus_client import Counter
from web3 import AsyncWeb3, AsyncHTTPProvider
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3Exception

from app.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPSTREAM_CALLS = Counter(
    'gateway_upstream_calls_total',
    'Chain node calls',
    ['method', 'outcome']
)


class ErrorKind(str, Enum):
    """Failure kinds a chain lookup can report."""
    NOT_FOUND = "not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Tagged result of a chain lookup: a value or an error kind, never both."""
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def found(cls, value: T) -> "Lookup[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, error: ErrorKind, message: str) -> "Lookup[T]":
        return cls(error=error, message=message)


@dataclass(slots=True, frozen=True)
class ChainBlock:
    number: int
    hash: bytes
    parent_hash: bytes
    state_root: bytes
    nonce: int
    difficulty: int
    timestamp: int               # epoch seconds
    transactions: Tuple[bytes, ...]  # tx hashes in index order
    withdrawal_count: int


@dataclass(slots=True, frozen=True)
class Authorization:
    """EIP-7702 authorization tuple."""
    chain_id: int
    address: bytes
    nonce: int
    y_parity: int
    r: int
    s: int


AccessList = Tuple[Tuple[bytes, Tuple[bytes, ...]], ...]


@dataclass(slots=True, frozen=True)
class ChainTransaction:
    hash: bytes
    type: int
    chain_id: Optional[int]
    nonce: int
    gas_price: int               # fee cap (maxFeePerGas) for type >= 2
    gas: int
    to: Optional[bytes]          # None for contract creation
    value: int
    input: bytes
    v: int                       # yParity for typed transactions
    r: int
    s: int
    max_priority_fee_per_gas: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    access_list: AccessList = ()
    max_fee_per_blob_gas: Optional[int] = None
    blob_versioned_hashes: Tuple[bytes, ...] = ()
    authorization_list: Tuple[Authorization, ...] = ()
    sender: Optional[bytes] = None  # "from" as reported by the node, if any


@dataclass(slots=True, frozen=True)
class ChainReceipt:
    transaction_hash: bytes
    status: int
    gas_used: int
    block_hash: bytes
    block_number: int


def to_int(value: Union[int, str, bytes, None]) -> int:
    """Coerce an RPC quantity (int, hex/decimal string or big-endian bytes) to int."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    text = str(value)
    if text.startswith(("0x", "0X")):
        return int(text, 16) if len(text) > 2 else 0
    return int(text)


def to_bytes(value):
    if value is None:
        return b""
    return bytes(HexBytes(value))


def _optional_int(raw, key):
    value = raw.get(key)
    return None if value is None else to_int(value)


def block_from_raw(raw: Any) -> ChainBlock:
    """Normalize a web3 block AttributeDict (hash-only transactions)."""
    return ChainBlock(
        number=to_int(raw["number"]),
        hash=to_bytes(raw["hash"]),
        parent_hash=to_bytes(raw["parentHash"]),
        state_root=to_bytes(raw["stateRoot"]),
        nonce=to_int(raw.get("nonce")),
        difficulty=to_int(raw.get("difficulty")),
        timestamp=to_int(raw["timestamp"]),
        transactions=tuple(to_bytes(tx) for tx in raw.get("transactions") or []),
        withdrawal_count=len(raw.get("withdrawals") or []),
    )


def transaction_from_raw(raw: Any) -> ChainTransaction:
    """Normalize a web3 transaction AttributeDict."""
    tx_type = to_int(raw.get("type"))

    # Fee-market envelopes (type >= 2) price gas at their fee cap; the node's
    # "gasPrice" for them is a derived effective price and is ignored
    if tx_type >= 2:
        gas_price = raw["maxFeePerGas"]
    else:
        gas_price = raw["gasPrice"]

    if tx_type != 0 and raw.get("yParity") is not None:
        v = to_int(raw["yParity"])
    else:
        v = to_int(raw["v"])

    access_list = tuple(
        (to_bytes(entry["address"]), tuple(to_bytes(key) for key in entry.get("storageKeys") or []))
        for entry in raw.get("accessList") or []
    )
    authorizations = tuple(
        Authorization(
            chain_id=to_int(auth["chainId"]),
            address=to_bytes(auth["address"]),
            nonce=to_int(auth["nonce"]),
            y_parity=to_int(auth["yParity"]),
            r=to_int(auth["r"]),
            s=to_int(auth["s"]),
        )
        for auth in raw.get("authorizationList") or []
    )

    to = raw.get("to")
    sender = raw.get("from")
    data = raw.get("input")
    if data is None:
        data = raw.get("data")

    return ChainTransaction(
        hash=to_bytes(raw["hash"]),
        type=tx_type,
        chain_id=_optional_int(raw, "chainId"),
        nonce=to_int(raw["nonce"]),
        gas_price=to_int(gas_price),
        gas=to_int(raw["gas"]),
        to=to_bytes(to) if to else None,
        value=to_int(raw["value"]),
        input=to_bytes(data),
        v=v,
        r=to_int(raw["r"]),
        s=to_int(raw["s"]),
        max_priority_fee_per_gas=_optional_int(raw, "maxPriorityFeePerGas"),
        max_fee_per_gas=_optional_int(raw, "maxFeePerGas"),
        access_list=access_list,
        max_fee_per_blob_gas=_optional_int(raw, "maxFeePerBlobGas"),
        blob_versioned_hashes=tuple(to_bytes(h) for h in raw.get("blobVersionedHashes") or []),
        authorization_list=authorizations,
        sender=to_bytes(sender) if sender else None,
    )


def receipt_from_raw(raw: Any) -> ChainReceipt:
    """Normalize a web3 receipt AttributeDict."""
    return ChainReceipt(
        transaction_hash=to_bytes(raw["transactionHash"]),
        status=to_int(raw.get("status")),
        gas_used=to_int(raw["gasUsed"]),
        block_hash=to_bytes(raw["blockHash"]),
        block_number=to_int(raw["blockNumber"]),
    )


class ChainClient:
    """
    Process-wide chain node client.

    The underlying AsyncWeb3 instance (and its pooled HTTP session) is created
    lazily on first use and released by close(). Every lookup is bounded by
    the configured timeout and reported as a Lookup instead of raising.
    """

    def __init__(self, rpc_url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.rpc_url = rpc_url or settings.rpc_url
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._w3: Optional[AsyncWeb3] = None
        self._lock = asyncio.Lock()

    async def connect(self):
        """Create the web3 client if needed and return it."""
        async with self._lock:
            if self._w3 is None:
                # No provider-level retries: a failed call fails the request
                provider = AsyncHTTPProvider(self.rpc_url, exception_retry_configuration=None)
                self._w3 = AsyncWeb3(provider)
                logger.info(f"Chain client initialized for {self.rpc_url}")
            return self._w3

    async def close(self):
        """Release pooled HTTP sessions."""
        async with self._lock:
            if self._w3 is not None:
                await self._w3.provider.disconnect()
                self._w3 = None
                logger.info("Chain client closed")

    async def _lookup(
        self,
        method: str,
        call: Callable[[AsyncWeb3], Awaitable[Any]],
        normalize: Callable[[Any], T],
    ) -> Lookup[T]:
        w3 = await self.connect()
        try:
            raw = await asyncio.wait_for(call(w3), timeout=self.timeout)
            value = normalize(raw)
        except (BlockNotFound, TransactionNotFound) as e:
            UPSTREAM_CALLS.labels(method=method, outcome="not_found").inc()
            return Lookup.failed(ErrorKind.NOT_FOUND, str(e))
        except asyncio.TimeoutError:
            UPSTREAM_CALLS.labels(method=method, outcome="timeout").inc()
            return Lookup.failed(
                ErrorKind.UPSTREAM_UNAVAILABLE,
                f"{method} timed out after {self.timeout}s",
            )
        except (Web3Exception, aiohttp.ClientError, OSError, ValueError) as e:
            UPSTREAM_CALLS.labels(method=method, outcome="error").inc()
            return Lookup.failed(ErrorKind.UPSTREAM_UNAVAILABLE, f"{method} failed: {e}")
        except (KeyError, TypeError) as e:
            UPSTREAM_CALLS.labels(method=method, outcome="malformed").inc()
            return Lookup.failed(
                ErrorKind.UPSTREAM_UNAVAILABLE,
                f"{method} returned a malformed response: {e!r}",
            )

        UPSTREAM_CALLS.labels(method=method, outcome="ok").inc()
        return Lookup.found(value)

    async def get_block_by_number(self, number: int) -> Lookup[ChainBlock]:
        return await self._lookup(
            "eth_getBlockByNumber",
            lambda w3: w3.eth.get_block(number, full_transactions=False),
            block_from_raw,
        )

    async def get_block_by_hash(self, block_hash: bytes) -> Lookup[ChainBlock]:
        return await self._lookup(
            "eth_getBlockByHash",
            lambda w3: w3.eth.get_block(HexBytes(block_hash), full_transactions=False),
            block_from_raw,
        )

    async def get_transaction_by_hash(self, tx_hash: bytes) -> Lookup[ChainTransaction]:
        return await self._lookup(
            "eth_getTransactionByHash",
            lambda w3: w3.eth.get_transaction(HexBytes(tx_hash)),
            transaction_from_raw,
        )

    async def get_transaction_receipt(self, tx_hash: bytes) -> Lookup[ChainReceipt]:
        return await self._lookup(
            "eth_getTransactionReceipt",
            lambda w3: w3.eth.get_transaction_receipt(HexBytes(tx_hash)),
            receipt_from_raw,
        )

    async def get_chain_id(self) -> Lookup[int]:
        return await self._lookup("eth_chainId", lambda w3: w3.eth.chain_id, to_int)

    async def get_latest_block_number(self) -> Lookup[int]:
        return await self._lookup("eth_blockNumber", lambda w3: w3.eth.block_number, to_int)


# Global chain client instance
chain_client = ChainClient()
