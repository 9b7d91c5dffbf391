"""Sender recovery for signed transactions.

The sender of a transaction is not part of its payload. It is recovered by
rebuilding the hash the sender signed (which depends on the transaction
envelope type) and recovering the secp256k1 public key from (v, r, s).
"""

from typing import Any, List, Optional, Tuple

import rlp
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak, to_checksum_address

from app.chain import ChainTransaction
from app.errors import SignatureRecoveryError

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

LEGACY_TX_TYPE = 0
ACCESS_LIST_TX_TYPE = 1
DYNAMIC_FEE_TX_TYPE = 2
BLOB_TX_TYPE = 3
SET_CODE_TX_TYPE = 4

TYPED_TX_TYPES = (ACCESS_LIST_TX_TYPE, DYNAMIC_FEE_TX_TYPE, BLOB_TX_TYPE, SET_CODE_TX_TYPE)


def _require(value, name, tx_type):
    if value is None:
        raise SignatureRecoveryError(f"type {tx_type} transaction is missing {name}")
    return value


def _access_list(tx):
    return [[address, list(storage_keys)] for address, storage_keys in tx.access_list]


def _legacy_signing_hash(tx: ChainTransaction) -> Tuple[bytes, int, Optional[int]]:
    fields: List[Any] = [tx.nonce, tx.gas_price, tx.gas, tx.to or b"", tx.value, tx.input]

    # Pre EIP-155: no replay protection
    if tx.v in (27, 28):
        return keccak(rlp.encode(fields)), tx.v - 27, None

    if tx.v < 35:
        raise SignatureRecoveryError(f"invalid legacy signature v={tx.v}")

    chain_id = (tx.v - 35) // 2
    recovery_id = tx.v - 35 - 2 * chain_id
    return keccak(rlp.encode(fields + [chain_id, 0, 0])), recovery_id, chain_id


def _typed_signing_hash(tx: ChainTransaction) -> bytes:
    chain_id = _require(tx.chain_id, "chainId", tx.type)

    if tx.type == ACCESS_LIST_TX_TYPE:
        payload = [
            chain_id, tx.nonce, tx.gas_price, tx.gas,
            tx.to or b"", tx.value, tx.input, _access_list(tx),
        ]
    else:
        payload = [
            chain_id,
            tx.nonce,
            _require(tx.max_priority_fee_per_gas, "maxPriorityFeePerGas", tx.type),
            _require(tx.max_fee_per_gas, "maxFeePerGas", tx.type),
            tx.gas,
            tx.to or b"",
            tx.value,
            tx.input,
            _access_list(tx),
        ]
        if tx.type == BLOB_TX_TYPE:
            payload.append(_require(tx.max_fee_per_blob_gas, "maxFeePerBlobGas", tx.type))
            payload.append(list(tx.blob_versioned_hashes))
        elif tx.type == SET_CODE_TX_TYPE:
            payload.append([
                [auth.chain_id, auth.address, auth.nonce, auth.y_parity, auth.r, auth.s]
                for auth in tx.authorization_list
            ])

    return keccak(bytes([tx.type]) + rlp.encode(payload))


def signing_hash(tx: ChainTransaction) -> Tuple[bytes, int, Optional[int]]:
    """
    Rebuild the hash signed by the sender.

    Returns:
        (message hash, recovery id, chain id the signature commits to).
        The chain id is None for unprotected legacy transactions.
    """
    if tx.type == LEGACY_TX_TYPE:
        msg_hash, recovery_id, chain_id = _legacy_signing_hash(tx)
        if chain_id is not None and tx.chain_id is not None and tx.chain_id != chain_id:
            raise SignatureRecoveryError(
                f"chain id {tx.chain_id} does not match signature chain id {chain_id}"
            )
        return msg_hash, recovery_id, chain_id

    if tx.type in TYPED_TX_TYPES:
        return _typed_signing_hash(tx), tx.v, tx.chain_id

    raise SignatureRecoveryError(f"unsupported transaction type {tx.type}")


def recover_sender(tx: ChainTransaction, expected_chain_id: Optional[int] = None) -> str:
    """
    Recover the checksummed sender address of a signed transaction.

    Args:
        tx: Normalized transaction
        expected_chain_id: If set, signatures committing to another chain are rejected

    Raises:
        SignatureRecoveryError: On any malformed, unsupported or mismatching signature
    """
    msg_hash, recovery_id, chain_id = signing_hash(tx)

    if recovery_id not in (0, 1):
        raise SignatureRecoveryError(f"invalid signature recovery id {recovery_id}")

    if expected_chain_id is not None and chain_id is not None and chain_id != expected_chain_id:
        raise SignatureRecoveryError(
            f"transaction is signed for chain {chain_id}, expected {expected_chain_id}"
        )

    # EIP-2: s must be in the lower half of the curve order
    if not (0 < tx.r < SECP256K1_N and 0 < tx.s <= SECP256K1_HALF_N):
        raise SignatureRecoveryError("signature values out of range")

    try:
        signature = keys.Signature(vrs=(recovery_id, tx.r, tx.s))
        public_key = signature.recover_public_key_from_msg_hash(msg_hash)
    except (BadSignature, ValidationError) as e:
        raise SignatureRecoveryError(f"signature recovery failed: {e}") from e

    address = public_key.to_canonical_address()
    if tx.sender is not None and tx.sender != address:
        raise SignatureRecoveryError(
            f"recovered sender {to_checksum_address(address)} does not match "
            f"node-reported sender {to_checksum_address(tx.sender)}"
        )

    return to_checksum_address(address)
