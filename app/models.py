"""Pydantic models for API responses."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BlockDetails(CamelModel):
    """Header pass-through fields of a block."""
    block_hash: str
    parent_hash: str
    state_root: str
    nonce: int


class BlockView(CamelModel):
    """Response model for /block/{blockNumber}."""
    block_number: int
    status: str  # "finalized" | "not finalized"
    timestamp: str
    transaction_count: int
    transactions: List[str]
    withdrawals: int
    details: BlockDetails


class TransactionView(CamelModel):
    """Response model for /tx/{txHash}."""
    tx_hash: str
    status: str  # "success" | "fail"
    block_number: int
    timestamp: str
    from_address: str = Field(alias="from")
    to: Optional[str]  # None for contract creation
    value: str  # Wei as string to preserve precision
    tx_fee: str
    gas_price: str
    input_data: str


class ErrorResponse(BaseModel):
    """Body returned for any failed resolution."""
    error: str
    detail: str


class HealthResponse(CamelModel):
    """Response model for /health endpoint."""
    status: str
    chain_id: int
    latest_block: int
