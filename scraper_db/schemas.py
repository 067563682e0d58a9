"""
Pydantic schemas for protocol values and API responses.

This module contains:
- Protocol models for decoded dispatch/delivery events
- Storable wrappers pairing an event with its transaction record id
- Response models for the read API
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator
from web3 import Web3


# The version byte is not persisted; every message read back gets this value.
MESSAGE_VERSION = 3

H256_LENGTH = 32
U32_MAX = 2**32 - 1


def _check_h256(v: bytes, field_name: str) -> bytes:
    if len(v) != H256_LENGTH:
        raise ValueError(f"{field_name} must be {H256_LENGTH} bytes, got {len(v)}")
    return v


# =============================================================================
# Protocol Models
# =============================================================================

class HyperlaneMessage(BaseModel):
    """
    A cross-chain message as emitted by an origin mailbox.

    Addresses (sender, recipient) are 32-byte words; 20-byte EVM addresses
    are left-padded with zeros.
    """
    version: int = Field(default=MESSAGE_VERSION, ge=0, le=255)
    nonce: int = Field(..., ge=0, le=U32_MAX)
    origin: int = Field(..., ge=0, le=U32_MAX, description="Origin domain id")
    sender: bytes
    destination: int = Field(..., ge=0, le=U32_MAX, description="Destination domain id")
    recipient: bytes
    body: bytes = b""

    model_config = {"frozen": True}

    @field_validator("sender", "recipient")
    @classmethod
    def validate_h256(cls, v: bytes, info) -> bytes:
        return _check_h256(v, info.field_name)

    def encode(self) -> bytes:
        """Packed encoding the message id is hashed from."""
        return b"".join([
            self.version.to_bytes(1, "big"),
            self.nonce.to_bytes(4, "big"),
            self.origin.to_bytes(4, "big"),
            self.sender,
            self.destination.to_bytes(4, "big"),
            self.recipient,
            self.body,
        ])

    def id(self) -> bytes:
        """keccak256 of the packed message."""
        return bytes(Web3.keccak(self.encode()))


class LogMeta(BaseModel):
    """Position of the log an event was decoded from."""
    address: bytes
    block_number: int = Field(..., ge=0)
    block_hash: bytes
    transaction_id: bytes
    transaction_index: int = Field(..., ge=0)
    log_index: int = Field(..., ge=0)

    model_config = {"frozen": True}


class StorableMessage(BaseModel):
    """A dispatched message ready to be written."""
    msg: HyperlaneMessage
    meta: Optional[LogMeta] = None
    # Database id of the transaction the message was sent in
    txn_id: int


class StorableDelivery(BaseModel):
    """A delivery receipt ready to be written."""
    message_id: bytes
    meta: Optional[LogMeta] = None
    # Database id of the transaction the delivery event occurred in
    txn_id: int

    @field_validator("message_id")
    @classmethod
    def validate_message_id(cls, v: bytes, info) -> bytes:
        return _check_h256(v, info.field_name)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class NonceResponse(BaseModel):
    """Highest stored nonce for a mailbox, used to resume scraping."""
    origin_domain: int
    origin_mailbox: str = Field(..., description="Mailbox address, 0x-prefixed hex")
    nonce: Optional[int] = Field(None, description="Null if nothing is stored yet")


class MessageResponse(BaseModel):
    """
    A stored dispatched message.
    Byte fields are rendered as 0x-prefixed hex.
    """
    id: str = Field(..., description="Message id (keccak256 of the packed message)")
    version: int
    nonce: int
    origin: int
    sender: str
    destination: int
    recipient: str
    body: str

    @classmethod
    def from_message(cls, message: HyperlaneMessage) -> "MessageResponse":
        return cls(
            id="0x" + message.id().hex(),
            version=message.version,
            nonce=message.nonce,
            origin=message.origin,
            sender="0x" + message.sender.hex(),
            destination=message.destination,
            recipient="0x" + message.recipient.hex(),
            body="0x" + message.body.hex(),
        )


class TxIdResponse(BaseModel):
    """Transaction record id a message was dispatched in."""
    tx_id: int
