"""
Conversions between protocol values and stored row values.

Addresses are carried as 32-byte words but stored at their natural width:
a word whose first 12 bytes are zero is an EVM address and is stored as
20 bytes, anything else is stored as all 32 bytes.
"""

from datetime import datetime, timezone
from typing import Optional

from scraper_db.errors import DecodeError
from scraper_db.schemas import (
    H256_LENGTH,
    MESSAGE_VERSION,
    HyperlaneMessage,
    StorableDelivery,
    StorableMessage,
)

ADDRESS_LENGTH = 20
_PADDING = H256_LENGTH - ADDRESS_LENGTH


def utcnow() -> datetime:
    """Persistence timestamp, naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def h256_to_bytes(value: bytes) -> bytes:
    if len(value) != H256_LENGTH:
        raise DecodeError(f"Expected {H256_LENGTH} bytes, got {len(value)}")
    return bytes(value)


def address_to_bytes(value: bytes) -> bytes:
    """Stored form of a 32-byte address word."""
    data = h256_to_bytes(value)
    if not any(data[:_PADDING]):
        return data[_PADDING:]
    return data


def bytes_to_address(data: bytes) -> bytes:
    """
    Inverse of address_to_bytes.

    Raises:
        DecodeError: If data is neither 20 nor 32 bytes long
    """
    if len(data) == ADDRESS_LENGTH:
        return bytes(_PADDING) + bytes(data)
    if len(data) == H256_LENGTH:
        return bytes(data)
    raise DecodeError(f"Invalid address length: {len(data)} bytes")


def parse_h256(value: str) -> bytes:
    """
    Parse a hex address (20 or 32 bytes, optional 0x prefix) into a 32-byte word.

    Raises:
        DecodeError: If value is not hex or has the wrong width
    """
    digits = value[2:] if value.lower().startswith("0x") else value
    try:
        data = bytes.fromhex(digits)
    except ValueError as e:
        raise DecodeError(f"Invalid hex address: {value!r}") from e
    return bytes_to_address(data)


def to_hex(value: bytes) -> str:
    return "0x" + value.hex()


# =============================================================================
# Row Mapping
# =============================================================================

def message_to_row(storable: StorableMessage, origin_mailbox: bytes, now: datetime) -> dict:
    """
    Column values for one message row.

    Args:
        storable: Message and the transaction record it was dispatched in
        origin_mailbox: Mailbox address, already in stored form
        now: Persistence timestamp shared by the whole batch

    Returns:
        Dict keyed by column name; an empty body maps to NULL
    """
    msg = storable.msg
    return {
        "time_created": now,
        "msg_id": msg.id(),
        "origin": msg.origin,
        "destination": msg.destination,
        "nonce": msg.nonce,
        "sender": address_to_bytes(msg.sender),
        "recipient": address_to_bytes(msg.recipient),
        "msg_body": msg.body if msg.body else None,
        "origin_mailbox": origin_mailbox,
        "origin_tx_id": storable.txn_id,
    }


def row_to_message(row) -> HyperlaneMessage:
    """
    Rebuild a protocol message from a stored row.

    The version is not stored and is always MESSAGE_VERSION. A NULL body
    comes back as b"", so absent and empty bodies are indistinguishable.
    """
    body: Optional[bytes] = row.msg_body
    return HyperlaneMessage(
        version=MESSAGE_VERSION,
        nonce=row.nonce,
        origin=row.origin,
        sender=bytes_to_address(row.sender),
        destination=row.destination,
        recipient=bytes_to_address(row.recipient),
        body=body or b"",
    )


def delivery_to_row(
    storable: StorableDelivery,
    domain: int,
    destination_mailbox: bytes,
    now: datetime,
) -> dict:
    """Column values for one delivered_message row."""
    return {
        "time_created": now,
        "msg_id": h256_to_bytes(storable.message_id),
        "domain": domain,
        "destination_mailbox": destination_mailbox,
        "destination_tx_id": storable.txn_id,
    }
