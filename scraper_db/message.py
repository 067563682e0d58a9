"""
Dispatch store: messages observed at an origin mailbox.

Resumption queries (highest nonce, message by nonce, dispatch tx id) and the
idempotent batch write used by the scraper.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import func, select

from scraper_db.conversions import (
    address_to_bytes,
    message_to_row,
    row_to_message,
    utcnow,
)
from scraper_db.errors import InvariantViolation
from scraper_db.metrics import record_stored_batch, time_operation
from scraper_db.models import Message
from scraper_db.schemas import HyperlaneMessage, StorableMessage
from scraper_db.storage import ScraperDb, upsert_statement
from scraper_db import watermark

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ("origin_mailbox", "origin", "nonce")

# Refreshed with the latest observed values when a row is re-ingested
UPDATE_COLUMNS = (
    "time_created",
    "destination",
    "sender",
    "recipient",
    "msg_body",
    "origin_tx_id",
)


def _mailbox_filter(origin_domain: int, origin_mailbox: bytes) -> tuple:
    return (
        Message.origin == origin_domain,
        Message.origin_mailbox == origin_mailbox,
    )


async def highest_nonce(
    db: ScraperDb,
    origin_domain: int,
    origin_mailbox: bytes,
) -> Optional[int]:
    """
    Get the highest message nonce stored for a mailbox.

    The value may already be stale when the caller acts on it if other
    scrapers are writing; callers re-process nonces they have seen.

    Returns:
        Highest nonce, or None if no message is stored for the mailbox
    """
    with time_operation("highest_nonce"):
        async with db.session() as session:
            result = await session.execute(
                select(func.max(Message.nonce)).where(
                    *_mailbox_filter(origin_domain, address_to_bytes(origin_mailbox))
                )
            )
            last_nonce = result.scalar_one_or_none()

    logger.debug(
        f"Queried last message nonce from database: origin_domain={origin_domain}, "
        f"origin_mailbox=0x{origin_mailbox.hex()}, last_nonce={last_nonce}"
    )
    return last_nonce


async def message_by_nonce(
    db: ScraperDb,
    origin_domain: int,
    origin_mailbox: bytes,
    nonce: int,
) -> Optional[HyperlaneMessage]:
    """
    Get the dispatched message with the given nonce.

    Raises:
        DecodeError: If a stored address has an invalid width
    """
    with time_operation("message_by_nonce"):
        async with db.session() as session:
            result = await session.execute(
                select(Message).where(
                    *_mailbox_filter(origin_domain, address_to_bytes(origin_mailbox)),
                    Message.nonce == nonce,
                )
            )
            row = result.scalar_one_or_none()

    if row is None:
        logger.debug(f"No message stored for origin_domain={origin_domain}, nonce={nonce}")
        return None
    return row_to_message(row)


async def dispatch_tx_id(
    db: ScraperDb,
    origin_domain: int,
    origin_mailbox: bytes,
    nonce: int,
) -> Optional[int]:
    """
    Get the transaction record id a message was dispatched in.

    Taken as MAX over the matching rows; the natural key makes that a single
    row unless the unique constraint has been bypassed.
    """
    with time_operation("dispatch_tx_id"):
        async with db.session() as session:
            result = await session.execute(
                select(func.max(Message.origin_tx_id))
                .where(
                    *_mailbox_filter(origin_domain, address_to_bytes(origin_mailbox)),
                    Message.nonce == nonce,
                )
                .group_by(Message.origin)
            )
            return result.scalar_one_or_none()


async def store_dispatched_messages(
    db: ScraperDb,
    domain: int,
    origin_mailbox: bytes,
    messages: Iterable[StorableMessage],
) -> int:
    """
    Store messages from a mailbox (or update existing ones).

    Args:
        db: Store handle
        domain: Origin domain the messages were scraped from
        origin_mailbox: Mailbox that emitted the dispatch events
        messages: Messages paired with their transaction record ids

    Returns:
        Number of rows added since the pre-write watermark

    Raises:
        InvariantViolation: If messages is empty
        QueryError: If the store fails; the batch is not written
    """
    mailbox = address_to_bytes(origin_mailbox)
    now = utcnow()

    # One row per natural key; a later duplicate in the batch wins
    rows_by_key = {}
    for storable in messages:
        row = message_to_row(storable, mailbox, now)
        rows_by_key[(row["origin_mailbox"], row["origin"], row["nonce"])] = row
    rows = list(rows_by_key.values())

    if not rows:
        raise InvariantViolation("store_dispatched_messages called with an empty batch")

    criteria = _mailbox_filter(domain, mailbox)
    with time_operation("store_dispatched_messages"):
        async with db.session() as session:
            latest_id_before = await watermark.baseline(session, Message, *criteria)

            logger.debug(f"Writing {len(rows)} messages to database")
            await session.execute(
                upsert_statement(db.dialect, Message, rows, CONFLICT_COLUMNS, UPDATE_COLUMNS)
            )
            await session.commit()

            new_dispatch_count = await watermark.count_since(
                session, Message, latest_id_before, *criteria
            )

    record_stored_batch(Message.__tablename__, new_dispatch_count)
    if new_dispatch_count > 0:
        logger.info(
            f"Wrote new messages to database: domain={domain}, "
            f"origin_mailbox=0x{mailbox.hex()}, messages={new_dispatch_count}"
        )
    return new_dispatch_count
