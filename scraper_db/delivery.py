"""
Delivery store: delivery receipts observed at a destination mailbox.
"""

import logging
from typing import Iterable

from scraper_db.conversions import address_to_bytes, delivery_to_row, utcnow
from scraper_db.errors import InvariantViolation
from scraper_db.metrics import record_stored_batch, time_operation
from scraper_db.models import DeliveredMessage
from scraper_db.schemas import StorableDelivery
from scraper_db.storage import ScraperDb, upsert_statement
from scraper_db import watermark

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ("msg_id",)
UPDATE_COLUMNS = ("time_created", "destination_tx_id")


async def store_deliveries(
    db: ScraperDb,
    domain: int,
    destination_mailbox: bytes,
    deliveries: Iterable[StorableDelivery],
) -> int:
    """
    Store deliveries from a mailbox (or update existing ones).

    msg_id is unique across all domains, but the new-row count only looks at
    rows for this domain and mailbox. The delivered message may not have been
    scraped at its origin yet; nothing here requires it to exist.

    Returns:
        Number of rows added since the pre-write watermark

    Raises:
        InvariantViolation: If deliveries is empty
        QueryError: If the store fails; the batch is not written
    """
    mailbox = address_to_bytes(destination_mailbox)
    now = utcnow()

    rows_by_key = {}
    for storable in deliveries:
        row = delivery_to_row(storable, domain, mailbox, now)
        rows_by_key[row["msg_id"]] = row
    rows = list(rows_by_key.values())

    if not rows:
        raise InvariantViolation("store_deliveries called with an empty batch")

    criteria = (
        DeliveredMessage.domain == domain,
        DeliveredMessage.destination_mailbox == mailbox,
    )
    with time_operation("store_deliveries"):
        async with db.session() as session:
            latest_id_before = await watermark.baseline(session, DeliveredMessage, *criteria)

            logger.debug(f"Writing {len(rows)} delivered messages to database")
            await session.execute(
                upsert_statement(db.dialect, DeliveredMessage, rows, CONFLICT_COLUMNS, UPDATE_COLUMNS)
            )
            await session.commit()

            new_deliveries_count = await watermark.count_since(
                session, DeliveredMessage, latest_id_before, *criteria
            )

    record_stored_batch(DeliveredMessage.__tablename__, new_deliveries_count)
    if new_deliveries_count > 0:
        logger.info(
            f"Wrote new delivered messages to database: domain={domain}, "
            f"destination_mailbox=0x{mailbox.hex()}, deliveries={new_deliveries_count}"
        )
    return new_deliveries_count
