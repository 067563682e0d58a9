"""
Tests for the dispatch store.

Tests cover:
- New-row counting and idempotent re-ingestion
- Natural key uniqueness with latest-value refresh
- Duplicate keys within one batch
- Empty batch rejection
- Highest nonce resumption
- Message round-trip by nonce
- Dispatch transaction id lookup
- Store failures and oversize batches
"""

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError

from scraper_db.conversions import address_to_bytes, utcnow
from scraper_db.errors import DecodeError, InvariantViolation, QueryError
from scraper_db.message import (
    dispatch_tx_id,
    highest_nonce,
    message_by_nonce,
    store_dispatched_messages,
)
from scraper_db.models import Message
from scraper_db.schemas import HyperlaneMessage, LogMeta, StorableMessage
from scraper_db.storage import MAX_BIND_PARAMETERS


DOMAIN = 1
OTHER_DOMAIN = 2
MAILBOX = bytes(12) + bytes.fromhex("aa" * 20)
OTHER_MAILBOX = bytes.fromhex("bb" * 32)

META = LogMeta(
    address=MAILBOX,
    block_number=1000,
    block_hash=b"\x01" * 32,
    transaction_id=b"\x02" * 32,
    transaction_index=0,
    log_index=3,
)


def make_message(nonce: int, body: bytes = b"hello", origin: int = DOMAIN) -> HyperlaneMessage:
    return HyperlaneMessage(
        nonce=nonce,
        origin=origin,
        sender=bytes(12) + b"\x11" * 20,
        destination=42,
        recipient=b"\x22" * 32,
        body=body,
    )


def storable(nonce: int, txn_id: int, body: bytes = b"hello", origin: int = DOMAIN) -> StorableMessage:
    return StorableMessage(msg=make_message(nonce, body, origin), meta=META, txn_id=txn_id)


async def count_rows(db) -> int:
    async with db.session() as session:
        return (await session.execute(select(func.count()).select_from(Message))).scalar_one()


class TestStoreDispatchedMessages:
    """Test store_dispatched_messages."""

    async def test_new_then_repeated_batch(self, db):
        """Storing the same batch twice counts rows only the first time."""
        batch = [storable(5, 100), storable(6, 101)]

        assert await store_dispatched_messages(db, DOMAIN, MAILBOX, batch) == 2
        assert await store_dispatched_messages(db, DOMAIN, MAILBOX, batch) == 0
        assert await highest_nonce(db, DOMAIN, MAILBOX) == 6
        assert await count_rows(db) == 2

    async def test_only_new_rows_counted(self, db):
        """A batch overlapping stored nonces counts only unseen ones."""
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(0, 1), storable(1, 1)])

        count = await store_dispatched_messages(
            db, DOMAIN, MAILBOX, [storable(1, 2), storable(2, 2), storable(3, 2)]
        )
        assert count == 2

    async def test_natural_key_keeps_latest_values(self, db):
        """Re-ingesting a nonce with a different body updates the one row."""
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(1, 100, body=b"first")])
        count = await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(1, 150, body=b"second")])

        assert count == 0
        assert await count_rows(db) == 1
        message = await message_by_nonce(db, DOMAIN, MAILBOX, 1)
        assert message.body == b"second"
        assert await dispatch_tx_id(db, DOMAIN, MAILBOX, 1) == 150

    async def test_duplicate_key_within_batch(self, db):
        """The later of two rows with the same key in one batch wins."""
        batch = [storable(1, 100, body=b"first"), storable(1, 101, body=b"second")]

        assert await store_dispatched_messages(db, DOMAIN, MAILBOX, batch) == 1
        message = await message_by_nonce(db, DOMAIN, MAILBOX, 1)
        assert message.body == b"second"
        assert await dispatch_tx_id(db, DOMAIN, MAILBOX, 1) == 101

    async def test_empty_batch_rejected(self, db):
        with pytest.raises(InvariantViolation):
            await store_dispatched_messages(db, DOMAIN, MAILBOX, [])

    async def test_empty_iterator_rejected(self, db):
        with pytest.raises(InvariantViolation):
            await store_dispatched_messages(db, DOMAIN, MAILBOX, iter(()))

    async def test_count_scoped_to_mailbox(self, db):
        """Rows written for another mailbox do not count toward this one."""
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(0, 1)])
        await store_dispatched_messages(db, DOMAIN, OTHER_MAILBOX, [storable(0, 1), storable(1, 1)])

        assert await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(0, 1), storable(1, 1)]) == 1

    async def test_same_nonce_different_mailboxes(self, db):
        """The same nonce under two mailboxes is two rows."""
        assert await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(0, 1)]) == 1
        assert await store_dispatched_messages(db, DOMAIN, OTHER_MAILBOX, [storable(0, 1)]) == 1
        assert await count_rows(db) == 2

    async def test_new_rows_metric(self, db):
        labels = {"table": "message"}
        before = REGISTRY.get_sample_value("scraper_db_new_rows_total", labels) or 0

        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(0, 1), storable(1, 1)])
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(0, 1), storable(1, 1)])

        assert REGISTRY.get_sample_value("scraper_db_new_rows_total", labels) == before + 2


class TestHighestNonce:
    """Test highest_nonce."""

    async def test_empty(self, db):
        assert await highest_nonce(db, DOMAIN, MAILBOX) is None

    async def test_after_store(self, db):
        await store_dispatched_messages(
            db, DOMAIN, MAILBOX, [storable(0, 1), storable(2, 1), storable(1, 1)]
        )
        assert await highest_nonce(db, DOMAIN, MAILBOX) == 2

    async def test_filtered_by_domain_and_mailbox(self, db):
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(3, 1)])
        await store_dispatched_messages(db, OTHER_DOMAIN, MAILBOX, [storable(9, 1, origin=OTHER_DOMAIN)])
        await store_dispatched_messages(db, DOMAIN, OTHER_MAILBOX, [storable(7, 1)])

        assert await highest_nonce(db, DOMAIN, MAILBOX) == 3
        assert await highest_nonce(db, OTHER_DOMAIN, MAILBOX) == 9
        assert await highest_nonce(db, OTHER_DOMAIN, OTHER_MAILBOX) is None


class TestMessageByNonce:
    """Test message_by_nonce."""

    async def test_round_trip(self, db):
        message = make_message(4, body=b"\x00payload")
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [StorableMessage(msg=message, txn_id=7)])

        stored = await message_by_nonce(db, DOMAIN, MAILBOX, 4)

        assert stored == message
        assert stored.id() == message.id()

    async def test_empty_body_round_trips_to_empty(self, db):
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(4, 7, body=b"")])

        stored = await message_by_nonce(db, DOMAIN, MAILBOX, 4)

        assert stored.body == b""

    async def test_missing(self, db):
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(4, 7)])

        assert await message_by_nonce(db, DOMAIN, MAILBOX, 5) is None
        assert await message_by_nonce(db, OTHER_DOMAIN, MAILBOX, 4) is None

    async def test_malformed_stored_address(self, db):
        """A stored sender of invalid width aborts the read."""
        async with db.session() as session:
            session.add(Message(
                time_created=utcnow(),
                msg_id=b"\x00" * 32,
                origin=DOMAIN,
                destination=42,
                nonce=8,
                sender=b"\x01" * 19,
                recipient=b"\x22" * 32,
                msg_body=None,
                origin_mailbox=address_to_bytes(MAILBOX),
                origin_tx_id=1,
            ))
            await session.commit()

        with pytest.raises(DecodeError):
            await message_by_nonce(db, DOMAIN, MAILBOX, 8)


class TestDispatchTxId:
    """Test dispatch_tx_id."""

    async def test_found(self, db):
        await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(5, 100), storable(6, 101)])

        assert await dispatch_tx_id(db, DOMAIN, MAILBOX, 5) == 100
        assert await dispatch_tx_id(db, DOMAIN, MAILBOX, 6) == 101

    async def test_missing(self, db):
        assert await dispatch_tx_id(db, DOMAIN, MAILBOX, 5) is None


class TestStoreFailures:
    """Test that store failures surface as QueryError and write nothing."""

    async def test_store_without_table(self, db):
        async with db.engine.begin() as conn:
            await conn.execute(text("DROP TABLE message"))

        with pytest.raises(QueryError) as exc_info:
            await store_dispatched_messages(db, DOMAIN, MAILBOX, [storable(0, 1)])

        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)

    async def test_read_without_table(self, db):
        async with db.engine.begin() as conn:
            await conn.execute(text("DROP TABLE message"))

        with pytest.raises(QueryError) as exc_info:
            await highest_nonce(db, DOMAIN, MAILBOX)

        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)

    async def test_failed_batch_writes_nothing(self, db):
        """One rejected row rolls back the whole batch."""
        async with db.engine.begin() as conn:
            await conn.execute(text(
                "CREATE TRIGGER reject_nonce_3 BEFORE INSERT ON message "
                "WHEN NEW.nonce = 3 BEGIN SELECT RAISE(ABORT, 'rejected'); END"
            ))

        with pytest.raises(QueryError) as exc_info:
            await store_dispatched_messages(
                db, DOMAIN, MAILBOX, [storable(n, 1) for n in range(5)]
            )

        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)
        assert await highest_nonce(db, DOMAIN, MAILBOX) is None
        assert await count_rows(db) == 0

    async def test_oversize_batch_rejected(self, db):
        """A batch past the bind parameter limit is refused before writing."""
        rows_allowed = MAX_BIND_PARAMETERS // 10
        batch = [storable(n, 1) for n in range(rows_allowed + 1)]

        with pytest.raises(InvariantViolation):
            await store_dispatched_messages(db, DOMAIN, MAILBOX, batch)

        assert await count_rows(db) == 0
