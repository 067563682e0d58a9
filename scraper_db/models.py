"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For protocol values and API schemas, see schemas.py.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    LargeBinary,
    UniqueConstraint,
)

from scraper_db.storage import Base

# SQLite only auto-increments an INTEGER PRIMARY KEY (the rowid alias)
BIGINT_PK = BigInteger().with_variant(Integer, "sqlite")


class Message(Base):
    """
    A dispatched message observed at an origin mailbox.

    Table: message
    Natural Key: (origin_mailbox, origin, nonce)
    """
    __tablename__ = "message"
    __table_args__ = (
        UniqueConstraint("origin_mailbox", "origin", "nonce", name="message_mailbox_domain_nonce_key"),
    )

    id = Column(BIGINT_PK, primary_key=True, autoincrement=True)
    time_created = Column(DateTime, nullable=False)
    msg_id = Column(LargeBinary, nullable=False, index=True)
    origin = Column(BigInteger, nullable=False, index=True)
    destination = Column(BigInteger, nullable=False)
    nonce = Column(BigInteger, nullable=False)
    sender = Column(LargeBinary, nullable=False)
    recipient = Column(LargeBinary, nullable=False)
    msg_body = Column(LargeBinary, nullable=True)  # NULL when the body is empty
    origin_mailbox = Column(LargeBinary, nullable=False)
    origin_tx_id = Column(BigInteger, nullable=False)


class DeliveredMessage(Base):
    """
    A delivery receipt observed at a destination mailbox.

    Table: delivered_message
    Natural Key: msg_id
    """
    __tablename__ = "delivered_message"

    id = Column(BIGINT_PK, primary_key=True, autoincrement=True)
    time_created = Column(DateTime, nullable=False)
    msg_id = Column(LargeBinary, nullable=False, unique=True)
    domain = Column(BigInteger, nullable=False, index=True)
    destination_mailbox = Column(LargeBinary, nullable=False)
    destination_tx_id = Column(BigInteger, nullable=False)
