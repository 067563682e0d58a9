"""Persistence for scraped cross-chain dispatches and deliveries."""

from scraper_db.delivery import store_deliveries
from scraper_db.errors import DecodeError, InvariantViolation, QueryError, StoreError
from scraper_db.message import (
    dispatch_tx_id,
    highest_nonce,
    message_by_nonce,
    store_dispatched_messages,
)
from scraper_db.schemas import (
    MESSAGE_VERSION,
    HyperlaneMessage,
    LogMeta,
    StorableDelivery,
    StorableMessage,
)
from scraper_db.storage import ScraperDb, check_db_health, init_db

__all__ = [
    "MESSAGE_VERSION",
    "DecodeError",
    "HyperlaneMessage",
    "InvariantViolation",
    "LogMeta",
    "QueryError",
    "ScraperDb",
    "StorableDelivery",
    "StorableMessage",
    "StoreError",
    "check_db_health",
    "dispatch_tx_id",
    "highest_nonce",
    "init_db",
    "message_by_nonce",
    "store_deliveries",
    "store_dispatched_messages",
]
