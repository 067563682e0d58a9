"""
New-row counting around an upsert.

The batch upsert does not say which rows it inserted and which it updated.
Instead, the highest row id under a filter is read before the write
(the watermark) and rows above it are counted afterwards.

The two reads are not isolated from other writers: a batch landing on the
same filter between them shifts the count. Counts are approximate under
concurrency; stored rows are unaffected.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scraper_db.errors import QueryError

logger = logging.getLogger(__name__)


async def baseline(session: AsyncSession, model, *criteria) -> int:
    """
    Highest row id matching the criteria.

    Returns:
        The maximum id, or 0 when no row matches

    Raises:
        QueryError: If the aggregate query returns no result row at all
    """
    result = await session.execute(select(func.max(model.id)).where(*criteria))
    row = result.one_or_none()
    if row is None:
        raise QueryError(f"Error getting latest {model.__tablename__} id")
    latest_id = row[0] or 0
    logger.debug(f"Watermark for {model.__tablename__}: {latest_id}")
    return latest_id


async def count_since(session: AsyncSession, model, since_id: int, *criteria) -> int:
    """Number of rows matching the criteria with id above since_id."""
    result = await session.execute(
        select(func.count()).select_from(model).where(*criteria, model.id > since_id)
    )
    return result.scalar_one()
