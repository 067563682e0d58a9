"""
Pytest configuration and shared fixtures.

Every test gets its own file-backed SQLite database under tmp_path.
"""

import pytest

# Clear settings cache before any package imports so test env vars are used
from scraper_db.config import get_settings
get_settings.cache_clear()

from scraper_db.storage import ScraperDb, init_db


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'scraper.db'}"


@pytest.fixture
async def db(database_url):
    """Store handle with tables created, disposed after the test."""
    scraper_db = ScraperDb(database_url)
    await init_db(scraper_db)
    yield scraper_db
    await scraper_db.dispose()
