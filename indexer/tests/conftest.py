"""Shared fixtures: in-memory SQLite database and a test configuration."""

import pytest

from config import Config
from db.session import create_schema, init_db, reset_db
from factories import pubkey

TREASURY = pubkey(200)


@pytest.fixture
def test_config() -> Config:
    """Test configuration."""
    return Config(
        db_url="sqlite://",
        treasury_address=TREASURY,
        webhook_auth="test-secret",
        jupiter_api_key="jup-key",
        gsd_mint=pubkey(201),
        confirm_timeout_seconds=0,
        backfill_batch_size=2,
        backfill_delay_seconds=0,
    )


@pytest.fixture
def db(test_config):
    """Fresh schema for each test."""
    reset_db()
    init_db(test_config)
    create_schema()
    yield
    reset_db()
