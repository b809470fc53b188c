import asyncio

from backend.app.importers.sync_cursor import advance_cursor, cancellations_source, read_cursor


def test_advance_skips_non_positive_ids(fake_db):
    assert asyncio.run(advance_cursor("POS-01", 0, connect=fake_db.connect)) is False
    assert asyncio.run(advance_cursor("POS-01", -5, connect=fake_db.connect)) is False
    assert fake_db.connections_opened == 0


def test_advance_then_read(fake_db):
    assert asyncio.run(advance_cursor("POS-01", 12, connect=fake_db.connect)) is True
    assert asyncio.run(advance_cursor("POS-01", 3, connect=fake_db.connect)) is True
    assert asyncio.run(read_cursor("POS-01", connect=fake_db.connect)) == 12
    assert asyncio.run(read_cursor("POS-02", connect=fake_db.connect)) is None


def test_advance_failure_is_swallowed(fake_db):
    fake_db.fail_cursor = True
    assert asyncio.run(advance_cursor("POS-01", 12, connect=fake_db.connect)) is False
    assert fake_db.checked_out == 0


def test_cancellations_source_key():
    assert cancellations_source("POS-01") == "POS-01:cancelaciones"
