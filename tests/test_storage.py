"""
Tests for the storage layer.

Tests cover:
- Schema bootstrap and sample-data seeding (idempotent)
- Unavailable database medium
- Repository functions: create, list, get, delete, increment likes
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.models import Message
from app.storage import (
    SAMPLE_MESSAGES,
    MessageNotFound,
    StorageUnavailable,
    count_messages,
    create_message,
    delete_message,
    get_message_by_id,
    increment_likes,
    init_db,
    list_messages,
    seed_sample_messages,
)


@pytest.fixture
def temp_engine(tmp_path):
    """An engine on its own throwaway SQLite file."""
    engine = create_engine(f"sqlite:///{tmp_path / 'board.db'}")
    yield engine
    engine.dispose()


class TestInitDb:
    """Test schema creation and seeding."""

    def test_seeds_empty_database(self, temp_engine):
        init_db(bind=temp_engine, seed=True)

        with sessionmaker(bind=temp_engine)() as db:
            assert count_messages(db) == len(SAMPLE_MESSAGES)
            assert all(m.likes == 0 for m in list_messages(db))

    def test_repeated_init_does_not_duplicate_seed(self, temp_engine):
        init_db(bind=temp_engine, seed=True)
        init_db(bind=temp_engine, seed=True)

        with sessionmaker(bind=temp_engine)() as db:
            assert count_messages(db) == len(SAMPLE_MESSAGES)

    def test_seed_skipped_when_data_exists(self, temp_engine):
        init_db(bind=temp_engine, seed=False)
        with sessionmaker(bind=temp_engine)() as db:
            create_message(db, "already here", "alice")
            assert seed_sample_messages(db) == 0
            assert count_messages(db) == 1

    def test_seed_disabled(self, temp_engine):
        init_db(bind=temp_engine, seed=False)

        with sessionmaker(bind=temp_engine)() as db:
            assert count_messages(db) == 0

    def test_unavailable_medium(self, tmp_path):
        """Test a database path that cannot be opened raises StorageUnavailable."""
        engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'board.db'}")

        with pytest.raises(StorageUnavailable):
            init_db(bind=engine, seed=True)


class TestMessageRepository:
    """Test repository functions against the test database."""

    def test_create_returns_persisted_record(self, db):
        message = create_message(db, "hello", "alice", "198.51.100.2")

        assert message.id is not None
        assert message.likes == 0
        assert message.created_at is not None
        assert message.time
        assert message.ip_address == "198.51.100.2"

    def test_list_newest_first(self, db):
        ids = [create_message(db, f"m{i}", "n").id for i in range(4)]

        assert [m.id for m in list_messages(db)] == list(reversed(ids))

    def test_list_empty(self, db):
        assert list_messages(db) == []

    def test_get_missing_returns_none(self, db):
        assert get_message_by_id(db, 424242) is None

    def test_delete_reports_whether_row_removed(self, db):
        message = create_message(db, "bye", "alice")

        assert delete_message(db, message.id) is True
        assert delete_message(db, message.id) is False
        assert get_message_by_id(db, message.id) is None

    def test_increment_likes(self, db):
        message = create_message(db, "like me", "alice")

        for expected in range(1, 4):
            assert increment_likes(db, message.id).likes == expected

    def test_increment_likes_missing_row(self, db):
        with pytest.raises(MessageNotFound) as exc_info:
            increment_likes(db, 999999)

        assert exc_info.value.message_id == 999999
        # session is still usable after the rollback
        assert count_messages(db) == 0

    def test_increment_after_delete(self, db):
        message = create_message(db, "short lived", "alice")
        delete_message(db, message.id)

        with pytest.raises(MessageNotFound):
            increment_likes(db, message.id)

    def test_like_leaves_other_fields(self, db):
        message = create_message(db, "hello", "alice")
        created_at = message.created_at

        liked = increment_likes(db, message.id)

        assert isinstance(liked, Message)
        assert (liked.content, liked.nickname, liked.created_at) == ("hello", "alice", created_at)
