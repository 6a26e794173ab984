"""
Unit tests for ConversationStore (SQLite session storage).
"""
import pytest
from datetime import datetime
from agent_server.memory import ConversationStore


@pytest.fixture
def store(temp_db_path):
    """Provide a fresh ConversationStore for each test."""
    return ConversationStore(db_path=temp_db_path)


def test_create_session(store):
    """Test that create_session returns a valid UUID bound to the tenant."""
    session_id = store.create_session("clinic-1", user_id="caller-7")

    assert isinstance(session_id, str)
    assert len(session_id) == 36  # UUID format: 8-4-4-4-12
    assert store.session_exists(session_id)

    meta = store.get_session(session_id)
    assert meta.tenant_id == "clinic-1"
    assert meta.user_id == "caller-7"
    assert meta.message_count == 0


def test_save_and_get_history(store):
    """Test saving messages and retrieving them in order."""
    session_id = store.create_session("clinic-1")

    store.save_message(session_id, "user", "Hello")
    store.save_message(session_id, "assistant", "Hi there!")
    store.save_message(session_id, "human_agent", "This is Maria from the front desk.")

    messages = store.get_history(session_id, limit=10)

    assert [m.role for m in messages] == ["user", "assistant", "human_agent"]
    assert messages[0].content == "Hello"
    assert messages[2].content == "This is Maria from the front desk."
    for msg in messages:
        assert isinstance(msg.timestamp, datetime)


def test_get_history_limit(store):
    """Test that get_history only returns the last N messages, oldest first."""
    session_id = store.create_session("clinic-1")
    for i in range(10):
        store.save_message(session_id, "user", f"Message {i}")

    messages = store.get_history(session_id, limit=5)

    assert len(messages) == 5
    assert messages[0].content == "Message 5"
    assert messages[4].content == "Message 9"


def test_unknown_role_rejected(store):
    session_id = store.create_session("clinic-1")

    with pytest.raises(ValueError, match="Unknown role"):
        store.save_message(session_id, "system", "nope")


def test_get_session_counts_messages(store):
    session_id = store.create_session("clinic-1")
    store.save_message(session_id, "user", "Test 1")
    store.save_message(session_id, "assistant", "Response 1")

    meta = store.get_session(session_id)

    assert meta.message_count == 2
    assert isinstance(meta.created_at, datetime)
    assert meta.to_dict()["session_id"] == session_id


def test_delete_session(store):
    """Test that session and messages are deleted."""
    session_id = store.create_session("clinic-1")
    store.save_message(session_id, "user", "Test")

    assert store.delete_session(session_id) is True
    assert not store.session_exists(session_id)
    assert store.get_session(session_id) is None

    # Deleting again returns False
    assert store.delete_session(session_id) is False


def test_cleanup_expired_keeps_fresh_sessions(store):
    session_id = store.create_session("clinic-1")
    store.save_message(session_id, "user", "Test")

    cleaned = store.cleanup_expired(timeout_minutes=1)

    assert cleaned == 0
    assert store.session_exists(session_id)


def test_session_not_found(store):
    """Test graceful handling of invalid session_id."""
    fake_session = "00000000-0000-0000-0000-000000000000"

    assert not store.session_exists(fake_session)
    assert store.get_session(fake_session) is None

    with pytest.raises(ValueError, match="not found"):
        store.get_history(fake_session)

    with pytest.raises(ValueError, match="not found"):
        store.save_message(fake_session, "user", "Test")
