# tests/conftest.py
"""Shared pytest fixtures for chat_tree tests."""

from typing import Generator

import pytest

from chat_tree.db import Store
from chat_tree.service import BranchService


# ============================================================
# Store Fixtures
# ============================================================

@pytest.fixture
def store() -> Generator[Store, None, None]:
    """Fresh in-memory SQLite store with the schema created."""
    store = Store("sqlite://", lock_timeout=5)
    store.init_schema()
    yield store
    store.close()


@pytest.fixture
def service(store) -> BranchService:
    return BranchService(store)


# ============================================================
# Conversation Fixtures
# ============================================================

@pytest.fixture
def conversation(service):
    """An empty conversation."""
    return service.create_conversation(name="Test Conversation")


@pytest.fixture
def main_branch(service, conversation):
    return service.get_or_create_main_branch(conversation.id)


@pytest.fixture
def two_turns(service, conversation, main_branch) -> dict:
    """
    Main branch with two turns: U1 -> A1 -> U2 -> A2.

    Returns the message ids keyed by their label.
    """
    u1, a1 = service.append_turn(conversation.id, main_branch.id, None, "hi", "hello!")
    u2, a2 = service.append_turn(conversation.id, main_branch.id, a1, "how are you", "I'm good")
    return {'U1': u1, 'A1': a1, 'U2': u2, 'A2': a2}
