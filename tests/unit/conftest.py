# tests/unit/conftest.py
"""Fixtures for unit tests - no database required."""

from datetime import datetime, timedelta

import pytest

from chat_tree.models import BranchRecord, MessageRecord, TreeEdge

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def at(position: int) -> datetime:
    """Deterministic timestamp for the n-th message."""
    return BASE_TIME + timedelta(seconds=position)


def make_edge(
    message_id: str,
    parent: str | None,
    branch: str,
    position: int,
    is_branch_point: bool = False,
    role: str = 'user',
) -> TreeEdge:
    return TreeEdge(
        message_id=message_id,
        parent_message_id=parent,
        branch_id=branch,
        is_branch_point=is_branch_point,
        created_at=at(position),
        position=position,
        role=role,
    )


def make_branch(
    branch_id: str,
    is_main: bool = False,
    fork: str | None = None,
    order: int = 0,
) -> BranchRecord:
    return BranchRecord(
        id=branch_id,
        conversation_id='conv',
        name=branch_id,
        is_main=is_main,
        created_at=at(order),
        fork_message_id=fork,
    )


def make_message(message_id: str, position: int, role: str = 'user') -> MessageRecord:
    return MessageRecord(
        id=message_id,
        conversation_id='conv',
        role=role,
        content=f"content of {message_id}",
        created_at=at(position),
        position=position,
    )


# ============================================================
# Sample Forests
# ============================================================

@pytest.fixture
def linear_edges() -> list[TreeEdge]:
    """U1 -> A1 -> U2 -> A2, all on main."""
    return [
        make_edge('U1', None, 'main', 0),
        make_edge('A1', 'U1', 'main', 1, role='assistant'),
        make_edge('U2', 'A1', 'main', 2),
        make_edge('A2', 'U2', 'main', 3, role='assistant'),
    ]


@pytest.fixture
def forked_edges(linear_edges) -> list[TreeEdge]:
    """Linear main with an 'alt' branch forked at A1: A1 -> U3 -> A3."""
    edges = [e for e in linear_edges if e.message_id != 'A1']
    edges.append(make_edge('A1', 'U1', 'main', 1, is_branch_point=True, role='assistant'))
    edges.append(make_edge('U3', 'A1', 'alt', 4))
    edges.append(make_edge('A3', 'U3', 'alt', 5, role='assistant'))
    return edges


@pytest.fixture
def forked_branches() -> list[BranchRecord]:
    return [
        make_branch('main', is_main=True, order=0),
        make_branch('alt', fork='A1', order=1),
    ]


# ============================================================
# Factories
# ============================================================

@pytest.fixture
def edge():
    return make_edge


@pytest.fixture
def branch():
    return make_branch


@pytest.fixture
def message():
    return make_message
