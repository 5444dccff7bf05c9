# chat_tree/models/views.py
"""
Plain data structures returned across the public surface.

Rows are converted to these inside the unit of work so callers never hold
session-bound ORM instances.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class AttachmentRef:
    """Opaque reference handed back by the attachment store."""
    name: str
    reference: str
    attachment_type: str | None = None


@dataclass
class ConversationRecord:
    id: str
    name: str
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> 'ConversationRecord':
        return cls(id=row.id, name=row.name, created_at=row.created_at)


@dataclass
class MessageRecord:
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime
    position: int
    attachments: list[AttachmentRef] = field(default_factory=list)

    @classmethod
    def from_row(cls, row) -> 'MessageRecord':
        return cls(
            id=row.id,
            conversation_id=row.conversation_id,
            role=row.role,
            content=row.content,
            created_at=row.created_at,
            position=row.position,
            attachments=[
                AttachmentRef(a.name, a.reference, a.attachment_type)
                for a in row.attachments
            ],
        )


@dataclass
class BranchRecord:
    id: str
    conversation_id: str
    name: str
    is_main: bool
    created_at: datetime
    fork_message_id: str | None = None

    @classmethod
    def from_row(cls, row) -> 'BranchRecord':
        return cls(
            id=row.id,
            conversation_id=row.conversation_id,
            name=row.name,
            is_main=bool(row.is_main),
            created_at=row.created_at,
            fork_message_id=row.fork_message_id,
        )


@dataclass(frozen=True)
class TreeEdge:
    """
    One message-tree row joined with the ordering fields of its message.

    `created_at` and `position` belong to the message and order siblings.
    """
    message_id: str
    parent_message_id: str | None
    branch_id: str
    is_branch_point: bool = False
    created_at: datetime | None = None
    position: int = 0
    role: str | None = None


@dataclass
class BranchPath:
    """Ordered root-to-head transcript of a branch."""
    branch: BranchRecord
    messages: list[MessageRecord]
    branch_points: list[str] = field(default_factory=list)

    @property
    def message_ids(self) -> list[str]:
        return [m.id for m in self.messages]

    @property
    def head_message_id(self) -> str | None:
        return self.messages[-1].id if self.messages else None


@dataclass
class ConversationTree:
    """Full forest for a conversation, enough to render a visualization."""
    conversation_id: str
    branches: list[BranchRecord]
    edges: list[TreeEdge]
    messages: list[MessageRecord]
    roots: list[str]
    branch_points: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BranchStats:
    conversation_id: str
    total_branches: int
    total_messages: int
    branch_points: int
    max_depth: int
    messages_per_branch: dict[str, int] = field(default_factory=dict)


# ============================================================
# Maintenance results
# ============================================================

class ViolationKind(str, Enum):
    """Kinds of structural problems the consistency check reports."""
    ORPHANED_MESSAGE = 'orphaned_message'       # message with no tree-edge
    MISSING_PARENT = 'missing_parent'           # parent has no tree-edge
    CYCLE = 'cycle'                             # parent chain never reaches a root
    UNKNOWN_BRANCH = 'unknown_branch'           # edge tagged with a missing branch
    MAIN_BRANCH_COUNT = 'main_branch_count'     # not exactly one main branch
    UNFLAGGED_BRANCH_POINT = 'unflagged_branch_point'


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    message_id: str | None = None
    detail: str = ''
    conversation_id: str | None = None


@dataclass
class ConsistencyReport:
    violations: list[Violation] = field(default_factory=list)
    examined: int = 0
    truncated: bool = False

    @property
    def is_consistent(self) -> bool:
        return not self.violations and not self.truncated

    @property
    def orphaned_messages(self) -> list[str]:
        return [
            v.message_id for v in self.violations
            if v.kind == ViolationKind.ORPHANED_MESSAGE
        ]

    def extend(self, other: 'ConsistencyReport'):
        self.violations.extend(other.violations)
        self.examined += other.examined
        self.truncated = self.truncated or other.truncated


@dataclass
class RepairReport:
    repaired: int = 0
    remaining: int = 0
    truncated: bool = False
    repaired_ids: list[str] = field(default_factory=list)
