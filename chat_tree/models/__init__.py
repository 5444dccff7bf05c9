"""SQLAlchemy tables and plain data views."""

from chat_tree.models.tables import (
    Base,
    Conversation,
    Message,
    MessageAttachment,
    Branch,
    MessageTreeEdge,
    new_id,
    utcnow,
)

from chat_tree.models.views import (
    AttachmentRef,
    ConversationRecord,
    MessageRecord,
    BranchRecord,
    TreeEdge,
    BranchPath,
    ConversationTree,
    BranchStats,
    ViolationKind,
    Violation,
    ConsistencyReport,
    RepairReport,
)

__all__ = [
    # Tables
    "Base",
    "Conversation",
    "Message",
    "MessageAttachment",
    "Branch",
    "MessageTreeEdge",
    "new_id",
    "utcnow",
    # Views
    "AttachmentRef",
    "ConversationRecord",
    "MessageRecord",
    "BranchRecord",
    "TreeEdge",
    "BranchPath",
    "ConversationTree",
    "BranchStats",
    # Maintenance
    "ViolationKind",
    "Violation",
    "ConsistencyReport",
    "RepairReport",
]
