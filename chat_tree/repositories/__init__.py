"""Session-scoped repositories over the store tables."""

from chat_tree.repositories.conversations import ConversationRepository
from chat_tree.repositories.messages import MessageRepository, ROLES
from chat_tree.repositories.branches import BranchRepository, MAIN_BRANCH_NAME

__all__ = [
    "ConversationRepository",
    "MessageRepository",
    "BranchRepository",
    "ROLES",
    "MAIN_BRANCH_NAME",
]
