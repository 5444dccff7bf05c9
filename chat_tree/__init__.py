"""Chat Tree - branching conversation history on a single-writer store."""

__version__ = "0.1.0"

from chat_tree.db import Store
from chat_tree.errors import (
    ChatTreeError, NotFound, ValidationError, InconsistentTree, StorageError,
)
from chat_tree.service import BranchService
from chat_tree.chat import ChatSession, LLMClient, StreamingLLMClient

__all__ = [
    "Store",
    "BranchService",
    "ChatSession",
    "LLMClient",
    "StreamingLLMClient",
    "ChatTreeError",
    "NotFound",
    "ValidationError",
    "InconsistentTree",
    "StorageError",
]
