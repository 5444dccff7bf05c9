# chat_tree/errors.py
"""Error taxonomy for the branching engine."""


class ChatTreeError(Exception):
    """Base class for all chat_tree errors."""


class NotFound(ChatTreeError):
    """A referenced conversation, branch or message does not exist."""
    
    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ValidationError(ChatTreeError):
    """Caller-supplied input violates an invariant."""


class InconsistentTree(ChatTreeError):
    """
    Structural corruption found while walking the tree.
    
    Carries the message id where detection happened so the caller can
    offer a repair of the conversation.
    """
    
    def __init__(self, message_id: str, reason: str):
        self.message_id = message_id
        self.reason = reason
        super().__init__(
            f"Inconsistent message tree at {message_id}: {reason}. "
            "This conversation may need repair."
        )


class StorageError(ChatTreeError):
    """Underlying store failure (disk, corruption, lock timeout)."""
    
    def __init__(self, message: str, rolled_back: bool = True):
        self.rolled_back = rolled_back
        super().__init__(message)
