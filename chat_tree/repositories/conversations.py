# chat_tree/repositories/conversations.py
"""Conversation rows: creation, lookup, rename and removal."""

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from loguru import logger

from chat_tree.errors import NotFound, ValidationError
from chat_tree.models import Conversation, new_id


class ConversationRepository:
    """CRUD over conversation rows."""

    def __init__(self, session: Session):
        self.session = session

    def create_conversation(
        self,
        name: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        if conversation_id is not None and self.session.get(Conversation, conversation_id):
            raise ValidationError(f"Conversation already exists: {conversation_id}")

        conversation = Conversation(
            id=conversation_id or new_id(),
            name=(name or "").strip() or "New Conversation",
        )
        self.session.add(conversation)
        self.session.flush()
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFound("Conversation", conversation_id)
        return conversation

    def list_conversations(self) -> list[Conversation]:
        return list(
            self.session.scalars(
                select(Conversation).order_by(Conversation.created_at, Conversation.id)
            )
        )

    def rename_conversation(self, conversation_id: str, name: str) -> Conversation:
        if not name or not name.strip():
            raise ValidationError("Conversation name must not be empty")
        conversation = self.get_conversation(conversation_id)
        conversation.name = name.strip()
        self.session.flush()
        return conversation

    def delete_conversation(self, conversation_id: str):
        """
        Delete the conversation row.

        Its edges, branches and messages must already be gone; the service
        removes them first in the same transaction.
        """
        self.get_conversation(conversation_id)
        self.session.execute(
            delete(Conversation).where(Conversation.id == conversation_id)
        )
        self.session.expire_all()
        logger.info(f"Deleted conversation {conversation_id}")
