# chat_tree/repositories/messages.py
"""Message persistence. Knows nothing about tree positions."""

from datetime import timedelta
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload
from loguru import logger

from chat_tree.errors import NotFound, ValidationError
from chat_tree.models import (
    AttachmentRef, Conversation, Message, MessageAttachment, MessageTreeEdge,
    new_id, utcnow,
)

ROLES = ('user', 'assistant')


class MessageRepository:
    """CRUD over messages and their attachment references."""

    def __init__(self, session: Session):
        self.session = session

    def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        attachments: Iterable[AttachmentRef] = (),
        message_id: str | None = None,
    ) -> str:
        """
        Insert a message and its attachment rows; return its id.

        A caller-supplied `message_id` that already exists in the same
        conversation is returned as-is so retried calls do not duplicate.
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role {role!r}; expected one of {ROLES}")

        if self.session.get(Conversation, conversation_id) is None:
            raise NotFound("Conversation", conversation_id)

        if message_id is not None:
            existing = self.session.get(Message, message_id)
            if existing is not None:
                if existing.conversation_id != conversation_id:
                    raise ValidationError(
                        f"Message {message_id} belongs to conversation {existing.conversation_id}"
                    )
                logger.debug(f"Message {message_id} already saved, reusing it")
                return existing.id

        last = self._last_message(conversation_id)
        created_at = utcnow()
        position = 0
        if last is not None:
            # Keep timestamps strictly increasing within the conversation
            if created_at <= last.created_at:
                created_at = last.created_at + timedelta(microseconds=1)
            position = last.position + 1

        message = Message(
            id=message_id or new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=created_at,
            position=position,
        )
        self.session.add(message)

        for index, attachment in enumerate(attachments):
            message.attachments.append(MessageAttachment(
                position=index,
                name=attachment.name,
                reference=attachment.reference,
                attachment_type=attachment.attachment_type,
                created_at=created_at,
            ))

        self.session.flush()
        logger.debug(f"Saved {role} message {message.id} in {conversation_id}")
        return message.id

    def get_message(self, message_id: str) -> Message:
        message = self.session.get(Message, message_id)
        if message is None:
            raise NotFound("Message", message_id)
        return message

    def get_messages(self, message_ids: Iterable[str]) -> dict[str, Message]:
        ids = list(message_ids)
        if not ids:
            return {}
        rows = self.session.scalars(
            select(Message)
            .options(selectinload(Message.attachments))
            .where(Message.id.in_(ids))
        )
        return {m.id: m for m in rows}

    def get_history(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation in creation order (linear view)."""
        if self.session.get(Conversation, conversation_id) is None:
            raise NotFound("Conversation", conversation_id)

        return list(
            self.session.scalars(
                select(Message)
                .options(selectinload(Message.attachments))
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at, Message.position)
            )
        )

    def get_unplaced(self, conversation_id: str) -> list[Message]:
        """Messages with no tree-edge, oldest first."""
        return list(
            self.session.scalars(
                select(Message)
                .outerjoin(MessageTreeEdge, MessageTreeEdge.message_id == Message.id)
                .where(Message.conversation_id == conversation_id)
                .where(MessageTreeEdge.message_id.is_(None))
                .order_by(Message.created_at, Message.position)
            )
        )

    def delete_messages(self, conversation_id: str) -> int:
        """
        Delete every message of a conversation with its attachments.

        Only meant for conversation deletion, after edges and branches are gone.
        """
        message_ids = select(Message.id).where(Message.conversation_id == conversation_id)
        self.session.execute(
            delete(MessageAttachment).where(MessageAttachment.message_id.in_(message_ids))
        )
        result = self.session.execute(
            delete(Message).where(Message.conversation_id == conversation_id)
        )
        return result.rowcount

    def _last_message(self, conversation_id: str) -> Message | None:
        return self.session.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.position.desc())
            .limit(1)
        ).first()
