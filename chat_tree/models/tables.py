# chat_tree/models/tables.py
"""SQLAlchemy models for the conversation store."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Text, Index,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def new_id() -> str:
    """Generate an opaque identifier."""
    return str(uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo on round-trip)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================
# Core Tables
# ============================================================

class Conversation(Base):
    """Top-level chat session."""
    __tablename__ = "conversations"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    messages = relationship("Message", back_populates="conversation")
    branches = relationship("Branch", back_populates="conversation",
                            order_by="Branch.created_at")


class Message(Base):
    """What was said. Tree position lives in MessageTreeEdge."""
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_position", "conversation_id", "position"),
    )

    id = Column(String, primary_key=True, default=new_id)
    conversation_id = Column(String, ForeignKey("conversations.id"), nullable=False)

    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)

    # Strictly increasing within a conversation
    created_at = Column(DateTime, nullable=False, default=utcnow)
    # Insertion order; breaks timestamp ties
    position = Column(Integer, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
    attachments = relationship("MessageAttachment", back_populates="message",
                               order_by="MessageAttachment.position")
    edge = relationship("MessageTreeEdge", uselist=False,
                        foreign_keys="MessageTreeEdge.message_id",
                        back_populates="message")


class MessageAttachment(Base):
    """Opaque attachment-store reference attached to a message."""
    __tablename__ = "message_attachments"

    id = Column(String, primary_key=True, default=new_id)
    message_id = Column(String, ForeignKey("messages.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    name = Column(String, nullable=False)
    reference = Column(String, nullable=False)
    attachment_type = Column(String)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", back_populates="attachments")


# ============================================================
# Branching
# ============================================================

class Branch(Base):
    """Named lineage of messages within a conversation."""
    __tablename__ = "branches"
    __table_args__ = (
        # At most one main branch per conversation
        Index(
            "uq_branches_one_main",
            "conversation_id",
            unique=True,
            sqlite_where=text("is_main = 1"),
            postgresql_where=text("is_main"),
        ),
    )

    id = Column(String, primary_key=True, default=new_id)
    conversation_id = Column(String, ForeignKey("conversations.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    is_main = Column(Boolean, nullable=False, default=False)

    # Message this branch was forked from (None for main)
    fork_message_id = Column(String, ForeignKey("messages.id"))

    created_at = Column(DateTime, nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="branches")


class MessageTreeEdge(Base):
    """Where a single message sits in the branch forest."""
    __tablename__ = "message_tree"

    message_id = Column(String, ForeignKey("messages.id"), primary_key=True)
    parent_message_id = Column(String, ForeignKey("messages.id"), index=True)
    branch_id = Column(String, ForeignKey("branches.id"), nullable=False, index=True)
    is_branch_point = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", foreign_keys=[message_id], back_populates="edge")
