# chat_tree/repositories/branches.py
"""Branch and tree-edge rows. No path walking happens here."""

from typing import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session
from loguru import logger

from chat_tree.errors import NotFound, ValidationError
from chat_tree.models import (
    Branch, Conversation, Message, MessageAttachment, MessageTreeEdge, TreeEdge,
    new_id,
)

MAIN_BRANCH_NAME = "Main"


class BranchRepository:
    """CRUD over branches and message-tree edges."""

    def __init__(self, session: Session):
        self.session = session

    # ================================================================
    # Branches
    # ================================================================

    def create_branch(
        self,
        conversation_id: str,
        name: str,
        fork_message_id: str | None = None,
    ) -> Branch:
        """Insert a non-main branch."""
        if not name or not name.strip():
            raise ValidationError("Branch name must not be empty")
        self._require_conversation(conversation_id)

        branch = Branch(
            id=new_id(),
            conversation_id=conversation_id,
            name=name.strip(),
            is_main=False,
            fork_message_id=fork_message_id,
        )
        self.session.add(branch)
        self.session.flush()
        logger.info(f"Created branch '{branch.name}' ({branch.id}) in {conversation_id}")
        return branch

    def get_or_create_main_branch(self, conversation_id: str) -> Branch:
        """
        Return the conversation's main branch, creating it on first use.

        Callers run this inside a store transaction, so the existence check
        and the insert happen under the store lock. The partial unique index
        rejects a second main branch from any other writer.
        """
        self._require_conversation(conversation_id)

        main = self.find_main_branch(conversation_id)
        if main is not None:
            return main

        main = Branch(
            id=new_id(),
            conversation_id=conversation_id,
            name=MAIN_BRANCH_NAME,
            is_main=True,
        )
        self.session.add(main)
        self.session.flush()
        logger.info(f"Created main branch {main.id} for {conversation_id}")
        return main

    def find_main_branch(self, conversation_id: str) -> Branch | None:
        return self.session.scalars(
            select(Branch)
            .where(Branch.conversation_id == conversation_id)
            .where(Branch.is_main.is_(True))
        ).first()

    def get_branch(self, branch_id: str) -> Branch:
        branch = self.session.get(Branch, branch_id)
        if branch is None:
            raise NotFound("Branch", branch_id)
        return branch

    def get_branches(self, conversation_id: str) -> list[Branch]:
        return list(
            self.session.scalars(
                select(Branch)
                .where(Branch.conversation_id == conversation_id)
                .order_by(Branch.created_at, Branch.id)
            )
        )

    def rename_branch(self, branch_id: str, new_name: str) -> Branch:
        if not new_name or not new_name.strip():
            raise ValidationError("Branch name must not be empty")
        branch = self.get_branch(branch_id)
        old_name = branch.name
        branch.name = new_name.strip()
        self.session.flush()
        logger.info(f"Renamed branch {branch_id}: '{old_name}' -> '{branch.name}'")
        return branch

    def delete_branch(self, branch_id: str) -> list[str]:
        """
        Delete a non-main branch with the edges and messages tagged to it.

        Shared ancestors must have been re-tagged to another branch first;
        whatever is still tagged with this branch is treated as exclusive.
        Returns the ids of the deleted messages.
        """
        branch = self.get_branch(branch_id)
        if branch.is_main:
            raise ValidationError("The main branch cannot be deleted")

        message_ids = list(
            self.session.scalars(
                select(MessageTreeEdge.message_id)
                .where(MessageTreeEdge.branch_id == branch_id)
            )
        )

        # Delete in dependency order
        self.session.execute(
            delete(MessageTreeEdge).where(MessageTreeEdge.branch_id == branch_id)
        )
        self.session.execute(delete(Branch).where(Branch.id == branch_id))
        if message_ids:
            self.session.execute(
                delete(MessageAttachment).where(MessageAttachment.message_id.in_(message_ids))
            )
            self.session.execute(delete(Message).where(Message.id.in_(message_ids)))
        self.session.expire_all()

        logger.info(f"Deleted branch {branch_id} and {len(message_ids)} exclusive messages")
        return message_ids

    def delete_conversation_tree(self, conversation_id: str):
        """Remove every edge and branch of a conversation."""
        message_ids = select(Message.id).where(Message.conversation_id == conversation_id)
        self.session.execute(
            delete(MessageTreeEdge).where(MessageTreeEdge.message_id.in_(message_ids))
        )
        self.session.execute(
            delete(Branch).where(Branch.conversation_id == conversation_id)
        )

    # ================================================================
    # Tree edges
    # ================================================================

    def create_tree_edge(
        self,
        message_id: str,
        parent_message_id: str | None,
        branch_id: str,
        is_branch_point: bool = False,
    ) -> MessageTreeEdge:
        """Place a message in the tree. A message is placed exactly once."""
        if self.session.get(MessageTreeEdge, message_id) is not None:
            raise ValidationError(f"Message {message_id} is already placed in the tree")

        message = self.session.get(Message, message_id)
        if message is None:
            raise NotFound("Message", message_id)
        branch = self.get_branch(branch_id)
        if branch.conversation_id != message.conversation_id:
            raise ValidationError(
                f"Branch {branch_id} does not belong to conversation {message.conversation_id}"
            )
        if parent_message_id is not None:
            parent = self.session.get(Message, parent_message_id)
            if parent is None:
                raise NotFound("Message", parent_message_id)
            if parent.conversation_id != message.conversation_id:
                raise ValidationError(
                    f"Parent {parent_message_id} belongs to another conversation"
                )

        edge = MessageTreeEdge(
            message_id=message_id,
            parent_message_id=parent_message_id,
            branch_id=branch_id,
            is_branch_point=is_branch_point,
        )
        self.session.add(edge)
        self.session.flush()
        logger.debug(f"Placed {message_id} under {parent_message_id} on branch {branch_id}")
        return edge

    def get_edge(self, message_id: str) -> MessageTreeEdge | None:
        return self.session.get(MessageTreeEdge, message_id)

    def get_tree_edges(self, conversation_id: str) -> list[TreeEdge]:
        """All edges of a conversation, joined with message ordering fields."""
        rows = self.session.execute(
            select(
                MessageTreeEdge.message_id,
                MessageTreeEdge.parent_message_id,
                MessageTreeEdge.branch_id,
                MessageTreeEdge.is_branch_point,
                Message.created_at,
                Message.position,
                Message.role,
            )
            .join(Message, Message.id == MessageTreeEdge.message_id)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at, Message.position)
        )
        return [
            TreeEdge(
                message_id=row.message_id,
                parent_message_id=row.parent_message_id,
                branch_id=row.branch_id,
                is_branch_point=bool(row.is_branch_point),
                created_at=row.created_at,
                position=row.position,
                role=row.role,
            )
            for row in rows
        ]

    def mark_branch_point(self, message_id: str) -> MessageTreeEdge:
        """Flag a placed message as a branch point. Idempotent."""
        edge = self.get_edge(message_id)
        if edge is None:
            raise NotFound("Tree edge", message_id)
        if not edge.is_branch_point:
            edge.is_branch_point = True
            self.session.flush()
            logger.debug(f"Marked {message_id} as branch point")
        return edge

    def reassign_edges(self, message_ids: Iterable[str], branch_id: str) -> int:
        """Re-tag edges to another branch (used when a branch is deleted)."""
        ids = list(message_ids)
        if not ids:
            return 0
        result = self.session.execute(
            update(MessageTreeEdge)
            .where(MessageTreeEdge.message_id.in_(ids))
            .values(branch_id=branch_id)
        )
        return result.rowcount

    def _require_conversation(self, conversation_id: str):
        if self.session.get(Conversation, conversation_id) is None:
            raise NotFound("Conversation", conversation_id)
