# chat_tree/service.py
"""
Branch service: the public, transactional operation surface.

Each public method is one unit of work on the store. Multi-row writes
(a turn, a fork, a branch deletion, a repair) either fully happen or leave
no trace. Everything returned is a plain dataclass from chat_tree.models.
"""

import re
from collections import defaultdict
from typing import Iterable

from loguru import logger

from chat_tree.config import get_maintenance_steps
from chat_tree.db import Store
from chat_tree.errors import NotFound, ValidationError
from chat_tree.models import (
    AttachmentRef, BranchPath, BranchRecord, BranchStats, ConsistencyReport,
    ConversationRecord, ConversationTree, MessageRecord, RepairReport,
)
from chat_tree.repositories import (
    BranchRepository, ConversationRepository, MessageRepository,
)
from chat_tree.tree import (
    branch_head, build_forest, check_consistency, compute_stats,
    find_branch_points, find_divergence_point, plan_branch_deletion, plan_repair,
)

_BRANCH_NAME_RE = re.compile(r"^Branch (\d+)$")


class BranchService:
    """Facade over the repositories and the tree engine."""

    def __init__(self, store: Store):
        self.store = store

    # ================================================================
    # Conversations
    # ================================================================

    def create_conversation(
        self,
        name: str | None = None,
        conversation_id: str | None = None,
    ) -> ConversationRecord:
        with self.store.transaction() as session:
            conversation = ConversationRepository(session).create_conversation(
                name=name, conversation_id=conversation_id,
            )
            return ConversationRecord.from_row(conversation)

    def get_conversation(self, conversation_id: str) -> ConversationRecord:
        with self.store.transaction() as session:
            conversation = ConversationRepository(session).get_conversation(conversation_id)
            return ConversationRecord.from_row(conversation)

    def list_conversations(self) -> list[ConversationRecord]:
        with self.store.transaction() as session:
            return [
                ConversationRecord.from_row(c)
                for c in ConversationRepository(session).list_conversations()
            ]

    def rename_conversation(self, conversation_id: str, name: str) -> ConversationRecord:
        with self.store.transaction() as session:
            conversation = ConversationRepository(session).rename_conversation(
                conversation_id, name,
            )
            return ConversationRecord.from_row(conversation)

    def delete_conversation(self, conversation_id: str):
        """Delete a conversation with all its messages, branches and edges."""
        with self.store.transaction() as session:
            conversations = ConversationRepository(session)
            conversations.get_conversation(conversation_id)
            BranchRepository(session).delete_conversation_tree(conversation_id)
            deleted = MessageRepository(session).delete_messages(conversation_id)
            conversations.delete_conversation(conversation_id)
        logger.info(f"Conversation {conversation_id} removed with {deleted} messages")

    # ================================================================
    # Messages
    # ================================================================

    def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        attachments: Iterable[AttachmentRef] = (),
        message_id: str | None = None,
    ) -> str:
        """
        Store a message without placing it in the tree.

        This is the pre-branching linear write; such messages are picked up
        by `repair_tree`.
        """
        with self.store.transaction() as session:
            return MessageRepository(session).save_message(
                conversation_id, role, content, attachments, message_id,
            )

    def get_history(self, conversation_id: str) -> list[MessageRecord]:
        """Linear view: every message in creation order, ignoring branches."""
        with self.store.transaction() as session:
            return [
                MessageRecord.from_row(m)
                for m in MessageRepository(session).get_history(conversation_id)
            ]

    # ================================================================
    # Branches
    # ================================================================

    def get_or_create_main_branch(self, conversation_id: str) -> BranchRecord:
        with self.store.transaction() as session:
            branch = BranchRepository(session).get_or_create_main_branch(conversation_id)
            return BranchRecord.from_row(branch)

    def create_branch(self, conversation_id: str, name: str | None = None) -> BranchRecord:
        """Create an empty, non-main branch (no fork point)."""
        with self.store.transaction() as session:
            branches = BranchRepository(session)
            if name is None:
                name = self._next_branch_name(branches, conversation_id)
            return BranchRecord.from_row(branches.create_branch(conversation_id, name))

    def get_branch(self, branch_id: str) -> BranchRecord:
        with self.store.transaction() as session:
            return BranchRecord.from_row(BranchRepository(session).get_branch(branch_id))

    def get_branches(self, conversation_id: str) -> list[BranchRecord]:
        with self.store.transaction() as session:
            ConversationRepository(session).get_conversation(conversation_id)
            return [
                BranchRecord.from_row(b)
                for b in BranchRepository(session).get_branches(conversation_id)
            ]

    def generate_branch_name(self, conversation_id: str) -> str:
        """Next free "Branch N" name for a conversation."""
        with self.store.transaction() as session:
            ConversationRepository(session).get_conversation(conversation_id)
            return self._next_branch_name(BranchRepository(session), conversation_id)

    def rename_branch(self, branch_id: str, new_name: str) -> BranchRecord:
        with self.store.transaction() as session:
            branch = BranchRepository(session).rename_branch(branch_id, new_name)
            return BranchRecord.from_row(branch)

    def delete_branch(self, branch_id: str) -> list[str]:
        """
        Delete a non-main branch and the messages only it uses.

        Ancestors that another branch still depends on are handed over to
        that branch instead of being deleted. Returns the deleted message ids.
        Callers must move any "current branch" pointer off this branch first.
        """
        with self.store.transaction() as session:
            branches = BranchRepository(session)
            branch = branches.get_branch(branch_id)
            if branch.is_main:
                raise ValidationError("The main branch cannot be deleted")

            records = [
                BranchRecord.from_row(b)
                for b in branches.get_branches(branch.conversation_id)
            ]
            forest = build_forest(branches.get_tree_edges(branch.conversation_id))
            plan = plan_branch_deletion(forest, branch_id, records)

            by_owner: dict[str, list[str]] = defaultdict(list)
            for message_id, owner in plan.adopted.items():
                by_owner[owner].append(message_id)
            for owner, message_ids in by_owner.items():
                branches.reassign_edges(message_ids, owner)
                logger.warning(
                    f"Branch {owner} adopted {len(message_ids)} shared messages"
                    f" from deleted branch {branch_id}"
                )

            deleted = branches.delete_branch(branch_id)

        return deleted

    # ================================================================
    # Tree operations
    # ================================================================

    def append_turn(
        self,
        conversation_id: str,
        branch_id: str,
        parent_message_id: str | None,
        user_content: str,
        assistant_content: str,
        attachments: Iterable[AttachmentRef] = (),
        user_message_id: str | None = None,
        assistant_message_id: str | None = None,
    ) -> tuple[str, str]:
        """
        Save a user/assistant pair and place both in the tree, atomically.

        The user message becomes a child of `parent_message_id` (a root when
        None) and the assistant message a child of the user message, both on
        `branch_id`. A turn is all-or-nothing.
        """
        with self.store.transaction() as session:
            messages = MessageRepository(session)
            branches = BranchRepository(session)
            ConversationRepository(session).get_conversation(conversation_id)

            branch = branches.get_branch(branch_id)
            if branch.conversation_id != conversation_id:
                raise ValidationError(
                    f"Branch {branch_id} does not belong to conversation {conversation_id}"
                )

            parent_edge = None
            if parent_message_id is not None:
                parent = messages.get_message(parent_message_id)
                if parent.conversation_id != conversation_id:
                    raise ValidationError(
                        f"Message {parent_message_id} does not belong to conversation {conversation_id}"
                    )
                parent_edge = branches.get_edge(parent_message_id)
                if parent_edge is None:
                    raise ValidationError(
                        f"Message {parent_message_id} is not placed in the tree; "
                        "run repair on this conversation"
                    )

            replayed = self._replayed_turn(
                messages, branches, conversation_id, branch_id,
                parent_message_id, user_message_id, assistant_message_id,
            )
            if replayed is not None:
                logger.info(f"Turn {replayed} already recorded, returning it")
                return replayed

            user_id = messages.save_message(
                conversation_id, 'user', user_content, attachments, user_message_id,
            )
            branches.create_tree_edge(user_id, parent_message_id, branch_id)

            assistant_id = messages.save_message(
                conversation_id, 'assistant', assistant_content, (), assistant_message_id,
            )
            branches.create_tree_edge(assistant_id, user_id, branch_id)

            # Continuing another branch's message makes it a branch point
            if parent_edge is not None and parent_edge.branch_id != branch_id:
                branches.mark_branch_point(parent_message_id)

        logger.info(f"Appended turn ({user_id}, {assistant_id}) to branch {branch_id}")
        return user_id, assistant_id

    def create_branch_from_message(
        self,
        conversation_id: str,
        parent_message_id: str,
        branch_name: str | None = None,
    ) -> BranchRecord:
        """
        Fork a new branch at a placed message.

        No messages are copied: the new branch's history is read back
        through the existing parent pointers. Without a name the branch is
        called "Branch N".
        """
        with self.store.transaction() as session:
            messages = MessageRepository(session)
            branches = BranchRepository(session)
            ConversationRepository(session).get_conversation(conversation_id)

            try:
                message = messages.get_message(parent_message_id)
            except NotFound:
                raise NotFound("Message", parent_message_id) from None
            if message.conversation_id != conversation_id:
                raise NotFound("Message", parent_message_id)
            if branches.get_edge(parent_message_id) is None:
                raise ValidationError(
                    f"Message {parent_message_id} is not placed in the tree; "
                    "run repair on this conversation"
                )

            branches.get_or_create_main_branch(conversation_id)

            if branch_name is None:
                branch_name = self._next_branch_name(branches, conversation_id)
            branch = branches.create_branch(
                conversation_id, branch_name, fork_message_id=parent_message_id,
            )
            branches.mark_branch_point(parent_message_id)
            record = BranchRecord.from_row(branch)

        logger.info(f"Forked branch '{record.name}' at {parent_message_id}")
        return record

    def get_branch_path(self, branch_id: str, message_id: str | None = None) -> BranchPath:
        """
        Ordered transcript from the root to the branch head.

        With `message_id`, the path ends at that message instead.
        """
        with self.store.transaction() as session:
            branches = BranchRepository(session)
            branch = BranchRecord.from_row(branches.get_branch(branch_id))
            forest = build_forest(branches.get_tree_edges(branch.conversation_id))

            target = message_id if message_id is not None else branch_head(forest, branch)
            if target is None:
                return BranchPath(branch=branch, messages=[], branch_points=[])

            path_ids = forest.walk_ancestors(target)
            rows = MessageRepository(session).get_messages(path_ids)
            path = [MessageRecord.from_row(rows[mid]) for mid in path_ids]

        points = set(find_branch_points(forest))
        return BranchPath(
            branch=branch,
            messages=path,
            branch_points=[mid for mid in path_ids if mid in points],
        )

    def get_conversation_tree(self, conversation_id: str) -> ConversationTree:
        """The full forest for a conversation."""
        with self.store.transaction() as session:
            ConversationRepository(session).get_conversation(conversation_id)
            branches = BranchRepository(session)
            edges = branches.get_tree_edges(conversation_id)
            records = [BranchRecord.from_row(b) for b in branches.get_branches(conversation_id)]
            placed = {e.message_id for e in edges}
            history = [
                MessageRecord.from_row(m)
                for m in MessageRepository(session).get_history(conversation_id)
                if m.id in placed
            ]

        forest = build_forest(edges)
        return ConversationTree(
            conversation_id=conversation_id,
            branches=records,
            edges=edges,
            messages=history,
            roots=[r.message_id for r in forest.roots],
            branch_points=find_branch_points(forest),
        )

    def find_divergence_point(self, branch_a: str, branch_b: str) -> str | None:
        """Last message two branches share, or None."""
        with self.store.transaction() as session:
            branches = BranchRepository(session)
            first = BranchRecord.from_row(branches.get_branch(branch_a))
            second = BranchRecord.from_row(branches.get_branch(branch_b))
            if first.conversation_id != second.conversation_id:
                raise ValidationError("Branches belong to different conversations")
            edges = branches.get_tree_edges(first.conversation_id)

        forest = build_forest(edges)
        return find_divergence_point(
            forest, branch_head(forest, first), branch_head(forest, second),
        )

    def get_branch_stats(self, conversation_id: str) -> BranchStats:
        with self.store.transaction() as session:
            ConversationRepository(session).get_conversation(conversation_id)
            branches = BranchRepository(session)
            edges = branches.get_tree_edges(conversation_id)
            records = [BranchRecord.from_row(b) for b in branches.get_branches(conversation_id)]

        return compute_stats(build_forest(edges), conversation_id, records)

    # ================================================================
    # Maintenance
    # ================================================================

    def check_consistency(
        self,
        conversation_id: str | None = None,
        max_steps: int | None = None,
    ) -> ConsistencyReport:
        """
        Diagnose structural problems. Never raises for corrupt data.

        Rows are read under the store lock; the scan runs after it is released.
        """
        if max_steps is None:
            max_steps = get_maintenance_steps()

        with self.store.transaction() as session:
            snapshots = []
            for cid in self._conversation_ids(session, conversation_id):
                branches = BranchRepository(session)
                snapshots.append((
                    cid,
                    branches.get_tree_edges(cid),
                    [BranchRecord.from_row(b) for b in branches.get_branches(cid)],
                    [MessageRecord.from_row(m) for m in MessageRepository(session).get_history(cid)],
                ))

        report = ConsistencyReport()
        for cid, edges, records, history in snapshots:
            remaining = None if max_steps is None else max_steps - report.examined
            if remaining is not None and remaining <= 0:
                report.truncated = True
                break
            report.extend(check_consistency(
                build_forest(edges), records, history,
                conversation_id=cid, max_steps=remaining,
            ))

        logger.info(
            f"Consistency check: {len(report.violations)} violations,"
            f" {report.examined} rows examined, truncated={report.truncated}"
        )
        return report

    def repair_tree(
        self,
        conversation_id: str | None = None,
        max_steps: int | None = None,
    ) -> RepairReport:
        """
        Attach messages that have no tree-edge to their main branch.

        Idempotent: a second run finds nothing to do.
        """
        if max_steps is None:
            max_steps = get_maintenance_steps()

        report = RepairReport()
        with self.store.transaction() as session:
            messages = MessageRepository(session)
            branches = BranchRepository(session)

            for cid in self._conversation_ids(session, conversation_id):
                orphans = [MessageRecord.from_row(m) for m in messages.get_unplaced(cid)]
                if not orphans:
                    continue

                remaining = None if max_steps is None else max_steps - report.repaired
                if remaining is not None and remaining <= 0:
                    report.remaining += len(orphans)
                    report.truncated = True
                    continue

                main = branches.get_or_create_main_branch(cid)
                forest = build_forest(branches.get_tree_edges(cid))
                plan = plan_repair(forest, main.id, orphans, max_steps=remaining)

                for message_id, parent_id in plan.placements:
                    branches.create_tree_edge(message_id, parent_id, main.id)
                    report.repaired_ids.append(message_id)
                report.repaired += len(plan.placements)
                report.remaining += plan.remaining
                report.truncated = report.truncated or plan.truncated

        logger.info(
            f"Repair placed {report.repaired} messages"
            f" ({report.remaining} left, truncated={report.truncated})"
        )
        return report

    # ================================================================
    # Helpers
    # ================================================================

    def _next_branch_name(self, branches: BranchRepository, conversation_id: str) -> str:
        numbers = []
        for branch in branches.get_branches(conversation_id):
            match = _BRANCH_NAME_RE.match(branch.name)
            if match:
                numbers.append(int(match.group(1)))
        return f"Branch {max(numbers) + 1 if numbers else 1}"

    def _replayed_turn(
        self,
        messages: MessageRepository,
        branches: BranchRepository,
        conversation_id: str,
        branch_id: str,
        parent_message_id: str | None,
        user_message_id: str | None,
        assistant_message_id: str | None,
    ) -> tuple[str, str] | None:
        """The already-recorded turn a retried call refers to, if any."""
        if user_message_id is None or assistant_message_id is None:
            return None
        user_edge = branches.get_edge(user_message_id)
        assistant_edge = branches.get_edge(assistant_message_id)
        if user_edge is None or assistant_edge is None:
            return None
        for message_id in (user_message_id, assistant_message_id):
            if messages.get_message(message_id).conversation_id != conversation_id:
                raise ValidationError(
                    f"Message {message_id} does not belong to conversation {conversation_id}"
                )
        if user_edge.branch_id != branch_id or assistant_edge.branch_id != branch_id:
            raise ValidationError(
                f"Turn ({user_message_id}, {assistant_message_id}) is recorded on another branch"
            )
        if (user_edge.parent_message_id == parent_message_id
                and assistant_edge.parent_message_id == user_message_id):
            return user_message_id, assistant_message_id
        return None

    def _conversation_ids(self, session, conversation_id: str | None) -> list[str]:
        conversations = ConversationRepository(session)
        if conversation_id is not None:
            return [conversations.get_conversation(conversation_id).id]
        return [c.id for c in conversations.list_conversations()]
