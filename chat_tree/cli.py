# chat_tree/cli.py
"""Command-line interface for branching conversation operations."""

import json
from pathlib import Path

import fire
from loguru import logger

from chat_tree.config import DATABASE_URL
from chat_tree.db import Store
from chat_tree.errors import ChatTreeError
from chat_tree.repositories import ROLES
from chat_tree.service import BranchService


class CLI:
    """Chat Tree - Branching conversation history."""

    def __init__(self, db_url: str | None = None):
        self.db_url = db_url or DATABASE_URL
        self._store: Store | None = None

    @property
    def service(self) -> BranchService:
        if self._store is None:
            self._store = Store(self.db_url)
        return BranchService(self._store)

    # ================================================================
    # Schema Management
    # ================================================================

    def init(self):
        """Initialize database schema."""
        self.service.store.init_schema()
        logger.info("Schema initialized")

    def reset(self, confirm: bool = False):
        """Reset database (drops and recreates all tables)."""
        if not confirm:
            logger.warning("Pass --confirm to reset database")
            return
        self.service.store.reset_schema()
        logger.info("Database reset")

    # ================================================================
    # Conversations
    # ================================================================

    def new(self, name: str | None = None):
        """Create a conversation with its main branch."""
        conversation = self.service.create_conversation(name=name)
        main = self.service.get_or_create_main_branch(conversation.id)
        print(f"{conversation.id}  {conversation.name}  (main branch {main.id})")
        return {'conversation_id': conversation.id, 'main_branch_id': main.id}

    def conversations(self):
        """List conversations."""
        records = self.service.list_conversations()
        for c in records:
            print(f"{c.id}  {c.created_at:%Y-%m-%d %H:%M}  {c.name}")
        return [{'id': c.id, 'name': c.name} for c in records]

    def rename(self, conversation_id: str, name: str):
        """Rename a conversation."""
        record = self.service.rename_conversation(conversation_id, name)
        return {'id': record.id, 'name': record.name}

    def delete_conversation(self, conversation_id: str, confirm: bool = False):
        """Delete a conversation and everything in it."""
        if not confirm:
            logger.warning("Pass --confirm to delete the conversation")
            return
        self.service.delete_conversation(conversation_id)
        return {'deleted': conversation_id}

    def import_linear(self, path: str, name: str | None = None):
        """Import a JSON array of {role, content} messages as a linear history.

        The messages are stored without tree placement and then attached to
        the main branch by a repair pass.
        """
        data = self._load_json(path)
        for index, item in enumerate(data):
            if not isinstance(item, dict) or item.get('role') not in ROLES \
                    or not isinstance(item.get('content'), str):
                raise ValueError(f"Item {index} is not a {{role, content}} message")

        conversation = self.service.create_conversation(name=name or Path(path).stem)
        try:
            for item in data:
                self.service.save_message(conversation.id, item['role'], item['content'])
        except ChatTreeError:
            self.service.delete_conversation(conversation.id)
            raise
        report = self.service.repair_tree(conversation.id)

        return {'conversation_id': conversation.id, 'messages': report.repaired}

    # ================================================================
    # Turns and Branches
    # ================================================================

    def say(
        self,
        conversation_id: str,
        user: str,
        assistant: str,
        branch_id: str | None = None,
        parent: str | None = None,
    ):
        """Record a user/assistant turn.

        Args:
            conversation_id: Conversation to append to
            user: User message text
            assistant: Assistant reply text
            branch_id: Branch to append to (default: main)
            parent: Message to continue from (default: the branch head)
        """
        service = self.service
        if branch_id is None:
            branch_id = service.get_or_create_main_branch(conversation_id).id
        if parent is None:
            parent = service.get_branch_path(branch_id).head_message_id

        user_id, assistant_id = service.append_turn(
            conversation_id, branch_id, parent, user, assistant,
        )
        return {'user_message_id': user_id, 'assistant_message_id': assistant_id}

    def fork(self, conversation_id: str, message_id: str, name: str | None = None):
        """Create a branch forking at a message."""
        branch = self.service.create_branch_from_message(conversation_id, message_id, name)
        print(f"{branch.id}  {branch.name}")
        return {'branch_id': branch.id, 'name': branch.name}

    def branches(self, conversation_id: str):
        """List branches of a conversation."""
        records = self.service.get_branches(conversation_id)
        for b in records:
            marker = '*' if b.is_main else ' '
            print(f"{marker} {b.id}  {b.name}")
        return [{'id': b.id, 'name': b.name, 'is_main': b.is_main} for b in records]

    def rename_branch(self, branch_id: str, name: str):
        """Rename a branch."""
        record = self.service.rename_branch(branch_id, name)
        return {'id': record.id, 'name': record.name}

    def delete_branch(self, branch_id: str):
        """Delete a non-main branch and its exclusive messages."""
        deleted = self.service.delete_branch(branch_id)
        logger.info(f"Deleted {len(deleted)} messages")
        return deleted

    # ================================================================
    # Reading
    # ================================================================

    def path(self, branch_id: str, message_id: str | None = None):
        """Print the transcript of a branch."""
        branch_path = self.service.get_branch_path(branch_id, message_id)

        print(f"\n=== {branch_path.branch.name} ===\n")
        for m in branch_path.messages:
            marker = ' <' if m.id in branch_path.branch_points else ''
            print(f"[{m.role}] {m.content}{marker}")

        return [{'id': m.id, 'role': m.role, 'content': m.content} for m in branch_path.messages]

    def tree(self, conversation_id: str):
        """Print the message tree of a conversation."""
        tree = self.service.get_conversation_tree(conversation_id)
        names = {b.id: b.name for b in tree.branches}
        content = {m.id: m.content for m in tree.messages}

        children: dict[str | None, list] = {}
        for edge in tree.edges:
            children.setdefault(edge.parent_message_id, []).append(edge)

        def show(edge, depth: int):
            snippet = content.get(edge.message_id, '')[:40]
            print(f"{'  ' * depth}{edge.role}: {snippet}  [{names.get(edge.branch_id, '?')}]")
            for child in children.get(edge.message_id, []):
                show(child, depth + 1)

        for root in children.get(None, []):
            show(root, 0)

        return tree.to_dict()

    def diverge(self, branch_a: str, branch_b: str):
        """Show where two branches diverge."""
        message_id = self.service.find_divergence_point(branch_a, branch_b)
        print(message_id or "Branches share no history")
        return message_id

    def stats(self, conversation_id: str):
        """Show branch statistics for a conversation."""
        stats = self.service.get_branch_stats(conversation_id)

        print("\n=== Branch Statistics ===\n")
        print(f"  Branches: {stats.total_branches}")
        print(f"  Messages: {stats.total_messages}")
        print(f"  Branch Points: {stats.branch_points}")
        print(f"  Max Depth: {stats.max_depth}")

        return {
            'total_branches': stats.total_branches,
            'total_messages': stats.total_messages,
            'branch_points': stats.branch_points,
            'max_depth': stats.max_depth,
            'messages_per_branch': stats.messages_per_branch,
        }

    # ================================================================
    # Maintenance
    # ================================================================

    def check(self, conversation_id: str | None = None, max_steps: int | None = None):
        """Report structural problems in one or all conversations."""
        report = self.service.check_consistency(conversation_id, max_steps)

        for v in report.violations:
            print(f"{v.kind.value}: {v.message_id or '-'}  {v.detail}")
        if report.truncated:
            print("Check stopped early; rerun with a larger --max_steps")

        return {
            'consistent': report.is_consistent,
            'examined': report.examined,
            'truncated': report.truncated,
            'violations': [
                {'kind': v.kind.value, 'message_id': v.message_id, 'conversation_id': v.conversation_id}
                for v in report.violations
            ],
        }

    def repair(self, conversation_id: str | None = None, max_steps: int | None = None):
        """Attach messages without a tree-edge to the main branch."""
        report = self.service.repair_tree(conversation_id, max_steps)
        return {
            'repaired': report.repaired,
            'remaining': report.remaining,
            'truncated': report.truncated,
        }

    # ================================================================
    # Helpers
    # ================================================================

    def _load_json(self, path: str) -> list[dict]:
        """Load a JSON array from a file."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"File not found: {path}")

        logger.info(f"Loading {path}")
        with p.open() as f:
            data = json.load(f)

        if not isinstance(data, list):
            raise ValueError("Expected JSON array")

        logger.info(f"Loaded {len(data)} items")
        return data


def main():
    """Entry point."""
    fire.Fire(CLI)


if __name__ == "__main__":
    main()
