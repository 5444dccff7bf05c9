# chat_tree/chat.py
"""
Chat session: the explicit "current branch / current message" context.

A session reads the active branch's transcript as model history, calls an
LLM client and records the exchange as one turn. The LLM call happens
before anything is written, so a failed call leaves the store untouched.
"""

from typing import Callable, Iterable, Protocol, runtime_checkable

from loguru import logger

from chat_tree.errors import ValidationError
from chat_tree.models import AttachmentRef, BranchRecord
from chat_tree.service import BranchService


class LLMClient(Protocol):
    """Anything that can answer a prompt given prior turns."""

    def complete(self, prompt: str, history: list[dict[str, str]]) -> str:
        ...


@runtime_checkable
class StreamingLLMClient(LLMClient, Protocol):
    """A client that can also stream its reply chunk by chunk."""

    def stream_complete(
        self,
        prompt: str,
        history: list[dict[str, str]],
        on_chunk: Callable[[str], None],
    ) -> str:
        ...


class ChatSession:
    """Tracks which branch and message the next turn continues from."""

    def __init__(
        self,
        service: BranchService,
        conversation_id: str,
        branch_id: str | None = None,
        head_message_id: str | None = None,
    ):
        self.service = service
        self.conversation_id = conversation_id

        if branch_id is None:
            branch_id = service.get_or_create_main_branch(conversation_id).id
        else:
            self._require_own_branch(service.get_branch(branch_id))
        if head_message_id is None:
            head_message_id = service.get_branch_path(branch_id).head_message_id

        self.branch_id = branch_id
        self.head_message_id = head_message_id

    def history(self) -> list[dict[str, str]]:
        """Transcript up to the current head, as role/content dicts."""
        if self.head_message_id is None:
            return []
        path = self.service.get_branch_path(self.branch_id, self.head_message_id)
        return [{"role": m.role, "content": m.content} for m in path.messages]

    def send(
        self,
        prompt: str,
        client: LLMClient,
        attachments: Iterable[AttachmentRef] = (),
        on_chunk: Callable[[str], None] | None = None,
    ) -> str:
        """Ask the client, record the turn and advance the head. Returns the reply."""
        history = self.history()

        if on_chunk is not None and isinstance(client, StreamingLLMClient):
            reply = client.stream_complete(prompt, history, on_chunk)
        else:
            reply = client.complete(prompt, history)

        _, assistant_id = self.service.append_turn(
            self.conversation_id,
            self.branch_id,
            self.head_message_id,
            prompt,
            reply,
            attachments=attachments,
        )
        self.head_message_id = assistant_id
        return reply

    def switch_branch(self, branch_id: str) -> BranchRecord:
        """Make another branch current; the head moves to that branch's head."""
        branch = self.service.get_branch(branch_id)
        self._require_own_branch(branch)
        self.branch_id = branch.id
        self.head_message_id = self.service.get_branch_path(branch.id).head_message_id
        logger.debug(f"Switched to branch '{branch.name}'")
        return branch

    def fork(self, message_id: str, name: str | None = None) -> BranchRecord:
        """Fork at a message and make the new branch current."""
        branch = self.service.create_branch_from_message(
            self.conversation_id, message_id, name,
        )
        self.branch_id = branch.id
        self.head_message_id = message_id
        return branch

    def delete_branch(self, branch_id: str) -> list[str]:
        """Delete a branch, moving to the main branch first if it is current."""
        if branch_id == self.branch_id:
            main = self.service.get_or_create_main_branch(self.conversation_id)
            if main.id == branch_id:
                raise ValidationError("The main branch cannot be deleted")
            self.switch_branch(main.id)
        return self.service.delete_branch(branch_id)

    def _require_own_branch(self, branch: BranchRecord):
        if branch.conversation_id != self.conversation_id:
            raise ValidationError(
                f"Branch {branch.id} does not belong to conversation {self.conversation_id}"
            )
