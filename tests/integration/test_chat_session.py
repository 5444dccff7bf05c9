# tests/integration/test_chat_session.py
"""Integration tests for the chat session context."""

import pytest

from chat_tree.chat import ChatSession, StreamingLLMClient
from chat_tree.errors import ValidationError


class EchoClient:
    """Replies with the prompt and records the history it was given."""

    def __init__(self):
        self.histories = []

    def complete(self, prompt, history):
        self.histories.append(history)
        return f"echo: {prompt}"


class StreamingClient(EchoClient):

    def stream_complete(self, prompt, history, on_chunk):
        reply = self.complete(prompt, history)
        for word in reply.split():
            on_chunk(word)
        return reply


class FailingClient:

    def complete(self, prompt, history):
        raise ConnectionError("model unavailable")


class TestChatSession:
    """Tests for sending turns and switching branches."""

    def test_starts_on_main(self, service, conversation):
        session = ChatSession(service, conversation.id)

        main = service.get_or_create_main_branch(conversation.id)
        assert session.branch_id == main.id
        assert session.head_message_id is None

    def test_resumes_at_head(self, service, conversation, two_turns):
        session = ChatSession(service, conversation.id)
        assert session.head_message_id == two_turns['A2']

    def test_send_builds_history(self, service, conversation):
        client = EchoClient()
        session = ChatSession(service, conversation.id)

        assert session.send("hi", client) == "echo: hi"
        session.send("again", client)

        assert client.histories[0] == []
        assert client.histories[1] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "echo: hi"},
        ]
        assert len(service.get_history(conversation.id)) == 4

    def test_streaming(self, service, conversation):
        chunks = []
        session = ChatSession(service, conversation.id)

        reply = session.send("hello there", StreamingClient(), on_chunk=chunks.append)

        assert reply == "echo: hello there"
        assert chunks == ["echo:", "hello", "there"]

    def test_client_failure_writes_nothing(self, service, conversation):
        session = ChatSession(service, conversation.id)

        with pytest.raises(ConnectionError):
            session.send("hi", FailingClient())

        assert service.get_history(conversation.id) == []
        assert session.head_message_id is None

    def test_fork_and_switch(self, service, conversation, two_turns):
        """Test a fork continues from the fork point and main is untouched."""
        client = EchoClient()
        session = ChatSession(service, conversation.id)
        main_id = session.branch_id

        alt = session.fork(two_turns['A1'], "Alt")
        session.send("different", client)

        assert client.histories[-1] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello!"},
        ]
        assert session.branch_id == alt.id

        session.switch_branch(main_id)
        assert session.head_message_id == two_turns['A2']

    def test_delete_active_branch_moves_to_main(self, service, conversation, two_turns):
        session = ChatSession(service, conversation.id)
        main_id = session.branch_id
        alt = session.fork(two_turns['A1'])
        session.send("doomed", EchoClient())

        deleted = session.delete_branch(alt.id)

        assert len(deleted) == 2
        assert session.branch_id == main_id
        assert session.head_message_id == two_turns['A2']

    def test_delete_main_rejected(self, service, conversation, two_turns):
        session = ChatSession(service, conversation.id)

        with pytest.raises(ValidationError):
            session.delete_branch(session.branch_id)

    def test_foreign_branch_rejected(self, service, conversation):
        other = service.create_conversation("Other")
        other_main = service.get_or_create_main_branch(other.id)

        with pytest.raises(ValidationError):
            ChatSession(service, conversation.id, branch_id=other_main.id)


class TestExplicitBranch:
    """A session opened on a named branch continues from that branch's head."""

    def test_main_by_id_resumes_at_head(self, service, conversation, main_branch, two_turns):
        client = EchoClient()
        session = ChatSession(service, conversation.id, branch_id=main_branch.id)

        assert session.head_message_id == two_turns['A2']

        session.send("next", client)
        assert len(client.histories[0]) == 4
        assert service.get_conversation_tree(conversation.id).roots == [two_turns['U1']]

    def test_fork_by_id_continues_from_fork_point(self, service, conversation, two_turns):
        alt = service.create_branch_from_message(conversation.id, two_turns['A1'], "Alt")
        client = EchoClient()
        session = ChatSession(service, conversation.id, branch_id=alt.id)

        assert session.head_message_id == two_turns['A1']

        session.send("other way", client)

        assert client.histories[0] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello!"},
        ]
        tree = service.get_conversation_tree(conversation.id)
        assert len(tree.roots) == 1
        assert service.get_branch_path(alt.id).message_ids[:2] == [two_turns['U1'], two_turns['A1']]

    def test_explicit_head_is_kept(self, service, conversation, main_branch, two_turns):
        session = ChatSession(
            service, conversation.id,
            branch_id=main_branch.id, head_message_id=two_turns['A1'],
        )
        assert session.head_message_id == two_turns['A1']


class TestStreamingClientProtocol:
    """Streaming is chosen by the client's declared capability."""

    def test_streaming_client_matches(self):
        assert isinstance(StreamingClient(), StreamingLLMClient)

    def test_plain_client_does_not_match(self):
        assert not isinstance(EchoClient(), StreamingLLMClient)

    def test_plain_client_with_callback_uses_complete(self, service, conversation):
        chunks = []
        session = ChatSession(service, conversation.id)

        reply = session.send("hi", EchoClient(), on_chunk=chunks.append)

        assert reply == "echo: hi"
        assert chunks == []
        assert len(session.history()) == 2
