"""Tests for the messaging repository."""

import asyncio

import pytest
from sqlalchemy import text

from socialdb.errors import ConstraintViolation, ValidationError
from socialdb.messaging import MessagingRepository
from socialdb.models import ConversationKind, Message

T1 = "2024-03-01T09:00:00.000000Z"
T2 = "2024-03-01T09:05:00.000000Z"
T3 = "2024-03-01T09:10:00.000000Z"


async def send(messaging, conversation_id, sender, content) -> Message:
    return await messaging.create_message(
        {"conversation_id": conversation_id, "sender_id": sender.id, "content": content}
    )


async def set_created_at(store, table, row_id, value) -> None:
    async with store.transaction() as conn:
        await conn.execute(
            text(f"UPDATE {table} SET created_at = :value WHERE id = :id"),
            {"value": value, "id": row_id},
        )


@pytest.fixture
def pair(make_user):
    async def _pair():
        return await make_user("alice"), await make_user("bob")

    return _pair


class TestDirectConversations:
    """Tests for direct conversation get-or-create."""

    @pytest.mark.asyncio
    async def test_get_or_create_twice(self, messaging, pair):
        """Test the second call returns the same conversation, not created."""
        alice, bob = await pair()

        first = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        second = await messaging.get_or_create_direct_conversation(bob.id, alice.id)

        assert first.created is True
        assert second.created is False
        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_participants_committed_with_conversation(self, messaging, pair):
        alice, bob = await pair()

        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        participants = await messaging.get_conversation_participants(direct.id)

        assert {participant.id for participant in participants} == {alice.id, bob.id}
        assert await messaging.is_participant(direct.id, alice.id)
        assert await messaging.is_participant(direct.id, bob.id)

    @pytest.mark.asyncio
    async def test_explicit_identifier(self, messaging, pair):
        alice, bob = await pair()

        direct = await messaging.get_or_create_direct_conversation(
            alice.id, bob.id, conversation_id="dm-1"
        )

        assert direct.id == "dm-1"
        assert await messaging.find_direct_conversation_between(bob.id, alice.id) == "dm-1"

    @pytest.mark.asyncio
    async def test_find_without_conversation(self, messaging, pair):
        alice, bob = await pair()
        assert await messaging.find_direct_conversation_between(alice.id, bob.id) is None

    @pytest.mark.asyncio
    async def test_find_ignores_groups(self, messaging, pair):
        """Test a two-member group is not mistaken for a direct conversation."""
        alice, bob = await pair()
        await messaging.create_group_conversation("duo", alice.id, [bob.id])

        assert await messaging.find_direct_conversation_between(alice.id, bob.id) is None

    @pytest.mark.asyncio
    async def test_find_conversation_without_key(self, migrated_store, messaging, pair):
        """Test direct conversations built by hand are still found by their members."""
        alice, bob = await pair()
        conversation = await messaging.create_conversation(conversation_id="legacy")
        await messaging.add_participant(conversation.id, alice.id)
        await messaging.add_participant(conversation.id, bob.id)

        found = await messaging.get_or_create_direct_conversation(alice.id, bob.id)

        assert found.id == "legacy"
        assert found.created is False
        counts = await migrated_store.table_counts()
        assert counts["conversations"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_get_or_create(self, migrated_store, pair):
        """Test concurrent creators of one pair end with a single conversation."""
        alice, bob = await pair()
        repos = [MessagingRepository(migrated_store) for _ in range(5)]

        results = await asyncio.gather(
            *(repo.get_or_create_direct_conversation(alice.id, bob.id) for repo in repos)
        )

        assert len({result.id for result in results}) == 1
        assert sum(result.created for result in results) == 1
        counts = await migrated_store.table_counts()
        assert counts["conversations"] == 1
        assert counts["conversation_participants"] == 2

    @pytest.mark.asyncio
    async def test_unknown_user_not_retried(self, migrated_store, make_user, monkeypatch):
        """Test a foreign-key failure is raised on the first attempt."""
        alice = await make_user("alice")
        messaging = MessagingRepository(migrated_store, retries=3)
        opened = []
        transaction = migrated_store.transaction

        def counting(*args, **kwargs):
            opened.append(args)
            return transaction(*args, **kwargs)

        monkeypatch.setattr(migrated_store, "transaction", counting)

        with pytest.raises(ConstraintViolation, match="FOREIGN KEY"):
            await messaging.get_or_create_direct_conversation(alice.id, "ghost")

        assert len(opened) == 1

    @pytest.mark.asyncio
    async def test_direct_key_unique(self, migrated_store, messaging, pair):
        """Test the store refuses a second direct conversation for the same pair."""
        alice, bob = await pair()
        existing = await messaging.get_or_create_direct_conversation(alice.id, bob.id)

        with pytest.raises(ConstraintViolation):
            async with migrated_store.transaction() as conn:
                await conn.execute(
                    text(
                        "INSERT INTO conversations (id, type, direct_key) "
                        "SELECT 'other', 'direct', direct_key FROM conversations "
                        "WHERE id = :id"
                    ),
                    {"id": existing.id},
                )


class TestConversations:
    """Tests for conversation records and membership."""

    @pytest.mark.asyncio
    async def test_create_empty_conversation(self, messaging):
        conversation = await messaging.create_conversation(ConversationKind.GROUP, "club")

        assert conversation.type == ConversationKind.GROUP
        assert conversation.name == "club"
        assert conversation.participants == []
        assert conversation.lastMessage is None

    @pytest.mark.asyncio
    async def test_add_participant_idempotent(self, messaging, make_user):
        alice = await make_user("alice")
        conversation = await messaging.create_conversation(ConversationKind.GROUP, "club")

        assert await messaging.add_participant(conversation.id, alice.id) is True
        assert await messaging.add_participant(conversation.id, alice.id) is False

    @pytest.mark.asyncio
    async def test_add_unknown_user(self, messaging):
        conversation = await messaging.create_conversation(ConversationKind.GROUP, "club")
        with pytest.raises(ConstraintViolation):
            await messaging.add_participant(conversation.id, "ghost")

    @pytest.mark.asyncio
    async def test_group_conversation(self, messaging, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")

        group = await messaging.create_group_conversation(
            "friends", alice.id, [bob.id, carol.id, bob.id]
        )

        assert group.type == ConversationKind.GROUP
        assert group.name == "friends"
        assert [participant.id for participant in group.participants] == [
            alice.id,
            bob.id,
            carol.id,
        ]

    @pytest.mark.asyncio
    async def test_group_with_unknown_member_rolls_back(self, migrated_store, messaging, make_user):
        alice = await make_user("alice")

        with pytest.raises(ConstraintViolation):
            await messaging.create_group_conversation("broken", alice.id, ["ghost"])

        counts = await migrated_store.table_counts()
        assert counts["conversations"] == 0
        assert counts["conversation_participants"] == 0

    @pytest.mark.asyncio
    async def test_get_conversation(self, messaging, pair):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        await send(messaging, direct.id, alice, "hi")

        conversation = await messaging.get_conversation(direct.id)

        assert conversation.type == ConversationKind.DIRECT
        assert conversation.lastMessage.content == "hi"
        assert conversation.lastMessageAt == conversation.lastMessage.createdAt

    @pytest.mark.asyncio
    async def test_get_missing_conversation(self, messaging):
        assert await messaging.get_conversation("missing") is None
        assert await messaging.get_conversation_participants("missing") == []

    @pytest.mark.asyncio
    async def test_not_a_participant(self, messaging, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)

        assert not await messaging.is_participant(direct.id, carol.id)

    @pytest.mark.asyncio
    async def test_user_conversations_most_recent_first(self, migrated_store, messaging, make_user):
        """Test ordering by last activity, falling back to creation time."""
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")
        with_bob = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        with_carol = await messaging.get_or_create_direct_conversation(alice.id, carol.id)
        quiet = await messaging.create_group_conversation("quiet", alice.id, [bob.id])
        await set_created_at(migrated_store, "conversations", with_bob.id, T1)
        await set_created_at(migrated_store, "conversations", with_carol.id, T1)
        await set_created_at(migrated_store, "conversations", quiet.id, T2)
        message = await send(messaging, with_bob.id, bob, "latest")

        conversations = await messaging.get_user_conversations(alice.id)

        assert [conversation.id for conversation in conversations] == [
            with_bob.id,
            quiet.id,
            with_carol.id,
        ]
        assert conversations[0].lastMessage.id == message.id
        assert conversations[0].lastMessage.senderUsername == "bob"
        assert conversations[1].lastMessage is None
        assert {participant.username for participant in conversations[2].participants} == {
            "alice",
            "carol",
        }

    @pytest.mark.asyncio
    async def test_user_without_conversations(self, messaging, make_user):
        alice = await make_user("alice")
        assert await messaging.get_user_conversations(alice.id) == []


class TestMessages:
    """Tests for sending and paging messages."""

    @pytest.mark.asyncio
    async def test_create_message_updates_last_message_at(self, messaging, pair):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)

        message = await send(messaging, direct.id, alice, "hello")
        conversation = await messaging.get_conversation(direct.id)

        assert message.senderUsername == "alice"
        assert message.conversationId == direct.id
        assert conversation.lastMessageAt == message.createdAt

    @pytest.mark.asyncio
    async def test_message_to_unknown_conversation(self, messaging, make_user):
        alice = await make_user("alice")
        with pytest.raises(ConstraintViolation):
            await messaging.create_message(
                {"conversation_id": "missing", "sender_id": alice.id, "content": "hi"}
            )

    @pytest.mark.asyncio
    async def test_page_is_most_recent_in_ascending_order(self, migrated_store, messaging, pair):
        """Test limit=2 over t1 < t2 < t3 returns [t2, t3]."""
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        sent = [await send(messaging, direct.id, alice, f"m{i}") for i in range(3)]
        for message, stamp in zip(sent, (T1, T2, T3)):
            await set_created_at(migrated_store, "messages", message.id, stamp)

        page = await messaging.get_conversation_messages(direct.id, limit=2)

        assert [message.content for message in page] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_before_pagination(self, migrated_store, messaging, pair):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        sent = [await send(messaging, direct.id, bob, f"m{i}") for i in range(3)]
        for message, stamp in zip(sent, (T1, T2, T3)):
            await set_created_at(migrated_store, "messages", message.id, stamp)

        older = await messaging.get_conversation_messages(direct.id, limit=2, before=T3)
        oldest = await messaging.get_conversation_messages(direct.id, before=older[0].createdAt)

        assert [message.content for message in older] == ["m0", "m1"]
        assert oldest == []

    @pytest.mark.asyncio
    async def test_before_accepts_loose_timestamps(self, migrated_store, messaging, pair):
        """Test a timestamp without fraction or zone compares as UTC."""
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        sent = [await send(messaging, direct.id, bob, f"m{i}") for i in range(2)]
        for message, stamp in zip(sent, (T1, T2)):
            await set_created_at(migrated_store, "messages", message.id, stamp)

        page = await messaging.get_conversation_messages(direct.id, before="2024-03-01T09:05:00")

        assert [message.content for message in page] == ["m0"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("before", ["not-a-time", "yesterday", "2024-13-45"])
    async def test_before_must_be_a_timestamp(self, messaging, pair, before):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)

        with pytest.raises(ValidationError, match="Invalid 'before' timestamp"):
            await messaging.get_conversation_messages(direct.id, before=before)

    @pytest.mark.asyncio
    async def test_same_timestamp_keeps_insertion_order(self, migrated_store, messaging, pair):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        sent = [await send(messaging, direct.id, alice, f"m{i}") for i in range(3)]
        for message in sent:
            await set_created_at(migrated_store, "messages", message.id, T1)

        page = await messaging.get_conversation_messages(direct.id)

        assert [message.content for message in page] == ["m0", "m1", "m2"]
        assert (await messaging.get_last_message(direct.id)).content == "m2"

    @pytest.mark.asyncio
    async def test_invalid_limit(self, messaging, pair):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)

        with pytest.raises(ValidationError):
            await messaging.get_conversation_messages(direct.id, limit=0)

    @pytest.mark.asyncio
    async def test_empty_history(self, messaging, pair):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)

        assert await messaging.get_conversation_messages(direct.id) == []
        assert await messaging.get_last_message(direct.id) is None

    @pytest.mark.asyncio
    async def test_messages_removed_with_sender(self, social, messaging, pair):
        alice, bob = await pair()
        direct = await messaging.get_or_create_direct_conversation(alice.id, bob.id)
        await send(messaging, direct.id, alice, "bye")

        await social.delete_user(alice.id)

        assert await messaging.get_conversation_messages(direct.id) == []
        assert [p.id for p in await messaging.get_conversation_participants(direct.id)] == [bob.id]
