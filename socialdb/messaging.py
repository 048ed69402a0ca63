"""Messaging repository: conversations, participants and messages.

Direct conversations are unique per pair of users. Each one carries a
``direct_key`` (the sorted participant pair) guarded by a partial unique
index, so a concurrent get-or-create that loses the race fails with a
``ConstraintViolation`` on that index and is retried, finding the winner's
conversation. Any other constraint failure (an unknown user) is raised at
once.

Message history pages are fetched newest-first and returned oldest-first.

Example:
    >>> from socialdb.messaging import MessagingRepository
    >>>
    >>> messaging = MessagingRepository(store)
    >>> direct = await messaging.get_or_create_direct_conversation("u-1", "u-2")
    >>> await messaging.create_message(
    ...     {"conversation_id": direct.id, "sender_id": "u-1", "content": "hi"}
    ... )
    >>> history = await messaging.get_conversation_messages(direct.id, limit=20)
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import bindparam, insert, text, update
from sqlalchemy.ext.asyncio import AsyncConnection
from tenacity import retry, retry_if_exception, stop_after_attempt

from socialdb.config import settings
from socialdb.database import Store
from socialdb.errors import ConstraintViolation, ValidationError
from socialdb.logging import logger
from socialdb.metrics import track_operation
from socialdb.models import (
    Conversation,
    ConversationKind,
    ConversationParticipantRow,
    ConversationRow,
    DirectConversation,
    Message,
    MessageRow,
    Participant,
)
from socialdb.repository import (
    Repository,
    fetch_all,
    fetch_one,
    insert_or_ignore,
    page_limit,
    row_exists,
)
from socialdb.types import NewMessage
from socialdb.utils import direct_key, new_id, normalize_timestamp, utc_now_iso

# =============================================================================
# Queries
# =============================================================================

DIRECT_BY_KEY = text("SELECT id FROM conversations WHERE direct_key = :key")

# Covers direct conversations created before direct_key existed
DIRECT_BY_PARTICIPANTS = text(
    """
    SELECT c.id
    FROM conversations c
    JOIN conversation_participants cp ON cp.conversation_id = c.id
    WHERE c.type = 'direct'
    GROUP BY c.id
    HAVING COUNT(cp.user_id) = 2
       AND SUM(CASE WHEN cp.user_id IN (:user_a, :user_b) THEN 1 ELSE 0 END) = 2
    ORDER BY c.created_at ASC, c.rowid ASC
    LIMIT 1
    """
)

CONVERSATION_BY_ID = text(
    """
    SELECT id, type, name, created_at, last_message_at
    FROM conversations
    WHERE id = :conversation_id
    """
)

USER_CONVERSATIONS = text(
    """
    SELECT c.id, c.type, c.name, c.created_at, c.last_message_at
    FROM conversations c
    JOIN conversation_participants cp ON cp.conversation_id = c.id
    WHERE cp.user_id = :user_id
    ORDER BY COALESCE(c.last_message_at, c.created_at) DESC, c.rowid DESC
    """
)

PARTICIPANTS_FOR_CONVERSATIONS = text(
    """
    SELECT cp.conversation_id, u.id, u.username, u.name
    FROM conversation_participants cp
    JOIN users u ON u.id = cp.user_id
    WHERE cp.conversation_id IN :conversation_ids
    ORDER BY cp.joined_at ASC, cp.rowid ASC
    """
).bindparams(bindparam("conversation_ids", expanding=True))

MESSAGE_SELECT = """
    SELECT m.id, m.conversation_id, m.sender_id, m.content, m.created_at,
           u.username AS sender_username
    FROM messages m
    JOIN users u ON u.id = m.sender_id
"""

MESSAGE_BY_ID = text(MESSAGE_SELECT + " WHERE m.id = :message_id")

LAST_MESSAGES = text(
    MESSAGE_SELECT
    + """
    WHERE m.conversation_id IN :conversation_ids
      AND m.rowid = (
          SELECT m2.rowid FROM messages m2
          WHERE m2.conversation_id = m.conversation_id
          ORDER BY m2.created_at DESC, m2.rowid DESC
          LIMIT 1
      )
    """
).bindparams(bindparam("conversation_ids", expanding=True))

MESSAGE_PAGE = MESSAGE_SELECT + """
    WHERE m.conversation_id = :conversation_id {before}
    ORDER BY m.created_at DESC, m.rowid DESC
    LIMIT :limit
"""

LATEST_MESSAGES = text(MESSAGE_PAGE.format(before=""))
MESSAGES_BEFORE = text(MESSAGE_PAGE.format(before="AND m.created_at < :before"))


# =============================================================================
# Assembly Helpers
# =============================================================================


async def _participants_by_conversation(
    conn: AsyncConnection, conversation_ids: Sequence[str]
) -> dict[str, list[Participant]]:
    grouped: dict[str, list[Participant]] = defaultdict(list)
    if not conversation_ids:
        return grouped
    rows = await fetch_all(
        conn, PARTICIPANTS_FOR_CONVERSATIONS, {"conversation_ids": list(conversation_ids)}
    )
    for row in rows:
        grouped[row["conversation_id"]].append(Participant.from_row(row))
    return grouped


async def _last_messages(
    conn: AsyncConnection, conversation_ids: Sequence[str]
) -> dict[str, Message]:
    if not conversation_ids:
        return {}
    rows = await fetch_all(conn, LAST_MESSAGES, {"conversation_ids": list(conversation_ids)})
    return {row["conversation_id"]: Message.from_row(row) for row in rows}


async def _assemble(conn: AsyncConnection, rows: Sequence[Any]) -> list[Conversation]:
    ids = [row["id"] for row in rows]
    participants = await _participants_by_conversation(conn, ids)
    last = await _last_messages(conn, ids)
    return [
        Conversation.from_row(row, participants.get(row["id"], []), last.get(row["id"]))
        for row in rows
    ]


async def _insert_conversation(
    conn: AsyncConnection,
    kind: ConversationKind,
    name: str | None = None,
    conversation_id: str | None = None,
    key: str | None = None,
) -> str:
    conversation_id = conversation_id or new_id()
    await conn.execute(
        insert(ConversationRow.__table__).values(  # type: ignore[attr-defined]
            id=conversation_id,
            type=kind.value,
            name=name,
            created_at=utc_now_iso(),
            direct_key=key,
        )
    )
    return conversation_id


async def _add_participant(conn: AsyncConnection, conversation_id: str, user_id: str) -> bool:
    return await insert_or_ignore(
        conn,
        ConversationParticipantRow,
        conversation_id=conversation_id,
        user_id=user_id,
        joined_at=utc_now_iso(),
    )


async def _find_direct(conn: AsyncConnection, user_a: str, user_b: str) -> str | None:
    result = await conn.execute(DIRECT_BY_KEY, {"key": direct_key(user_a, user_b)})
    found = result.scalar_one_or_none()
    if found is not None:
        return found
    result = await conn.execute(DIRECT_BY_PARTICIPANTS, {"user_a": user_a, "user_b": user_b})
    return result.scalar_one_or_none()


def _lost_direct_race(error: BaseException) -> bool:
    # SQLite names the violated column: "UNIQUE constraint failed: conversations.direct_key"
    return isinstance(error, ConstraintViolation) and "direct_key" in str(error)


# =============================================================================
# Messaging Repository
# =============================================================================


class MessagingRepository(Repository):
    """Conversations, participant membership and message history.

    Args:
        store: Open store handle
        retries: Attempts of get-or-create for a direct conversation
            (defaults to settings.direct_conversation_retries)
    """

    def __init__(self, store: Store, retries: int | None = None):
        super().__init__(store)
        self.retries = retries or settings.direct_conversation_retries

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    @track_operation("create_conversation")
    async def create_conversation(
        self,
        kind: ConversationKind = ConversationKind.DIRECT,
        name: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        """Create an empty conversation (participants are added separately)."""
        async with self.store.transaction() as conn:
            conversation_id = await _insert_conversation(conn, kind, name, conversation_id)
            row = await fetch_one(conn, CONVERSATION_BY_ID, {"conversation_id": conversation_id})
        logger.debug(f"Created {kind.value} conversation {conversation_id}")
        return Conversation.from_row(row)  # type: ignore[arg-type]

    @track_operation("add_participant")
    async def add_participant(self, conversation_id: str, user_id: str) -> bool:
        """Add a member; a no-op when already a member.

        Returns:
            True if the membership is new

        Raises:
            ConstraintViolation: The conversation or user does not exist
        """
        async with self.store.transaction() as conn:
            return await _add_participant(conn, conversation_id, user_id)

    @track_operation("find_direct_conversation_between")
    async def find_direct_conversation_between(self, user_a: str, user_b: str) -> str | None:
        """Id of the direct conversation of exactly {user_a, user_b}, or None."""
        async with self.store.transaction() as conn:
            return await _find_direct(conn, user_a, user_b)

    @track_operation("get_or_create_direct_conversation")
    async def get_or_create_direct_conversation(
        self, user_a: str, user_b: str, conversation_id: str | None = None
    ) -> DirectConversation:
        """Return the direct conversation of two users, creating it if needed.

        Lookup and creation run in one transaction. The conversation and both
        participant rows commit together. A concurrent creator of the same
        pair trips the unique ``direct_key`` index; the attempt is retried
        and then finds that conversation.

        Args:
            user_a: One participant
            user_b: The other participant
            conversation_id: Identifier to use if a conversation is created

        Returns:
            ``DirectConversation(id, created)``; ``created`` is True only when
            this call inserted the conversation
        """

        @retry(
            reraise=True,
            stop=stop_after_attempt(self.retries),
            retry=retry_if_exception(_lost_direct_race),
            before_sleep=lambda state: logger.warning(
                f"Direct conversation for {user_a}/{user_b} created concurrently, "
                f"retrying (attempt {state.attempt_number})"
            ),
        )
        async def _runner() -> DirectConversation:
            async with self.store.transaction() as conn:
                existing = await _find_direct(conn, user_a, user_b)
                if existing is not None:
                    return DirectConversation(id=existing, created=False)

                created_id = await _insert_conversation(
                    conn,
                    ConversationKind.DIRECT,
                    conversation_id=conversation_id,
                    key=direct_key(user_a, user_b),
                )
                for user_id in dict.fromkeys((user_a, user_b)):
                    await _add_participant(conn, created_id, user_id)
            logger.debug(f"Created direct conversation {created_id} for {user_a}/{user_b}")
            return DirectConversation(id=created_id, created=True)

        return await _runner()

    @track_operation("create_group_conversation")
    async def create_group_conversation(
        self, name: str | None, creator_id: str, member_ids: Sequence[str]
    ) -> Conversation:
        """Create a group conversation with the creator and members, atomically."""
        async with self.store.transaction() as conn:
            conversation_id = await _insert_conversation(conn, ConversationKind.GROUP, name)
            for user_id in dict.fromkeys([creator_id, *member_ids]):
                await _add_participant(conn, conversation_id, user_id)
            rows = await fetch_all(conn, CONVERSATION_BY_ID, {"conversation_id": conversation_id})
            conversations = await _assemble(conn, rows)
        members = len(conversations[0].participants)
        logger.debug(f"Created group conversation {conversation_id} ({members} members)")
        return conversations[0]

    @track_operation("get_conversation")
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Conversation with participants and last message; None when absent."""
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, CONVERSATION_BY_ID, {"conversation_id": conversation_id})
            conversations = await _assemble(conn, rows)
        return conversations[0] if conversations else None

    @track_operation("get_conversation_participants")
    async def get_conversation_participants(self, conversation_id: str) -> list[Participant]:
        async with self.store.transaction() as conn:
            grouped = await _participants_by_conversation(conn, [conversation_id])
        return grouped.get(conversation_id, [])

    @track_operation("get_user_conversations")
    async def get_user_conversations(self, user_id: str) -> list[Conversation]:
        """Conversations of a user, most recently active first.

        Activity is ``last_message_at``, falling back to ``created_at`` for
        conversations without messages.
        """
        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, USER_CONVERSATIONS, {"user_id": user_id})
            return await _assemble(conn, rows)

    @track_operation("is_participant")
    async def is_participant(self, conversation_id: str, user_id: str) -> bool:
        async with self.store.transaction() as conn:
            return await row_exists(
                conn,
                ConversationParticipantRow,
                conversation_id=conversation_id,
                user_id=user_id,
            )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @track_operation("create_message")
    async def create_message(self, message: NewMessage) -> Message:
        """Append a message and bump the conversation's ``last_message_at``.

        Both writes commit in one transaction, with the same timestamp.

        Raises:
            ConstraintViolation: The conversation or sender does not exist
        """
        now = utc_now_iso()
        values = {
            "id": message.get("id") or new_id(),
            "conversation_id": message["conversation_id"],
            "sender_id": message["sender_id"],
            "content": message["content"],
            "created_at": now,
        }
        conversations = ConversationRow.__table__  # type: ignore[attr-defined]
        async with self.store.transaction() as conn:
            await conn.execute(insert(MessageRow.__table__).values(**values))  # type: ignore[attr-defined]
            await conn.execute(
                update(conversations)
                .where(conversations.c.id == values["conversation_id"])
                .values(last_message_at=now)
            )
            row = await fetch_one(conn, MESSAGE_BY_ID, {"message_id": values["id"]})
        logger.debug(f"Message {values['id']} sent to {values['conversation_id']}")
        return Message.from_row(row if row else values)

    @track_operation("get_conversation_messages")
    async def get_conversation_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        before: str | datetime | None = None,
    ) -> list[Message]:
        """A page of history in ascending chronological order.

        Args:
            conversation_id: Conversation to read
            limit: Page size (defaults to settings.message_page_size)
            before: Only messages strictly older than this timestamp;
                the most recent page when omitted

        Raises:
            ValidationError: ``limit`` is not positive or ``before`` is not a
                timestamp
        """
        params: dict[str, Any] = {
            "conversation_id": conversation_id,
            "limit": page_limit(limit, settings.message_page_size),
        }
        statement = LATEST_MESSAGES
        if before is not None:
            try:
                params["before"] = normalize_timestamp(before)
            except (ValueError, OverflowError) as e:
                raise ValidationError(f"Invalid 'before' timestamp: {before!r}") from e
            statement = MESSAGES_BEFORE

        async with self.store.transaction() as conn:
            rows = await fetch_all(conn, statement, params)
        return [Message.from_row(row) for row in reversed(rows)]

    @track_operation("get_last_message")
    async def get_last_message(self, conversation_id: str) -> Message | None:
        async with self.store.transaction() as conn:
            last = await _last_messages(conn, [conversation_id])
        return last.get(conversation_id)


__all__ = ["MessagingRepository"]
