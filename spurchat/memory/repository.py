# spurchat/memory/repository.py

import sqlite3
import uuid
from typing import List, Optional

from spurchat.memory.db import Database, StorageError
from spurchat.memory.models import Conversation, Message, Sender, now_iso
from spurchat.utils.logging import get_logger

logger = get_logger(__name__)


class ConversationNotFoundError(LookupError):
    """No conversation with the requested id."""


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        sender=row["sender"],
        text=row["text"],
        timestamp=row["timestamp"],
    )


def _touch(conn: sqlite3.Connection, conversation_id: str, when: str) -> None:
    # MAX() keeps updated_at monotonic even if the clock steps back
    cur = conn.execute(
        """
        UPDATE conversations
        SET updated_at = MAX(updated_at, ?)
        WHERE id = ?
        """,
        (when, conversation_id),
    )
    if cur.rowcount == 0:
        raise StorageError(f"Conversation {conversation_id} does not exist.")


class ConversationStore:
    """
    Conversations and their append-only message log.

    All public methods are coroutines; each one is a single round-trip to
    SQLite on a worker thread. Nothing is cached in memory.
    """

    def __init__(self, database: Database) -> None:
        self.db = database

    # --------- conversations ----------

    async def create_conversation(self) -> Conversation:
        """
        Create a new conversation row with a fresh UUID and return it.
        """
        return await self.db.run(self._create_conversation)

    def _create_conversation(self) -> Conversation:
        conv_id = str(uuid.uuid4())
        created_at = now_iso()
        try:
            with self.db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO conversations (id, created_at, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (conv_id, created_at, created_at),
                )
        except StorageError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                logger.error("[store] conversation id collision id=%s", conv_id)
            raise
        return Conversation(id=conv_id, created_at=created_at, updated_at=created_at)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """
        Look a conversation up by id. Returns None when it does not exist.
        """
        return await self.db.run(self._get_conversation, conversation_id)

    def _get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT id, created_at, updated_at FROM conversations WHERE id = ?",
                (conversation_id,),
            ).fetchone()
        return _row_to_conversation(row) if row is not None else None

    async def require_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def touch_conversation(self, conversation_id: str) -> None:
        """
        Bump updated_at to now. Raises StorageError if the conversation is missing.
        """
        await self.db.run(self._touch_conversation, conversation_id)

    def _touch_conversation(self, conversation_id: str) -> None:
        with self.db.connection() as conn:
            _touch(conn, conversation_id, now_iso())

    # --------- messages ----------

    async def append_message(self, conversation_id: str, sender: str, text: str) -> Message:
        """
        Insert a message and bump the conversation's updated_at in the same
        transaction, so the two never disagree.
        """
        sender_value = Sender(sender).value
        if not text or not text.strip():
            raise ValueError("Message text must not be empty.")
        return await self.db.run(self._append_message, conversation_id, sender_value, text)

    def _append_message(self, conversation_id: str, sender: str, text: str) -> Message:
        msg_id = str(uuid.uuid4())
        timestamp = now_iso()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO messages (id, conversation_id, sender, text, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (msg_id, conversation_id, sender, text, timestamp),
            )
            _touch(conn, conversation_id, timestamp)
        return Message(
            id=msg_id,
            conversation_id=conversation_id,
            sender=sender,
            text=text,
            timestamp=timestamp,
        )

    async def list_messages(self, conversation_id: str) -> List[Message]:
        """
        All messages of a conversation, oldest first. Empty list if none.
        """
        return await self.db.run(self._list_messages, conversation_id)

    def _list_messages(self, conversation_id: str) -> List[Message]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, conversation_id, sender, text, timestamp
                FROM messages
                WHERE conversation_id = ?
                ORDER BY timestamp ASC, rowid ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    async def list_recent_messages(self, conversation_id: str, limit: int) -> List[Message]:
        """
        The ``limit`` newest messages, returned oldest first.
        """
        if limit <= 0:
            return []
        return await self.db.run(self._list_recent_messages, conversation_id, limit)

    def _list_recent_messages(self, conversation_id: str, limit: int) -> List[Message]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, conversation_id, sender, text, timestamp
                FROM messages
                WHERE conversation_id = ?
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
        # Fetched newest first; flip back to chronological order
        return [_row_to_message(row) for row in reversed(rows)]
