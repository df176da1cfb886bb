# spurchat/core/chat.py

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

import anyio

from spurchat.core.reply import ReplyGenerator
from spurchat.core.session import resolve_session
from spurchat.memory.models import Sender
from spurchat.memory.repository import ConversationStore
from spurchat.utils.logging import get_logger

logger = get_logger(__name__)

ERROR_REPLY_PREFIX = "Sorry, I encountered an error: "


@dataclass
class ChatTurnResult:
    reply: str
    session_id: str
    error: bool = False


class ConversationLocks:
    """
    One lock per conversation id, dropped once nobody holds or waits on it.
    Keeps a double-submitted turn from interleaving with the first one.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, anyio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = anyio.Lock()
        self._holders[conversation_id] = self._holders.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[conversation_id] -= 1
            if self._holders[conversation_id] == 0:
                del self._holders[conversation_id]
                del self._locks[conversation_id]

    def __len__(self) -> int:
        return len(self._locks)


class SupportChat:
    """
    Runs one chat turn end to end:

        resolve session -> store user message -> read context window
        -> generate reply -> store ai message -> return

    Every user message gets exactly one stored ai message, even when the
    provider fails (the failure text becomes the reply). Storage errors
    propagate to the caller.
    """

    def __init__(
        self,
        store: ConversationStore,
        generator: ReplyGenerator,
        *,
        max_history_messages: int = 50,
        serialize_turns: bool = True,
    ) -> None:
        self.store = store
        self.generator = generator
        self.max_history_messages = max(1, int(max_history_messages))
        self.locks: Optional[ConversationLocks] = ConversationLocks() if serialize_turns else None

    async def handle_message(self, text: str, session_id: Optional[str] = None) -> ChatTurnResult:
        resolved = await resolve_session(self.store, session_id)
        conversation_id = resolved.conversation_id

        if self.locks is None:
            return await self._run_turn(conversation_id, text)
        async with self.locks.hold(conversation_id):
            return await self._run_turn(conversation_id, text)

    async def _run_turn(self, conversation_id: str, text: str) -> ChatTurnResult:
        user_message = await self.store.append_message(conversation_id, Sender.USER.value, text)

        # Sliding context window over the newest messages. The message just
        # stored is sent once, as the current turn.
        recent = await self.store.list_recent_messages(conversation_id, self.max_history_messages)
        window = [m for m in recent if m.id != user_message.id]

        result = await self.generator.generate_reply(window, text)

        if result.error:
            error_reply = f"{ERROR_REPLY_PREFIX}{result.error}"
            await self.store.append_message(conversation_id, Sender.AI.value, error_reply)
            logger.warning(
                "[chat] conversation_id=%s turn completed with provider error", conversation_id
            )
            return ChatTurnResult(reply=error_reply, session_id=conversation_id, error=True)

        await self.store.append_message(conversation_id, Sender.AI.value, result.reply)
        logger.info(
            "[chat] conversation_id=%s turn OK window=%d reply_len=%d",
            conversation_id, len(window), len(result.reply),
        )
        return ChatTurnResult(reply=result.reply, session_id=conversation_id)
