# spurchat/core/session.py

from dataclasses import dataclass
from typing import Optional

from spurchat.memory.repository import ConversationStore
from spurchat.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ResolvedSession:
    conversation_id: str
    created: bool


async def resolve_session(store: ConversationStore, session_id: Optional[str]) -> ResolvedSession:
    """
    Map a client-held session id to a conversation we can write to.

    - No id: start a new conversation.
    - Known id: use it as-is.
    - Unknown id (stale client state, database reset): start a new
      conversation instead of rejecting the request.

    Storage failures propagate.
    """
    cleaned = (session_id or "").strip()

    if cleaned:
        conversation = await store.get_conversation(cleaned)
        if conversation is not None:
            return ResolvedSession(conversation_id=conversation.id, created=False)
        logger.info("[session] session_id=%s not found; starting a new conversation", cleaned)

    conversation = await store.create_conversation()
    logger.info("[session] created conversation id=%s", conversation.id)
    return ResolvedSession(conversation_id=conversation.id, created=True)
