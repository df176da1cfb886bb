from __future__ import annotations

import uuid

import pytest

from spurchat.core.session import resolve_session
from spurchat.memory.repository import ConversationStore

pytestmark = pytest.mark.anyio


async def test_no_session_creates_conversation(store: ConversationStore):
    resolved = await resolve_session(store, None)

    assert resolved.created is True
    assert await store.get_conversation(resolved.conversation_id) is not None


async def test_blank_session_is_treated_as_absent(store: ConversationStore):
    resolved = await resolve_session(store, "   ")
    assert resolved.created is True


async def test_known_session_is_reused(store: ConversationStore):
    conv = await store.create_conversation()

    resolved = await resolve_session(store, conv.id)

    assert resolved.created is False
    assert resolved.conversation_id == conv.id


async def test_stale_session_gets_fresh_conversation(store: ConversationStore):
    stale = str(uuid.uuid4())

    resolved = await resolve_session(store, stale)

    assert resolved.created is True
    assert resolved.conversation_id != stale
    assert await store.get_conversation(stale) is None
    assert await store.get_conversation(resolved.conversation_id) is not None


async def test_each_new_session_is_unique(store: ConversationStore):
    ids = {(await resolve_session(store, None)).conversation_id for _ in range(5)}
    assert len(ids) == 5
