# spurchat/main.py
"""
SpurChat CLI entrypoint.

    python -m spurchat.main serve [--host 127.0.0.1] [--port 3001] [--reload]
    python -m spurchat.main migrate
    python -m spurchat.main chat [--session-id <uuid>]

- serve   : run the HTTP API with uvicorn
- migrate : create the SQLite schema (idempotent)
- chat    : terminal chat that drives the same core as the HTTP API
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

import anyio
from anyio import to_thread
import uvicorn

from spurchat.clients.llm_client import CompletionClient
from spurchat.config.settings import load_settings, load_support_prompt
from spurchat.core.chat import SupportChat
from spurchat.core.reply import ReplyGenerator
from spurchat.memory.db import Database, StorageError
from spurchat.memory.repository import ConversationStore

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001


# -----------------------------
# Commands
# -----------------------------

def run_migrate() -> int:
    settings = load_settings()
    database = Database.from_settings(settings)
    try:
        database.init_db()
    except StorageError as e:
        print(f"Migration failed: {e}")
        return 1
    print(f"Database migration completed successfully! ({settings.db_path})")
    return 0


def run_serve(host: str, port: int, reload: bool) -> int:
    uvicorn.run(
        "spurchat.api.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )
    return 0


async def _chat_loop(session_id: Optional[str]) -> None:
    settings = load_settings()
    database = Database.from_settings(settings)
    database.init_db()

    llm = CompletionClient.from_settings(settings)
    chat = SupportChat(
        ConversationStore(database),
        ReplyGenerator(llm, load_support_prompt(settings.support_prompt_path)),
        max_history_messages=settings.max_conversation_messages,
        serialize_turns=settings.serialize_turns,
    )

    print("SpurMart support chat. Type 'exit' to quit.\n")
    try:
        await _read_turns(chat, settings.max_message_length, session_id)
    finally:
        await llm.aclose()


async def _read_turns(chat: SupportChat, max_length: int, session_id: Optional[str]) -> None:
    while True:
        try:
            user = (await to_thread.run_sync(input, "You: ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\n[Session ended]")
            break

        if not user:
            continue
        if user.lower() in {"exit", "quit"}:
            print("[Session ended]")
            break
        if len(user) > max_length:
            print(f"[error] Message cannot exceed {max_length} characters")
            continue

        try:
            result = await chat.handle_message(user, session_id)
        except StorageError as e:
            print(f"[error] Storage failure: {e}")
            break

        if result.session_id != session_id:
            print(f"[session] {result.session_id}")
        session_id = result.session_id

        label = "Agent (error)" if result.error else "Agent"
        print(f"{label}: {result.reply}\n")


def run_chat(session_id: Optional[str]) -> int:
    anyio.run(_chat_loop, session_id)
    return 0


# -----------------------------
# CLI main
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="SpurMart support chat backend.")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default=DEFAULT_HOST)
    serve.add_argument("--port", type=int, default=DEFAULT_PORT)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development).")

    sub.add_parser("migrate", help="Create the database schema.")

    chat = sub.add_parser("chat", help="Chat from the terminal.")
    chat.add_argument("--session-id", default=None, help="Continue an existing conversation.")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        return run_serve(args.host, args.port, args.reload)
    if args.command == "migrate":
        return run_migrate()
    return run_chat(args.session_id)


if __name__ == "__main__":
    sys.exit(main())
