# spurchat/api/server.py
"""
FastAPI server for the SpurMart support chat.

- POST /chat/message            : one chat turn (user message -> AI reply)
- GET  /chat/history/{session}  : full transcript of a conversation
- GET  /health                  : basic health check

Provider failures are not HTTP errors: they come back as a normal 200
reply flagged with ``error: true`` and are stored in the transcript.
Only validation (400), unknown history (404) and storage/unexpected
failures (500) change the status code.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Type

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from spurchat.clients.llm_client import CompletionClient
from spurchat.config.settings import Settings, load_settings, load_support_prompt
from spurchat.core.chat import SupportChat
from spurchat.core.reply import ReplyGenerator
from spurchat.memory.db import Database, StorageError
from spurchat.memory.repository import ConversationNotFoundError, ConversationStore
from spurchat.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

def build_chat_request_model(max_message_length: int) -> Type[BaseModel]:
    """
    Request body for POST /chat/message, bound to the configured length limit.
    """

    class ChatMessageRequest(BaseModel):
        model_config = ConfigDict(populate_by_name=True)

        message: str = Field(..., description="User message; trimmed before length checks.")
        session_id: Optional[str] = Field(
            default=None,
            alias="sessionId",
            description="Session token (UUID) from a previous reply. Empty means new session.",
        )

        @field_validator("message")
        @classmethod
        def _check_message(cls, value: str) -> str:
            cleaned = value.strip()
            if not cleaned:
                raise PydanticCustomError("message_empty", "Message cannot be empty")
            if len(cleaned) > max_message_length:
                raise PydanticCustomError(
                    "message_too_long",
                    "Message cannot exceed {limit} characters",
                    {"limit": max_message_length},
                )
            return cleaned

        @field_validator("session_id", mode="before")
        @classmethod
        def _check_session_id(cls, value: Any) -> Optional[str]:
            if value is None:
                return None
            if not isinstance(value, str):
                raise PydanticCustomError("session_id_type", "Session id must be a string")
            if not value.strip():
                return None
            try:
                return str(uuid.UUID(value.strip()))
            except ValueError:
                raise PydanticCustomError("session_id_format", "Invalid session id format")

    return ChatMessageRequest


class ChatMessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reply: str
    session_id: str = Field(..., alias="sessionId")
    error: Optional[bool] = None


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender: str
    text: str
    timestamp: str


class HistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    messages: List[MessageResponse]


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------

def _format_validation_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    details: List[Dict[str, str]] = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append({
            "field": ".".join(loc) or "body",
            "message": err.get("msg", "Invalid value"),
        })
    return details


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = _format_validation_errors(exc)
    logger.info("[validation] path=%s details=%s", request.url.path, details)
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "details": details},
    )


def _internal_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": message},
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    llm_client: Optional[CompletionClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    database = database or Database.from_settings(settings)
    llm_client = llm_client or CompletionClient.from_settings(settings)

    store = ConversationStore(database)
    generator = ReplyGenerator(llm_client, load_support_prompt(settings.support_prompt_path))
    chat = SupportChat(
        store,
        generator,
        max_history_messages=settings.max_conversation_messages,
        serialize_turns=settings.serialize_turns,
    )
    ChatMessageRequest = build_chat_request_model(settings.max_message_length)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init_db()
        if not llm_client.configured:
            # Not fatal: each turn answers with a configuration-error reply
            logger.warning("[startup] LLM API key is not set; replies will report a configuration error.")
        logger.info(
            "[startup] model=%s db=%s pool_size=%d history_window=%d",
            settings.llm_model, settings.db_path, settings.db_pool_size,
            settings.max_conversation_messages,
        )
        yield
        await llm_client.aclose()

    app = FastAPI(
        title="SpurMart Support Chat API",
        description="Customer-support chat backend: conversations, history and AI replies.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.state.settings = settings
    app.state.store = store
    app.state.chat = chat

    @app.get("/health")
    async def health_check() -> dict:
        """
        Very simple health check endpoint.
        """
        return {"status": "ok"}

    @app.post(
        "/chat/message",
        response_model=ChatMessageResponse,
        response_model_exclude_none=True,
    )
    async def post_message(req: ChatMessageRequest):  # type: ignore[valid-type]
        """
        Send a message; returns the reply and the session id to reuse.
        """
        request_id = str(uuid.uuid4())
        start_time = time.monotonic()
        logger.info(
            "[chat_message] request_id=%s session_id=%s message_len=%d",
            request_id, req.session_id, len(req.message),
        )

        try:
            result = await chat.handle_message(req.message, req.session_id)
        except StorageError as e:
            logger.error("[chat_message] StorageError request_id=%s error=%s", request_id, e)
            return _internal_error(str(e))
        except Exception as e:
            logger.exception("[chat_message] Unexpected error request_id=%s error=%s", request_id, e)
            return _internal_error("An unexpected error occurred. Please try again.")

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "[chat_message] request_id=%s OK latency_ms=%d session_id=%s error=%s",
            request_id, latency_ms, result.session_id, result.error,
        )
        return ChatMessageResponse(
            reply=result.reply,
            session_id=result.session_id,
            error=True if result.error else None,
        )

    @app.get("/chat/history/{session_id}", response_model=HistoryResponse)
    async def get_history(session_id: str):
        """
        Return every message of a conversation, oldest first.
        """
        try:
            await store.require_conversation(session_id)
            messages = await store.list_messages(session_id)
        except ConversationNotFoundError:
            return JSONResponse(status_code=404, content={"error": "Conversation not found"})
        except StorageError as e:
            logger.error("[history] StorageError session_id=%s error=%s", session_id, e)
            return _internal_error(str(e))
        except Exception as e:
            logger.exception("[history] Unexpected error session_id=%s error=%s", session_id, e)
            return _internal_error("An unexpected error occurred. Please try again.")

        return HistoryResponse(
            session_id=session_id,
            messages=[MessageResponse(**m.to_dict()) for m in messages],
        )

    return app
