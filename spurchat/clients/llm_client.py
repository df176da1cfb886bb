# spurchat/clients/llm_client.py
#
# Single integration point for the chat-completion provider.
# Callers never see SDK exceptions: every outcome is a CompletionResult.

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import anyio
import openai
from openai import AsyncOpenAI

from spurchat.config.settings import LLM_TEMPERATURE, Settings, is_usable_api_key
from spurchat.utils.logging import get_logger

logger = get_logger(__name__)

# Extra slack on top of the SDK timeout before we give up ourselves
HARD_TIMEOUT_MARGIN_SEC = 5.0


class FailureKind(str, Enum):
    CONFIGURATION = "configuration"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    TIMEOUT = "timeout"
    EMPTY = "empty"
    OTHER = "other"


@dataclass
class CompletionResult:
    text: str = ""
    failure: Optional[FailureKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None


def _mk_req_id(prefix: str = "llm") -> str:
    return f"{prefix}_{int(time.time()*1000)}_{random.randint(1000, 9999)}"


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def _classify_error_text(msg: str) -> FailureKind:
    lowered = (msg or "").lower()
    if "429" in lowered or "rate limit" in lowered or "quota" in lowered:
        return FailureKind.RATE_LIMIT
    if "401" in lowered or "api key" in lowered or "authentication" in lowered:
        return FailureKind.AUTH
    if "timeout" in lowered or "timed out" in lowered:
        return FailureKind.TIMEOUT
    return FailureKind.OTHER


def classify_exception(e: BaseException) -> FailureKind:
    """
    Map an SDK (or transport) exception to a FailureKind.
    Typed checks first; message sniffing only for untyped errors.
    """
    # APITimeoutError subclasses APIConnectionError, so it goes first
    if isinstance(e, (openai.APITimeoutError, TimeoutError)):
        return FailureKind.TIMEOUT
    if isinstance(e, openai.RateLimitError):
        return FailureKind.RATE_LIMIT
    if isinstance(e, openai.AuthenticationError):
        return FailureKind.AUTH
    if isinstance(e, openai.APIStatusError):
        if e.status_code == 429:
            return FailureKind.RATE_LIMIT
        if e.status_code == 401:
            return FailureKind.AUTH
        code = getattr(e, "code", None)
        if code == "insufficient_quota":
            return FailureKind.RATE_LIMIT
    return _classify_error_text(str(e))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class CompletionClient:
    """
    Thin async wrapper around an OpenAI-compatible chat-completions endpoint
    (Groq by default). No retries: rate limits and timeouts are reported
    back to the caller straight away.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        max_tokens: int = 500,
        timeout: float = 30.0,
        temperature: float = LLM_TEMPERATURE,
        hard_timeout_margin: float = HARD_TIMEOUT_MARGIN_SEC,
        client: Optional[Any] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.temperature = temperature
        self.hard_timeout_margin = hard_timeout_margin
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionClient":
        return cls(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            max_tokens=settings.max_tokens,
            timeout=settings.llm_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return is_usable_api_key(self.api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the SDK client's HTTP pool, if one was ever opened."""
        if self._client is None:
            return
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()
        self._client = None

    async def complete(self, messages: List[Dict[str, str]]) -> CompletionResult:
        """
        Send ``messages`` (already including the system turn) and return the
        reply text, or a failure kind with a human-readable detail.
        """
        req_id = _mk_req_id()

        # An injected client (tests, alternate providers) brings its own credentials
        if self._client is None and not self.configured:
            logger.error("[llm] req_id=%s API key missing or placeholder; not calling provider", req_id)
            return CompletionResult(
                failure=FailureKind.CONFIGURATION,
                detail="API key is not set.",
            )

        logger.info(
            "[llm] req_id=%s start model=%s max_tokens=%d msg_count=%d",
            req_id, self.model, self.max_tokens, len(messages),
        )

        t0 = time.monotonic()
        try:
            with anyio.fail_after(self.timeout + self.hard_timeout_margin):
                resp = await self._get_client().chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                )
        except Exception as e:
            dt_ms = int((time.monotonic() - t0) * 1000)
            kind = classify_exception(e)
            logger.warning(
                "[llm] req_id=%s FAIL latency_ms=%d model=%s code=%s err_type=%s err=%s",
                req_id, dt_ms, self.model, kind.value, type(e).__name__, str(e),
            )
            return CompletionResult(failure=kind, detail=str(e) or type(e).__name__)

        dt_ms = int((time.monotonic() - t0) * 1000)
        try:
            content = resp.choices[0].message.content or ""
        except (IndexError, AttributeError, TypeError):
            content = ""
        content = content.strip()

        if not content:
            logger.warning("[llm] req_id=%s EMPTY latency_ms=%d model=%s", req_id, dt_ms, self.model)
            return CompletionResult(failure=FailureKind.EMPTY, detail="Empty response from the model.")

        snippet = content[:240] + ("..." if len(content) > 240 else "")
        logger.info("[llm] req_id=%s OK latency_ms=%d model=%s reply=%r", req_id, dt_ms, self.model, snippet)
        return CompletionResult(text=content)
