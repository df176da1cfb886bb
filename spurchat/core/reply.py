# spurchat/core/reply.py

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from spurchat.clients.llm_client import CompletionClient, CompletionResult, FailureKind
from spurchat.memory.models import Message, Sender
from spurchat.utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_ERROR_TEXT = (
    "Configuration error: Invalid or missing API key. Please check your .env file."
)
RATE_LIMIT_TEXT = (
    "I'm currently experiencing high demand. Please try again in a moment. "
    "(Rate limit or quota exceeded)"
)
TIMEOUT_TEXT = "The request took too long. Please try again."
GENERIC_TEXT = (
    "I'm having trouble processing your request: {detail}. "
    "Please check your API key and account status."
)


@dataclass
class ReplyResult:
    reply: str = ""
    error: Optional[str] = None


def error_text_for(result: CompletionResult) -> str:
    """
    Calm, user-presentable explanation for a failed completion.
    """
    kind = result.failure
    if kind in (FailureKind.CONFIGURATION, FailureKind.AUTH):
        return CONFIG_ERROR_TEXT
    if kind == FailureKind.RATE_LIMIT:
        return RATE_LIMIT_TEXT
    if kind == FailureKind.TIMEOUT:
        return TIMEOUT_TEXT
    return GENERIC_TEXT.format(detail=(result.detail or "Unknown error").rstrip("."))


def to_turn(message: Message) -> Dict[str, str]:
    role = "user" if message.sender == Sender.USER.value else "assistant"
    return {"role": role, "content": message.text}


class ReplyGenerator:
    """Builds the model prompt from stored history and asks the provider for a reply."""

    def __init__(self, client: CompletionClient, support_prompt: str) -> None:
        self.client = client
        self.support_prompt = support_prompt

    def build_messages(self, history: Sequence[Message], user_text: str) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.support_prompt}]
        messages.extend(to_turn(m) for m in history)
        messages.append({"role": "user", "content": user_text})
        return messages

    async def generate_reply(self, history: Sequence[Message], user_text: str) -> ReplyResult:
        """
        Never raises for provider problems; check ``ReplyResult.error``.
        """
        messages = self.build_messages(history, user_text)
        result = await self.client.complete(messages)

        if result.ok:
            return ReplyResult(reply=result.text)

        error = error_text_for(result)
        logger.warning(
            "[reply] completion failed kind=%s detail=%s",
            result.failure.value if result.failure else "unknown",
            result.detail,
        )
        return ReplyResult(error=error)
