# spurchat/memory/models.py

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

# Microsecond precision so two appends in the same second still sort
ISO_FMT = "%Y-%m-%dT%H:%M:%S.%fZ"


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FMT)


class Sender(str, Enum):
    USER = "user"
    AI = "ai"


@dataclass
class Conversation:
    id: str
    created_at: str
    updated_at: str


@dataclass
class Message:
    id: str
    conversation_id: str
    sender: str          # 'user' or 'ai'
    text: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
