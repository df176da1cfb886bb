# spurchat/config/settings.py

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Expose BASE_DIR for other modules
BASE_DIR = Path(__file__).resolve().parents[2]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

SUPPORT_PROMPT_PATH = BASE_DIR / "spurchat" / "config" / "support_prompt.txt"

# Value shipped in .env.example; treated the same as a missing key
PLACEHOLDER_API_KEY = "your_groq_api_key_here"

DEFAULT_MODEL = "llama-3.1-8b-instant"
DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"

# Sampling temperature is not configurable
LLM_TEMPERATURE = 0.7


@dataclass
class Settings:
    # Completion API
    llm_api_key: str = ""
    llm_base_url: str = DEFAULT_BASE_URL
    llm_model: str = DEFAULT_MODEL
    max_tokens: int = 500
    llm_timeout_seconds: float = 30.0

    # Chat limits
    max_message_length: int = 5000
    max_conversation_messages: int = 50

    # Database
    db_path: str = str(BASE_DIR / "spurchat" / "data" / "spurchat.db")
    db_pool_size: int = 20
    db_acquire_timeout_seconds: float = 2.0
    db_busy_timeout_seconds: float = 30.0

    # HTTP
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # One turn at a time per conversation
    serialize_turns: bool = True

    support_prompt_path: str = str(SUPPORT_PROMPT_PATH)

    @property
    def has_api_key(self) -> bool:
        return is_usable_api_key(self.llm_api_key)


def is_usable_api_key(key: str) -> bool:
    cleaned = (key or "").strip()
    return bool(cleaned) and cleaned != PLACEHOLDER_API_KEY


def _parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
        # safeguard: enforce positive
        return value if value > 0 else default
    except ValueError:
        return default


def _parse_int_env(name: str, default: int, min_val: int = 0, max_val: int = 10) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
        # safeguard: clamp into sane range
        return max(min_val, min(max_val, value))
    except ValueError:
        return default


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _first_env(*names: str) -> str:
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return ""


def load_settings() -> Settings:
    """
    Load configuration from environment variables (and defaults).

    A missing API key is NOT an error here: the reply generator reports it
    as a configuration problem on the first chat turn instead.
    Also ensures the DB directory exists.
    """
    # --- Credential (optional at startup) ---
    api_key = _first_env("LLM_API_KEY", "GROQ_API_KEY", "OPENAI_API_KEY")

    # --- Endpoint + model ---
    base_url = _first_env("LLM_BASE_URL") or DEFAULT_BASE_URL
    model = _first_env("LLM_MODEL", "GROQ_MODEL") or DEFAULT_MODEL

    # --- Limits ---
    max_tokens = _parse_int_env("MAX_TOKENS", 500, min_val=1, max_val=8192)
    timeout_seconds = _parse_float_env("LLM_TIMEOUT_SECONDS", 30.0)
    max_message_length = _parse_int_env("MAX_MESSAGE_LENGTH", 5000, min_val=1, max_val=100_000)
    max_history = _parse_int_env("MAX_CONVERSATION_MESSAGES", 50, min_val=1, max_val=1000)

    # --- DB path (optional override) ---
    default_db_path = BASE_DIR / "spurchat" / "data" / "spurchat.db"
    db_path_env = os.getenv("SPURCHAT_DB_PATH", str(default_db_path)).strip() or str(default_db_path)
    db_path = Path(db_path_env)

    # Ensure data directory exists for DB
    db_path.parent.mkdir(parents=True, exist_ok=True)

    pool_size = _parse_int_env("DB_POOL_SIZE", 20, min_val=1, max_val=100)
    acquire_timeout = _parse_float_env("DB_ACQUIRE_TIMEOUT_SECONDS", 2.0)
    busy_timeout = _parse_float_env("DB_BUSY_TIMEOUT_SECONDS", 30.0)

    # --- CORS ---
    raw_origins = os.getenv("CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()] or ["*"]

    prompt_path = os.getenv("SUPPORT_PROMPT_PATH", "").strip() or str(SUPPORT_PROMPT_PATH)

    return Settings(
        llm_api_key=api_key,
        llm_base_url=base_url,
        llm_model=model,
        max_tokens=max_tokens,
        llm_timeout_seconds=timeout_seconds,
        max_message_length=max_message_length,
        max_conversation_messages=max_history,
        db_path=str(db_path),
        db_pool_size=pool_size,
        db_acquire_timeout_seconds=acquire_timeout,
        db_busy_timeout_seconds=busy_timeout,
        cors_origins=origins,
        serialize_turns=_parse_bool_env("SERIALIZE_TURNS", True),
        support_prompt_path=prompt_path,
    )


def load_support_prompt(path: str = str(SUPPORT_PROMPT_PATH)) -> str:
    """
    Read the domain-knowledge preamble sent ahead of every conversation.
    """
    with open(path, "r", encoding="utf-8") as f:
        prompt = f.read().strip()
    if not prompt:
        raise RuntimeError(f"Support prompt at {path} is empty.")
    return prompt
