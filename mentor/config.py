from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

CONTEXT_MODES = ("structured", "flattened")


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name) or default).strip().lower() in ("1", "true", "yes", "on")


def is_demo() -> bool:
    return _flag("DEMO_MOCK")


def is_local_only() -> bool:
    return _flag("LOCAL_ONLY")


def database_url() -> Optional[str]:
    """DATABASE_URL wins; otherwise build a Postgres URL from the SUPABASE_* parts."""
    url = (os.getenv("DATABASE_URL") or "").strip()
    if url:
        return url
    host = (os.getenv("SUPABASE_HOST") or "").strip()
    if not host:
        return None

    from sqlalchemy.engine import URL

    return URL.create(
        "postgresql+psycopg2",
        username=os.getenv("SUPABASE_USER"),
        password=os.getenv("SUPABASE_PASSWORD"),
        host=host,
        port=int(os.getenv("SUPABASE_PORT", "5432")),
        database=os.getenv("SUPABASE_DB", "postgres"),
    ).render_as_string(hide_password=False)


@dataclass
class Settings:
    database_url: Optional[str] = None
    db_ssl: bool = True
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"
    ollama_model: str = "llama3.2:3b"
    ollama_path: Optional[str] = None
    demo: bool = False
    local_only: bool = False
    context_mode: str = "structured"
    context_window: int = 20
    model_timeout: float = 30.0
    max_output_tokens: int = 300
    temperature: float = 0.7
    persona: Optional[str] = None
    exam_target: str = "NEET PG"
    log_level: str = "INFO"

    @property
    def backend(self) -> str:
        if self.local_only:
            return "ollama"
        return "demo" if self.demo else "gemini"

    @classmethod
    def from_env(cls) -> "Settings":
        mode = (os.getenv("CONTEXT_MODE") or "structured").strip().lower()
        if mode not in CONTEXT_MODES:
            raise ValueError(f"CONTEXT_MODE must be one of {CONTEXT_MODES}, got {mode!r}")
        return cls(
            database_url=database_url(),
            db_ssl=_flag("DB_SSL", "1"),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-flash").strip(),
            ollama_model=os.getenv("OLLAMA_MODEL", "llama3.2:3b").strip(),
            ollama_path=os.getenv("OLLAMA_PATH"),
            demo=is_demo(),
            local_only=is_local_only(),
            context_mode=mode,
            context_window=int(os.getenv("CONTEXT_WINDOW", "20")),
            model_timeout=float(os.getenv("MODEL_TIMEOUT", "30")),
            max_output_tokens=int(os.getenv("MAX_OUTPUT_TOKENS", "300")),
            temperature=float(os.getenv("MODEL_TEMPERATURE", "0.7")),
            persona=os.getenv("MENTOR_PERSONA") or None,
            exam_target=os.getenv("EXAM_TARGET", "NEET PG").strip(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return Settings.from_env()
