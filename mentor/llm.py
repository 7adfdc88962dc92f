from __future__ import annotations

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import google.generativeai as genai

from .config import Settings
from .context import FLATTENED, PromptMessage, PromptPayload, flatten_payload
from .errors import ModelUnavailable

logger = logging.getLogger(__name__)


class LanguageModel(ABC):
    name = "base"

    @abstractmethod
    def generate(self, payload: PromptPayload) -> str: ...


def to_gemini_history(messages: List[PromptMessage]) -> List[Dict[str, object]]:
    gemini_hist = []
    for msg in messages:
        role = "user" if msg.role == "user" else "model"
        if msg.content:
            gemini_hist.append({"role": role, "parts": [msg.content]})
    return gemini_hist


class GeminiModel(LanguageModel):
    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-1.5-flash",
        timeout: float = 30.0,
        max_output_tokens: int = 300,
        temperature: float = 0.7,
    ) -> None:
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self.generation_config = {"max_output_tokens": max_output_tokens, "temperature": temperature}

    def _model(self):
        if not self.api_key:
            raise ModelUnavailable("Missing GEMINI_API_KEY. Set environment variable GEMINI_API_KEY.")
        genai.configure(api_key=self.api_key)
        return genai.GenerativeModel(self.model_name, generation_config=self.generation_config)

    def generate(self, payload: PromptPayload) -> str:
        model = self._model()
        request_options = {"timeout": self.timeout}
        try:
            if payload.mode == FLATTENED:
                response = model.generate_content(payload.text, request_options=request_options)
            else:
                chat_session = model.start_chat(history=to_gemini_history(payload.history))
                response = chat_session.send_message(payload.latest, request_options=request_options)
            answer = response.text
        except Exception as e:
            raise ModelUnavailable(f"Gemini call failed: {e}") from e
        if not answer or not answer.strip():
            raise ModelUnavailable("Gemini returned an empty response")
        return answer.strip()


def default_ollama_path() -> str:
    return os.path.join(os.environ.get("LOCALAPPDATA", ""), "Programs", "Ollama", "ollama.exe")


class OllamaModel(LanguageModel):
    """Local model through the `ollama run` CLI. Structured payloads are flattened."""

    name = "ollama"

    def __init__(self, model_name: str = "llama3.2:3b", ollama_path: Optional[str] = None, timeout: float = 30.0) -> None:
        self.model_name = model_name
        self.ollama_path = ollama_path or default_ollama_path()
        self.timeout = timeout

    def generate(self, payload: PromptPayload) -> str:
        prompt = flatten_payload(payload)
        try:
            r = subprocess.run(
                [self.ollama_path, "run", self.model_name, prompt],
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="ignore",
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ModelUnavailable(f"Ollama local call failed: {e}") from e
        if r.returncode != 0:
            raise ModelUnavailable(r.stderr.strip() or "ollama failed")
        answer = r.stdout.strip()
        if not answer:
            raise ModelUnavailable("ollama returned an empty response")
        return answer


HOURS_KEYWORDS = ["hour", "hours", "hrs", "studied", "revised", "revision"]
STRUGGLE_KEYWORDS = ["tired", "exhausted", "burnt out", "burnout", "distracted", "procrastinat", "behind"]


class DemoModel(LanguageModel):
    """Offline canned coaching replies keyed on the latest message."""

    name = "demo"

    def generate(self, payload: PromptPayload) -> str:
        if payload.mode == FLATTENED:
            latest = payload.text.rsplit("user: ", 1)[-1].split("\n\n", 1)[0]
        else:
            latest = payload.latest.rsplit("User:", 1)[-1]
        low = latest.lower()
        if any(k in low for k in STRUGGLE_KEYWORDS):
            return (
                "Rough days happen, but we don't skip the plan. "
                "Pick one high-yield topic and give it 45 focused minutes today. "
                "Which subject will you start with?"
            )
        if any(k in low for k in HOURS_KEYWORDS):
            return "Good work putting in the hours. Which subjects did you cover, and how did your MCQ accuracy look?"
        return "Let's check in. How many hours did you study today, and which subjects did you cover?"


def get_model(settings: Settings) -> LanguageModel:
    if settings.local_only:
        return OllamaModel(settings.ollama_model, settings.ollama_path, timeout=settings.model_timeout)
    if settings.demo:
        return DemoModel()
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; chat requests will fail until it is configured")
    return GeminiModel(
        settings.gemini_api_key,
        model_name=settings.gemini_model,
        timeout=settings.model_timeout,
        max_output_tokens=settings.max_output_tokens,
        temperature=settings.temperature,
    )
