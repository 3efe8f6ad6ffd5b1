from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Sequence

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai import types as genai_types

from .config import Settings

logger = logging.getLogger("salesdesk.llm")

APOLOGY_TEXT = (
    "Disculpa, estoy teniendo un problema momentaneo. "
    "Por favor intenta de nuevo en unos minutos o escribe \"asesor\" para hablar con una persona."
)

# Errors the backend will return again on retry.
NON_RETRYABLE_ERRORS = (
    google_exceptions.InvalidArgument,
    google_exceptions.PermissionDenied,
    google_exceptions.Unauthenticated,
    google_exceptions.NotFound,
)

SAFETY_CATEGORIES = (
    genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)
# Product talk about self-defence devices trips the default filters.
DEFAULT_SAFETY_SETTINGS = [
    {"category": category, "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE} for category in SAFETY_CATEGORIES
]


class TextGenerator(Protocol):
    """Anything that turns a system prompt, chat history, and new message into text."""

    async def generate(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        user_message: str,
        temperature: float = 0.7,
        max_output_tokens: int = 1024,
    ) -> str:
        ...


class GeminiClient:
    """Thin async wrapper around the Gemini SDK with safety settings."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK for the configured model.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK global API key.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if API key or model name is missing.
        If Removed: Replies cannot be generated and the app fails at startup.
        Testing Notes: Validate missing key raises ValueError.
        """
        # Validate the key and model before touching the SDK.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._model_name = _normalize_model_name(settings.gemini_model)
        if not self._model_name:
            raise ValueError("Gemini model name is required")
        genai.configure(api_key=settings.gemini_api_key)

    async def generate(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        user_message: str,
        temperature: float = 0.7,
        max_output_tokens: int = 1024,
    ) -> str:
        """Purpose: Generate one reply from a system prompt, prior turns, and a new message.
        Inputs/Outputs: Inputs are the system prompt, role/content history dicts, and the user
            message; returns stripped text.
        Side Effects / State: None; the blocking SDK call runs in a worker thread.
        Dependencies: Uses genai.GenerativeModel.generate_content and build_contents.
        Failure Modes: SDK exceptions propagate to the caller (ReplyGenerator retries them).
        If Removed: The assistant has no way to answer customers.
        Testing Notes: Replace with a fake TextGenerator in unit tests.
        """
        # Build a model per call so each call carries its own system prompt.
        model = genai.GenerativeModel(self._model_name, system_instruction=system_prompt or None)
        contents = build_contents(history, user_message)
        response = await asyncio.to_thread(
            model.generate_content,
            contents,
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            },
            safety_settings=DEFAULT_SAFETY_SETTINGS,
        )
        text: Optional[str] = getattr(response, "text", None)
        return (text or "").strip()


class ReplyGenerator:
    """Bounded-retry front for a TextGenerator that never raises."""

    def __init__(
        self,
        backend: TextGenerator,
        max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        apology_text: str = APOLOGY_TEXT,
    ) -> None:
        self._backend = backend
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base_seconds
        self._apology_text = apology_text

    @property
    def backend(self) -> TextGenerator:
        return self._backend

    async def reply(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        user_message: str,
        temperature: float = 0.7,
        max_output_tokens: int = 1024,
    ) -> str:
        """Purpose: Produce a reply, retrying transient backend failures.
        Inputs/Outputs: Same inputs as TextGenerator.generate; returns the reply text, or the
            apology text when every attempt failed.
        Side Effects / State: Sleeps backoff_base * 2**(attempt-1) seconds between attempts.
        Dependencies: Uses the backend and NON_RETRYABLE_ERRORS.
        Failure Modes: Never raises; invalid-request errors skip remaining attempts.
        If Removed: One backend hiccup leaves the customer without an answer.
        Testing Notes: A fake failing twice then succeeding returns the third answer; with
            backoff_base_seconds=0 the test runs instantly.
        """
        # Retry transient failures with exponential backoff.
        for attempt in range(1, self._max_attempts + 1):
            try:
                text = await self._backend.generate(
                    system_prompt,
                    history,
                    user_message,
                    temperature=temperature,
                    max_output_tokens=max_output_tokens,
                )
            except NON_RETRYABLE_ERRORS as exc:
                logger.error("llm request rejected attempt=%s error=%s", attempt, exc)
                break
            except Exception as exc:
                logger.warning(
                    "llm request failed attempt=%s/%s error=%s",
                    attempt,
                    self._max_attempts,
                    exc,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff_base * (2 ** (attempt - 1)))
                continue
            if text:
                return text
            logger.warning("llm returned empty text attempt=%s/%s", attempt, self._max_attempts)
        logger.error("llm attempts exhausted max_attempts=%s", self._max_attempts)
        return self._apology_text


def build_contents(history: Sequence[Dict[str, str]], user_message: str) -> List[dict]:
    """Purpose: Convert stored role/content messages into Gemini chat contents.
    Inputs/Outputs: Inputs are history dicts and the new message; output is a content list
        that starts with a user turn and alternates roles.
    Side Effects / State: None.
    Dependencies: Used by GeminiClient.generate.
    Failure Modes: System entries and empty messages are skipped.
    If Removed: Multi-turn context is lost or rejected by the SDK.
    Testing Notes: Consecutive user messages are merged into one turn.
    """
    # Gemini expects alternating user/model turns starting with user.
    contents: List[dict] = []
    turns = list(history) + [{"role": "user", "content": user_message}]
    for entry in turns:
        role = entry.get("role", "")
        text = (entry.get("content") or "").strip()
        if role not in ("user", "assistant") or not text:
            continue
        gemini_role = "model" if role == "assistant" else "user"
        if not contents and gemini_role == "model":
            continue
        if contents and contents[-1]["role"] == gemini_role:
            contents[-1]["parts"].append({"text": text})
            continue
        contents.append({"role": gemini_role, "parts": [{"text": text}]})
    return contents


def _normalize_model_name(name: Optional[str]) -> str:
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
