from __future__ import annotations

"""Short sales profile per client, refreshed after every automated reply."""

import logging
import re
from typing import List, Pattern, Tuple

from .gemini_client import TextGenerator
from .prompt_loader import render_prompt
from .store import CrmStore
from .utils import fold_text, truncate

logger = logging.getLogger("salesdesk.memory")

MAX_MEMORY_LINES = 6
REPLY_EXCERPT_LIMIT = 300
NEW_CLIENT_MEMORY = "(Cliente nuevo, sin memoria previa)"

# (pattern on folded text, note to append, marker already present in an equivalent note)
KEYWORD_NOTES: Tuple[Tuple[Pattern[str], str, str], ...] = (
    (re.compile(r"ekol"), "- Marca de interes: EKOL", "EKOL"),
    (re.compile(r"retay"), "- Marca de interes: RETAY", "RETAY"),
    (re.compile(r"blow"), "- Marca de interes: BLOW", "BLOW"),
    (re.compile(r"revolver"), "- Interesado en: revolver", "revolver"),
    (re.compile(r"plan pro"), "- Plan preferido: Pro", "Plan preferido: Pro"),
    (re.compile(r"plan plus"), "- Plan preferido: Plus", "Plan preferido: Plus"),
    (re.compile(r"club|membresia"), "- Interesado en: Club / Membresia", "Club"),
    (re.compile(r"defensa|seguridad"), "- Motivo: defensa personal", "defensa"),
    (re.compile(r"carnet"), "- Solicita: carnet pendiente", "carnet"),
)


def keyword_memory(current: str, message: str) -> str:
    """Purpose: Extend a profile with notes matched by keyword, without duplicates.
    Inputs/Outputs: Inputs are the current profile text and the client message; output is
        the new profile text (unchanged when nothing matched).
    Side Effects / State: None.
    Dependencies: Uses fold_text and KEYWORD_NOTES.
    Failure Modes: None.
    If Removed: Backend outages leave profiles frozen.
    Testing Notes: "me interesa la retay, plan pro" adds two notes; repeating it adds none.
    """
    # Append keyword notes that are not already in the profile.
    folded = fold_text(message or "")
    notes: List[str] = [line for line in (current or "").splitlines() if line.strip()]
    for pattern, note, marker in KEYWORD_NOTES:
        if pattern.search(folded) and not any(marker in existing for existing in notes):
            notes.append(note)
    return "\n".join(notes)


def clip_memory(text: str, max_lines: int = MAX_MEMORY_LINES) -> str:
    lines = [line.rstrip() for line in (text or "").strip().splitlines() if line.strip()]
    return "\n".join(lines[:max_lines])


class ClientMemoryUpdater:
    """Keep each client's sales profile current using the backend, or keywords as fallback."""

    def __init__(
        self,
        store: CrmStore,
        backend: TextGenerator,
        template: str,
        business_name: str = "",
        enabled: bool = True,
    ) -> None:
        self._store = store
        self._backend = backend
        self._template = template
        self._business_name = business_name
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def update(self, client_id: str, user_message: str, bot_reply: str) -> str:
        """Purpose: Refresh the stored profile after one exchange.
        Inputs/Outputs: Inputs are the client id, the client message, and the reply sent;
            output is the profile text now stored.
        Side Effects / State: Writes the client memory when it changed and is not empty.
        Dependencies: Single backend attempt at low temperature, keyword_memory on failure.
        Failure Modes: Backend errors are logged and fall back to keyword extraction; the
            method does not raise for backend failures.
        If Removed: Replies cannot be personalized with what the client already said.
        Testing Notes: A failing fake backend still stores keyword notes.
        """
        # Ask the backend first and fall back to keywords on failure.
        client = self._store.get_client(client_id)
        current = client.memory if client else ""
        if not self._enabled:
            return current

        prompt = render_prompt(
            self._template,
            {
                "BUSINESS_NAME": self._business_name,
                "CURRENT_MEMORY": current or NEW_CLIENT_MEMORY,
                "USER_MESSAGE": user_message,
                "BOT_REPLY": truncate(bot_reply, REPLY_EXCERPT_LIMIT),
            },
        )
        try:
            raw = await self._backend.generate("", [], prompt, temperature=0.1, max_output_tokens=256)
            updated = clip_memory(raw)
            source = "llm"
        except Exception as exc:
            logger.warning("memory llm failed client=%s error=%s", client_id, exc)
            updated = keyword_memory(current, user_message)
            source = "keywords"

        if updated and updated != current:
            self._store.upsert_client(client_id, memory=updated)
            logger.info("memory updated client=%s source=%s lines=%s", client_id, source, len(updated.splitlines()))
            return updated
        return current
