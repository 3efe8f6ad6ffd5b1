from __future__ import annotations

"""Automated-sender and message-loop detection for inbound chats."""

import logging
import re
import threading
import time
import unicodedata
from collections import OrderedDict, deque
from typing import Deque, Iterable, List, Optional, Pattern, Sequence, Tuple

from .utils import digits_only, fold_text

logger = logging.getLogger("salesdesk.guard")

BLOCKED_NAMES: Tuple[str, ...] = (
    "bancolombia", "nequi", "daviplata", "rappipay", "rappi",
    "movii", "tpaga", "payvalida", "payu", "epayco",
    "claro", "movistar", "tigo", "wom", "etb",
    "compensar", "sura", "eps", "colmedica", "sanitas", "coomeva",
    "servientrega", "envia", "interrapidisimo", "coordinadora", "deprisa", "fedex",
    "uber", "didi", "indriver",
    "taskus", "task us", "task_us",
    "google", "whatsapp", "meta", "facebook", "instagram", "telegram",
    "chatgpt", "openai", "gemini", "copilot", "claude", "bot",
    "verificacion", "verification", "security", "seguridad",
    "notificacion", "notification", "alerta", "alert",
)

AUTOMATED_MESSAGE_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"transacci[oó]n.*aprobada",
        r"transferencia.*exitosa",
        r"c[oó]digo de verificaci[oó]n",
        r"c[oó]digo.*seguridad",
        r"tu c[oó]digo es",
        r"your.*code.*is",
        r"OTP.*\d{4,}",
        r"saldo.*disponible",
        r"pago.*recibido",
        r"factura.*generada",
        r"su pedido",
        r"tracking.*number",
        r"n[uú]mero de gu[ií]a",
        r"no responda.*este mensaje",
        r"mensaje autom[aá]tico",
        r"do not reply",
    )
)

# Deny-list names up to this length only match as whole words.
WHOLE_WORD_MAX_LENGTH = 5


class AutomatedSenderFilter:
    """Static checks that identify company, bot, and notification senders."""

    def __init__(
        self,
        blocked_names: Iterable[str] = BLOCKED_NAMES,
        patterns: Sequence[Pattern[str]] = AUTOMATED_MESSAGE_PATTERNS,
        min_sender_digits: int = 7,
        country_prefix: str = "",
    ) -> None:
        self._blocked_names = _compile_blocked_names(blocked_names)
        self._patterns = tuple(patterns)
        self._min_sender_digits = min_sender_digits
        self._country_prefix = country_prefix

    def match(self, sender_id: str, display_name: str, message: str) -> Optional[str]:
        """Purpose: Return the reason a sender/message looks automated, or None.
        Inputs/Outputs: Inputs are the sender id, display name, and message text; output is a
            short reason tag ("blocked_name", "short_code", "automated_message") or None.
        Side Effects / State: None.
        Dependencies: Uses fold_text, digits_only, and the compiled pattern list.
        Failure Modes: An empty display name never matches the deny-list.
        If Removed: The assistant replies to banks, carriers, and other bots, risking loops.
        Testing Notes: "Bancolombia" display names and 5-digit short codes are both flagged.
        """
        # Check the cheap sender signals before the message patterns.
        folded_name = fold_text(display_name or "")
        if folded_name:
            for blocked in self._blocked_names:
                if blocked.search(folded_name):
                    return "blocked_name"

        if self.is_short_code(sender_id):
            return "short_code"

        # Patterns carry composed accents ("[oó]"), so compose decomposed input first.
        composed = unicodedata.normalize("NFC", message or "")
        for pattern in self._patterns:
            if pattern.search(composed):
                return "automated_message"
        return None

    def is_short_code(self, sender_id: str) -> bool:
        digits = digits_only(sender_id)
        if self._country_prefix and digits.startswith(self._country_prefix):
            digits = digits[len(self._country_prefix):]
        return len(digits) < self._min_sender_digits


def _compile_blocked_names(names: Iterable[str]) -> Tuple[Pattern[str], ...]:
    # Short names match whole words only; longer ones match anywhere in the name.
    compiled: List[Pattern[str]] = []
    for name in names:
        folded = fold_text(name)
        if not folded:
            continue
        if len(folded) <= WHOLE_WORD_MAX_LENGTH:
            compiled.append(re.compile(rf"\b{re.escape(folded)}\b"))
        else:
            compiled.append(re.compile(re.escape(folded)))
    return tuple(compiled)


class MessageRateTracker:
    """Per-sender sliding window of message timestamps with a bounded sender count."""

    def __init__(self, max_messages: int = 10, window_seconds: float = 300.0, max_senders: int = 5000) -> None:
        """Purpose: Configure the loop detector thresholds and memory bound.
        Inputs/Outputs: Inputs are the message threshold, window length, and sender cap.
        Side Effects / State: Creates an empty LRU map of sender -> timestamp deque.
        Dependencies: collections.OrderedDict and deque.
        Failure Modes: None at init.
        If Removed: Two bots answering each other loop forever through the assistant.
        Testing Notes: Eleven messages inside the window flag the sender; spacing them out
            beyond the window does not.
        """
        # Bound the number of tracked senders to cap memory.
        self._max_messages = max_messages
        self._window = window_seconds
        self._max_senders = max(1, max_senders)
        self._timestamps: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def record_and_check(self, sender_id: str, now: Optional[float] = None) -> bool:
        """Record one message for the sender and return True when it exceeds the threshold."""
        current = time.time() if now is None else now
        with self._lock:
            stamps = self._timestamps.get(sender_id)
            if stamps is None:
                stamps = deque()
                self._timestamps[sender_id] = stamps
            else:
                self._timestamps.move_to_end(sender_id)
            stamps.append(current)
            while stamps and current - stamps[0] >= self._window:
                stamps.popleft()
            while len(self._timestamps) > self._max_senders:
                evicted, _ = self._timestamps.popitem(last=False)
                logger.debug("rate tracker evicted sender=%s", evicted)
            return len(stamps) > self._max_messages

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def tracked_senders(self) -> int:
        return len(self._timestamps)

    def count(self, sender_id: str) -> int:
        return len(self._timestamps.get(sender_id, ()))
