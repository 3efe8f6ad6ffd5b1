from __future__ import annotations

"""Rule-chain intent classification for inbound chat messages.

Rules are evaluated in a fixed priority order and the first hit wins:
    1. automated sender (deny-list, short code, notification text) -> suppress
    2. message loop (too many messages in the sliding window) -> suppress
    3. explicit request for a human -> escalate, regardless of history
    4. purchase confirmation with enough prior exchanges -> escalate
    5. product vocabulary present -> reply with catalog context
    6. anything else -> conversational reply
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from .sender_guard import AutomatedSenderFilter, MessageRateTracker
from .utils import contains_any, normalize_text

logger = logging.getLogger("salesdesk.intent")


class Classification(str, Enum):
    AUTO_REPLY = "AUTO_REPLY"
    PRODUCT_SEARCH_REPLY = "PRODUCT_SEARCH_REPLY"
    ESCALATE_PURCHASE = "ESCALATE_PURCHASE"
    ESCALATE_HUMAN_REQUEST = "ESCALATE_HUMAN_REQUEST"
    SUPPRESS_AUTOMATED_SENDER = "SUPPRESS_AUTOMATED_SENDER"
    SUPPRESS_LOOP = "SUPPRESS_LOOP"

    @property
    def is_suppressed(self) -> bool:
        return self in (Classification.SUPPRESS_AUTOMATED_SENDER, Classification.SUPPRESS_LOOP)

    @property
    def is_escalation(self) -> bool:
        return self in (Classification.ESCALATE_PURCHASE, Classification.ESCALATE_HUMAN_REQUEST)


# "Already decided" phrasing only; price and info questions stay with the assistant.
PURCHASE_PHRASES: Tuple[str, ...] = (
    "quiero comprar", "quiero comprarlo", "quiero comprarla",
    "lo quiero", "la quiero", "me lo llevo", "me la llevo", "lo llevo",
    "quiero hacer un pedido", "hacer pedido", "quiero ordenar",
    "me interesa comprar", "listo para comprar", "listo para pagar",
    "quiero pagar", "ya quiero pagar", "como pago", "donde pago",
    "quiero el plan", "quiero afiliarme", "quiero inscribirme",
    "tomenme los datos", "tomen mis datos", "tome mis datos",
    "ya me decidi", "va listo", "dale listo",
    "hagamosle", "hagamole", "vamos con eso", "cerremos",
    "separamelo", "separamela", "apartamelo", "apartamela",
)

HUMAN_REQUEST_PHRASES: Tuple[str, ...] = (
    "hablar con alguien", "hablar con humano", "hablar con persona",
    "hablar con asesor", "hablar con vendedor", "hablar con agente",
    "hablar con un asesor", "hablar con un humano", "hablar con un vendedor",
    "quiero un asesor", "quiero un humano", "quiero una persona",
    "pasar con alguien", "pasar con humano", "pasar con asesor",
    "pasame con", "pasame a",
    "redirigeme", "redirigime", "redirigame", "redirige", "rediriga",
    "transfiereme", "transferir", "transferirme", "transfiera",
    "comunicame", "conectame", "conecteme",
    "necesito ayuda personalizada", "atencion humana",
    "no quiero bot", "no eres humano", "eres robot", "eres un bot",
    "agente humano", "persona real",
    "quiero asesor", "necesito asesor", "un asesor",
    "con un humano", "con una persona", "con alguien real",
    "humano por favor", "asesor por favor",
)

PRODUCT_KEYWORDS: Tuple[str, ...] = (
    "traumatica", "pistola", "pistolas", "arma", "armas", "revolver", "dispositivo",
    "retay", "ekol", "blow",
    "s2022", "g17", "volga", "botan", "mini 9", "f92", "tr92", "tr 92",
    "dicle", "firat", "nig", "jackal", "p92", "magnum", "compact",
    "negro", "negra", "fume", "cromado", "color",
    "municion", "cartuchos", "balas", "oskurzan", "rubber ball",
    "club", "membresia", "plan plus", "plan pro", "juridico",
    "catalogo", "referencias", "disponible", "disponibles",
    "precio", "precios", "cuanto", "vale", "cuesta",
    "que tienen", "que manejan", "que venden", "opciones", "modelos",
    "carnet", "certificado", "documento",
    "manifiesto", "aduana", "importacion", "dian", "polfa",
)


@dataclass
class SenderContext:
    """What the classifier knows about the sender besides the message text."""
    sender_id: str
    display_name: str = ""
    prior_messages: int = 0
    now: Optional[float] = None


@dataclass
class MessageFacts:
    """Per-message values shared by the rule predicates."""
    raw: str
    normalized: str
    sender: SenderContext
    reason: str = ""


@dataclass(frozen=True)
class IntentRule:
    name: str
    outcome: Classification
    predicate: Callable[[MessageFacts], bool]


@dataclass
class ClassificationResult:
    outcome: Classification
    rule: str
    reason: str = ""


class IntentClassifier:
    """Ordered rule chain mapping a message and its sender to a routing decision."""

    def __init__(
        self,
        sender_filter: Optional[AutomatedSenderFilter] = None,
        rate_tracker: Optional[MessageRateTracker] = None,
        min_exchanges_for_purchase: int = 3,
        purchase_phrases: Tuple[str, ...] = PURCHASE_PHRASES,
        human_phrases: Tuple[str, ...] = HUMAN_REQUEST_PHRASES,
        product_keywords: Tuple[str, ...] = PRODUCT_KEYWORDS,
    ) -> None:
        """Purpose: Build the rule chain with injectable filters and phrase lists.
        Inputs/Outputs: Inputs are the sender filter, rate tracker, purchase history threshold, and
            the phrase lists; no return value.
        Side Effects / State: The rate tracker keeps per-sender timestamps across calls.
        Dependencies: AutomatedSenderFilter, MessageRateTracker, normalize_text.
        Failure Modes: None at init.
        If Removed: Inbound messages cannot be routed.
        Testing Notes: Inject a tracker with a small threshold to exercise loop suppression.
        """
        # Rules are evaluated in list order; the first match wins.
        self._sender_filter = sender_filter or AutomatedSenderFilter()
        self._rate_tracker = rate_tracker or MessageRateTracker()
        self._min_prior_messages = 2 * max(0, min_exchanges_for_purchase)
        self._purchase_phrases = tuple(normalize_text(p) for p in purchase_phrases)
        self._human_phrases = tuple(normalize_text(p) for p in human_phrases)
        self._product_keywords = tuple(normalize_text(k) for k in product_keywords)
        self._rules: Tuple[IntentRule, ...] = (
            IntentRule("automated_sender", Classification.SUPPRESS_AUTOMATED_SENDER, self._is_automated),
            IntentRule("message_loop", Classification.SUPPRESS_LOOP, self._is_loop),
            IntentRule("human_request", Classification.ESCALATE_HUMAN_REQUEST, self._wants_human),
            IntentRule("purchase_confirmation", Classification.ESCALATE_PURCHASE, self._ready_to_buy),
            IntentRule("product_question", Classification.PRODUCT_SEARCH_REPLY, self._needs_catalog),
        )

    @property
    def rules(self) -> Tuple[IntentRule, ...]:
        return self._rules

    def classify(self, message: str, sender: SenderContext) -> Optional[ClassificationResult]:
        """Purpose: Classify one inbound message.
        Inputs/Outputs: Inputs are raw message text and the SenderContext; output is a
            ClassificationResult, or None for empty/whitespace-only messages.
        Side Effects / State: Records a timestamp in the rate tracker for senders that pass the
            static automated-sender checks.
        Dependencies: Evaluates self._rules in order; first match wins.
        Failure Modes: None expected; predicates are pure string checks.
        If Removed: The pipeline cannot decide between replying, searching, and escalating.
        Testing Notes: A deny-listed sender asking for a human is still suppressed.
        """
        # Normalize once and evaluate the rule chain against shared facts.
        if not message or not message.strip():
            return None
        facts = MessageFacts(raw=message, normalized=normalize_text(message), sender=sender)
        for rule in self._rules:
            if rule.predicate(facts):
                logger.info(
                    "classify sender=%s rule=%s outcome=%s reason=%s",
                    sender.sender_id,
                    rule.name,
                    rule.outcome.value,
                    facts.reason,
                )
                return ClassificationResult(outcome=rule.outcome, rule=rule.name, reason=facts.reason)
        logger.info("classify sender=%s rule=default outcome=%s", sender.sender_id, Classification.AUTO_REPLY.value)
        return ClassificationResult(outcome=Classification.AUTO_REPLY, rule="default", reason=facts.reason)

    def _is_automated(self, facts: MessageFacts) -> bool:
        reason = self._sender_filter.match(facts.sender.sender_id, facts.sender.display_name, facts.raw)
        if reason:
            facts.reason = reason
            return True
        return False

    def _is_loop(self, facts: MessageFacts) -> bool:
        now = facts.sender.now if facts.sender.now is not None else time.time()
        if self._rate_tracker.record_and_check(facts.sender.sender_id, now):
            facts.reason = f"more than {self._rate_tracker.max_messages} messages in window"
            return True
        return False

    def _wants_human(self, facts: MessageFacts) -> bool:
        return contains_any(facts.normalized, self._human_phrases)

    def _ready_to_buy(self, facts: MessageFacts) -> bool:
        if not contains_any(facts.normalized, self._purchase_phrases):
            return False
        if facts.sender.prior_messages < self._min_prior_messages:
            facts.reason = "purchase phrase before minimum history"
            logger.debug(
                "purchase phrase ignored sender=%s prior=%s required=%s",
                facts.sender.sender_id,
                facts.sender.prior_messages,
                self._min_prior_messages,
            )
            return False
        return True

    def _needs_catalog(self, facts: MessageFacts) -> bool:
        return contains_any(facts.normalized, self._product_keywords)
