from __future__ import annotations

"""Inbound message pipeline: admin commands, classification, handoff, and grounded replies.

Each inbound message runs through a fixed list of async steps on a MessageContext.
A step that fully handles the message sets `done`, which skips the remaining steps.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .admin import AdminCommands
from .catalog import CatalogIndex
from .client_memory import ClientMemoryUpdater
from .config import Settings
from .gemini_client import ReplyGenerator
from .intent import Classification, ClassificationResult, IntentClassifier, SenderContext
from .models import AssignmentRecord, ClientRecord, InboundMessage, OutboundMessage, StoredMessage
from .prompt_loader import render_prompt
from .ranker import RelevanceRanker, format_for_prompt
from .router import AssignmentRouter
from .step_runner import PipelineStep, StepRunner
from .store import CrmStore
from .utils import truncate

logger = logging.getLogger("salesdesk.pipeline")

CONTACT_LINK_TEMPLATE = "https://wa.me/{handle}"
CONVERSATIONAL_CONTEXT = (
    "El cliente no esta preguntando por un producto especifico. Responde de forma conversacional."
)
NO_AGENTS_TEXT = (
    "Lo siento, en este momento no tenemos asesores disponibles. "
    "Por favor intenta mas tarde o escribenos en nuestro horario de atencion."
)
GENERIC_ERROR_TEXT = "Disculpa, tuve un problema procesando tu mensaje. ¿Me lo puedes repetir?"
NEW_CLIENT_BLOCK = (
    "\nCLIENTE NUEVO: No hay interacciones previas. "
    "Presentate brevemente y pregunta en que puedes ayudar.\n"
)
NOTIFICATION_MESSAGES = 5
NOTIFICATION_MESSAGE_LIMIT = 200
CONVERSATION_ROLES = ("user", "assistant")


@dataclass
class MessageContext:
    """Mutable context passed through each pipeline step."""
    message: InboundMessage
    text: str
    history: List[StoredMessage] = field(default_factory=list)
    client: Optional[ClientRecord] = None
    classification: Optional[ClassificationResult] = None
    reply_text: Optional[str] = None
    assignment: Optional[AssignmentRecord] = None
    notifications: List[OutboundMessage] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)
    done: bool = False

    @property
    def sender_id(self) -> str:
        return self.message.sender_id

    @property
    def outcome(self) -> Optional[Classification]:
        return self.classification.outcome if self.classification else None


@dataclass
class MessageOutcome:
    """What the transport layer must do after one inbound message."""
    sender_id: str
    classification: Optional[Classification] = None
    reply_text: Optional[str] = None
    assignment: Optional[AssignmentRecord] = None
    notifications: List[OutboundMessage] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)


def contact_link(handle: str) -> str:
    return CONTACT_LINK_TEMPLATE.format(handle=handle)


def summarize_conversation(history: List[StoredMessage], limit: int = NOTIFICATION_MESSAGES) -> str:
    """Render the last few exchanges for an agent notification."""
    turns = [message for message in history if message.role in CONVERSATION_ROLES][-limit:]
    if not turns:
        return "Sin conversacion previa."
    labels = {"user": "Cliente", "assistant": "Asistente"}
    return "\n".join(
        f"{labels[message.role]}: {truncate(message.content, NOTIFICATION_MESSAGE_LIMIT)}" for message in turns
    )


class SalesAssistant:
    """Front door for inbound chat messages."""

    def __init__(
        self,
        settings: Settings,
        store: CrmStore,
        index: CatalogIndex,
        ranker: RelevanceRanker,
        classifier: IntentClassifier,
        router: AssignmentRouter,
        replies: ReplyGenerator,
        memory: ClientMemoryUpdater,
        admin: AdminCommands,
        system_template: str,
    ) -> None:
        """Purpose: Wire the collaborators and build the ordered step list.
        Inputs/Outputs: Inputs are settings, store, catalog index, ranker, classifier, router,
            reply generator, memory updater, admin commands, and the system prompt template.
        Side Effects / State: Constructs a StepRunner with ordered steps.
        Dependencies: Uses StepRunner/PipelineStep and the step methods on this class.
        Failure Modes: None at init; runtime errors are handled in handle_message.
        If Removed: The message endpoint has nothing to run.
        Testing Notes: Build with an in-memory store and a fake backend (see tests/conftest.py).
        """
        # Keep collaborators and build the ordered step list.
        self._settings = settings
        self._store = store
        self._index = index
        self._ranker = ranker
        self._classifier = classifier
        self._router = router
        self._replies = replies
        self._memory = memory
        self._admin = admin
        self._system_template = system_template
        self._runner = StepRunner(
            steps=[
                PipelineStep("admin_command", self._step_admin_command),
                PipelineStep("staff_guard", self._step_staff_guard),
                PipelineStep("classify", self._step_classify),
                PipelineStep("register", self._step_register),
                PipelineStep("handoff", self._step_handoff, skip_if=lambda ctx: not ctx.outcome.is_escalation),
                PipelineStep("generation", self._step_generation),
                PipelineStep("memory", self._step_memory, skip_if=lambda ctx: not ctx.reply_text),
                PipelineStep("trace", self._step_trace, always_run=True),
            ]
        )

    @property
    def store(self) -> CrmStore:
        return self._store

    @property
    def router(self) -> AssignmentRouter:
        return self._router

    @property
    def ranker(self) -> RelevanceRanker:
        return self._ranker

    @property
    def index(self) -> CatalogIndex:
        return self._index

    @property
    def admin(self) -> AdminCommands:
        return self._admin

    async def handle_message(self, message: InboundMessage) -> MessageOutcome:
        """Purpose: Process one inbound message end to end.
        Inputs/Outputs: Input is an InboundMessage; output is a MessageOutcome with the reply
            for the sender (if any) and outbound notifications for agents.
        Side Effects / State: Stores client records and messages, creates assignments, and
            calls the generative backend depending on the classification. CrmStore writes are
            synchronous file rewrites (three or four per message) and block the event loop
            while they run; only the backend call is offloaded to a worker thread.
        Dependencies: Uses the StepRunner and every collaborator passed at init.
        Failure Modes: Unexpected exceptions are logged and turned into a generic apology
            outcome; never raises.
        If Removed: No inbound message gets an answer.
        Testing Notes: Empty text returns an outcome with no reply and no steps.
        """
        # Empty text never reaches the step runner.
        text = (message.text or "").strip()
        if not text:
            logger.debug("message ignored sender=%s reason=empty", message.sender_id)
            return MessageOutcome(sender_id=message.sender_id)

        context = MessageContext(message=message, text=text)
        logger.info("message sender=%s name=%r text=%r", message.sender_id, message.display_name, truncate(text, 50))
        try:
            await self._runner.run(context)
        except Exception:
            logger.exception("message failed sender=%s steps=%s", message.sender_id, context.steps)
            return MessageOutcome(
                sender_id=message.sender_id,
                classification=context.outcome,
                reply_text=GENERIC_ERROR_TEXT,
                steps=context.steps,
            )
        return MessageOutcome(
            sender_id=message.sender_id,
            classification=context.outcome,
            reply_text=context.reply_text,
            assignment=context.assignment,
            notifications=context.notifications,
            steps=context.steps,
        )

    async def _step_admin_command(self, context: MessageContext) -> None:
        if context.sender_id in self._settings.admins and self._admin.is_command(context.text):
            context.reply_text = self._admin.execute(context.text)
            context.done = True

    async def _step_staff_guard(self, context: MessageContext) -> None:
        # Owners, auditors, and agents talk to clients themselves; never auto-reply to them.
        if context.sender_id in self._settings.admins or self._store.get_agent_by_contact(context.sender_id):
            logger.info("message ignored sender=%s reason=staff", context.sender_id)
            context.done = True

    async def _step_classify(self, context: MessageContext) -> None:
        sender = SenderContext(
            sender_id=context.sender_id,
            display_name=context.message.display_name,
            prior_messages=self._store.count_messages(context.sender_id, roles=CONVERSATION_ROLES),
            now=context.message.timestamp,
        )
        context.classification = self._classifier.classify(context.text, sender)
        if context.classification is None or context.classification.outcome.is_suppressed:
            context.done = True

    async def _step_register(self, context: MessageContext) -> None:
        existing = self._store.get_client(context.sender_id)
        name = context.message.display_name.strip()
        if existing is not None and existing.name:
            name = ""
        context.history = self._store.get_recent_messages(context.sender_id, self._settings.history_limit)
        self._store.upsert_client(context.sender_id, name=name)
        self._store.append_message(context.sender_id, "user", context.text)
        context.client = self._store.get_client(context.sender_id)

    async def _step_handoff(self, context: MessageContext) -> None:
        """Purpose: Route an escalated client to an agent and draft both sides of the handoff.
        Inputs/Outputs: Input is the MessageContext; sets reply_text, assignment, and
            notifications.
        Side Effects / State: Creates or reuses an assignment, stores a system marker message,
            and marks the client as assigned.
        Dependencies: AssignmentRouter.assign, CrmStore, summarize_conversation.
        Failure Modes: An empty roster produces the "no advisors" reply and no assignment.
        If Removed: Ready-to-buy clients keep talking to the assistant instead of a person.
        Testing Notes: The notification is addressed to the agent's contact handle and
            contains the trigger message.
        """
        # Escalation ends the run whether or not an agent is available.
        context.done = True
        assignment = self._router.assign(context.sender_id)
        if assignment is None:
            context.reply_text = NO_AGENTS_TEXT
            return

        context.assignment = assignment
        context.reply_text = (
            "¡Con gusto!\n\n"
            f"Voy a conectarte directamente con *{assignment.agent_name}*, nuestro asesor, "
            "quien te va a acompanar personalmente en el proceso.\n\n"
            "En breve te escribe. Si quieres, tambien puedes contactarlo directamente:\n"
            f"{contact_link(assignment.agent_contact)}\n\n"
            f"_{self._settings.business_name}_"
        )
        self._store.append_message(context.sender_id, "system", f"[handoff to {assignment.agent_name}]")
        client = self._store.upsert_client(context.sender_id, status="assigned")

        trigger = (
            "Pidio hablar con un asesor"
            if context.outcome == Classification.ESCALATE_HUMAN_REQUEST
            else "Confirmo intencion de compra"
        )
        notification = (
            "*CLIENTE CALIENTE - LISTO PARA ATENDER*\n\n"
            f"Nombre: {client.name or 'Cliente'}\n"
            f"Chat: {contact_link(context.sender_id)}\n"
            f"Motivo: {trigger}\n\n"
            "Lo que disparo la alerta:\n"
            f"\"{context.text}\"\n\n"
            "Perfil del cliente (CRM):\n"
            f"{client.memory or 'Sin perfil previo'}\n\n"
            "Ultimos mensajes:\n"
            f"{summarize_conversation(context.history)}\n\n"
            "_El cliente ya sabe que lo vas a contactar._"
        )
        context.notifications.append(OutboundMessage(recipient=assignment.agent_contact, text=notification))
        logger.info(
            "handoff client=%s agent=%s outcome=%s",
            context.sender_id,
            assignment.agent_name,
            context.outcome.value,
        )

    async def _step_generation(self, context: MessageContext) -> None:
        system_prompt = self.build_system_prompt(context)
        history = [{"role": message.role, "content": message.content} for message in context.history]
        context.reply_text = await self._replies.reply(system_prompt, history, context.text)
        self._store.append_message(context.sender_id, "assistant", context.reply_text)

    async def _step_memory(self, context: MessageContext) -> None:
        # The reply is already stored, so a profile failure must not replace it.
        try:
            await self._memory.update(context.sender_id, context.text, context.reply_text or "")
        except Exception:
            logger.exception("memory update failed client=%s", context.sender_id)

    async def _step_trace(self, context: MessageContext) -> None:
        # One summary line per message, including early exits.
        logger.info(
            "message handled sender=%s outcome=%s replied=%s notifications=%s steps=%s",
            context.sender_id,
            context.outcome.value if context.outcome else None,
            context.reply_text is not None,
            len(context.notifications),
            context.steps,
        )

    def build_system_prompt(self, context: MessageContext) -> str:
        """Purpose: Assemble the system prompt for one automated reply.
        Inputs/Outputs: Input is the MessageContext; output is the rendered prompt text.
        Side Effects / State: Runs a catalog search for product questions.
        Dependencies: Uses the system template, CatalogIndex.summary, RelevanceRanker, and
            format_for_prompt.
        Failure Modes: None expected; an empty catalog yields the no-results text.
        If Removed: Replies are not grounded on the catalog or the client's profile.
        Testing Notes: Product questions include "PRODUCTOS RELEVANTES"; greetings include the
            conversational note instead.
        """
        # Choose the client block, then the product context, then render.
        memory = context.client.memory if context.client else ""
        if memory:
            memory_block = (
                "\nFICHA DEL CLIENTE (memoria de interacciones previas):\n"
                f"{memory}\n"
                "Usa esta informacion para personalizar tu respuesta. Si ya sabes que busca, se mas directo.\n"
            )
        else:
            memory_block = NEW_CLIENT_BLOCK

        if context.outcome == Classification.PRODUCT_SEARCH_REPLY:
            result = self._ranker.search(context.text, self._settings.max_results)
            product_context = format_for_prompt(result)
        else:
            product_context = CONVERSATIONAL_CONTEXT

        values: Dict[str, str] = {
            "BUSINESS_NAME": self._settings.business_name,
            "CLIENT_MEMORY": memory_block,
            "CATALOG_SUMMARY": self._index.summary(),
            "PRODUCT_CONTEXT": product_context,
        }
        return render_prompt(self._system_template, values)
