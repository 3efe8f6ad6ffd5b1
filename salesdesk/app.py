from __future__ import annotations

import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from .admin import AdminCommands
from .catalog import CatalogIndex
from .client_memory import ClientMemoryUpdater
from .config import Settings, load_settings
from .gemini_client import GeminiClient, ReplyGenerator, TextGenerator
from .intent import IntentClassifier
from .models import (
    AssignmentRecord,
    ClientRecord,
    InboundMessage,
    MessageReply,
    SearchHit,
    SearchResponse,
    StoreStats,
)
from .pipeline import SalesAssistant
from .prompt_loader import load_prompt
from .ranker import RelevanceRanker
from .router import AssignmentRouter
from .sender_guard import AutomatedSenderFilter, MessageRateTracker
from .store import CrmStore

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

logger = logging.getLogger("salesdesk.app")


def configure_logging() -> None:
    """Purpose: Configure root logging from LOG_LEVEL unless a handler already exists.
    Inputs/Outputs: No inputs; no return value.
    Side Effects / State: May call logging.basicConfig and sets the "salesdesk" logger level.
    Dependencies: Uses the LOG_LEVEL environment variable.
    Failure Modes: Unknown level names fall back to INFO.
    If Removed: Pipeline, router, and search logs are not emitted under uvicorn defaults.
    Testing Notes: Set LOG_LEVEL=DEBUG and check the salesdesk logger level.
    """
    # Respect handlers installed by uvicorn or pytest.
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("salesdesk").setLevel(log_level)


def sync_agents(store: CrmStore, settings: Settings) -> None:
    """Register configured agents and deactivate stored agents no longer configured."""
    if not settings.agents:
        return
    configured = set()
    for seed in settings.agents:
        record = store.upsert_agent(seed.name, seed.contact)
        configured.add(record.id)
    for agent in store.list_active_agents():
        if agent.id not in configured:
            store.set_agent_active(agent.id, False)
            logger.info("agent deactivated id=%s name=%s", agent.id, agent.name)


def build_assistant(settings: Settings, backend: TextGenerator, store: Optional[CrmStore] = None) -> SalesAssistant:
    """Purpose: Build the full service graph for one process.
    Inputs/Outputs: Inputs are settings, the text backend, and an optional store; returns a
        ready SalesAssistant.
    Side Effects / State: Loads the catalog, syncs agents into the store, and recovers the
        rotation cursor.
    Dependencies: Every salesdesk component; prompt templates from settings.prompts_dir.
    Failure Modes: Missing prompt files raise FileNotFoundError; a broken catalog is logged
        and leaves the index empty.
    If Removed: Nothing wires the components together.
    Testing Notes: Pass a fake backend and an in-memory CrmStore.
    """
    # Wire collaborators bottom-up: store, catalog, classifier, router, assistant.
    if store is None:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        store = CrmStore(settings.data_dir / "crm.json")
    index = CatalogIndex(settings.catalog_path)
    index.load()
    sync_agents(store, settings)

    classifier = IntentClassifier(
        sender_filter=AutomatedSenderFilter(
            min_sender_digits=settings.min_sender_digits,
            country_prefix=settings.country_prefix,
        ),
        rate_tracker=MessageRateTracker(
            max_messages=settings.loop_max_messages,
            window_seconds=settings.loop_window_seconds,
            max_senders=settings.max_tracked_senders,
        ),
        min_exchanges_for_purchase=settings.min_exchanges_for_purchase,
    )
    router = AssignmentRouter(store)
    memory = ClientMemoryUpdater(
        store,
        backend,
        load_prompt(settings.prompts_dir / "client_memory.txt"),
        business_name=settings.business_name,
        enabled=settings.memory_enabled,
    )
    return SalesAssistant(
        settings=settings,
        store=store,
        index=index,
        ranker=RelevanceRanker(index, highlight_categories=settings.highlight_categories),
        classifier=classifier,
        router=router,
        replies=ReplyGenerator(
            backend,
            max_attempts=settings.max_attempts,
            backoff_base_seconds=settings.backoff_base_seconds,
        ),
        memory=memory,
        admin=AdminCommands(store, router),
        system_template=load_prompt(settings.prompts_dir / "sales_system.txt"),
    )


def create_app(
    settings: Optional[Settings] = None,
    generator: Optional[TextGenerator] = None,
    store: Optional[CrmStore] = None,
) -> FastAPI:
    """Purpose: Create the FastAPI application around a SalesAssistant.
    Inputs/Outputs: Optional settings (loaded from .env and environment when omitted), an
        optional text backend (GeminiClient when omitted), and an optional store.
    Side Effects / State: Configures logging and builds the service graph.
    Dependencies: FastAPI, python-dotenv, build_assistant.
    Failure Modes: GeminiClient raises ValueError without GEMINI_API_KEY.
    If Removed: The transport layer has no HTTP entrypoint.
    Testing Notes: Use TestClient(create_app(settings, generator=fake)).
    """
    # Load configuration once, then build the service graph and routes.
    configure_logging()
    if settings is None:
        if ENV_PATH.exists():
            load_dotenv(ENV_PATH, override=True)
        else:
            load_dotenv()
        settings = load_settings()
    backend = generator or GeminiClient(settings)
    assistant = build_assistant(settings, backend, store=store)

    app = FastAPI(title=f"{settings.business_name} Sales Desk")
    app.state.assistant = assistant

    @app.post("/api/messages", response_model=MessageReply)
    async def post_message(message: InboundMessage) -> MessageReply:
        """Purpose: Handle one inbound chat message.
        Inputs/Outputs: Input is InboundMessage; output is MessageReply with the reply for the
            sender and any notifications for agents.
        Side Effects / State: See SalesAssistant.handle_message.
        Dependencies: SalesAssistant.
        Failure Modes: Pipeline errors are converted to an apology reply, not a 500.
        If Removed: The chat transport cannot hand messages to the assistant.
        Testing Notes: Post a product question and check classification and reply_text.
        """
        # Map the pipeline outcome onto the response model.
        outcome = await assistant.handle_message(message)
        return MessageReply(
            sender_id=outcome.sender_id,
            classification=outcome.classification.value if outcome.classification else None,
            reply_text=outcome.reply_text,
            assignment=outcome.assignment,
            notifications=outcome.notifications,
        )

    @app.get("/api/search", response_model=SearchResponse)
    def search(q: str = "", limit: int = settings.max_results) -> SearchResponse:
        result = assistant.ranker.search(q, limit)
        return SearchResponse(
            keywords=result.keywords,
            strategy=result.strategy,
            total_matched=result.total_matched,
            items=[
                SearchHit(
                    title=scored.item.title,
                    category=scored.item.category,
                    score=scored.score,
                    available=scored.item.available,
                    url=scored.item.url,
                    prices=dict(scored.item.prices),
                )
                for scored in result.items
            ],
        )

    @app.post("/api/catalog/reload")
    def reload_catalog() -> dict:
        loaded = assistant.index.load()
        meta = assistant.index.meta
        return {"loaded": loaded, "meta": asdict(meta) if meta else None}

    @app.get("/api/stats", response_model=StoreStats)
    def stats() -> StoreStats:
        return assistant.store.stats()

    @app.get("/api/clients", response_model=List[ClientRecord])
    def list_clients() -> List[ClientRecord]:
        return assistant.store.list_clients()

    @app.post("/api/assignments/{client_id}/close", response_model=AssignmentRecord)
    def close_assignment(client_id: str) -> AssignmentRecord:
        closed = assistant.admin.close_client(client_id)
        if closed is None:
            raise HTTPException(status_code=404, detail=f"No active assignment for {client_id}")
        return closed

    return app
