from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from .utils import split_csv

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class AgentSeed:
    """Sales agent declared in configuration, registered in the store at startup."""
    name: str
    contact: str


@dataclass(frozen=True)
class Settings:
    """Configuration container for the backend, catalog, routing, and filter limits."""
    gemini_api_key: str
    gemini_model: str
    catalog_path: Path
    data_dir: Path
    prompts_dir: Path
    business_name: str
    business_phone: str
    auditors: Tuple[str, ...] = ()
    agents: Tuple[AgentSeed, ...] = ()
    max_results: int = 8
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    history_limit: int = 10
    min_exchanges_for_purchase: int = 3
    min_sender_digits: int = 7
    country_prefix: str = "57"
    loop_max_messages: int = 10
    loop_window_seconds: float = 300.0
    max_tracked_senders: int = 5000
    highlight_categories: Tuple[str, ...] = field(default_factory=tuple)
    memory_enabled: bool = True

    @property
    def admins(self) -> Tuple[str, ...]:
        if self.business_phone:
            return (self.business_phone,) + self.auditors
        return self.auditors


def parse_agents(raw: str) -> List[AgentSeed]:
    """Purpose: Parse the AGENTS roster string ("Name:contact,Name:contact").
    Inputs/Outputs: Input is the raw env string; output is an ordered list of AgentSeed.
    Side Effects / State: None.
    Dependencies: Uses split_csv.
    Failure Modes: Raises ValueError for entries without a "name:contact" pair.
    If Removed: The router has no roster to rotate over.
    Testing Notes: Whitespace around names and contacts is stripped; order is preserved.
    """
    # Split "Name:contact" pairs; malformed entries are rejected.
    agents: List[AgentSeed] = []
    for entry in split_csv(raw):
        name, sep, contact = entry.partition(":")
        if not sep or not name.strip() or not contact.strip():
            raise ValueError(f"Invalid AGENTS entry: {entry!r}")
        agents.append(AgentSeed(name=name.strip(), contact=contact.strip()))
    return agents


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv, BASE_DIR, and parse_agents.
    Failure Modes: Invalid numeric env values or AGENTS entries raise ValueError.
    If Removed: App cannot configure the catalog, routing, or filters and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve catalog, data, and prompt paths, then build Settings.
    catalog_path = os.getenv("CATALOG_PATH")
    if catalog_path:
        catalog_file = Path(catalog_path)
    else:
        catalog_file = (BASE_DIR / ".." / "resources" / "catalogo_contexto.json").resolve()

    data_dir = Path(os.getenv("DATA_DIR") or (BASE_DIR / "data")).resolve()
    prompts_dir = Path(os.getenv("PROMPTS_DIR") or (BASE_DIR / "prompts")).resolve()

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        catalog_path=catalog_file,
        data_dir=data_dir,
        prompts_dir=prompts_dir,
        business_name=os.getenv("BUSINESS_NAME", "Mi Tienda"),
        business_phone=os.getenv("BUSINESS_PHONE", "").strip(),
        auditors=tuple(split_csv(os.getenv("AUDITORS", ""))),
        agents=tuple(parse_agents(os.getenv("AGENTS", ""))),
        max_results=int(os.getenv("MAX_RESULTS", "8")),
        max_attempts=int(os.getenv("MAX_ATTEMPTS", "3")),
        backoff_base_seconds=float(os.getenv("BACKOFF_BASE_SECONDS", "2.0")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "10")),
        min_exchanges_for_purchase=int(os.getenv("MIN_EXCHANGES_FOR_PURCHASE", "3")),
        min_sender_digits=int(os.getenv("MIN_SENDER_DIGITS", "7")),
        country_prefix=os.getenv("COUNTRY_PREFIX", "57"),
        loop_max_messages=int(os.getenv("LOOP_MAX_MESSAGES", "10")),
        loop_window_seconds=float(os.getenv("LOOP_WINDOW_SECONDS", "300")),
        max_tracked_senders=int(os.getenv("MAX_TRACKED_SENDERS", "5000")),
        highlight_categories=tuple(split_csv(os.getenv("HIGHLIGHT_CATEGORIES", ""))),
        memory_enabled=os.getenv("MEMORY_ENABLED", "1") != "0",
    )
