from __future__ import annotations

"""Catalog index for the product catalog document.

This module flattens the category -> items catalog JSON into immutable CatalogItem
records with precomputed search fields, and swaps the in-memory snapshot atomically
on every reload.
"""

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .utils import fold_text, normalize_text

logger = logging.getLogger("salesdesk.catalog")

TITLE_KEYS = ["titulo", "title", "nombre", "name"]
DESC_KEYS = ["descripcion", "description", "detalle"]
CATEGORY_KEYS = ["categoria", "category", "marca", "brand"]
BRAND_KEYS = ["marca", "brand", "fabricante"]
MODEL_KEYS = ["modelo", "model", "referencia"]
COLOR_KEYS = ["color", "colores", "colour"]
LINK_KEYS = ["url", "link", "enlace"]
AVAILABLE_KEYS = ["disponible", "available", "in_stock"]
TAG_KEYS = ["keywords", "tags", "etiquetas"]
# Price tiers are kept in document order; "precio" is the single-tier default.
PRICE_PREFIXES = ("precio", "price")
GROUP_KEYS = ["categorias", "categories"]


@dataclass(frozen=True)
class CatalogItem:
    """Immutable catalog record with search fields derived once at load time."""
    title: str
    description: str
    category: str
    prices: Tuple[Tuple[str, str], ...]
    available: bool
    url: str
    keywords: FrozenSet[str] = frozenset()
    brand: str = ""
    model: str = ""
    color: str = ""
    title_lower: str = field(init=False)
    description_lower: str = field(init=False)
    category_lower: str = field(init=False)
    brand_lower: str = field(init=False)
    model_lower: str = field(init=False)
    color_lower: str = field(init=False)
    tags_lower: Tuple[str, ...] = field(init=False)
    search_blob: str = field(init=False)

    def __post_init__(self) -> None:
        # Frozen dataclass: derived fields are set through object.__setattr__.
        derived = {
            "title_lower": fold_text(self.title),
            "description_lower": fold_text(self.description),
            "category_lower": fold_text(self.category),
            "brand_lower": fold_text(self.brand),
            "model_lower": fold_text(self.model),
            "color_lower": fold_text(self.color),
            "tags_lower": tuple(sorted(fold_text(tag) for tag in self.keywords if tag)),
        }
        for name, value in derived.items():
            object.__setattr__(self, name, value)
        blob_parts = [
            self.title,
            self.description,
            self.category,
            self.brand,
            self.model,
            self.color,
            " ".join(sorted(self.keywords)),
        ]
        object.__setattr__(self, "search_blob", fold_text(" ".join(part for part in blob_parts if part)))

    @property
    def price_label(self) -> str:
        if not self.prices:
            return "No disponible"
        if len(self.prices) == 1:
            return self.prices[0][1]
        return " | ".join(f"{tier}: {value}" for tier, value in self.prices)


@dataclass
class CatalogMeta:
    """Metadata describing the loaded catalog file for logging."""
    file_name: str
    updated_at: str
    sha256: str
    item_count: int


class CatalogIndex:
    """Owns the in-memory catalog snapshot; the ranker only reads it."""

    def __init__(self, path: Optional[Path] = None) -> None:
        """Purpose: Configure the index with the catalog file path.
        Inputs/Outputs: Input is an optional Path to the catalog JSON; no return value.
        Side Effects / State: Starts with an empty snapshot; nothing is read until load().
        Dependencies: None beyond Path usage.
        Failure Modes: None at init; load() handles read/parse errors.
        If Removed: The ranker has no catalog to score.
        Testing Notes: Instantiate with a temp path and call load().
        """
        # Start empty; load() installs the first snapshot.
        self._path = path
        self._items: Tuple[CatalogItem, ...] = ()
        self._meta: Optional[CatalogMeta] = None
        self._swap_lock = threading.Lock()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def meta(self) -> Optional[CatalogMeta]:
        return self._meta

    def current_catalog(self) -> Tuple[CatalogItem, ...]:
        return self._items

    def load(self, source: Optional[Path] = None) -> bool:
        """Purpose: Load and flatten the catalog document, replacing the snapshot atomically.
        Inputs/Outputs: Optional source Path (defaults to the configured path); returns True
            when a new snapshot was installed.
        Side Effects / State: Reads the file; swaps self._items and self._meta on success.
        Dependencies: Uses json, hashlib, and parse_catalog_document.
        Failure Modes: Missing, unreadable, or malformed files are logged and the previous
            snapshot (empty on first load) stays in place; never raises.
        If Removed: Catalog changes require a process restart.
        Testing Notes: Load a valid file, then a broken one, and verify items are unchanged.
        """
        # Parse fully, then swap the snapshot in one assignment.
        path = source or self._path
        if path is None:
            logger.warning("catalog load skipped: no path configured")
            return False
        try:
            raw_bytes = path.read_bytes()
            data = json.loads(raw_bytes.decode("utf-8-sig"))
            items = parse_catalog_document(data)
            updated_at = datetime.fromtimestamp(path.stat().st_mtime).isoformat()
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValueError) as exc:
            logger.error("catalog load failed path=%s error=%s keeping=%s items", path, exc, len(self._items))
            return False

        meta = CatalogMeta(
            file_name=path.name,
            updated_at=updated_at,
            sha256=hashlib.sha256(raw_bytes).hexdigest(),
            item_count=len(items),
        )
        with self._swap_lock:
            self._items = tuple(items)
            self._meta = meta
        logger.info(
            "catalog loaded file=%s items=%s sha256=%s updated_at=%s",
            meta.file_name,
            meta.item_count,
            meta.sha256[:12],
            meta.updated_at,
        )
        return True

    def categories(self) -> List[str]:
        seen: Dict[str, None] = {}
        for item in self._items:
            seen.setdefault(item.category, None)
        return list(seen)

    def summary(self) -> str:
        """Purpose: Summarize the catalog as per-category counts for the system prompt.
        Inputs/Outputs: No inputs; returns a short multi-line string.
        Side Effects / State: None.
        Dependencies: Reads the current snapshot.
        Failure Modes: Empty catalog yields a summary with a zero total.
        If Removed: Conversational replies lose the overview of what the store sells.
        Testing Notes: Two categories with 2 and 1 items produce both lines and "Total: 3".
        """
        # One line per category with its item count, then the total.
        counts: Dict[str, int] = {}
        for item in self._items:
            counts[item.category] = counts.get(item.category, 0) + 1
        lines = ["RESUMEN DEL CATALOGO:"]
        lines.extend(f"- {category}: {count} productos" for category, count in counts.items())
        lines.append("")
        lines.append(f"Total: {len(self._items)} productos disponibles.")
        return "\n".join(lines)


def parse_catalog_document(data: Any) -> List[CatalogItem]:
    """Purpose: Flatten a catalog document into CatalogItem records.
    Inputs/Outputs: Input is decoded JSON; output is a list of items in document order.
    Side Effects / State: None.
    Dependencies: Uses build_item for each record.
    Failure Modes: Raises ValueError when no category map or item list is present; records
        that are not objects or lack a title are skipped.
    If Removed: load() cannot interpret grouped or flat catalog files.
    Testing Notes: Grouped {"categorias": {...}} and flat {"items": [...]} both parse.
    """
    # Walk categories in file order; items keep their position.
    groups: Optional[Dict[str, Any]] = None
    flat: Optional[List[Any]] = None
    if isinstance(data, dict):
        for key in GROUP_KEYS:
            if isinstance(data.get(key), dict):
                groups = data[key]
                break
        if groups is None and isinstance(data.get("items"), list):
            flat = data["items"]
    elif isinstance(data, list):
        flat = data

    records: List[Tuple[str, Dict[str, Any]]] = []
    if groups is not None:
        for category, products in groups.items():
            if not isinstance(products, list):
                continue
            records.extend((str(category), product) for product in products if isinstance(product, dict))
    elif flat is not None:
        for product in flat:
            if isinstance(product, dict):
                category = _get_first_value(product, CATEGORY_KEYS)
                records.append((str(category or "").strip(), product))
    else:
        raise ValueError("catalog document has no category map or item list")

    items: List[CatalogItem] = []
    for category, record in records:
        item = build_item(category, record)
        if item is not None:
            items.append(item)
    return items


def build_item(category: str, record: Dict[str, Any]) -> Optional[CatalogItem]:
    title = str(_get_first_value(record, TITLE_KEYS) or "").strip()
    if not title:
        return None
    return CatalogItem(
        title=title,
        description=str(_get_first_value(record, DESC_KEYS) or "").strip(),
        category=category,
        prices=_collect_prices(record),
        available=_as_bool(_get_first_value(record, AVAILABLE_KEYS)),
        url=str(_get_first_value(record, LINK_KEYS) or "").strip(),
        keywords=frozenset(_as_tags(_get_first_value(record, TAG_KEYS))),
        brand=str(_get_first_value(record, BRAND_KEYS) or "").strip(),
        model=str(_get_first_value(record, MODEL_KEYS) or "").strip(),
        color=_as_text(_get_first_value(record, COLOR_KEYS)),
    )


def _get_first_value(item: Dict[str, Any], keys: List[str]) -> Optional[Any]:
    """Purpose: Find the first non-empty field in a record by key synonyms.
    Inputs/Outputs: Input is a raw dict and candidate keys; returns the value or None.
    Side Effects / State: None.
    Dependencies: Uses normalize_text on keys so "Descripción" matches "descripcion".
    Failure Modes: Returns None when no key matches or values are empty.
    If Removed: Spanish and English catalog files cannot share one loader.
    Testing Notes: Verify "Título" and "title" both resolve to the title.
    """
    # Compare normalized keys so accents and case do not matter.
    normalized_map = {normalize_text(str(k)): k for k in item.keys()}
    for key in keys:
        actual = normalized_map.get(key)
        if actual is not None and _has_value(item.get(actual)):
            return item.get(actual)
    return None


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _collect_prices(record: Dict[str, Any]) -> Tuple[Tuple[str, str], ...]:
    prices: List[Tuple[str, str]] = []
    for key, value in record.items():
        normalized = normalize_text(str(key)).replace(" ", "_")
        if not normalized.startswith(PRICE_PREFIXES) or not _has_value(value):
            continue
        tier = normalized.split("_", 1)[1] if "_" in normalized else "base"
        prices.append((tier, _format_price(value)))
    return tuple(prices)


def _format_price(value: Any) -> str:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return "$" + f"{value:,.0f}".replace(",", ".")
    return str(value).strip()


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return normalize_text(value) in {"si", "true", "1", "yes", "disponible"}
    return False


def _as_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(part).strip() for part in value if _has_value(part))
    return str(value or "").strip()


def _as_tags(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(part).strip() for part in value if _has_value(part)]
    return []
