from __future__ import annotations

"""Lexical relevance ranking of catalog items against normalized query keywords."""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .catalog import CatalogIndex, CatalogItem
from .normalizer import normalize_query
from .utils import truncate

logger = logging.getLogger("salesdesk.search")

STRATEGY_SEARCH = "search"
STRATEGY_HIGHLIGHTS = "highlights"
DESCRIPTION_PROMPT_LIMIT = 400
NO_RESULTS_TEXT = "No se encontraron productos que coincidan con la busqueda del cliente."


@dataclass(frozen=True)
class FieldWeight:
    """One row of the scoring table: which precomputed field, its weight, prefix bonus."""
    field: str
    weight: int
    prefix_bonus: int = 0
    multi: bool = False


DEFAULT_SCORING_TABLE: Tuple[FieldWeight, ...] = (
    FieldWeight("title_lower", 10, prefix_bonus=5),
    FieldWeight("description_lower", 3),
    FieldWeight("category_lower", 5),
    FieldWeight("brand_lower", 8),
    FieldWeight("model_lower", 6),
    FieldWeight("color_lower", 4),
    FieldWeight("tags_lower", 2, multi=True),
)
AVAILABILITY_BONUS = 1


@dataclass
class ScoredItem:
    item: CatalogItem
    score: int


@dataclass
class SearchResult:
    """Outcome of one search call; discarded after prompt formatting."""
    keywords: List[str]
    items: List[ScoredItem] = field(default_factory=list)
    total_matched: int = 0
    strategy: str = STRATEGY_SEARCH


def score_item(
    item: CatalogItem,
    keywords: Sequence[str],
    table: Sequence[FieldWeight] = DEFAULT_SCORING_TABLE,
    availability_bonus: int = AVAILABILITY_BONUS,
) -> int:
    """Purpose: Compute the lexical relevance score of one item for a keyword list.
    Inputs/Outputs: Inputs are an item, keywords, and a scoring table; output is an int >= 0.
    Side Effects / State: None; pure function.
    Dependencies: Reads the item's precomputed lowercase fields named in the table.
    Failure Modes: None; unknown field names in a custom table score nothing.
    If Removed: search() cannot rank items.
    Testing Notes: Title prefix match on "retay" scores 15; description-only match scores 3.
        The availability bonus applies only to items that matched at least one keyword.
    """
    # Sum weighted field hits for every keyword.
    score = 0
    for keyword in keywords:
        if not keyword:
            continue
        for row in table:
            value = getattr(item, row.field, "")
            if row.multi:
                if any(keyword in entry for entry in value):
                    score += row.weight
                continue
            if value and keyword in value:
                score += row.weight
                if row.prefix_bonus and value.startswith(keyword):
                    score += row.prefix_bonus
    if score > 0 and item.available:
        score += availability_bonus
    return score


class RelevanceRanker:
    """Score the whole catalog per query and keep the top results."""

    def __init__(
        self,
        index: CatalogIndex,
        table: Sequence[FieldWeight] = DEFAULT_SCORING_TABLE,
        highlight_categories: Sequence[str] = (),
    ) -> None:
        self._index = index
        self._table = tuple(table)
        self._highlight_categories = tuple(highlight_categories)

    def search(self, raw_query: str, max_results: int = 8) -> SearchResult:
        """Purpose: Rank catalog items for a raw customer query.
        Inputs/Outputs: Inputs are the raw query and a result cap; output is a SearchResult with
            keywords, top items, total_matched (pre-truncation count), and strategy.
        Side Effects / State: Reloads the catalog once when the snapshot is empty.
        Dependencies: Uses normalize_query, score_item, and CatalogIndex.
        Failure Modes: Empty keyword sets return the highlights strategy; an empty catalog
            returns no items rather than raising.
        If Removed: Replies cannot be grounded on the catalog.
        Testing Notes: Ties keep catalog order; total_matched counts beyond max_results.
        """
        # Normalize, score every item, and fall back to highlights on no match.
        catalog = self._index.current_catalog()
        if not catalog:
            logger.warning("search on empty catalog, reloading")
            self._index.load()
            catalog = self._index.current_catalog()

        keywords = normalize_query(raw_query)
        if not keywords:
            return SearchResult(
                keywords=[],
                items=[ScoredItem(item=item, score=0) for item in self.highlights()],
                total_matched=0,
                strategy=STRATEGY_HIGHLIGHTS,
            )

        matched: List[ScoredItem] = []
        for item in catalog:
            score = score_item(item, keywords, self._table)
            if score > 0:
                matched.append(ScoredItem(item=item, score=score))
        # list.sort is stable, so equal scores keep catalog order.
        matched.sort(key=lambda scored: scored.score, reverse=True)
        limit = max(0, max_results)
        results = matched[:limit]

        logger.info(
            "search query=%r keywords=%s matched=%s returned=%s",
            raw_query,
            len(keywords),
            len(matched),
            len(results),
        )
        if results:
            logger.debug("search top=%r score=%s", results[0].item.title, results[0].score)
        return SearchResult(keywords=keywords, items=results, total_matched=len(matched))

    def highlights(self) -> List[CatalogItem]:
        """Purpose: Pick one available item per highlight category for contentless queries.
        Inputs/Outputs: No inputs; returns items in category order.
        Side Effects / State: None.
        Dependencies: Uses the configured highlight categories, else every catalog category.
        Failure Modes: Categories without an available item are skipped.
        If Removed: Greetings and vague messages get no product context.
        Testing Notes: An unavailable first item is skipped in favor of the next available one.
        """
        # Available items from the highlight categories, in catalog order.
        catalog = self._index.current_catalog()
        categories = self._highlight_categories or tuple(self._index.categories())
        picks: List[CatalogItem] = []
        for category in categories:
            for item in catalog:
                if item.category == category and item.available:
                    picks.append(item)
                    break
        return picks


def format_for_prompt(result: SearchResult, max_description: int = DESCRIPTION_PROMPT_LIMIT) -> str:
    """Purpose: Render a SearchResult as product context for the system prompt.
    Inputs/Outputs: Input is a SearchResult; output is a numbered plain-text listing.
    Side Effects / State: None.
    Dependencies: Uses truncate for long descriptions.
    Failure Modes: Empty results return NO_RESULTS_TEXT.
    If Removed: The backend receives no product facts and may invent models or prices.
    Testing Notes: Verify the "N more" note appears when total_matched exceeds the items shown.
    """
    # Render numbered items with prices and availability.
    if not result.items:
        return NO_RESULTS_TEXT

    lines: List[str] = []
    if result.strategy == STRATEGY_HIGHLIGHTS:
        lines.append("PRODUCTOS DESTACADOS DEL CATALOGO:")
    else:
        lines.append(f"PRODUCTOS RELEVANTES ({len(result.items)} de {result.total_matched} coincidencias):")
    lines.append("")

    for position, scored in enumerate(result.items, start=1):
        item = scored.item
        lines.append(f"{position}. {item.title}")
        lines.append(f"   Categoria: {item.category}")
        lines.append(f"   Precio: {item.price_label}")
        lines.append(f"   Disponible: {'Si' if item.available else 'No'}")
        if item.color:
            lines.append(f"   Color(es): {item.color}")
        if item.description:
            lines.append(f"   Descripcion: {truncate(item.description, max_description)}")
        if item.url:
            lines.append(f"   Link del producto: {item.url}")
        lines.append("")

    remaining = result.total_matched - len(result.items)
    if result.strategy == STRATEGY_SEARCH and remaining > 0:
        lines.append(
            f"NOTA: Hay {remaining} productos mas que coinciden. "
            "Si el cliente necesita ver mas opciones, indicale que puede preguntar con mas detalle."
        )
    return "\n".join(lines).rstrip() + "\n"
