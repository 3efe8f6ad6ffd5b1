from salesdesk.catalog import CatalogIndex, CatalogItem
from salesdesk.ranker import (
    NO_RESULTS_TEXT,
    STRATEGY_HIGHLIGHTS,
    STRATEGY_SEARCH,
    RelevanceRanker,
    format_for_prompt,
    score_item,
)
from conftest import CATALOG_PATH


def _item(title, available=False, **fields):
    values = dict(description="", category="", prices=(), url="")
    values.update(fields)
    return CatalogItem(title=title, available=available, **values)


def _titles(result):
    return [scored.item.title for scored in result.items]


def test_title_prefix_and_substring_weights():
    item = _item("Retay X")
    assert score_item(item, ["retay"]) == 15
    assert score_item(item, ["x"]) == 10
    assert score_item(_item("Otra", description="una retay"), ["retay"]) == 3


def test_availability_bonus_only_applies_to_matches():
    available = _item("Retay X", available=True)
    assert score_item(available, ["retay"]) == 16
    assert score_item(available, ["zzz"]) == 0


def test_adding_keywords_never_lowers_a_score(catalog_index):
    base = ["retay"]
    extended = ["retay", "negra", "negro", "pistola"]
    for item in catalog_index.current_catalog():
        assert score_item(item, base) <= score_item(item, extended)


def test_price_question_ranks_matching_model_first(catalog_index):
    ranker = RelevanceRanker(catalog_index)
    result = ranker.search("cuanto vale la retay negra")

    assert result.strategy == STRATEGY_SEARCH
    assert result.keywords == ["retay", "negra", "negro"]
    assert _titles(result) == ["Retay G17 Negra", "Retay Volga", "Retay S2022 Fume", "Ekol Firat Magnum"]
    assert result.items[0].score >= 20
    assert result.total_matched == 4


def test_truncation_keeps_total_matched(catalog_index):
    result = RelevanceRanker(catalog_index).search("retay negra", max_results=2)
    assert len(result.items) == 2
    assert result.total_matched == 4


def test_equal_scores_keep_catalog_order(catalog_index):
    result = RelevanceRanker(catalog_index).search("ekol")
    assert _titles(result) == ["Ekol Firat Magnum", "Ekol Viper 2.5 Revolver"]
    assert result.items[0].score == result.items[1].score


def test_contentless_query_returns_highlights(catalog_index):
    result = RelevanceRanker(catalog_index).search("hola buenas")
    assert result.strategy == STRATEGY_HIGHLIGHTS
    assert result.keywords == []
    assert _titles(result) == [
        "Retay G17 Negra",
        "Ekol Firat Magnum",
        "Caja Oskurzan 9mm x50",
        "Membresia Club Plan Pro",
    ]


def test_configured_highlights_skip_unavailable_items(catalog_index):
    ranker = RelevanceRanker(catalog_index, highlight_categories=["CLUB", "RETAY", "NO_EXISTE"])
    assert [item.title for item in ranker.highlights()] == ["Membresia Club Plan Pro", "Retay G17 Negra"]


def test_empty_catalog_is_reloaded_once():
    index = CatalogIndex(CATALOG_PATH)
    result = RelevanceRanker(index).search("oskurzan")
    assert _titles(result) == ["Caja Oskurzan 9mm x50"]


def test_prompt_listing_with_more_matches_note(catalog_index):
    result = RelevanceRanker(catalog_index).search("retay negra", max_results=2)
    text = format_for_prompt(result)
    assert text.startswith("PRODUCTOS RELEVANTES (2 de 4 coincidencias):")
    assert "1. Retay G17 Negra" in text
    assert "Precio: plus: $1.250.000 | pro: $1.290.000" in text
    assert "Link del producto: https://example.com/producto/retay-g17/" in text
    assert "NOTA: Hay 2 productos mas" in text


def test_prompt_listing_without_results(catalog_index):
    result = RelevanceRanker(catalog_index).search("zzzz")
    assert result.items == []
    assert format_for_prompt(result) == NO_RESULTS_TEXT


def test_prompt_listing_for_highlights(catalog_index):
    text = format_for_prompt(RelevanceRanker(catalog_index).search("hola"))
    assert text.startswith("PRODUCTOS DESTACADOS DEL CATALOGO:")
    assert "NOTA" not in text
