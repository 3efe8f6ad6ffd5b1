from salesdesk.normalizer import STOP_WORDS, SYNONYMS, build_synonym_table, normalize_query


def test_price_question_keeps_brand_and_color_with_synonym():
    assert normalize_query("cuanto vale la retay negra") == ["retay", "negra", "negro"]


def test_greeting_only_yields_no_keywords():
    assert normalize_query("Hola, buenas tardes!") == []
    assert normalize_query("   ") == []
    assert normalize_query("") == []


def test_stop_words_never_survive():
    keywords = normalize_query("Quiero saber el precio de una pistola para la casa, por favor")
    assert keywords
    assert not set(keywords) & STOP_WORDS


def test_accents_and_punctuation_are_folded():
    assert normalize_query("¿Tienen munición?")[:1] == ["municion"]
    assert normalize_query("¡RETAY!") == ["retay"]


def test_originals_come_before_expansions_without_duplicates():
    keywords = normalize_query("negro negra pistola")
    assert keywords == ["negro", "negra", "pistola", "pistolas"]


def test_single_character_tokens_are_dropped():
    assert normalize_query("g 17 x") == ["17"]


def test_normalization_is_idempotent():
    queries = [
        "cuanto vale la retay negra",
        "pistola plateada o cromada barata",
        "Munición Oskurzan y carnet del club",
        "revolver ekol fume",
        "hola",
    ]
    for query in queries:
        once = normalize_query(query)
        twice = normalize_query(" ".join(once))
        assert twice == once, query


def test_synonym_table_is_closed():
    for term, synonyms in SYNONYMS.items():
        for synonym in synonyms:
            assert term in SYNONYMS[synonym]


def test_build_synonym_table_merges_overlapping_groups():
    table = build_synonym_table([("a1", "b1"), ("b1", "c1")])
    assert table["b1"] == ("a1", "c1")
    assert table["a1"] == ("b1",)


def test_custom_tables_override_defaults():
    keywords = normalize_query("la retay", stop_words=frozenset(), synonyms={"retay": ["tr"]})
    assert keywords == ["la", "retay", "tr"]
