from __future__ import annotations

"""Query keyword extraction: folding, stop-word removal, and synonym expansion."""

from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from .utils import normalize_text

# Folded (accent-free) forms only; the normalizer folds input before lookup.
STOP_WORDS: FrozenSet[str] = frozenset(
    {
        "el", "la", "los", "las", "un", "una", "unos", "unas",
        "de", "del", "en", "con", "por", "para", "al",
        "que", "es", "se", "no", "si", "su", "sus",
        "me", "te", "le", "lo", "mi", "tu", "ya", "hay",
        "como", "pero", "mas", "este", "esta", "ese", "esa",
        "ser", "son", "muy", "tan", "aqui", "ahi",
        "hola", "buenas", "buenos", "dias", "tardes", "noches", "gracias",
        "tienen", "tienes", "tiene", "quiero", "necesito", "busco",
        "ver", "saber", "cual", "cuales",
        "algo", "todo", "todos", "eso", "esto", "bien", "bueno", "dale",
        "puedo", "puede", "podria", "favor", "porfa", "porfavor",
        "info", "informacion", "sobre",
        "cuanto", "cuanta", "cuestan", "cuesta", "vale", "valen",
        "donde", "cuando", "quien",
        "marca", "modelo", "tipo",
        "estan", "estas", "oye", "oiga",
        "disculpa", "disculpe", "perdon",
    }
)

# Each group is a closed equivalence class: every member expands to all the others.
SYNONYM_GROUPS: Tuple[Tuple[str, ...], ...] = (
    ("negra", "negro"),
    ("cromada", "cromado", "plateada", "plateado"),
    ("fume", "ahumado", "ahumada"),
    ("pistola", "pistolas"),
    ("revolver", "revolveres"),
    ("traumatica", "traumaticas", "traumatico", "traumaticos"),
    ("municion", "cartuchos", "balas", "oskurzan"),
    ("barata", "barato", "economica", "economico"),
    ("carnet", "certificado"),
    ("club", "membresia", "afiliacion"),
    ("g17", "glock"),
    ("p92", "tr92"),
)


def build_synonym_table(groups: Sequence[Sequence[str]]) -> Dict[str, Tuple[str, ...]]:
    """Purpose: Expand synonym groups into a term -> synonyms lookup table.
    Inputs/Outputs: Input is a sequence of groups; output maps each member to the other members
        in group order.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: A term listed in two groups keeps the union of both, in first-seen order.
    If Removed: Synonym expansion needs a hand-maintained, possibly non-closed table.
    Testing Notes: Every value in the table must itself be a key mapping back to the source term.
    """
    # Every member of a group maps to all other members.
    table: Dict[str, List[str]] = {}
    for group in groups:
        for term in group:
            bucket = table.setdefault(term, [])
            for other in group:
                if other != term and other not in bucket:
                    bucket.append(other)
    return {term: tuple(values) for term, values in table.items()}


SYNONYMS: Dict[str, Tuple[str, ...]] = build_synonym_table(SYNONYM_GROUPS)


def normalize_query(
    text: str,
    stop_words: Optional[FrozenSet[str]] = None,
    synonyms: Optional[Mapping[str, Sequence[str]]] = None,
) -> List[str]:
    """Purpose: Turn a raw customer message into ordered, expanded search keywords.
    Inputs/Outputs: Input is raw text plus optional stop-word/synonym overrides; output is a
        deduplicated list with original tokens first (first-seen order) followed by their
        synonym expansions.
    Side Effects / State: None; pure function.
    Dependencies: Uses normalize_text, STOP_WORDS, and SYNONYMS.
    Failure Modes: Input made only of stop-words or punctuation returns an empty list, which
        callers treat as "no searchable intent".
    If Removed: The ranker has no keywords and every query falls back to highlights.
    Testing Notes: "cuanto vale la retay negra" yields ["retay", "negra", "negro"].
    """
    # Tokenize, drop stop words, then append synonyms after the originals.
    stop = STOP_WORDS if stop_words is None else stop_words
    table = SYNONYMS if synonyms is None else synonyms

    originals: List[str] = []
    for token in normalize_text(text).split(" "):
        if len(token) <= 1 or token in stop:
            continue
        if token not in originals:
            originals.append(token)

    keywords = list(originals)
    for token in originals:
        for synonym in table.get(token, ()):
            if synonym not in keywords:
                keywords.append(synonym)
    return keywords
