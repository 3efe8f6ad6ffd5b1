import re
import unicodedata
from typing import Iterable, List

PUNCTUATION_RE = re.compile(r"[¿?¡!.,;:(){}\[\]\"']")
WHITESPACE_RE = re.compile(r"\s+")


def fold_text(text: str) -> str:
    """Purpose: Lowercase text and strip combining diacritical marks.
    Inputs/Outputs: Input is a raw string; output is lowercase text where "ó" becomes "o".
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata NFD decomposition.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Accented customer input stops matching unaccented catalog and phrase data.
    Testing Notes: "Munición" folds to "municion"; "ñ" folds to "n".
    """
    # Decompose and drop combining marks (Unicode category Mn).
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form chat text for phrase matching.
    Inputs/Outputs: Input is a raw string; output is folded text with the chat punctuation
        class replaced by spaces and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses fold_text and PUNCTUATION_RE; called by the classifier and normalizer.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Handoff and purchase phrases miss messages like "¿Hablar con un asesor?".
    Testing Notes: "¿Cómo PAGO?" becomes "como pago".
    """
    # Fold accents and collapse whitespace for matching.
    folded = fold_text(text)
    cleaned = PUNCTUATION_RE.sub(" ", folded)
    return WHITESPACE_RE.sub(" ", cleaned).strip()


def contains_any(normalized: str, phrases: Iterable[str]) -> bool:
    return any(phrase in normalized for phrase in phrases)


def digits_only(value: str) -> str:
    return "".join(ch for ch in value or "" if ch.isdigit())


def split_csv(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
