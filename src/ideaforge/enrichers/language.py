"""Language detection by common-word counts."""

from __future__ import annotations

COMMON_WORDS: dict[str, set[str]] = {
    "en": {"the", "be", "to", "of", "and", "a", "in", "that", "have", "it"},
    "es": {"el", "la", "de", "que", "y", "a", "en", "un", "ser", "se"},
    "fr": {"le", "de", "un", "être", "et", "à", "il", "avoir", "ne", "je"},
    "de": {"der", "die", "und", "in", "den", "von", "zu", "das", "mit", "sich"},
}

DEFAULT_LANGUAGE = "en"


def detect_language(text: str) -> dict[str, object]:
    """Return ``{"language", "confidence"}`` for the first 100 words of text."""
    words = text.lower().split()[:100]

    best_lang, best_score = DEFAULT_LANGUAGE, 0
    for lang, common in COMMON_WORDS.items():
        score = sum(1 for w in words if w in common)
        # strict comparison: ties keep the earlier (English-first) language
        if score > best_score:
            best_lang, best_score = lang, score

    if best_score == 0:
        return {"language": DEFAULT_LANGUAGE, "confidence": 0.5}

    return {"language": best_lang, "confidence": min(best_score / 10, 1.0)}
