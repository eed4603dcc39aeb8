"""Frequency-based keyphrase extraction."""

from __future__ import annotations

from collections import Counter

STOP_WORDS = frozenset({
    "the", "be", "to", "of", "and", "a", "in", "that", "have", "it",
    "for", "not", "on", "with", "he", "as", "you", "do", "at", "this",
})

MAX_KEYPHRASES = 10


def extract_keyphrases(text: str) -> list[dict[str, object]]:
    """Top words by frequency with ``score = freq / max_freq``.

    Words of three characters or fewer and stop words are ignored. Equal
    frequencies keep first-occurrence order, so the output is stable.
    """
    words = [w for w in text.lower().split() if len(w) > 3 and w not in STOP_WORDS]
    if not words:
        return []

    ranked = Counter(words).most_common(MAX_KEYPHRASES)
    max_freq = ranked[0][1]
    return [{"phrase": phrase, "score": freq / max_freq} for phrase, freq in ranked]
