"""Pattern-based entity extraction."""

from __future__ import annotations

import re

ENTITY_PATTERNS = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "url": re.compile(
        r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
        r"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)"
    ),
    "money": re.compile(
        r"\$\d+(?:,\d{3})*(?:\.\d{2})?|\d+(?:,\d{3})*(?:\.\d{2})?\s*(?:USD|EUR|GBP)",
        re.IGNORECASE,
    ),
    "percentage": re.compile(r"\d+(?:\.\d+)?%"),
}

PROPER_NOUN_RE = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+\b")
MAX_PROPER_NOUN_WORDS = 4
MAX_ENTITIES = 50


def extract_entities(text: str) -> list[dict[str, str]]:
    entities = []
    for entity_type, pattern in ENTITY_PATTERNS.items():
        for match in pattern.finditer(text):
            entities.append({"text": match.group(0), "type": entity_type})

    for match in PROPER_NOUN_RE.finditer(text):
        if len(match.group(0).split()) <= MAX_PROPER_NOUN_WORDS:
            entities.append({"text": match.group(0), "type": "proper_noun"})

    return entities[:MAX_ENTITIES]
