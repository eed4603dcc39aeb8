"""Signal extractors. All are pure functions except readability, which fetches the page."""

from .embedding import EMBEDDING_DIM, EMBEDDING_MODEL, generate_embedding
from .entities import extract_entities
from .keyphrases import extract_keyphrases
from .language import detect_language
from .readability import enrich_with_readability
from .sentiment import analyze_sentiment

__all__ = [
    "EMBEDDING_DIM",
    "EMBEDDING_MODEL",
    "analyze_sentiment",
    "detect_language",
    "enrich_with_readability",
    "extract_entities",
    "extract_keyphrases",
    "generate_embedding",
]
