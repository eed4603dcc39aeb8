"""Word-list sentiment scoring."""

from __future__ import annotations

POSITIVE_WORDS = frozenset({
    "good", "great", "excellent", "amazing", "wonderful", "fantastic", "awesome",
    "best", "love", "perfect", "beautiful", "brilliant", "outstanding", "superb",
})

NEGATIVE_WORDS = frozenset({
    "bad", "terrible", "awful", "horrible", "worst", "hate", "poor", "disappointing",
    "useless", "waste", "annoying", "frustrating", "difficult", "problem",
})

LABEL_THRESHOLD = 0.1


def analyze_sentiment(text: str) -> dict[str, object]:
    """Score in [-1, 1] plus a positive/neutral/negative label."""
    words = text.lower().split()

    raw = 0
    for word in words:
        if word in POSITIVE_WORDS:
            raw += 1
        elif word in NEGATIVE_WORDS:
            raw -= 1

    # one hit per ten words saturates the scale
    score = max(-1.0, min(1.0, raw / max(len(words) / 10, 1)))

    if score > LABEL_THRESHOLD:
        label = "positive"
    elif score < -LABEL_THRESHOLD:
        label = "negative"
    else:
        label = "neutral"
    return {"score": score, "label": label}
