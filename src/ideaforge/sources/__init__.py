"""Source adapters and the kind -> adapter dispatch."""

from __future__ import annotations

from typing import Any

import aiohttp

from ..errors import ConfigurationError
from .api import APIAdapter
from .base import BaseAdapter, Candidate, NormalizedItem, RetryPolicy, SourceAdapter, content_hash
from .html import HTMLAdapter
from .rss import RSSAdapter

ADAPTER_CLASSES: dict[str, type[BaseAdapter]] = {
    "rss": RSSAdapter,
    "api": APIAdapter,
    "html": HTMLAdapter,
}


def create_adapter(
    source: dict[str, Any],
    policy: RetryPolicy | None = None,
    session: aiohttp.ClientSession | None = None,
    **kwargs: Any,
) -> BaseAdapter:
    """Build the adapter for a source row. Unknown kinds raise ConfigurationError."""
    kind = source.get("kind")
    adapter_cls = ADAPTER_CLASSES.get(kind)
    if adapter_cls is None:
        raise ConfigurationError(
            f"Unknown source kind {kind!r} for source {source.get('name', '')!r}",
            source=source.get("name"),
        )
    return adapter_cls(source, policy=policy, session=session, **kwargs)


__all__ = [
    "ADAPTER_CLASSES",
    "APIAdapter",
    "BaseAdapter",
    "Candidate",
    "HTMLAdapter",
    "NormalizedItem",
    "RSSAdapter",
    "RetryPolicy",
    "SourceAdapter",
    "content_hash",
    "create_adapter",
]
