"""Generic JSON API source adapter with per-source field mappings."""

from __future__ import annotations

import json
from typing import Any

from ..errors import FetchError
from .base import BaseAdapter, Candidate, NormalizedItem, as_text, parse_datetime

DEFAULT_FIELDS = {
    "idField": "id",
    "urlField": "url",
    "titleField": "title",
    "summaryField": "summary",
    "authorField": "author",
    "dateField": "createdAt",
    "tagsField": "tags",
}


class APIAdapter(BaseAdapter):
    kind = "api"

    def _field(self, key: str) -> str:
        return self.config.get(key) or DEFAULT_FIELDS[key]

    async def fetch(self) -> list[Candidate]:
        """GET the configured endpoint and map each record to a candidate."""
        api_url = self._require_url()
        headers = {"Accept": "application/json"}
        api_key = self.config.get("apiKey")
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        result = await self._get(api_url, headers=headers)
        if result.not_modified:
            return []

        try:
            data = json.loads(result.body) if result.body else []
        except json.JSONDecodeError as e:
            raise FetchError(f"Invalid JSON from {api_url}: {e}", url=api_url) from e

        id_field = self._field("idField")
        url_field = self._field("urlField")
        title_field = self._field("titleField")

        candidates = []
        for record in extract_records(data):
            if not isinstance(record, dict):
                continue
            candidates.append(
                Candidate(
                    external_id=as_text(record.get(id_field) or record.get("id")),
                    url=as_text(record.get(url_field) or record.get("url")),
                    raw=record,
                    title=as_text(record.get(title_field)),
                )
            )
        return candidates

    def normalize(self, raw: dict[str, Any]) -> NormalizedItem:
        tags_value = raw.get(self._field("tagsField"))
        if not tags_value:
            tags = []
        elif isinstance(tags_value, list):
            tags = [str(t) for t in tags_value]
        else:
            tags = [str(tags_value)]

        summary = raw.get(self._field("summaryField"))
        author = raw.get(self._field("authorField"))
        return NormalizedItem(
            title=as_text(raw.get(self._field("titleField"))),
            url=as_text(raw.get(self._field("urlField"))),
            summary=as_text(summary) if summary is not None else None,
            author=as_text(author) if author else None,
            posted_at=parse_datetime(raw.get(self._field("dateField"))),
            tags=tags,
        )


def extract_records(data: Any) -> list[Any]:
    """Top-level array, or an object exposing records under ``items``/``data``."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("items", "data"):
            if isinstance(data.get(key), list):
                return data[key]
    return []
