"""HTML page source adapter — repeating blocks picked out by selector hints."""

from __future__ import annotations

from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .base import BaseAdapter, Candidate, NormalizedItem, as_text, content_hash, parse_datetime

DEFAULT_SELECTORS = {
    "container": "article",
    "title": "h2, h3",
    "link": "a",
    "summary": "p",
}


class HTMLAdapter(BaseAdapter):
    kind = "html"

    async def fetch(self) -> list[Candidate]:
        """Fetch the page and return one candidate per container block."""
        page_url = self._require_url()
        result = await self._get(page_url)
        if result.not_modified:
            return []

        selectors = {**DEFAULT_SELECTORS, **(self.config.get("selectors") or {})}
        candidates = []
        for idx, block in enumerate(parse_blocks(result.body, selectors, base_url=page_url)):
            url = block.get("url") or page_url
            title = block.get("title") or ""
            candidates.append(
                Candidate(
                    external_id=content_hash(url, title or f"item-{idx}"),
                    url=url,
                    raw={**block, "url": url},
                    title=title,
                )
            )
        return candidates

    def normalize(self, raw: dict[str, Any]) -> NormalizedItem:
        tags = raw.get("tags") or []
        if not isinstance(tags, list):
            tags = [tags]
        summary = raw.get("summary")
        return NormalizedItem(
            title=as_text(raw.get("title")),
            url=as_text(raw.get("url")),
            summary=as_text(summary) if summary is not None else None,
            author=raw.get("author") or None,
            posted_at=parse_datetime(raw.get("postedAt")),
            tags=[str(t) for t in tags],
        )


def parse_blocks(
    html: str, selectors: dict[str, str], base_url: str = ""
) -> list[dict[str, Any]]:
    soup = BeautifulSoup(html, "html.parser")
    blocks = []
    for element in soup.select(selectors["container"]):
        title_el = element.select_one(selectors["title"])
        link_el = element.select_one(selectors["link"])
        summary_el = element.select_one(selectors["summary"])

        title = title_el.get_text(" ", strip=True) if title_el else None
        href = link_el.get("href") if link_el else None
        url = urljoin(base_url, href) if href else None
        summary = summary_el.get_text(" ", strip=True) if summary_el else None

        if not title and not url:
            continue
        block: dict[str, Any] = {"title": title, "url": url, "summary": summary}
        blocks.append({k: v for k, v in block.items() if v is not None})
    return blocks
