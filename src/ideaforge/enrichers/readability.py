"""Main-content extraction from an item's page.

Never raises: any failure (bad URL, timeout, non-2xx, decode error) yields a
zero-valued result so one slow or broken page cannot sink the enrichment of
its item.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re

import aiohttp
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; EnrichmentBot/1.0)"
WORDS_PER_MINUTE = 200
EXCERPT_CHARS = 500
DEFAULT_TIMEOUT = 5.0


def empty_result() -> dict[str, object]:
    return {"content": None, "excerpt": None, "word_count": 0, "reading_time": 0}


def extract_main_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    root = soup.body or soup
    for tag in root.find_all(["script", "style"]):
        tag.decompose()
    return re.sub(r"\s+", " ", root.get_text(" ")).strip()


def summarize_text(content: str) -> dict[str, object]:
    word_count = len(content.split())
    return {
        "content": content,
        "excerpt": content[:EXCERPT_CHARS],
        "word_count": word_count,
        "reading_time": math.ceil(word_count / WORDS_PER_MINUTE),
    }


async def enrich_with_readability(
    url: str,
    session: aiohttp.ClientSession | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> dict[str, object]:
    if not url:
        return empty_result()

    try:
        html = await asyncio.wait_for(_fetch(url, session, timeout), timeout=timeout)
    except Exception as e:
        logger.warning("Readability fetch failed for %s: %s", url, e)
        return empty_result()

    if html is None:
        return empty_result()
    return summarize_text(extract_main_text(html))


async def _fetch(
    url: str, session: aiohttp.ClientSession | None, timeout: float
) -> str | None:
    headers = {"User-Agent": USER_AGENT}
    if session is not None:
        async with session.get(url, headers=headers) as resp:
            if resp.status >= 400:
                return None
            return await resp.text()

    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as own_session:
        async with own_session.get(url, headers=headers) as resp:
            if resp.status >= 400:
                return None
            return await resp.text()
