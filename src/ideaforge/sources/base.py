"""Base protocol, data classes and shared fetch machinery for source adapters."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, TypeVar, runtime_checkable

import aiohttp
from dateutil import parser as dateparser
from multidict import CIMultiDict

from ..errors import ConfigurationError, FetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; IdeaScraperBot/1.0)"


@dataclass
class Candidate:
    """One record returned by ``fetch()``, before it is persisted."""

    external_id: str
    url: str
    raw: dict[str, Any]
    title: str = ""


@dataclass
class NormalizedItem:
    """The adapter-independent shape every raw payload is folded into."""

    title: str = ""
    url: str = ""
    summary: str | None = None
    author: str | None = None
    posted_at: datetime | None = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "summary": self.summary,
            "author": self.author,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "tags": list(self.tags),
        }


@runtime_checkable
class SourceAdapter(Protocol):
    """Protocol for pluggable source adapters."""

    kind: str
    cache_tokens: dict[str, str | None]

    async def fetch(self) -> list[Candidate]:
        """Fetch candidates from the configured source.

        Returns an empty list when the upstream answers "not modified".
        """
        ...

    def normalize(self, raw: dict[str, Any]) -> NormalizedItem:
        """Fold a raw payload into a NormalizedItem. Pure, never raises on missing fields."""
        ...


class RetryPolicy:
    """Exponential backoff with jitter around a single async call.

    The call is attempted ``1 + max_retries`` times. Before retry ``n``
    (zero-based) the policy sleeps ``base_delay * 2**n`` plus up to
    ``max_jitter`` seconds of random jitter.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_jitter: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> "RetryPolicy":
        return cls(
            max_retries=cfg.get("max_retries", 3),
            base_delay=cfg.get("base_delay_seconds", 1.0),
            max_jitter=cfg.get("max_jitter_seconds", 1.0),
        )

    def delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.max_jitter)

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await fn()
            except ConfigurationError:
                raise
            except Exception as e:
                if attempt >= self.max_retries:
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    "Attempt %d failed (%s), retrying in %.2fs", attempt + 1, e, wait
                )
                await self._sleep(wait)
                attempt += 1


def content_hash(url: str, title: str) -> str:
    """Content-addressed key for a raw item."""
    return hashlib.sha256(f"{url}|{title}".encode("utf-8")).hexdigest()


def parse_datetime(value: Any) -> datetime | None:
    """Lenient date parsing. Unparsable or missing values become None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return dateparser.parse(str(value))
    except (ValueError, OverflowError):
        return None


def as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class FetchResult:
    status: int
    body: str
    headers: CIMultiDict[str]

    @property
    def not_modified(self) -> bool:
        return self.status == 304


class BaseAdapter:
    """Shared fetch plumbing: retry, conditional headers, cache-token capture.

    Variants supply ``kind``, ``fetch()`` and ``normalize()``. They reach
    the network only through ``_get()``.
    """

    kind = ""

    def __init__(
        self,
        source: dict[str, Any],
        policy: RetryPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 30,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.source = source
        self.config: dict[str, Any] = source.get("config") or {}
        self.policy = policy or RetryPolicy()
        self.session = session
        self.timeout = timeout
        self.user_agent = user_agent
        self.cache_tokens: dict[str, str | None] = {"etag": None, "last_modified": None}

    def _require_url(self) -> str:
        url = self.config.get("url")
        if not url:
            raise ConfigurationError(
                f"{self.kind} source {self.source.get('name', '')!r} has no url configured",
                source=self.source.get("name"),
            )
        return str(url)

    def _conditional_headers(self) -> dict[str, str]:
        headers = {}
        if self.source.get("etag"):
            headers["If-None-Match"] = self.source["etag"]
        if self.source.get("last_modified"):
            headers["If-Modified-Since"] = self.source["last_modified"]
        return headers

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self.session is not None:
            yield self.session
            return
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            yield session

    async def _get(self, url: str, headers: dict[str, str] | None = None) -> FetchResult:
        """GET with retry. 304 comes back as a result; other non-2xx raise FetchError."""
        request_headers = {"User-Agent": self.user_agent}
        request_headers.update(self._conditional_headers())
        request_headers.update(headers or {})

        async def attempt() -> FetchResult:
            async with self._client() as session:
                async with session.get(url, headers=request_headers) as resp:
                    if resp.status == 304:
                        return FetchResult(304, "", CIMultiDict(resp.headers))
                    if resp.status >= 400:
                        raise FetchError(
                            f"HTTP {resp.status} from {url}", url=url, http_status=resp.status
                        )
                    body = await resp.text()
                    return FetchResult(resp.status, body, CIMultiDict(resp.headers))

        result = await self.policy.call(attempt)
        if result.not_modified:
            logger.info("%s not modified since last fetch", url)
        else:
            self.cache_tokens = {
                "etag": result.headers.get("ETag"),
                "last_modified": result.headers.get("Last-Modified"),
            }
        return result
