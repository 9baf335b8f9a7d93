from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Protocol

import httpx
from bs4 import BeautifulSoup

from support_directory.core.urls import absolute_http_url, is_icon_url
from support_directory.services.records import LOGO_NONE, CanonicalRecord

logger = logging.getLogger(__name__)

USER_AGENT = "support-directory-logo-finder/1.0"
SOCIAL_HANDLE_RE = re.compile(r"twitter\.com/([A-Za-z0-9_]+)[/?#\"']")
RESERVED_HANDLES = frozenset(
    {"intent", "about", "me", "signup", "gofundme", "share", "home", "hashtag", "search", "i", "login"}
)
IMAGE_VALIDATION_FALLBACK_STATUSES = {405, 501}


class EnrichmentError(Exception):
    """Raised when a page or image cannot be inspected."""


@dataclass(slots=True)
class LogoCandidate:
    url: str


class LogoFinder(Protocol):
    async def find(self, url: str) -> LogoCandidate | None: ...


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> str: ...


class ImageValidator(Protocol):
    async def is_image(self, url: str) -> bool: ...


def find_social_handle(body: str) -> str | None:
    for match in SOCIAL_HANDLE_RE.finditer(body):
        handle = match.group(1)
        if handle.lower() not in RESERVED_HANDLES:
            return handle
    return None


class Enricher:
    """Backfills logos for canonical records.

    One instance is shared by a whole reconciliation run so the semaphore
    bounds page fetches across every region and source.
    """

    def __init__(
        self,
        *,
        logo_finder: LogoFinder,
        page_fetcher: PageFetcher,
        image_validator: ImageValidator,
        avatar_url_template: str = "https://unavatar.io/twitter/{handle}",
        concurrency: int = 4,
    ) -> None:
        self._logo_finder = logo_finder
        self._page_fetcher = page_fetcher
        self._image_validator = image_validator
        self._avatar_url_template = avatar_url_template
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def enrich_many(self, records: list[CanonicalRecord]) -> int:
        if not records:
            return 0
        logger.info("updating logos count=%s", len(records))
        results = await asyncio.gather(*(self.enrich(record) for record in records))
        return sum(1 for found in results if found)

    async def enrich(self, record: CanonicalRecord) -> bool:
        """Resolve the record's logo and save it. Returns True when a logo was found."""
        async with self._semaphore:
            try:
                record.logo = await self._discover(record)
                if record.logo != LOGO_NONE:
                    logger.info("found logo donate_url=%s logo=%s", record.donate_url, record.logo)
                await record.save()
            except Exception:
                logger.exception("logo enrichment failed donate_url=%s", record.donate_url)
                record.logo = LOGO_NONE
                try:
                    await record.save()
                except Exception:
                    # Most likely a write quota error; one bad row must not stop the batch.
                    logger.exception("saving logo fallback failed donate_url=%s", record.donate_url)
                return False
        return record.logo != LOGO_NONE

    async def _discover(self, record: CanonicalRecord) -> str:
        logo: str | None = None
        if not record.wants_social_logo:
            candidate = await self._logo_finder.find(record.donate_url)
            if candidate is not None and candidate.url and not is_icon_url(candidate.url):
                logo = candidate.url

        if not logo:
            body = await self._page_fetcher.fetch(record.donate_url)
            handle = find_social_handle(body)
            if handle:
                logo = self._avatar_url_template.format(handle=handle)

        if logo and not await self._image_validator.is_image(logo):
            logger.info("discarding logo that is not an image donate_url=%s logo=%s", record.donate_url, logo)
            logo = None

        return logo or LOGO_NONE


class HttpPageFetcher:
    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 10.0) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds

    async def fetch(self, url: str) -> str:
        if self._client is not None:
            return await self._fetch(self._client, url)
        async with httpx.AsyncClient(timeout=self._timeout_seconds, follow_redirects=True) as client:
            return await self._fetch(client, url)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> str:
        try:
            response = await client.get(url, headers={"User-Agent": USER_AGENT}, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"failed to fetch {url}: {exc}") from exc
        return response.text


class HtmlLogoFinder:
    """Finds the most logo-like image declared by a page."""

    def __init__(self, page_fetcher: PageFetcher) -> None:
        self._page_fetcher = page_fetcher

    async def find(self, url: str) -> LogoCandidate | None:
        body = await self._page_fetcher.fetch(url)
        logo_url = extract_logo_url(body, url)
        if logo_url is None:
            return None
        return LogoCandidate(url=logo_url)


def extract_logo_url(html: str, base_url: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup.find_all("img"):
        hints = " ".join(
            [
                tag.get("src") or "",
                tag.get("alt") or "",
                tag.get("id") or "",
                " ".join(tag.get("class") or []),
            ]
        ).lower()
        if "logo" in hints:
            resolved = absolute_http_url(base_url, tag.get("src"))
            if resolved:
                return resolved

    for tag in soup.find_all("link"):
        rels = {value.lower() for value in (tag.get("rel") or [])}
        if "apple-touch-icon" in rels:
            resolved = absolute_http_url(base_url, tag.get("href"))
            if resolved:
                return resolved

    for tag in soup.find_all("meta"):
        prop = (tag.get("property") or tag.get("name") or "").lower()
        if prop in {"og:image", "twitter:image", "twitter:image:src"}:
            resolved = absolute_http_url(base_url, tag.get("content"))
            if resolved:
                return resolved

    for tag in soup.find_all("link"):
        rels = {value.lower() for value in (tag.get("rel") or [])}
        if "icon" in rels:
            resolved = absolute_http_url(base_url, tag.get("href"))
            if resolved:
                return resolved

    return None


class HttpImageValidator:
    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 10.0) -> None:
        self._client = client
        self._timeout_seconds = timeout_seconds

    async def is_image(self, url: str) -> bool:
        if self._client is not None:
            return await self._is_image(self._client, url)
        async with httpx.AsyncClient(timeout=self._timeout_seconds, follow_redirects=True) as client:
            return await self._is_image(client, url)

    async def _is_image(self, client: httpx.AsyncClient, url: str) -> bool:
        headers = {"User-Agent": USER_AGENT}
        try:
            response = await client.head(url, headers=headers, follow_redirects=True)
            if response.status_code in IMAGE_VALIDATION_FALLBACK_STATUSES:
                async with client.stream("GET", url, headers=headers, follow_redirects=True) as streamed:
                    return _looks_like_image(streamed)
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"failed to validate image {url}: {exc}") from exc
        return _looks_like_image(response)


def _looks_like_image(response: httpx.Response) -> bool:
    if response.status_code >= 400:
        return False
    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    return content_type.startswith("image/")
