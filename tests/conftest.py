from __future__ import annotations

import os

# Keep the API app from installing a global tracer provider during tests.
os.environ.setdefault("SD_OTEL_ENABLED", "false")

import pytest

from support_directory.services.enricher import EnrichmentError, Enricher, LogoCandidate
from support_directory.services.row_store import InMemoryRowStore

CANONICAL_HEADER = ["title", "description", "donateUrl", "state", "city", "logo", "source", "hide"]
AVATAR_TEMPLATE = "https://avatars.test/{handle}"


class StubLogoFinder:
    def __init__(self) -> None:
        self.logos: dict[str, str] = {}
        self.calls: list[str] = []

    async def find(self, url: str) -> LogoCandidate | None:
        self.calls.append(url)
        logo = self.logos.get(url)
        if logo is None:
            return None
        return LogoCandidate(url=logo)


class StubPageFetcher:
    def __init__(self) -> None:
        self.pages: dict[str, str] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        if url in self.failing:
            raise EnrichmentError(f"failed to fetch {url}")
        return self.pages.get(url, "<html></html>")


class StubImageValidator:
    def __init__(self) -> None:
        self.rejected: set[str] = set()

    async def is_image(self, url: str) -> bool:
        return url not in self.rejected


@pytest.fixture
def store() -> InMemoryRowStore:
    return InMemoryRowStore()


@pytest.fixture
def logo_finder() -> StubLogoFinder:
    return StubLogoFinder()


@pytest.fixture
def page_fetcher() -> StubPageFetcher:
    return StubPageFetcher()


@pytest.fixture
def image_validator() -> StubImageValidator:
    return StubImageValidator()


@pytest.fixture
def enricher(
    logo_finder: StubLogoFinder,
    page_fetcher: StubPageFetcher,
    image_validator: StubImageValidator,
) -> Enricher:
    return Enricher(
        logo_finder=logo_finder,
        page_fetcher=page_fetcher,
        image_validator=image_validator,
        avatar_url_template=AVATAR_TEMPLATE,
        concurrency=4,
    )


@pytest.fixture
def canonical_row():
    """Build a canonical grid line from keyword cells."""

    def build(**cells: object) -> list[object]:
        return [cells.get(name) for name in CANONICAL_HEADER]

    return build
