from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from support_directory.core.urls import normalize_donate_url

if TYPE_CHECKING:
    from support_directory.services.row_store import Row

LOGO_NONE = "(none)"
LOGO_TWITTER = "twitter"

CANDIDATE_FIELDS = ("title", "description", "donate_url", "state", "city", "logo")

# Column headers used by the canonical document, keyed by record attribute.
CANONICAL_HEADERS: dict[str, str] = {
    "title": "title",
    "description": "description",
    "donate_url": "donateUrl",
    "state": "state",
    "city": "city",
    "logo": "logo",
    "source": "source",
    "hide": "hide",
}

_FALSE_FLAGS = {"", "false", "0", "no", "n", "off"}


@dataclass(frozen=True, slots=True)
class SourceDescriptor:
    region: str
    partition_key: str
    url: str
    field_map: dict[str, str]
    partition_title: str | None = None


@dataclass(slots=True)
class CandidateRecord:
    donate_url: str
    title: str | None = None
    description: str | None = None
    state: str | None = None
    city: str | None = None
    logo: str | None = None

    def to_cells(self, *, source: str) -> dict[str, Any]:
        cells: dict[str, Any] = {
            CANONICAL_HEADERS["donate_url"]: self.donate_url,
            CANONICAL_HEADERS["source"]: source,
        }
        for name in ("title", "description", "state", "city", "logo"):
            value = getattr(self, name)
            if value is not None:
                cells[CANONICAL_HEADERS[name]] = value
        return cells


@dataclass(slots=True)
class CanonicalRecord:
    donate_url: str
    title: str | None = None
    description: str | None = None
    state: str | None = None
    city: str | None = None
    logo: str = ""
    source: str = ""
    hide: bool = False
    row: Row | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_row(cls, row: Row) -> CanonicalRecord:
        return cls(
            donate_url=as_text(row.get(CANONICAL_HEADERS["donate_url"])) or "",
            title=as_text(row.get(CANONICAL_HEADERS["title"])),
            description=as_text(row.get(CANONICAL_HEADERS["description"])),
            state=as_text(row.get(CANONICAL_HEADERS["state"])),
            city=as_text(row.get(CANONICAL_HEADERS["city"])),
            logo=as_text(row.get(CANONICAL_HEADERS["logo"])) or "",
            source=as_text(row.get(CANONICAL_HEADERS["source"])) or "",
            hide=as_flag(row.get(CANONICAL_HEADERS["hide"])),
            row=row,
        )

    @property
    def identity(self) -> str:
        return normalize_donate_url(self.donate_url) or self.donate_url

    @property
    def needs_logo(self) -> bool:
        return not self.logo or self.logo.strip().lower() == LOGO_TWITTER

    @property
    def wants_social_logo(self) -> bool:
        return self.logo.strip().lower() == LOGO_TWITTER

    async def save(self) -> None:
        """Write the engine-owned columns back to the stored row."""
        if self.row is None:
            raise RuntimeError(f"record {self.donate_url} is not bound to a stored row")
        self.row[CANONICAL_HEADERS["source"]] = self.source
        self.row[CANONICAL_HEADERS["logo"]] = self.logo
        await self.row.save(columns=(CANONICAL_HEADERS["source"], CANONICAL_HEADERS["logo"]))


def as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() not in _FALSE_FLAGS


def as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)
