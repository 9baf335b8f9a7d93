from pydantic import BaseModel, ConfigDict, Field

from support_directory.services.directory import CachedResponse
from support_directory.services.records import CanonicalRecord


class DirectoryEntryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    description: str | None = None
    donate_url: str = Field(alias="donateUrl")
    state: str | None = None
    city: str | None = None
    logo: str = ""
    source: str = ""

    @classmethod
    def from_record(cls, record: CanonicalRecord) -> "DirectoryEntryOut":
        return cls(
            title=record.title,
            description=record.description,
            donate_url=record.donate_url,
            state=record.state,
            city=record.city,
            logo=record.logo,
            source=record.source,
        )


class SourceRefOut(BaseModel):
    region: str
    url: str


class DirectoryOut(BaseModel):
    data: dict[str, list[DirectoryEntryOut]]
    sources: list[SourceRefOut]
    refresh: bool

    @classmethod
    def from_response(cls, response: CachedResponse, *, refresh: bool) -> "DirectoryOut":
        return cls(
            data={
                region: [DirectoryEntryOut.from_record(record) for record in records]
                for region, records in response.data.items()
            },
            sources=[SourceRefOut(region=ref.region, url=ref.url) for ref in response.sources],
            refresh=refresh,
        )
