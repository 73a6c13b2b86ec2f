from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

######################## NAMESPACE ENTRIES #########################

# Entries are built once per namespace snapshot and only read afterwards; the exception is
# the checksum enrichment, which fills in FileEntry.checksum and FileEntry.last_modified.


class FileEntry(BaseModel):
    """One object in the bucket"""

    kind: Literal["file"] = "file"
    name: str
    path: str
    size: int = 0
    last_modified: datetime | None = None  # displayed time, may come from user metadata
    observed_modified: datetime | None = None  # LastModified as reported by the store
    identity_tag: str | None = None  # ETag without quotes
    storage_class: str | None = None
    checksum: str | None = None

    @property
    def count(self) -> int:
        return 1

    @property
    def is_directory(self) -> bool:
        return False


class DirectoryEntry(BaseModel):
    """A common prefix of keys, with size and count aggregated over everything below it"""

    kind: Literal["directory"] = "directory"
    name: str  # final path segment including the trailing separator, "" for the root
    path: str  # full prefix including the trailing separator, "" for the root
    size: int = 0
    count: int = 0
    last_modified: datetime | None = None  # only set when a directory marker object exists
    observed_modified: datetime | None = None
    storage_class: str | None = None
    children: tuple["Entry", ...] = ()

    @property
    def is_directory(self) -> bool:
        return True

    def files(self) -> list[FileEntry]:
        return [c for c in self.children if isinstance(c, FileEntry)]

    def subdirectories(self) -> list["DirectoryEntry"]:
        return [c for c in self.children if isinstance(c, DirectoryEntry)]


Entry = Annotated[Union[FileEntry, DirectoryEntry], Field(discriminator="kind")]

DirectoryEntry.model_rebuild()


######################## CHECKSUM CACHE #########################


class ChecksumRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    checksum: str | None
    display_time: datetime | None
    observed_modified: datetime | None


######################## SERIALIZED LISTINGS #########################


class EntryOut(BaseModel):
    """An entry as returned in JSON directory listings"""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    last_modified: datetime | None = Field(None, alias="lastModified")
    size: int
    count: int | None = None
    storage_class: str | None = Field(None, alias="storageClass")
    checksum: str | None = None

    @classmethod
    def from_entry(cls, entry: FileEntry | DirectoryEntry, name: str | None = None) -> "EntryOut":
        return cls(
            name=entry.name if name is None else name,
            last_modified=entry.last_modified,
            size=entry.size,
            count=entry.count if isinstance(entry, DirectoryEntry) else None,
            storage_class=entry.storage_class,
            checksum=(entry.checksum or None) if isinstance(entry, FileEntry) else None,
        )


class HealthResponse(BaseModel):
    bucket: str
    ready: bool = Field(description="Whether a namespace snapshot is available")
    built_at: datetime | None = None
    age_seconds: float | None = None
    entries: int | None = None
    size: int | None = None
    count: int | None = None
    last_error: str | None = Field(None, description="Error of the most recent failed rebuild, if any")
    checksums_cached: int
