"""
The namespace: a hierarchical view of the flat key space of a bucket.

A Namespace is one snapshot of the bucket listing, keyed by full path ("" is the root,
directory paths end with "/"). Snapshots are never modified after they are built;
a rebuild creates a new Namespace that replaces the old one as a whole.
"""

from datetime import datetime
from types import MappingProxyType
from typing import Iterator, Mapping

from bucketproxy.models import DirectoryEntry, FileEntry

ROOT = ""


class NamespaceError(Exception):
    pass


class NamespaceUnavailable(NamespaceError):
    """No snapshot of the bucket could be built"""


class EntryNotFound(NamespaceError, KeyError):
    def __init__(self, path: str):
        super().__init__(path)
        self.path = path

    def __str__(self):
        return f"Path not found: /{self.path}"


class Namespace:
    def __init__(self, bucket: str, entries: Mapping[str, FileEntry | DirectoryEntry], built_at: datetime):
        if not isinstance(entries.get(ROOT), DirectoryEntry):
            raise ValueError("A namespace needs a root directory")
        self._entries = MappingProxyType(dict(entries))
        self.bucket = bucket
        self.built_at = built_at

    @property
    def entries(self) -> Mapping[str, FileEntry | DirectoryEntry]:
        return self._entries

    @property
    def root(self) -> DirectoryEntry:
        return self._entries[ROOT]  # type: ignore

    @property
    def size(self) -> int:
        return self.root.size

    @property
    def count(self) -> int:
        return self.root.count

    def get(self, path: str) -> FileEntry | DirectoryEntry | None:
        return self._entries.get(path)

    def is_directory(self, path: str) -> bool:
        return isinstance(self._entries.get(path), DirectoryEntry)

    def is_file(self, path: str) -> bool:
        return isinstance(self._entries.get(path), FileEntry)

    def directory(self, path: str) -> DirectoryEntry:
        entry = self._entries.get(path)
        if not isinstance(entry, DirectoryEntry):
            raise EntryNotFound(path)
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __repr__(self):
        return f"<Namespace {self.bucket!r}: {len(self)} entries, built {self.built_at.isoformat()}>"
