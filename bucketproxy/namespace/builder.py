"""
Build a Namespace from one full listing of a bucket.

Object stores have no directories, only keys. Every proper prefix of a key ending in "/"
becomes a directory; a key that itself ends in "/" (a directory marker) only contributes
its metadata to that directory. Directory sizes and counts are computed bottom-up once
all keys are known.
"""

import logging
import time
from datetime import UTC, datetime
from typing import AsyncIterable

from bucketproxy.config import get_settings
from bucketproxy.models import DirectoryEntry, FileEntry
from bucketproxy.namespace import ROOT, Namespace
from bucketproxy.objectstorage.s3bucket import ListObject, scan_s3_objects
from bucketproxy.util import natural_key

logger = logging.getLogger("bucketproxy.namespace")


class _PendingDirectory:
    """Mutable directory node, only used while a build is in progress"""

    __slots__ = ("path", "name", "files", "subdirectories", "marker")

    def __init__(self, path: str, name: str):
        self.path = path
        self.name = name
        self.files: list[FileEntry] = []
        self.subdirectories: set[str] = set()
        self.marker: ListObject | None = None

    @property
    def depth(self) -> int:
        return self.path.count("/")


def _file_entry(directory: str, name: str, obj: ListObject) -> FileEntry:
    return FileEntry(
        name=name,
        path=directory + name,
        size=obj["size"] or 0,
        last_modified=obj["last_modified"],
        observed_modified=obj["last_modified"],
        identity_tag=obj["etag"],
        storage_class=obj["storage_class"],
    )


def _add_key(directories: dict[str, _PendingDirectory], obj: ListObject) -> None:
    *prefixes, leaf = obj["key"].split("/")

    current = directories[ROOT]
    for part in prefixes:
        path = f"{current.path}{part}/"
        directory = directories.get(path)
        if directory is None:
            directory = _PendingDirectory(path, f"{part}/")
            directories[path] = directory
            current.subdirectories.add(path)
        current = directory

    if leaf:
        current.files.append(_file_entry(current.path, leaf, obj))
    else:
        current.marker = obj


def _finalize(directories: dict[str, _PendingDirectory]) -> dict[str, FileEntry | DirectoryEntry]:
    """Turn pending directories into entries, deepest first so children are complete before their parents"""
    entries: dict[str, FileEntry | DirectoryEntry] = {}
    for pending in sorted(directories.values(), key=lambda d: d.depth, reverse=True):
        children: list[FileEntry | DirectoryEntry] = list(pending.files)
        children += [entries[path] for path in pending.subdirectories]  # type: ignore
        children.sort(key=lambda c: natural_key(c.name))

        marker = pending.marker
        entries[pending.path] = DirectoryEntry(
            name=pending.name,
            path=pending.path,
            size=sum(c.size for c in children),
            count=sum(c.count for c in children),
            last_modified=marker["last_modified"] if marker else None,
            observed_modified=marker["last_modified"] if marker else None,
            storage_class=marker["storage_class"] if marker else None,
            children=tuple(children),
        )
        for f in pending.files:
            entries[f.path] = f
    return entries


async def build_namespace(objects: AsyncIterable[ListObject], bucket: str) -> Namespace:
    """
    Consume a complete listing and return the new Namespace.
    Any error raised by the listing propagates; nothing of the partial listing is kept.
    """
    directories = {ROOT: _PendingDirectory(ROOT, ROOT)}
    async for obj in objects:
        _add_key(directories, obj)
    return Namespace(bucket, _finalize(directories), built_at=datetime.now(UTC))


async def load_namespace(bucket: str | None = None) -> Namespace:
    """List the configured bucket and build a namespace from it"""
    settings = get_settings()
    bucket = bucket or settings.bucket_name
    start = time.monotonic()
    namespace = await build_namespace(scan_s3_objects(bucket, page_size=settings.list_page_size), bucket)
    logger.info(
        f"Listed bucket {bucket}: {namespace.count} objects, {namespace.size} bytes, "
        f"{len(namespace)} entries in {time.monotonic() - start:.2f}s"
    )
    return namespace
