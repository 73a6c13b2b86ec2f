"""
Path lookups against the current namespace snapshot.

Paths are bucket keys without a leading slash; directories end with "/" and the root is "".
All lookups make sure the snapshot is fresh first, and are then a single dictionary lookup.
"""

from typing import Iterable, Iterator, Tuple

from bucketproxy.models import DirectoryEntry, FileEntry
from bucketproxy.namespace import EntryNotFound, Namespace
from bucketproxy.namespace.checksums import enrich_entries
from bucketproxy.namespace.snapshot import get_namespace_cache
from bucketproxy.util import join_path


async def current_namespace() -> Namespace:
    return await get_namespace_cache().get_current()


async def is_directory(path: str) -> bool:
    return (await current_namespace()).is_directory(path)


async def is_file(path: str) -> bool:
    return (await current_namespace()).is_file(path)


async def resolve(path: str) -> FileEntry | DirectoryEntry:
    entry = (await current_namespace()).get(path)
    if entry is None:
        raise EntryNotFound(path)
    return entry


async def list_directory(path: str, enrich: bool = True) -> DirectoryEntry:
    """Return the directory at path, with checksums filled in for its immediate children"""
    directory = (await current_namespace()).directory(path)
    if enrich:
        await enrich_entries(directory.children)
    return directory


def walk(namespace: Namespace, path: str) -> Iterator[DirectoryEntry]:
    """Yield the directory at path and all directories below it, parents before their children"""
    stack = [namespace.directory(path)]
    while stack:
        directory = stack.pop()
        yield directory
        stack.extend(reversed(directory.subdirectories()))


def expand(directory: DirectoryEntry, prefix: str = "") -> Iterator[Tuple[str, FileEntry | DirectoryEntry]]:
    """
    Every entry below directory in traversal order, each directory immediately followed by
    its own contents. Names are relative to the starting directory.
    """
    for child in directory.children:
        name = prefix + child.name
        yield name, child
        if isinstance(child, DirectoryEntry):
            yield from expand(child, name)


async def list_recursive(path: str, enrich: bool = True) -> list[Tuple[str, FileEntry | DirectoryEntry]]:
    namespace = await current_namespace()
    if enrich:
        # One bounded batch per directory
        for directory in walk(namespace, path):
            await enrich_entries(directory.children)
    return list(expand(namespace.directory(path)))


async def find_first_file(directory: str, candidates: Iterable[str]) -> str | None:
    """
    Return the path of the first candidate that exists as a file. Candidates are relative to
    directory, or to the bucket root when they start with /.
    """
    namespace = await current_namespace()
    for candidate in candidates:
        if not candidate:
            continue
        path = join_path(directory, candidate)
        if namespace.is_file(path):
            return path
    return None
