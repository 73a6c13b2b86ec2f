"""
Checksums for listed objects.

A bucket listing does not include checksums, so they are fetched with one HEAD request per
object when a directory is listed, and remembered in a ChecksumCache that outlives the
namespace snapshots. A remembered checksum is used as long as the object's identity tag
(ETag) and LastModified have not changed.
"""

import asyncio
import base64
import binascii
import functools
import logging
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping

from bucketproxy.config import get_settings
from bucketproxy.models import ChecksumRecord, DirectoryEntry, FileEntry
from bucketproxy.objectstorage.s3bucket import stat_s3_object, unquote_etag
from bucketproxy.util import parse_metadata_date

logger = logging.getLogger("bucketproxy.checksums")

# Preferred algorithm first: (label, HeadObject field)
CHECKSUM_PREFERENCE = [
    ("SHA256", "ChecksumSHA256"),
    ("SHA1", "ChecksumSHA1"),
    ("CRC32C", "ChecksumCRC32C"),
    ("CRC32", "ChecksumCRC32"),
]
ETAG_LABEL = "AWS-MD"

HeadFetcher = Callable[[str], Awaitable[Mapping[str, Any]]]
CacheKey = tuple[str, str | None]


class ChecksumCache:
    """
    Thread safe map of (path, identity tag) to a previously fetched checksum.
    When max_entries is set, the least recently used records are dropped first.
    """

    def __init__(self, max_entries: int = 0):
        self.max_entries = max_entries
        self._records: OrderedDict[CacheKey, ChecksumRecord] = OrderedDict()
        self._lock = threading.Lock()

    def lookup(self, path: str, identity_tag: str | None, observed_modified: datetime | None) -> ChecksumRecord | None:
        """Return the record for this object, or None if unknown or recorded for another modification time"""
        key = (path, identity_tag)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if record.observed_modified != observed_modified:
                return None
            self._records.move_to_end(key)
            return record

    def store(self, path: str, identity_tag: str | None, record: ChecksumRecord) -> None:
        key = (path, identity_tag)
        with self._lock:
            self._records[key] = record
            self._records.move_to_end(key)
            if self.max_entries:
                while len(self._records) > self.max_entries:
                    self._records.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def _hexdigest(value: str) -> str:
    """S3 reports checksums base64 encoded; composite checksums carry a '-<parts>' suffix"""
    digest, sep, parts = value.partition("-")
    try:
        hexed = base64.b64decode(digest, validate=True).hex()
    except (binascii.Error, ValueError):
        return value
    return hexed + sep + parts


def format_checksum(head: Mapping[str, Any]) -> str | None:
    """
    Pick the strongest checksum in a HeadObject response, formatted as {ALGO}hexdigest.
    Without any checksum, fall back to the ETag as {AWS-MD}etag.
    """
    for label, field in CHECKSUM_PREFERENCE:
        if value := head.get(field):
            return f"{{{label}}}{_hexdigest(value)}"
    if etag := unquote_etag(head.get("ETag")):
        return f"{{{ETAG_LABEL}}}{etag}"
    return None


def record_from_head(head: Mapping[str, Any], date_metadata_key: str = "date") -> ChecksumRecord:
    observed = head.get("LastModified")
    metadata = head.get("Metadata") or {}
    explicit = parse_metadata_date(metadata.get(date_metadata_key.lower()))
    return ChecksumRecord(
        checksum=format_checksum(head),
        display_time=explicit or observed,
        observed_modified=observed,
    )


def _apply(entry: FileEntry, record: ChecksumRecord) -> None:
    entry.checksum = record.checksum
    if record.display_time is not None:
        entry.last_modified = record.display_time


async def enrich(
    entries: Iterable[FileEntry | DirectoryEntry],
    cache: ChecksumCache,
    fetch_head: HeadFetcher,
    concurrency: int = 8,
    timeout: float | None = None,
    date_metadata_key: str = "date",
) -> int:
    """
    Fill in the checksum of every file entry that does not have one yet.
    Cached checksums are used when still valid; the rest are fetched with at most
    `concurrency` HEAD requests in flight. A failing request leaves that entry without a checksum.
    Returns the number of HEAD requests made.
    """
    todo = [e for e in entries if isinstance(e, FileEntry) and not e.checksum]
    if not todo:
        return 0
    semaphore = asyncio.Semaphore(concurrency)
    fetched = 0

    async def resolve_one(entry: FileEntry) -> None:
        nonlocal fetched
        if record := cache.lookup(entry.path, entry.identity_tag, entry.observed_modified):
            _apply(entry, record)
            return
        async with semaphore:
            fetched += 1
            try:
                head = await asyncio.wait_for(fetch_head(entry.path), timeout)
            except Exception as e:
                logger.debug(f"Could not get checksum for {entry.path}: {e!r}")
                return
        record = record_from_head(head, date_metadata_key)
        cache.store(entry.path, unquote_etag(head.get("ETag")) or entry.identity_tag, record)
        _apply(entry, record)

    await asyncio.gather(*(resolve_one(entry) for entry in todo))
    logger.debug(f"Enriched {len(todo)} entries with {fetched} HEAD requests")
    return fetched


@functools.cache
def get_checksum_cache() -> ChecksumCache:
    return ChecksumCache(max_entries=get_settings().checksum_cache_size)


async def enrich_entries(entries: Iterable[FileEntry | DirectoryEntry]) -> int:
    """Enrich entries of the configured bucket, using the shared checksum cache"""
    settings = get_settings()
    return await enrich(
        entries,
        cache=get_checksum_cache(),
        fetch_head=functools.partial(stat_s3_object, settings.bucket_name),
        concurrency=settings.checksum_concurrency,
        timeout=settings.checksum_timeout,
        date_metadata_key=settings.date_metadata_key,
    )
