import asyncio
import base64
import hashlib
from datetime import UTC, datetime, timedelta

import pytest

from bucketproxy.models import ChecksumRecord, FileEntry
from bucketproxy.namespace.checksums import ChecksumCache, enrich, enrich_entries, format_checksum, record_from_head
from bucketproxy.namespace.resolve import list_directory
from tests.conftest import T0
from tests.tools import namespace_of, proxy_settings


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def file_entry(path: str, etag: str = "e1", modified: datetime = T0) -> FileEntry:
    return FileEntry(
        name=path.rsplit("/", 1)[-1],
        path=path,
        size=1,
        last_modified=modified,
        observed_modified=modified,
        identity_tag=etag,
    )


class HeadServer:
    """Answers HEAD requests for a dict of path -> (etag, LastModified, extra fields)"""

    def __init__(self, delay: float = 0):
        self.objects: dict[str, dict] = {}
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self.delay = delay
        self.failing: set[str] = set()

    def add(self, path: str, etag: str = "e1", modified: datetime = T0, **fields):
        self.objects[path] = dict(ETag=f'"{etag}"', LastModified=modified, **fields)

    async def __call__(self, path: str) -> dict:
        self.calls.append(path)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if path in self.failing:
                raise ConnectionError(f"HEAD {path} failed")
            return self.objects[path]
        finally:
            self.active -= 1


def test_format_checksum_preference():
    sha256 = hashlib.sha256(b"x").digest()
    sha1 = hashlib.sha1(b"x").digest()
    crc = b"\x01\x02\x03\x04"
    assert format_checksum(dict(ChecksumSHA256=b64(sha256), ChecksumSHA1=b64(sha1))) == "{SHA256}" + sha256.hex()
    assert format_checksum(dict(ChecksumSHA1=b64(sha1), ChecksumCRC32=b64(crc))) == "{SHA1}" + sha1.hex()
    assert format_checksum(dict(ChecksumCRC32C=b64(crc), ChecksumCRC32=b64(b"\x00\x00\x00\x00"))) == "{CRC32C}01020304"
    assert format_checksum(dict(ChecksumCRC32=b64(crc), ETag='"abc"')) == "{CRC32}01020304"
    assert format_checksum(dict(ETag='"abc-3"')) == "{AWS-MD}abc-3"
    assert format_checksum({}) is None


def test_format_composite_checksum():
    assert format_checksum(dict(ChecksumSHA256=b64(b"\xab\xcd") + "-12")) == "{SHA256}abcd-12"


def test_metadata_date_overrides_display_time():
    head = dict(ETag='"e"', LastModified=T0, Metadata={"date": "2020-01-02 03:04:05"})
    record = record_from_head(head)
    assert record.display_time == datetime(2020, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert record.observed_modified == T0

    head["Metadata"] = {"date": "not a date"}
    assert record_from_head(head).display_time == T0
    head["Metadata"] = {"created": "2020-01-02 03:04:05"}
    assert record_from_head(head, date_metadata_key="Created").display_time.year == 2020


def test_cache_lookup():
    cache = ChecksumCache()
    record = ChecksumRecord(checksum="{SHA256}00", display_time=T0, observed_modified=T0)
    cache.store("a", "e1", record)
    assert cache.lookup("a", "e1", T0) is record
    assert cache.lookup("a", "e2", T0) is None
    assert cache.lookup("a", "e1", T0 + timedelta(seconds=1)) is None
    assert cache.lookup("b", "e1", T0) is None
    cache.clear()
    assert len(cache) == 0


def test_cache_evicts_least_recently_used():
    cache = ChecksumCache(max_entries=2)
    record = ChecksumRecord(checksum="x", display_time=None, observed_modified=T0)
    cache.store("a", "e", record)
    cache.store("b", "e", record)
    cache.lookup("a", "e", T0)
    cache.store("c", "e", record)
    assert len(cache) == 2
    assert cache.lookup("b", "e", T0) is None
    assert cache.lookup("a", "e", T0) is record
    assert cache.lookup("c", "e", T0) is record


@pytest.mark.anyio
async def test_enrich_uses_cache():
    server = HeadServer()
    server.add("a", ChecksumSHA1=b64(b"\x01"))
    server.add("b")
    cache = ChecksumCache()

    entries = [file_entry("a"), file_entry("b")]
    assert await enrich(entries, cache, server) == 2
    assert [e.checksum for e in entries] == ["{SHA1}01", "{AWS-MD}e1"]

    # a new snapshot has fresh entries, but the objects did not change
    entries = [file_entry("a"), file_entry("b")]
    assert await enrich(entries, cache, server) == 0
    assert [e.checksum for e in entries] == ["{SHA1}01", "{AWS-MD}e1"]
    assert len(server.calls) == 2

    # entries that already have a checksum are not looked at
    assert await enrich(entries, ChecksumCache(), server) == 0


@pytest.mark.anyio
async def test_enrich_refetches_changed_objects():
    server = HeadServer()
    server.add("a", etag="e1", ChecksumSHA1=b64(b"\x01"))
    server.add("b", etag="e1", ChecksumSHA1=b64(b"\x02"))
    cache = ChecksumCache()
    await enrich([file_entry("a"), file_entry("b")], cache, server)

    later = T0 + timedelta(minutes=1)
    server.add("a", etag="e2", ChecksumSHA1=b64(b"\x03"))
    server.add("b", etag="e1", modified=later, ChecksumSHA1=b64(b"\x04"))
    entries = [file_entry("a", etag="e2"), file_entry("b", modified=later)]
    assert await enrich(entries, cache, server) == 2
    assert [e.checksum for e in entries] == ["{SHA1}03", "{SHA1}04"]


@pytest.mark.anyio
async def test_enrich_bounded_concurrency():
    server = HeadServer(delay=0.005)
    entries = []
    for i in range(100):
        server.add(f"f{i}")
        entries.append(file_entry(f"f{i}"))
    assert await enrich(entries, ChecksumCache(), server, concurrency=8) == 100
    assert server.max_active <= 8
    assert all(e.checksum == "{AWS-MD}e1" for e in entries)


@pytest.mark.anyio
async def test_enrich_failures_leave_checksum_empty():
    server = HeadServer()
    server.add("ok")
    server.add("broken")
    server.failing.add("broken")
    cache = ChecksumCache()
    entries = [file_entry("ok"), file_entry("broken")]
    assert await enrich(entries, cache, server) == 2
    assert entries[0].checksum == "{AWS-MD}e1"
    assert entries[1].checksum is None
    assert len(cache) == 1

    # a failure is not remembered, the next listing tries again
    server.failing.clear()
    entries = [file_entry("broken")]
    await enrich(entries, cache, server)
    assert entries[0].checksum == "{AWS-MD}e1"


@pytest.mark.anyio
async def test_enrich_timeout():
    server = HeadServer(delay=1)
    server.add("slow")
    entries = [file_entry("slow")]
    await enrich(entries, ChecksumCache(), server, timeout=0.01)
    assert entries[0].checksum is None


@pytest.mark.anyio
async def test_enrich_sets_display_time():
    server = HeadServer()
    server.add("a", Metadata={"date": "2021-06-07 08:09:10"})
    entries = [file_entry("a")]
    await enrich(entries, ChecksumCache(), server)
    assert entries[0].last_modified == datetime(2021, 6, 7, 8, 9, 10, tzinfo=UTC)
    assert entries[0].observed_modified == T0


@pytest.mark.anyio
async def test_enrich_skips_directories():
    ns = await namespace_of(["d/a", "d/sub/b"])
    server = HeadServer()
    server.add("d/a")
    assert await enrich(ns.directory("d/").children, ChecksumCache(), server) == 1
    assert server.calls == ["d/a"]


@pytest.mark.anyio
async def test_enrich_entries_from_bucket(bucket):
    docs = await list_directory("docs/", enrich=False)
    assert all(f.checksum is None for f in docs.files())
    assert await enrich_entries(docs.children) == len(docs.files())
    guide = next(f for f in docs.files() if f.name == "guide.txt")
    assert guide.checksum == "{SHA256}" + hashlib.sha256(b"a guide").hexdigest()
    assert bucket.head_calls == len(docs.files())

    images = await list_directory("images/")
    assert images.files()[0].checksum == "{CRC32}01020304"


@pytest.mark.anyio
async def test_enrich_entries_concurrency_setting(s3):
    for i in range(40):
        s3.add(f"many/{i}", b"x")
    s3.head_delay = 0.002
    with proxy_settings(checksum_concurrency=3):
        await list_directory("many/")
    assert s3.head_calls == 40
    assert s3.max_active_heads <= 3
