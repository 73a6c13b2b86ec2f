import asyncio
import base64
import hashlib
from datetime import UTC, datetime, timedelta

import pytest
from botocore.exceptions import ClientError
from httpx import ASGITransport, AsyncClient

from bucketproxy import api
from bucketproxy.connections import CONNECTIONS
from bucketproxy.namespace.checksums import get_checksum_cache
from bucketproxy.namespace.snapshot import get_namespace_cache

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    def __init__(self, data: bytes):
        self.data = data
        self.closed = False

    async def read(self) -> bytes:
        return self.data

    async def iter_chunks(self, chunk_size: int = 1024):
        for i in range(0, len(self.data), chunk_size):
            yield self.data[i : i + chunk_size]

    def close(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.close()


class FakeObject:
    def __init__(self, data: bytes, last_modified: datetime, content_type: str, metadata: dict, checksums: dict):
        self.data = data
        self.last_modified = last_modified
        self.content_type = content_type
        self.metadata = metadata
        self.checksums = checksums
        self.etag = hashlib.md5(data).hexdigest()


class FakePaginator:
    def __init__(self, fake: "FakeS3"):
        self.fake = fake

    def paginate(self, Bucket: str, Prefix: str = "", PaginationConfig: dict | None = None):
        page_size = (PaginationConfig or {}).get("PageSize", 1000)
        return self._pages(Prefix, page_size)

    async def _pages(self, prefix: str, page_size: int):
        self.fake.list_calls += 1
        keys = sorted(k for k in self.fake.objects if k.startswith(prefix))
        for page_number, start in enumerate(range(0, max(len(keys), 1), page_size)):
            if self.fake.fail_listing_at_page is not None and page_number >= self.fake.fail_listing_at_page:
                raise _client_error("InternalError", "ListObjectsV2")
            await asyncio.sleep(0)
            contents = [self.fake.list_item(k) for k in keys[start : start + page_size]]
            page: dict = {"KeyCount": len(contents), "IsTruncated": start + page_size < len(keys)}
            if contents:
                page["Contents"] = contents
            yield page


class FakeS3:
    """In-memory stand-in for the aiobotocore S3 client, implementing the calls bucketproxy makes"""

    def __init__(self):
        self.objects: dict[str, FakeObject] = {}
        self.list_calls = 0
        self.head_calls = 0
        self.active_heads = 0
        self.max_active_heads = 0
        self.head_delay = 0.0
        self.failing_heads: set[str] = set()
        self.fail_listing_at_page: int | None = None

    def add(
        self,
        key: str,
        data: bytes = b"",
        last_modified: datetime = T0,
        content_type: str = "binary/octet-stream",
        metadata: dict | None = None,
        sha256: bool = True,
        **checksums,
    ):
        if sha256 and "ChecksumSHA256" not in checksums:
            checksums["ChecksumSHA256"] = base64.b64encode(hashlib.sha256(data).digest()).decode()
        self.objects[key] = FakeObject(data, last_modified, content_type, metadata or {}, checksums)
        return self.objects[key]

    def touch(self, key: str, seconds: int = 60):
        self.objects[key].last_modified += timedelta(seconds=seconds)

    def list_item(self, key: str) -> dict:
        obj = self.objects[key]
        return dict(Key=key, Size=len(obj.data), LastModified=obj.last_modified, ETag=f'"{obj.etag}"', StorageClass="STANDARD")

    def _get(self, key: str, operation: str) -> FakeObject:
        if key not in self.objects:
            raise _client_error("404" if operation == "HeadObject" else "NoSuchKey", operation)
        return self.objects[key]

    def get_paginator(self, name: str):
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def _check_conditions(self, obj: FakeObject, operation: str, IfMatch: str | None = None, IfNoneMatch: str | None = None):
        etag = f'"{obj.etag}"'
        if IfMatch is not None and IfMatch != etag:
            raise _client_error("412" if operation == "HeadObject" else "PreconditionFailed", operation)
        if IfNoneMatch == etag:
            raise _client_error("304", operation)

    async def head_object(
        self,
        Bucket: str,
        Key: str,
        ChecksumMode: str | None = None,
        IfMatch: str | None = None,
        IfNoneMatch: str | None = None,
        **kargs,
    ):
        self.head_calls += 1
        self.active_heads += 1
        self.max_active_heads = max(self.max_active_heads, self.active_heads)
        try:
            await asyncio.sleep(self.head_delay)
            if Key in self.failing_heads:
                raise _client_error("InternalError", "HeadObject")
            obj = self._get(Key, "HeadObject")
            self._check_conditions(obj, "HeadObject", IfMatch, IfNoneMatch)
            head = dict(
                ContentLength=len(obj.data),
                ContentType=obj.content_type,
                LastModified=obj.last_modified,
                ETag=f'"{obj.etag}"',
                Metadata=obj.metadata,
            )
            if ChecksumMode == "ENABLED":
                head.update(obj.checksums)
            return head
        finally:
            self.active_heads -= 1

    async def get_object(
        self,
        Bucket: str,
        Key: str,
        IfMatch: str | None = None,
        IfNoneMatch: str | None = None,
        Range: str | None = None,
        **kargs,
    ):
        obj = self._get(Key, "GetObject")
        self._check_conditions(obj, "GetObject", IfMatch, IfNoneMatch)
        data = obj.data
        result = dict(ContentType=obj.content_type, LastModified=obj.last_modified, ETag=f'"{obj.etag}"', AcceptRanges="bytes")
        if Range:
            start, end = Range.removeprefix("bytes=").split("-")
            if int(start) >= len(obj.data):
                raise _client_error("InvalidRange", "GetObject")
            data = data[int(start) : int(end) + 1]
            result["ContentRange"] = f"bytes {start}-{int(start) + len(data) - 1}/{len(obj.data)}"
        result.update(ContentLength=len(data), Body=FakeBody(data))
        return result

    async def put_object(self, Bucket: str, Key: str, Body, ContentType: str, ContentLength: int | None = None):
        data = Body if isinstance(Body, bytes) else Body.read()
        assert ContentLength is None or ContentLength == len(data)
        self.add(Key, data, last_modified=datetime.now(UTC), content_type=ContentType)

    async def delete_object(self, Bucket: str, Key: str):
        self.objects.pop(Key, None)


@pytest.fixture()
def s3():
    """Install an empty fake bucket and fresh namespace and checksum caches"""
    fake = FakeS3()
    CONNECTIONS.s3_client = fake  # type: ignore
    get_namespace_cache.cache_clear()
    get_checksum_cache.cache_clear()
    yield fake
    CONNECTIONS.s3_client = None
    get_namespace_cache.cache_clear()
    get_checksum_cache.cache_clear()


@pytest.fixture()
def bucket(s3):
    """A small bucket with nested directories, a directory marker and a hidden file"""
    s3.add("README.md", b"# readme\n", content_type="text/markdown")
    s3.add("docs/", b"", sha256=False)
    s3.add("docs/guide.txt", b"a guide")
    s3.add("docs/file2.txt", b"two")
    s3.add("docs/file10.txt", b"ten!!")
    s3.add("docs/File1.txt", b"1")
    s3.add("docs/api/index.json", b'{"a": 1}')
    s3.add("docs/.hidden", b"secret")
    s3.add("images/logo.png", b"\x89PNG....", sha256=False, ChecksumCRC32=base64.b64encode(b"\x01\x02\x03\x04").decode())
    return s3


@pytest.fixture()
async def client():
    async with AsyncClient(transport=ASGITransport(app=api.app), base_url="http://test", follow_redirects=False) as client:
        yield client
