"""
Interact with S3-compatible object storage (e.g., AWS S3, MinIO, SeaweedFS, Cloudflare R2).
"""

from datetime import datetime
from typing import IO, Any, AsyncIterable

from botocore.exceptions import ClientError
from types_aiobotocore_s3.type_defs import GetObjectOutputTypeDef, HeadObjectOutputTypeDef
from typing_extensions import TypedDict

from bucketproxy.connections import s3

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class ListObject(TypedDict):
    key: str
    size: int
    last_modified: datetime | None
    etag: str | None
    storage_class: str | None


def unquote_etag(etag: str | None) -> str | None:
    return etag.strip('"') if etag else None


def error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


async def scan_s3_objects(bucket: str, prefix: str = "", page_size=1000) -> AsyncIterable[ListObject]:
    """
    Page through every key in the bucket. Errors on any page are raised to the caller,
    there is no partial result.
    """
    paginator = s3().get_paginator("list_objects_v2")

    async for page in paginator.paginate(Bucket=bucket, Prefix=prefix, PaginationConfig={"PageSize": page_size}):
        for content in page.get("Contents", []):
            if "Key" in content:
                yield ListObject(
                    key=content["Key"],
                    size=content.get("Size", 0),
                    last_modified=content.get("LastModified"),
                    etag=unquote_etag(content.get("ETag")),
                    storage_class=content.get("StorageClass"),
                )


async def stat_s3_object(bucket: str, key: str, **conditions: Any) -> HeadObjectOutputTypeDef:
    """
    HEAD an object, asking the store to include any stored checksums.
    Conditions are HeadObject parameters as for get_s3_object; failed conditions raise ClientError.
    """
    params = {k: v for k, v in conditions.items() if v is not None}
    try:
        return await s3().head_object(Bucket=bucket, Key=key, ChecksumMode="ENABLED", **params)
    except ClientError as e:
        if error_code(e) in NOT_FOUND_CODES:
            raise FileNotFoundError(f"Object {key} not found in bucket")
        else:
            raise


async def get_s3_object(bucket: str, key: str, **conditions: Any) -> GetObjectOutputTypeDef:
    """
    GET an object. Conditions are passed as GetObject parameters (Range, IfMatch, IfNoneMatch,
    IfModifiedSince, IfUnmodifiedSince); None values are dropped.
    """
    params = {k: v for k, v in conditions.items() if v is not None}
    return await s3().get_object(Bucket=bucket, Key=key, **params)


async def read_s3_object(bucket: str, key: str) -> bytes:
    res = await get_s3_object(bucket, key)
    async with res["Body"] as stream:
        return await stream.read()


async def put_s3_object(bucket: str, key: str, data: bytes | IO[bytes], content_type: str, length: int | None = None):
    """Upload data, either bytes or a readable file positioned at the start of the content"""
    params = {} if length is None else {"ContentLength": length}
    await s3().put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type, **params)


async def delete_s3_object(bucket: str, key: str):
    await s3().delete_object(Bucket=bucket, Key=key)
