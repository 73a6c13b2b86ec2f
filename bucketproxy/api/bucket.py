"""API Endpoints serving the bucket as a directory tree."""

import logging
import mimetypes
import tempfile
from email.utils import format_datetime
from typing import Annotated, Any, Mapping
from urllib.parse import quote

from botocore.exceptions import ClientError
from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse, StreamingResponse

from bucketproxy.api.caching import json_response_with_etag
from bucketproxy.api.rendering import html_listing, json_listing, json_recursive_listing, wants_json_listing
from bucketproxy.config import get_settings
from bucketproxy.namespace import EntryNotFound
from bucketproxy.namespace.resolve import find_first_file, is_directory, list_directory, list_recursive
from bucketproxy.namespace.snapshot import get_namespace_cache
from bucketproxy.objectstorage.s3bucket import (
    NOT_FOUND_CODES,
    delete_s3_object,
    error_code,
    get_s3_object,
    put_s3_object,
    stat_s3_object,
)

logger = logging.getLogger("bucketproxy.api")

app_bucket = APIRouter(prefix="", tags=["bucket"])

STREAM_CHUNK_SIZE = 64 * 1024
UPLOAD_SPOOL_SIZE = 8 * 1024 * 1024

# Request header -> GetObject parameter
FORWARD_REQUEST_HEADERS = {
    "range": "Range",
    "if-match": "IfMatch",
    "if-none-match": "IfNoneMatch",
    "if-modified-since": "IfModifiedSince",
    "if-unmodified-since": "IfUnmodifiedSince",
}

# Status codes S3 uses for failed conditions, passed on as they are
CONDITIONAL_STATUS = {
    "304": status.HTTP_304_NOT_MODIFIED,
    "NotModified": status.HTTP_304_NOT_MODIFIED,
    "412": status.HTTP_412_PRECONDITION_FAILED,
    "PreconditionFailed": status.HTTP_412_PRECONDITION_FAILED,
    "416": status.HTTP_416_RANGE_NOT_SATISFIABLE,
    "InvalidRange": status.HTTP_416_RANGE_NOT_SATISFIABLE,
}

FORM_CONTENT_TYPES = {"", "application/x-www-form-urlencoded"}


def is_directory_path(path: str) -> bool:
    return path == "" or path.endswith("/")


def guess_content_type(path: str) -> str:
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


def _object_headers(path: str, obj: Mapping[str, Any]) -> dict[str, str]:
    content_type = obj.get("ContentType")
    if not content_type or content_type == "binary/octet-stream":
        content_type = guess_content_type(path)
    headers = {"Content-Type": content_type}
    if (length := obj.get("ContentLength")) is not None:
        headers["Content-Length"] = str(length)
    if last_modified := obj.get("LastModified"):
        headers["Last-Modified"] = format_datetime(last_modified, usegmt=True)
    for header, field in [
        ("ETag", "ETag"),
        ("Accept-Ranges", "AcceptRanges"),
        ("Content-Range", "ContentRange"),
    ]:
        if value := obj.get(field):
            headers[header] = value
    # Objects are passed on as stored, an explicit encoding keeps GZipMiddleware from re-encoding them
    headers["Content-Encoding"] = obj.get("ContentEncoding") or "identity"
    return headers


async def _stream(body):
    try:
        async for chunk in body.iter_chunks(STREAM_CHUNK_SIZE):
            yield chunk
    finally:
        body.close()


async def _missing_object(path: str) -> Response:
    """A key that does not exist might still be a directory"""
    if await is_directory(path + "/"):
        return RedirectResponse(url="/" + quote(path) + "/", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    raise EntryNotFound(path)


async def serve_object(request: Request, path: str) -> Response:
    bucket = get_settings().bucket_name
    conditions = {param: request.headers.get(header) for header, param in FORWARD_REQUEST_HEADERS.items()}
    try:
        if request.method == "HEAD":
            obj = await stat_s3_object(bucket, path, **conditions)
        else:
            obj = await get_s3_object(bucket, path, **conditions)
    except FileNotFoundError:
        return await _missing_object(path)
    except ClientError as e:
        code = error_code(e)
        if code in NOT_FOUND_CODES:
            return await _missing_object(path)
        if code in CONDITIONAL_STATUS:
            return Response(status_code=CONDITIONAL_STATUS[code])
        raise

    headers = _object_headers(path, obj)
    status_code = status.HTTP_206_PARTIAL_CONTENT if "Content-Range" in headers else status.HTTP_200_OK
    if request.method == "HEAD":
        return Response(status_code=status_code, headers=headers)
    return StreamingResponse(_stream(obj["Body"]), status_code=status_code, headers=headers)


async def serve_directory(request: Request, path: str, recursive: bool) -> Response:
    settings = get_settings()

    if wants_json_listing(request):
        if recursive:
            data = json_recursive_listing(await list_recursive(path))
        else:
            data = json_listing((await list_directory(path)).children)
        return json_response_with_etag(request, data)

    if index := await find_first_file(path, settings.directory_index):
        return await serve_object(request, index)

    directory = await list_directory(path)
    header = await find_first_file(path, settings.directory_header)
    footer = await find_first_file(path, settings.directory_footer)
    return await html_listing(request, directory, header=header, footer=footer)


def _flag(value: str | None) -> bool:
    """A query flag is set when present, unless explicitly false (?recursive, ?recursive=1)"""
    return value is not None and value.strip().lower() not in {"0", "false", "no", "off"}


@app_bucket.api_route("/{path:path}", methods=["GET", "HEAD"])
async def get_path(
    request: Request,
    path: str,
    recursive: Annotated[
        str | None,
        Query(description="With a list/json Accept header, list all descendants instead of the direct children"),
    ] = None,
):
    """
    Get a file, or a listing if the path is a directory (empty or ending with /).

    Listings are HTML unless the first media type in the Accept header is list/json.
    """
    if is_directory_path(path):
        return await serve_directory(request, path, recursive=_flag(recursive))
    return await serve_object(request, path)


def HTTPException_if_modify_not_allowed(request: Request):
    header = get_settings().modify_allow_header
    if not header or header not in request.headers:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only GET is supported")


@app_bucket.put("/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
async def put_path(request: Request, path: str):
    """Upload the request body to this key. Requires the configured modify header."""
    HTTPException_if_modify_not_allowed(request)
    if not path:
        raise ValueError("Cannot upload to the bucket root")

    content_type = request.headers.get("content-type", "")
    if content_type.split(";")[0].strip() in FORM_CONTENT_TYPES:
        content_type = guess_content_type(path)

    # Large uploads go to disk instead of being held in memory
    with tempfile.SpooledTemporaryFile(max_size=UPLOAD_SPOOL_SIZE) as upload:
        size = 0
        async for chunk in request.stream():
            upload.write(chunk)
            size += len(chunk)
        upload.seek(0)
        await put_s3_object(get_settings().bucket_name, path, upload, content_type, length=size)
    logger.info(f"Uploaded {path} ({content_type}, {size} bytes)")
    get_namespace_cache().invalidate()


@app_bucket.delete("/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_path(request: Request, path: str):
    """Delete this key. Requires the configured modify header."""
    HTTPException_if_modify_not_allowed(request)
    if not path:
        raise ValueError("Cannot delete the bucket root")

    await delete_s3_object(get_settings().bucket_name, path)
    logger.info(f"Deleted {path}")
    get_namespace_cache().invalidate()
