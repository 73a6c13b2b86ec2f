"""Turn resolved directories into HTML or JSON listings."""

import logging
from pathlib import Path
from typing import Iterable, Tuple

from botocore.exceptions import ClientError
from fastapi import Request
from fastapi.templating import Jinja2Templates

from bucketproxy.config import get_settings
from bucketproxy.models import DirectoryEntry, EntryOut, FileEntry
from bucketproxy.objectstorage.s3bucket import read_s3_object
from bucketproxy.util import format_time, humanize_size

logger = logging.getLogger("bucketproxy.api")

templates = Jinja2Templates(directory=Path(__file__).parent.parent / "templates")

LISTING_MEDIA_TYPE = "list/json"


def wants_json_listing(request: Request) -> bool:
    """A listing is requested as JSON when the first media type in the Accept header is list/json"""
    accept = request.headers.get("accept", "")
    first = accept.split(",", 1)[0].split(";", 1)[0].strip().lower()
    return first == LISTING_MEDIA_TYPE


def json_listing(entries: Iterable[FileEntry | DirectoryEntry]) -> list[dict]:
    return [EntryOut.from_entry(e).model_dump(by_alias=True, exclude_none=True, mode="json") for e in entries]


def json_recursive_listing(entries: Iterable[Tuple[str, FileEntry | DirectoryEntry]]) -> list[dict]:
    return [EntryOut.from_entry(e, name=name).model_dump(by_alias=True, exclude_none=True, mode="json") for name, e in entries]


def listing_rows(directory: DirectoryEntry) -> list[dict]:
    rows = []
    for i, entry in enumerate(directory.children):
        if entry.name.startswith("."):
            continue
        rows.append(
            dict(
                num=i,
                name=entry.name,
                time=format_time(entry.last_modified),
                size=entry.size,
                human_size=humanize_size(entry.size),
                checksum=(entry.checksum or "") if isinstance(entry, FileEntry) else "",
            )
        )
    return rows


async def _read_fragment(key: str | None) -> str:
    if not key:
        return ""
    try:
        return (await read_s3_object(get_settings().bucket_name, key)).decode("utf-8", errors="replace")
    except ClientError as e:
        logger.debug(f"Error grabbing listing fragment {key}: {e}")
        return ""


def _is_html_document(key: str | None) -> bool:
    return bool(key) and key.lower().endswith((".htm", ".html"))  # type: ignore


async def html_listing(request: Request, directory: DirectoryEntry, header: str | None = None, footer: str | None = None):
    """
    Render the listing as an HTML table. A header or footer object ending in .htm/.html is a
    complete document part and replaces the default page opening or closing.
    """
    context = dict(
        directory=directory.path,
        rows=listing_rows(directory),
        has_parent=bool(directory.path),
        header=await _read_fragment(header),
        footer=await _read_fragment(footer),
        own_head=_is_html_document(header),
        own_tail=_is_html_document(footer),
    )
    return templates.TemplateResponse(request, "listing.html", context, media_type="text/html;charset=UTF-8")
