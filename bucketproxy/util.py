import re
from datetime import UTC, datetime
from typing import Tuple

_NUMBER_RE = re.compile(r"(\d+)")

METADATA_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def natural_key(name: str) -> Tuple:
    """
    Sort key for case-insensitive, numeric-aware ordering: "File1" < "file2" < "file10".
    Digit runs compare by value and sort before text; the name itself breaks remaining ties.
    """
    parts = []
    for i, chunk in enumerate(_NUMBER_RE.split(name)):
        if not chunk:
            continue
        if i % 2:
            parts.append((0, int(chunk), chunk))
        else:
            parts.append((1, 0, chunk.casefold()))
    return tuple(parts), name


def humanize_size(size: int) -> str:
    """Format a byte count like 512, 1.50k or 2.00M (steps of 1024 once the value reaches 1000)"""
    value = float(size)
    suffix = ""
    for prefix in ["k", "M", "G", "T", "P"]:
        if value >= 1000:
            value /= 1024
            suffix = prefix
        else:
            break
    if not suffix:
        return str(size)
    return f"{value:0.2f}{suffix}"


def format_time(t: datetime | None) -> str:
    if t is None:
        return ""
    if t.tzinfo is not None:
        t = t.astimezone(UTC)
    return t.strftime(METADATA_DATE_FORMAT)


def parse_metadata_date(value: str | None) -> datetime | None:
    """Parse an explicit 'YYYY-MM-DD HH:MM:SS' date from object metadata (interpreted as UTC)"""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), METADATA_DATE_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None


def join_path(directory: str, name: str) -> str:
    """Join a directory prefix and a relative name; a name starting with / is bucket-absolute"""
    if name.startswith("/"):
        return name.lstrip("/")
    if directory and not directory.endswith("/"):
        directory += "/"
    return directory + name
