import hashlib
import json
import logging
from typing import Any

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

logger = logging.getLogger("bucketproxy.api")


def etag_for(data: Any) -> str | None:
    try:
        content_str = json.dumps(jsonable_encoder(data), sort_keys=True, ensure_ascii=False).encode("utf-8")
    except TypeError as e:
        logger.warning(f"Data could not be serialized for ETag hashing: {e}")
        return None
    return f'"{hashlib.sha1(content_str).hexdigest()}"'


def json_response_with_etag(request: Request, data: Any) -> Response:
    """
    Return data as JSON with an ETag based on a hash of the content.
    If the client sends a matching If-None-Match header, a 304 Not Modified response is returned instead.
    Listings change at most once per namespace rebuild, so clients polling a directory mostly get 304s.
    """
    etag = etag_for(data)
    if etag is None:
        return JSONResponse(jsonable_encoder(data))

    if_none_match = request.headers.get("if-none-match")
    if if_none_match == etag:
        return Response(status_code=304, headers={"ETag": etag})

    return JSONResponse(jsonable_encoder(data), headers={"ETag": etag})
