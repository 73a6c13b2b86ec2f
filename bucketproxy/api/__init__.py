"""bucketproxy API: browse an object storage bucket as a directory tree."""

import logging
from contextlib import asynccontextmanager

from botocore.exceptions import ClientError
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from bucketproxy.api.bucket import app_bucket
from bucketproxy.api.info import app_info
from bucketproxy.connections import bucketproxy_connections
from bucketproxy.namespace import EntryNotFound, NamespaceUnavailable
from bucketproxy.namespace.snapshot import get_namespace_cache

logger = logging.getLogger("bucketproxy.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Connecting to object storage...")
    async with bucketproxy_connections():
        # Warm the cache so the first request does not wait for the listing
        try:
            await get_namespace_cache().get_current()
        except NamespaceUnavailable:
            logger.warning("Starting without a bucket listing, will retry on the first request")
        yield


app = FastAPI(
    title="bucketproxy",
    description=__doc__ if __doc__ else "",
    openapi_tags=[
        dict(name="informational", description="Health and configuration of this proxy"),
        dict(name="bucket", description="Files and directory listings of the bucket"),
    ],
    lifespan=lifespan,
)
# app_info must come first: app_bucket matches every path
app.include_router(app_info)
app.include_router(app_bucket)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.exception_handler(EntryNotFound)
async def not_found_exception_handler(request: Request, exc: EntryNotFound):
    return JSONResponse(status_code=404, content={"message": str(exc)})


@app.exception_handler(NamespaceUnavailable)
async def unavailable_exception_handler(request: Request, exc: NamespaceUnavailable):
    return JSONResponse(status_code=503, content={"message": str(exc)})


@app.exception_handler(ClientError)
async def client_error_exception_handler(request: Request, exc: ClientError):
    logger.warning(f"Object storage error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"message": str(exc)})


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=400,
        content={"message": str(exc)},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc) -> JSONResponse:
    return JSONResponse(
        status_code=422, content={"message": "There was an issue with the data you sent.", "fields_invalid": exc.errors()}
    )
