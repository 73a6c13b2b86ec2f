"""API Endpoints for server information and health."""

from importlib.metadata import version

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field

from bucketproxy.config import get_settings, validate_settings
from bucketproxy.models import HealthResponse
from bucketproxy.namespace.checksums import get_checksum_cache
from bucketproxy.namespace.snapshot import get_namespace_cache

# Routes live under /-/ so they are matched before the catch-all bucket routes
app_info = APIRouter(prefix="/-", tags=["informational"])


class ConfigResponse(BaseModel):
    bucket: str = Field(..., description="The bucket served by this proxy.")
    namespace_ttl: float = Field(..., description="Seconds a listing is cached before it is rebuilt.")
    writes_enabled: bool = Field(..., description="Whether PUT and DELETE are possible (with the modify header).")
    warnings: list[str] = Field(..., description="A list of configuration warnings.")
    api_version: str = Field(..., description="The version of bucketproxy.")


@app_info.get("/health")
async def health(response: Response) -> HealthResponse:
    """
    State of the namespace cache. Responds with 503 if no listing of the bucket is available.
    This endpoint does not trigger a rebuild.
    """
    cache = get_namespace_cache()
    namespace = cache.current
    if namespace is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        bucket=get_settings().bucket_name,
        ready=namespace is not None,
        built_at=namespace.built_at if namespace else None,
        age_seconds=cache.age(),
        entries=len(namespace) if namespace else None,
        size=namespace.size if namespace else None,
        count=namespace.count if namespace else None,
        last_error=repr(cache.last_error) if cache.last_error else None,
        checksums_cached=len(get_checksum_cache()),
    )


@app_info.get("/config")
def get_config() -> ConfigResponse:
    settings = get_settings()
    return ConfigResponse(
        bucket=settings.bucket_name,
        namespace_ttl=settings.namespace_ttl,
        writes_enabled=bool(settings.modify_allow_header),
        warnings=[w for w in [validate_settings()] if w],
        api_version=version("bucketproxy"),
    )
