"""
bucketproxy Configuration

We read configuration from 2 sources, in order of precedence (higher is more priority)
- Environment variables
- A .env file, either in the current working directory or in a location specified
  by the BUCKETPROXY_ENV_FILE environment variable
"""

import functools
from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ENV_PREFIX = "bucketproxy_"

FileList = Annotated[list[str], NoDecode]


class Settings(BaseSettings):
    env_file: Annotated[
        Path,
        Field(
            description="Location of a .env file (if used) relative to working directory",
        ),
    ] = Path(".env")

    bucket_name: Annotated[str, Field(description="Name of the bucket to serve")] = "my-bucket"

    s3_host: Annotated[
        str | None,
        Field(description="Endpoint of the S3 compatible store. Default: the AWS endpoint for s3_region"),
    ] = None
    s3_region: Annotated[str | None, Field(description="Region of the bucket")] = None
    s3_access_key: Annotated[
        str | None,
        Field(description="S3 access key. If not given, the default AWS credential chain is used"),
    ] = None
    s3_secret_key: Annotated[str | None, Field()] = None
    s3_ca_cert: Annotated[
        Path | None,
        Field(description="CA bundle used to verify the S3 endpoint"),
    ] = None

    namespace_ttl: Annotated[
        float,
        Field(description="Seconds a bucket listing is served before it is rebuilt", gt=0),
    ] = 15.0
    rebuild_retry_seconds: Annotated[
        float,
        Field(description="Seconds to wait after a failed listing before trying again", ge=0),
    ] = 1.0
    list_page_size: Annotated[int, Field(description="Keys per list_objects_v2 page", gt=0, le=1000)] = 1000

    checksum_concurrency: Annotated[
        int,
        Field(description="Maximum simultaneous HEAD requests per directory listing", gt=0),
    ] = 8
    checksum_timeout: Annotated[
        float,
        Field(description="Timeout in seconds for a single HEAD request when fetching checksums", gt=0),
    ] = 10.0
    checksum_cache_size: Annotated[
        int,
        Field(description="Maximum number of remembered checksums (0 for no limit)", ge=0),
    ] = 100_000
    date_metadata_key: Annotated[
        str,
        Field(description="User metadata key holding an explicit 'YYYY-MM-DD HH:MM:SS' modification date"),
    ] = "date"

    directory_index: Annotated[
        FileList,
        Field(description="Whitespace separated file names served instead of a listing, e.g. 'index.html'"),
    ] = []
    directory_header: Annotated[
        FileList,
        Field(description="Whitespace separated candidates for a listing header; a leading / means bucket root"),
    ] = []
    directory_footer: Annotated[
        FileList,
        Field(description="Whitespace separated candidates for a listing footer; a leading / means bucket root"),
    ] = []

    modify_allow_header: Annotated[
        str | None,
        Field(description="Request header that must be present to allow PUT and DELETE. Unset disables writes"),
    ] = None

    debug: Annotated[bool, Field(description="Enable debug logging")] = False

    @field_validator("directory_index", "directory_header", "directory_footer", mode="before")
    @classmethod
    def split_whitespace(cls, value):
        if isinstance(value, str):
            return value.split()
        return value

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX)


@functools.lru_cache()
def get_settings() -> Settings:
    temp = Settings()
    load_dotenv(temp.env_file, override=False)
    return Settings()


def validate_settings():
    settings = get_settings()
    if settings.s3_access_key is not None and settings.s3_secret_key is None:
        return "s3_access_key is set but s3_secret_key is not; falling back to the default credential chain"
    if settings.modify_allow_header:
        return (
            f"Writes are enabled for every request carrying the {settings.modify_allow_header!r} header. "
            "Make sure a proxy in front of this service strips it from untrusted requests."
        )


if __name__ == "__main__":
    # Echo the settings
    for k, v in get_settings().model_dump().items():
        print(f"{ENV_PREFIX.upper()}{k.upper()}={v}")
