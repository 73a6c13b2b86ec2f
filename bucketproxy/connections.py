import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncGenerator

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from types_aiobotocore_s3.client import S3Client

from bucketproxy.config import get_settings

logger = logging.getLogger("bucketproxy.connections")


class ProxyConnections:
    s3_client: S3Client | None
    s3_context_stack: AsyncExitStack | None

    def __init__(
        self,
        s3_client: S3Client | None = None,
        s3_context_stack: AsyncExitStack | None = None,
    ):
        self.s3_client = s3_client
        self.s3_context_stack = s3_context_stack


CONNECTIONS = ProxyConnections()


@asynccontextmanager
async def bucketproxy_connections() -> AsyncGenerator[None, None]:
    """
    The main context manager to start and stop the connection to the object store.
    Always use this once (and only once):
        - For running the server: in the FastAPI lifespan
        - For CLI commands: within the CLI command
    Tests install a fake client on CONNECTIONS instead.
    """
    try:
        await _start_s3()
        yield
    finally:
        await _close_s3()


def s3() -> S3Client:
    """
    Use this function to access the s3 client.
    """
    if CONNECTIONS.s3_client is None:
        raise ConnectionError("S3 client not started")
    return CONNECTIONS.s3_client


async def _start_s3() -> None:
    settings = get_settings()
    if settings.s3_access_key is not None and settings.s3_secret_key is None:
        raise ValueError("s3_access_key given but s3_secret_key not specified")

    logger.debug(f"Connecting with S3 at {settings.s3_host or 'AWS'} for bucket {settings.bucket_name}")

    session = get_session()
    client = session.create_client(
        service_name="s3",
        region_name=settings.s3_region,
        endpoint_url=settings.s3_host,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        verify=str(settings.s3_ca_cert) if settings.s3_ca_cert else None,
        config=AioConfig(signature_version="s3v4"),
    )

    CONNECTIONS.s3_context_stack = AsyncExitStack()
    CONNECTIONS.s3_client = await CONNECTIONS.s3_context_stack.enter_async_context(client)


async def _close_s3():
    if CONNECTIONS.s3_context_stack is not None:
        await CONNECTIONS.s3_context_stack.aclose()
        CONNECTIONS.s3_client = None
        CONNECTIONS.s3_context_stack = None
