import importlib.util
import logging

import httpx

from agriguru.config import settings

log = logging.getLogger("agriguru.http")

USER_AGENT = "AgriGuru/1.0 (+https://agriguru.example.com)"


def build_http_client(read_timeout: float | None = None) -> httpx.AsyncClient:
    """Build the shared async HTTP client owned by the app container."""
    http2_available = importlib.util.find_spec("h2") is not None
    if not http2_available:
        log.info("⚠️  HTTP/2 not available. Install with: pip install httpx[http2]")

    # connect: establishing connection, read: the price API can be slow,
    # pool: waiting for a free connection during historical batches
    timeout_config = httpx.Timeout(
        connect=10.0,
        read=read_timeout or settings.EXTERNAL_TIMEOUT_SEC,
        write=10.0,
        pool=30.0
    )

    return httpx.AsyncClient(
        timeout=timeout_config,
        http2=http2_available,
        limits=httpx.Limits(
            max_keepalive_connections=20,
            max_connections=50,
            keepalive_expiry=30
        ),
        headers={
            "Accept-Encoding": "gzip, deflate",
            "User-Agent": USER_AGENT,
        },
    )


async def close_http_client(client: httpx.AsyncClient | None) -> None:
    if client is not None and not client.is_closed:
        await client.aclose()
