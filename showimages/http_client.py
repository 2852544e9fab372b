"""Host fetch primitive: load an image URL and report whether it is usable."""

import io
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import httpx
from PIL import Image, UnidentifiedImageError

from .config import Config
from .utils import format_bytes, shorten_url

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of loading one URL."""
    url: str
    ok: bool
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    width: int = 0
    height: int = 0
    size: int = 0
    error: Optional[str] = None


def is_ready(result: FetchResult) -> bool:
    """Readiness predicate: the load succeeded and decoded to a real image.

    A 1x1 image is treated as a placeholder (tracking pixel, "image removed"
    stub), not as the resource.
    """
    return result.ok and result.width > 1 and result.height > 1


@runtime_checkable
class Fetcher(Protocol):
    """Capability the acquisition engine needs from its host."""

    async def fetch(self, url: str) -> FetchResult:
        ...

    async def aclose(self) -> None:
        ...


def image_dimensions(content: bytes) -> tuple:
    """Fully decode ``content`` and return (width, height); truncated bodies raise."""
    with Image.open(io.BytesIO(content)) as img:
        img.load()
        return img.size


class HttpImageFetcher:
    """Fetcher backed by an httpx async client and Pillow."""

    def __init__(self, config: Config, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.max_bytes = config.http.max_bytes
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=config.http.timeout_connect_s,
                read=config.http.timeout_read_s,
                write=config.http.timeout_read_s,
                pool=config.http.timeout_connect_s
            ),
            http2=config.http.http2,
            headers=config.http.headers,
            follow_redirects=True
        )

    async def fetch(self, url: str) -> FetchResult:
        """GET ``url`` and decode its dimensions; failures come back as ``ok=False``."""
        try:
            content, status_code, content_type = await self._download(url)
        except httpx.HTTPStatusError as e:
            return FetchResult(
                url=url, ok=False, status_code=e.response.status_code,
                error=f"HTTP {e.response.status_code}"
            )
        except (httpx.RequestError, ValueError) as e:
            return FetchResult(url=url, ok=False, error=str(e) or e.__class__.__name__)

        if not content:
            return FetchResult(
                url=url, ok=False, status_code=status_code,
                content_type=content_type, error="Empty response"
            )

        try:
            width, height = image_dimensions(content)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
            return FetchResult(
                url=url, ok=False, status_code=status_code, content_type=content_type,
                size=len(content), error=f"Not a decodable image: {e}"
            )

        logger.debug("Fetched %s (%dx%d, %s)", shorten_url(url), width, height, format_bytes(len(content)))
        return FetchResult(
            url=url, ok=True, status_code=status_code, content_type=content_type,
            width=width, height=height, size=len(content)
        )

    async def _download(self, url: str):
        async with self.client.stream('GET', url) as response:
            response.raise_for_status()
            content_type = response.headers.get('content-type')
            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self.max_bytes:
                    raise ValueError(f"Response larger than {self.max_bytes} bytes")
                chunks.append(chunk)
            return b''.join(chunks), response.status_code, content_type

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
