"""Attachment downloader.

Attachments arrive as client-supplied URLs that must point at our own
storage. Anything else is refused before a request is made, and redirects
are not followed, so the server never fetches arbitrary hosts on a client's
behalf. Allowed URLs are downloaded once per turn, concurrently, before the
provider turn is built.
"""

from collections.abc import Iterable, Sequence

import httpx

from parley.config import url_origin
from parley.shared.concurrency import gather_limited
from parley.shared.exceptions import AttachmentFetchError
from parley.shared.logging import get_logger

logger = get_logger(__name__)


class AttachmentFetcher:
    """Downloads attachment bodies with an origin allowlist, a size cap and bounded concurrency."""

    def __init__(
        self,
        allowed_origins: Iterable[str],
        timeout: float = 30.0,
        max_bytes: int = 20 * 1024 * 1024,
        concurrency: int = 8,
        client: httpx.AsyncClient | None = None,
    ):
        self.allowed_origins = frozenset(url_origin(origin) for origin in allowed_origins)
        self.max_bytes = max_bytes
        self.concurrency = concurrency
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)

    async def close(self) -> None:
        await self._client.aclose()

    def check_url(self, url: str) -> None:
        """Refuse URLs outside the allowed origins.

        Raises:
            AttachmentFetchError: Malformed URL or foreign origin
        """
        try:
            origin = url_origin(url)
        except ValueError as e:
            raise AttachmentFetchError(url, "malformed URL") from e
        if origin not in self.allowed_origins:
            raise AttachmentFetchError(url, f"origin {origin} is not allowed")

    async def fetch(self, url: str) -> bytes:
        """Download one attachment.

        Raises:
            AttachmentFetchError: On a disallowed URL, transport errors, a
                non-2xx status (redirects included) or an oversize body
        """
        self.check_url(url)
        try:
            async with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise AttachmentFetchError(url, f"HTTP {response.status_code}")
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise AttachmentFetchError(url, f"exceeds {self.max_bytes} bytes")
                return bytes(body)
        except httpx.HTTPError as e:
            raise AttachmentFetchError(url, str(e) or type(e).__name__) from e

    async def _fetch_or_none(self, url: str) -> bytes | None:
        try:
            return await self.fetch(url)
        except AttachmentFetchError as e:
            logger.warning("attachment_fetch_failed", url=url, error=e.message)
            return None

    async def fetch_many(self, urls: Sequence[str]) -> dict[str, bytes | None]:
        """Download every distinct URL concurrently.

        Failed or refused downloads map to None; callers omit those parts.
        """
        unique = list(dict.fromkeys(urls))
        bodies = await gather_limited(
            [lambda u=url: self._fetch_or_none(u) for url in unique],
            limit=self.concurrency,
        )
        return dict(zip(unique, bodies, strict=True))
