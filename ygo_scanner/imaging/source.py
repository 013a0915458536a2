"""Image payload decoding and source-image retrieval."""

import asyncio
import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional

import aiohttp

from ..core.constants import BACKOFF_S
from ..utils.error_handler import InvalidImagePayload, StoreError
from ..utils.log import LoggerMixin
from ..utils.retry import is_retryable_error, retry

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w-]+=[\w.-]+)*;base64,(?P<data>.*)$", re.DOTALL)

_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
)


def sniff_content_type(data: bytes, default: str = "application/octet-stream") -> str:
    """Guess an image MIME type from its leading bytes."""
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    for magic, mime in _MAGIC:
        if data.startswith(magic):
            return mime
    return default


@dataclass
class ImagePayload:
    """An uploaded image, whichever way the caller framed it."""

    data: bytes
    content_type: str

    @classmethod
    def from_upload(cls, data: Optional[bytes], content_type: Optional[str] = None) -> "ImagePayload":
        """Multipart-style upload: raw bytes plus the declared content type."""
        if not data:
            raise InvalidImagePayload("Image is required")
        return cls(data=bytes(data), content_type=content_type or sniff_content_type(data))

    @classmethod
    def from_string(cls, value: Optional[str]) -> "ImagePayload":
        """A ``data:`` URI or a bare base64 string."""
        if not value or not value.strip():
            raise InvalidImagePayload("Image is required")
        value = value.strip()
        mime = None
        match = _DATA_URI.match(value)
        if match:
            mime = match.group("mime")
            value = match.group("data")
        elif value.startswith("data:"):
            raise InvalidImagePayload("Only base64 data URIs are supported")
        try:
            data = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidImagePayload("Image is not valid base64", details={"error": str(e)}) from e
        return cls.from_upload(data, mime)

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


def is_data_uri(ref: str) -> bool:
    return ref.startswith("data:")


def is_remote_url(ref: str) -> bool:
    return ref.startswith(("http://", "https://"))


class ImageSourceResolver(LoggerMixin):
    """Turns a scan's stored image reference back into bytes.

    References come in three forms: an embedded data URI, a remote http(s)
    URL, or a handle owned by the blob store.
    """

    def __init__(self, blob_store=None, timeout_s: float = 30.0):
        self.blob_store = blob_store
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def resolve(self, ref: str) -> bytes:
        if not ref:
            raise StoreError("Scan has no source image")
        if is_data_uri(ref):
            try:
                return ImagePayload.from_string(ref).data
            except InvalidImagePayload as e:
                raise StoreError("Stored image data is corrupt", details={"error": e.message}) from e
        if is_remote_url(ref):
            return await self._fetch_url(ref)
        if self.blob_store is None:
            raise StoreError("No blob store configured", details={"ref": ref})
        return self.blob_store.fetch(ref)

    async def _fetch_url(self, url: str) -> bytes:
        try:
            data = await self._download(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error("Failed to fetch original image", url=url, error=str(e))
            raise StoreError("Failed to fetch original image", details={"url": url}) from e
        self.logger.debug("Fetched original image", url=url, size=len(data))
        return data

    @retry(
        max_attempts=len(BACKOFF_S) + 1,
        base_delay=BACKOFF_S[0],
        exceptions=(aiohttp.ClientError, asyncio.TimeoutError),
        should_retry=is_retryable_error,
    )
    async def _download(self, url: str) -> bytes:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                return await response.read()
