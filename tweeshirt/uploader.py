"""
Uploads confirmed artwork to the fulfillment partner (Printrove).

The artwork reference is either a base64 payload (optionally a `data:` URL) or
an already-hosted http(s) URL. Either way the partner receives the image bytes
as a multipart file; the partner's JSON response is the design reference the
order backend needs.
"""

import base64
import binascii
import logging
import re
from datetime import datetime, timezone
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

import httpx
from PIL import Image, UnidentifiedImageError

from tweeshirt.errors import UploadError
from tweeshirt.settings import settings

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")
MAX_DESCRIPTOR_LENGTH = 100

# Pillow format name -> (extension, MIME type)
IMAGE_FORMATS = {
    "PNG": ("png", "image/png"),
    "JPEG": ("jpg", "image/jpeg"),
    "WEBP": ("webp", "image/webp"),
}


def sanitize_descriptor(descriptor: str) -> str:
    """Lowercases and replaces every non-alphanumeric character with '_'."""
    return re.sub(r"[^a-z0-9]", "_", descriptor, flags=re.IGNORECASE).lower()[:MAX_DESCRIPTOR_LENGTH]


def design_filename(descriptor: str, extension: str = "png", now: Optional[datetime] = None) -> str:
    """`<ISO timestamp>_<descriptor>.<ext>`, with ':' and '.' in the timestamp replaced by '-'."""
    now = now or datetime.now(timezone.utc)
    timestamp = re.sub(r"[:.]", "-", now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z")
    return f"{timestamp}_{sanitize_descriptor(descriptor) or 'design'}.{extension}"


def decode_artwork(payload: str) -> bytes:
    """Decodes a base64 artwork payload, with or without a `data:image/...;base64,` prefix."""
    raw = DATA_URL_PREFIX.sub("", payload.strip())
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise UploadError(f"Artwork payload is not valid base64: {e}")


def inspect_image(data: bytes) -> Tuple[str, str]:
    """Verifies `data` is an image and returns its (extension, MIME type)."""
    if not data:
        raise UploadError("Artwork payload is empty.")
    try:
        with Image.open(BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except Image.DecompressionBombError as e:
        raise UploadError(f"Artwork image is too large: {e}")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise UploadError(f"Artwork payload is not a readable image: {e}")
    if image_format not in IMAGE_FORMATS:
        raise UploadError(
            f"Unsupported artwork format '{image_format}'. Use one of: {', '.join(IMAGE_FORMATS)}"
        )
    return IMAGE_FORMATS[image_format]


class DesignUploader:
    """Sends artwork to the partner's design upload endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        upload_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.PRINTROVE_API_KEY
        self.upload_url = upload_url or settings.PRINTROVE_UPLOAD_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _fetch_hosted(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            resp = await client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Artwork download failed: {e.response.status_code} for {url}")
            raise UploadError(f"Could not download artwork ({e.response.status_code}).", e.response.status_code)
        except httpx.RequestError as e:
            logger.error(f"Network error downloading artwork from {url}: {e}")
            raise UploadError("Network error while downloading artwork.")
        return resp.content

    async def upload(self, artwork_ref: str, descriptor: str = "design") -> Dict[str, Any]:
        """
        Uploads the artwork and returns the partner's response.

        Raises:
            UploadError: malformed artwork, network failure, non-2xx status,
                or a response body that is not JSON.
        """
        if not artwork_ref:
            raise UploadError("No artwork to upload.")

        async with self._client() as client:
            if artwork_ref.startswith(("http://", "https://")):
                data = await self._fetch_hosted(client, artwork_ref)
            else:
                data = decode_artwork(artwork_ref)

            extension, mime_type = inspect_image(data)
            filename = design_filename(descriptor, extension)
            headers = {
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            }
            files = {"file": (filename, data, mime_type)}

            try:
                resp = await client.post(self.upload_url, headers=headers, files=files)
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(f"Printrove upload HTTP error: {e.response.status_code} - {e.response.text[:200]}")
                raise UploadError(
                    f"Design upload failed ({e.response.status_code}).", e.response.status_code
                )
            except httpx.RequestError as e:
                logger.error(f"Network error uploading design to Printrove: {e}")
                raise UploadError("Network error during design upload.")

        try:
            result = resp.json()
        except ValueError:
            logger.error(f"Printrove upload returned non-JSON body: {resp.text[:200]}")
            raise UploadError("Design upload returned an unreadable response.", resp.status_code)
        if not isinstance(result, dict):
            result = {"response": result}

        logger.info(f"Uploaded design '{filename}' ({len(data)} bytes) to Printrove.")
        return result
