"""Download artist pictures and album covers found by providers."""

import logging

from soulscan.domain.ports import IImageFetcher
from soulscan.domain.value_objects.outcomes import AttemptOutcome, PermanentFailure, Success
from soulscan.infrastructure.cache.file_cache import MIME_EXTENSIONS, extension_for_mime
from soulscan.infrastructure.integrations.base_client import BaseProviderClient

logger = logging.getLogger(__name__)

# Covers are ~100-500 KB; anything this big is not an image we want
MAX_IMAGE_BYTES = 10 * 1024 * 1024


class HttpImageFetcher(BaseProviderClient, IImageFetcher):
    """One-attempt image download through httpx."""

    name = "images"

    async def fetch_image(self, url: str) -> AttemptOutcome[tuple[bytes, str] | None]:
        """Download one image.

        Args:
            url: Absolute image URL from a provider

        Returns:
            Success((bytes, extension)), Success(None) on 404, or a failure
        """
        sent = await self._get(url)
        if not isinstance(sent, Success):
            return sent
        response = sent.value

        if response.status_code == 404:
            return Success(None)
        if response.is_error:
            return self._status_outcome(response)

        content_type = response.headers.get("Content-Type", "").split(";")[0].strip().lower()
        if content_type not in MIME_EXTENSIONS:
            return PermanentFailure(reason=f"not an image: {content_type or 'no content type'}")

        data = response.content
        if not data:
            return Success(None)
        if len(data) > MAX_IMAGE_BYTES:
            return PermanentFailure(reason=f"image too large ({len(data)} bytes)")
        return Success((data, extension_for_mime(content_type)))
