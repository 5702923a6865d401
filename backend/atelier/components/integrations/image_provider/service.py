"""
HTTP client for the image generation provider.

Sends a prompt plus base64 reference images and receives a single image
back. Transient failures (timeouts, connection errors, 429, 5xx) are retried
with backoff; anything else the provider rejects fails immediately.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ....platform.config import settings
from ....platform.errors import TransientInfrastructureError
from ....platform.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class ProviderTransientError(TransientInfrastructureError):
    """Provider unavailable, rate limited, or timed out."""


class ProviderRejectedError(Exception):
    """Provider refused the request (bad input, safety block). Not retried."""


@dataclass
class ImageRequest:
    tool_id: str
    prompt: str
    reference_images: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "toolId": self.tool_id,
            "prompt": self.prompt,
            "referenceImages": self.reference_images,
            "options": self.options,
        }


@dataclass(frozen=True)
class GeneratedImage:
    data: bytes
    mime_type: str


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderTransientError)


class ImageProviderService:
    """Service for calling the external image generation API."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialise the provider client.

        Args:
            url: Generation endpoint; defaults to IMAGE_PROVIDER_URL.
            api_key: Bearer token; defaults to IMAGE_PROVIDER_API_KEY.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.url = url or settings.IMAGE_PROVIDER_URL
        self.api_key = api_key if api_key is not None else settings.IMAGE_PROVIDER_API_KEY
        self.timeout = timeout or settings.IMAGE_PROVIDER_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _call(self, request: ImageRequest) -> GeneratedImage:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=request.to_payload(), headers=self._headers())
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ProviderTransientError(f"Provider request failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderTransientError(f"Provider returned {response.status_code}")
        if response.status_code >= 400:
            raise ProviderRejectedError(
                f"Provider rejected request ({response.status_code}): {response.text[:300]}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderTransientError("Provider returned a non-JSON body") from exc

        if body.get("blocked") or body.get("finishReason") == "SAFETY":
            raise ProviderRejectedError("Provider blocked the request for safety reasons")
        encoded = body.get("image_base64") or body.get("imageBase64")
        if not encoded:
            raise ProviderRejectedError("Provider response contained no image")
        try:
            data = base64.b64decode(encoded, validate=True)
        except ValueError as exc:
            raise ProviderRejectedError("Provider returned an invalid image payload") from exc
        return GeneratedImage(data=data, mime_type=body.get("mime_type") or body.get("mimeType") or "image/png")

    def generate(self, request: ImageRequest) -> GeneratedImage:
        """
        Generate one image, retrying transient failures.

        Returns:
            GeneratedImage with raw bytes and mime type.

        Raises:
            ProviderTransientError: retries exhausted.
            ProviderRejectedError: provider refused the request.
        """
        logger.info("Requesting image from provider (tool_id=%s)", request.tool_id)
        image = retry_with_backoff(
            lambda: self._call(request),
            is_retryable=_is_transient,
            operation=f"image provider {request.tool_id}",
        )
        logger.info("Provider returned image (tool_id=%s, bytes=%d)", request.tool_id, len(image.data))
        return image


def get_image_provider() -> ImageProviderService:
    return ImageProviderService()
