"""Generation request adapter: payload building, retry and result mapping."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

import httpx

from ..config import FalConfig, RetryConfig
from ..errors import (
    NoImagesProducedError,
    ProviderError,
    StudioError,
    TransientProviderError,
    ValidationError,
)
from ..models import GenerationMode, GenerationRequest, GenerationResult, aspect_ratio_token

logger = logging.getLogger(__name__)

LARGE_REFERENCE_WARNING = 1_500_000

# Client errors that are still worth another attempt
RETRYABLE_CLIENT_STATUSES = {408, 429}


class ImageProvider(Protocol):
    async def subscribe(self, application: str, arguments: dict[str, Any]) -> dict[str, Any]:
        ...


def classify_provider_error(exc: BaseException) -> StudioError:
    """Turn an arbitrary provider failure into the studio error taxonomy.

    HTTP 4xx answers (other than 408/429) are permanent; everything else,
    including transport errors and 5xx, is transient.
    """
    if isinstance(exc, StudioError):
        return exc

    message = str(exc) or type(exc).__name__
    cause: BaseException | None = exc
    while cause is not None:
        if isinstance(cause, httpx.HTTPStatusError):
            status = cause.response.status_code
            if 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUSES:
                return ProviderError(message)
            break
        cause = cause.__cause__
    return TransientProviderError(message)


class GenerationAdapter:
    """Builds provider payloads for the three modes and maps the results."""

    def __init__(
        self,
        provider: ImageProvider,
        fal_config: FalConfig | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.fal_config = fal_config or FalConfig()
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate one image.

        Raises:
            ValidationError: the request is malformed (nothing is sent)
            ProviderError: the provider failed after all attempts, or
                returned no images
        """
        application, arguments = self.build_arguments(request)
        data = await self._call_with_retry(application, arguments) or {}

        images = data.get("images") or []
        if not images:
            logger.warning("Provider returned no images")
            raise NoImagesProducedError()

        url = images[0].get("url") if isinstance(images[0], dict) else None
        if not url:
            raise NoImagesProducedError()

        description = data.get("description") or ""
        logger.info("Generated image URL: %s", url)
        return GenerationResult(url=url, prompt=request.prompt, description=description)

    def build_arguments(self, request: GenerationRequest) -> tuple[str, dict[str, Any]]:
        """Return the provider application id and its input for ``request``."""
        if not request.prompt or not request.prompt.strip():
            raise ValidationError("Mode and prompt are required")

        ratio = aspect_ratio_token(request.aspect_ratio)
        count = len(request.images)

        if request.mode == GenerationMode.TEXT_TO_IMAGE:
            if count:
                raise ValidationError("Text-to-image mode does not take images")
            return self.fal_config.text_to_image_model, {
                "prompt": request.prompt,
                "num_images": 1,
                "output_format": self.fal_config.output_format,
                "aspect_ratio": ratio,
            }

        if request.mode == GenerationMode.VIRTUAL_TRY_ON and count != 2:
            raise ValidationError(
                "Both model and product images are required for virtual-try-on mode"
            )
        if request.mode == GenerationMode.IMAGE_EDITING and not 1 <= count <= 2:
            raise ValidationError("Image editing takes one or two images")

        image_urls = []
        for slot, image in enumerate(request.images, start=1):
            reference = image.as_reference()
            if image.is_inline:
                logger.debug("Image%d inline reference length: %d", slot, len(reference))
                if len(reference) > LARGE_REFERENCE_WARNING:
                    logger.warning(
                        "Image%d inline reference is very large (%d chars), the provider may reject it",
                        slot, len(reference),
                    )
            else:
                logger.debug("Image%d URL: %s", slot, reference)
            image_urls.append(reference)

        return self.fal_config.edit_model, {
            "prompt": request.prompt,
            "image_urls": image_urls,
            "output_format": self.fal_config.output_format,
            "aspect_ratio": ratio,
        }

    async def _call_with_retry(self, application: str, arguments: dict[str, Any]) -> dict[str, Any]:
        remaining = max(1, self.retry_config.max_attempts) - 1
        while True:
            try:
                return await self.provider.subscribe(application, arguments)
            except Exception as exc:
                error = classify_provider_error(exc)
                if not error.retryable or remaining == 0:
                    logger.error("Provider call failed: %s", error)
                    if error is exc:
                        raise
                    raise error from exc
                logger.warning(
                    "Request failed, retrying... (%d retries left): %s", remaining, error
                )
            remaining -= 1
            await self._sleep(self.retry_config.delay_seconds)
