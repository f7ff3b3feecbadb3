"""HTTP client for the studio server's /generate and /proxy-image endpoints."""

import logging
from datetime import datetime
from urllib.parse import urlparse

import httpx

from ..errors import (
    ProviderError,
    QuotaExceededError,
    TransientProviderError,
    ValidationError,
)
from ..models import GenerationMode, GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


class StudioClient:
    """Posts generation forms to the studio server.

    Implements the same ``generate`` contract as ``GenerationAdapter`` so the
    orchestrator can run against either.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 300.0,  # generation can take minutes
        proxy_hosts: list[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.proxy_hosts = proxy_hosts if proxy_hosts is not None else ["fal.media"]
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    def build_form(
        self, request: GenerationRequest
    ) -> tuple[dict[str, str], dict[str, tuple[str, bytes, str]]]:
        """Split a request into multipart form fields and files."""
        data = {
            "mode": request.mode.value,
            "prompt": request.prompt,
            "aspectRatio": request.aspect_ratio,
        }
        files: dict[str, tuple[str, bytes, str]] = {}

        if request.mode == GenerationMode.VIRTUAL_TRY_ON:
            slots = ["model", "product"]
        elif request.mode == GenerationMode.IMAGE_EDITING:
            slots = ["image1", "image2"]
        else:
            slots = []

        for name, image in zip(slots, request.images):
            if image.is_inline:
                files[name] = (image.filename, image.data, image.content_type)  # type: ignore[assignment]
            elif request.mode == GenerationMode.IMAGE_EDITING:
                data[f"{name}Url"] = image.url  # type: ignore[assignment]
            else:
                raise ValidationError(f"The {name} image must be uploaded, not linked")
        return data, files

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """POST the request to /generate and map the answer."""
        data, files = self.build_form(request)
        logger.info("POST /generate mode=%s images=%d", request.mode.value, len(request.images))
        try:
            response = await self.client.post(
                f"{self.base_url}/generate",
                data=data,
                files=files or None,
            )
        except httpx.HTTPError as exc:
            raise TransientProviderError(str(exc) or type(exc).__name__) from exc

        if response.status_code != 200:
            raise self._error_from_response(response)

        body = response.json()
        return GenerationResult(
            url=body["url"],
            prompt=body.get("prompt", request.prompt),
            description=body.get("description") or "",
        )

    def _error_from_response(self, response: httpx.Response) -> Exception:
        try:
            body = response.json()
        except ValueError:
            body = {"error": "Unknown error"}

        error = body.get("error", "Unknown error")
        details = body.get("details")
        message = f"{error}: {details}" if details else error

        if response.status_code == 429:
            reset_at = None
            if body.get("resetAt"):
                reset_at = datetime.fromisoformat(body["resetAt"])
            return QuotaExceededError(body.get("message") or message, reset_at=reset_at)
        if response.status_code == 400:
            return ValidationError(message)
        if response.status_code >= 500:
            return ProviderError(message)
        return ProviderError(f"{message} (HTTP {response.status_code})")

    def _needs_proxy(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(host == h or host.endswith(f".{h}") for h in self.proxy_hosts)

    async def fetch_image(self, url: str) -> bytes:
        """Download a result image, through the server proxy for provider media."""
        if self._needs_proxy(url):
            response = await self.client.get(f"{self.base_url}/proxy-image", params={"url": url})
        else:
            response = await self.client.get(url, follow_redirects=True)
        response.raise_for_status()
        return response.content

    async def preload(self, url: str) -> None:
        """Make sure the result is reachable before the job is shown as done."""
        await self.fetch_image(url)

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
