"""FastAPI server for the virtual try-on studio.

Receives multipart generation requests with:
- mode: text-to-image, image-editing or virtual-try-on
- prompt / aspectRatio
- model + product files (virtual-try-on), image1/image2 files or URLs (editing)

and proxies provider-hosted result images for download/clipboard use.
"""

import logging
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from vton_studio import __version__
from vton_studio.config import StudioConfig, configure_logging
from vton_studio.errors import QuotaExceededError, ValidationError
from vton_studio.models import GenerationMode, GenerationRequest, ImageInput
from vton_studio.services import (
    FalImageProvider,
    GenerationAdapter,
    RateLimiter,
    create_counter_store,
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="VTON Studio API",
    description="Virtual try-on, text-to-image and image editing over fal.ai nano-banana",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class GenerateResponse(BaseModel):
    """Response with the generated image."""
    url: str
    prompt: str
    description: str = ""


# Initialized on first request
_config: StudioConfig | None = None
_generator: GenerationAdapter | None = None
_rate_limiter: RateLimiter | None = None


def get_config() -> StudioConfig:
    global _config
    if _config is None:
        _config = StudioConfig()  # Loads from .env automatically via pydantic-settings
        configure_logging(_config.log_level)
    return _config


def get_generator() -> GenerationAdapter:
    """Get or create the generation adapter."""
    global _generator
    if _generator is None:
        config = get_config()
        provider = FalImageProvider(config.fal, api_key=config.fal_key)
        _generator = GenerationAdapter(provider, config.fal, config.retry)
    return _generator


def get_rate_limiter() -> RateLimiter:
    """Get or create the quota limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        config = get_config()
        store = create_counter_store(config.upstash_redis_rest_url, config.upstash_redis_rest_token)
        _rate_limiter = RateLimiter(store, config.quota)
    return _rate_limiter


def client_identity(request: Request) -> str:
    """Best guess at the caller's network identity behind proxies."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def _present(upload: UploadFile | None) -> bool:
    return upload is not None and bool(upload.filename)


async def _read_upload(upload: UploadFile) -> ImageInput:
    data = await upload.read()
    return ImageInput(
        data=data,
        content_type=upload.content_type or "image/jpeg",
        filename=upload.filename or "image.jpg",
    )


async def build_generation_request(
    mode: str | None,
    prompt: str | None,
    aspect_ratio: str | None,
    model: UploadFile | None,
    product: UploadFile | None,
    image1: UploadFile | None,
    image2: UploadFile | None,
    image1_url: str | None,
    image2_url: str | None,
) -> GenerationRequest:
    """Validate the form and assemble a request. Raises ValidationError."""
    if not mode or not prompt:
        raise ValidationError("Mode and prompt are required")

    try:
        generation_mode = GenerationMode(mode)
    except ValueError:
        raise ValidationError(
            "Invalid mode. Must be 'text-to-image', 'image-editing', or 'virtual-try-on'"
        ) from None

    images: list[ImageInput] = []
    if generation_mode == GenerationMode.VIRTUAL_TRY_ON:
        if not _present(model) or not _present(product):
            raise ValidationError("Both model and product images are required for virtual-try-on mode")
        images = [await _read_upload(model), await _read_upload(product)]  # type: ignore[arg-type]

    elif generation_mode == GenerationMode.IMAGE_EDITING:
        if _present(image1):
            images.append(await _read_upload(image1))  # type: ignore[arg-type]
        elif image1_url:
            images.append(ImageInput(url=image1_url))
        else:
            raise ValidationError("At least one image is required for editing mode")

        if _present(image2):
            images.append(await _read_upload(image2))  # type: ignore[arg-type]
        elif image2_url:
            images.append(ImageInput(url=image2_url))

    return GenerationRequest(
        mode=generation_mode,
        prompt=prompt,
        aspect_ratio=aspect_ratio or "square",
        images=images,
    )


def _rate_limit_headers(limit: int, remaining: int, reset_at) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(int(reset_at.timestamp())),
    }


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "VTON Studio API", "version": __version__}


@app.get("/health")
async def health():
    """Detailed health check."""
    config = get_config()
    fal_ok = bool(config.fal_key)
    hosted_quota = bool(config.upstash_redis_rest_url and config.upstash_redis_rest_token)

    return {
        "status": "ok" if fal_ok else "degraded",
        "fal": "configured" if fal_ok else "missing FAL_KEY",
        "quota_store": "upstash" if hosted_quota else "memory",
    }


@app.post("/generate", response_model=GenerateResponse)
async def generate(
    request: Request,
    mode: str | None = Form(None),
    prompt: str | None = Form(None),
    aspect_ratio: str | None = Form(None, alias="aspectRatio"),
    model: UploadFile | None = File(None),
    product: UploadFile | None = File(None),
    image1: UploadFile | None = File(None),
    image2: UploadFile | None = File(None),
    image1_url: str | None = Form(None, alias="image1Url"),
    image2_url: str | None = Form(None, alias="image2Url"),
):
    """Generate an image for any of the three modes.

    Returns:
        200 {url, prompt, description}, 400 {error}, 429 {error, message,
        resetAt} or 500 {error, details}
    """
    logger.info("Generation request: mode=%s aspectRatio=%s", mode, aspect_ratio)

    try:
        generation_request = await build_generation_request(
            mode, prompt, aspect_ratio, model, product, image1, image2, image1_url, image2_url
        )
    except ValidationError as exc:
        logger.info("Rejected request: %s", exc)
        return JSONResponse(status_code=400, content={"error": str(exc)})

    headers: dict[str, str] = {}
    limiter = get_rate_limiter()
    if not limiter.is_exempt(request.headers.get("referer")):
        try:
            decision = await limiter.enforce(client_identity(request))
        except QuotaExceededError as exc:
            reset_at = exc.reset_at
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "message": str(exc),
                    "resetAt": reset_at.isoformat() if reset_at else None,
                },
                headers=_rate_limit_headers(limiter.config.daily_limit, 0, reset_at) if reset_at else None,
            )
        except (httpx.HTTPError, RuntimeError) as exc:
            logger.exception("Error checking rate limit")
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to check rate limit", "details": str(exc) or type(exc).__name__},
            )
        headers = _rate_limit_headers(decision.limit, decision.remaining, decision.reset_at)

    try:
        result = await get_generator().generate(generation_request)
    except ValidationError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except Exception as exc:
        logger.exception("Error generating image")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to generate image", "details": str(exc) or type(exc).__name__},
        )

    body = GenerateResponse(url=result.url, prompt=generation_request.prompt, description=result.description)
    return JSONResponse(content=body.model_dump(), headers=headers)


def proxy_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=30.0)


def is_allowed_proxy_url(url: str, allowed_hosts: list[str]) -> bool:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    return any(host == h or host.endswith(f".{h}") for h in allowed_hosts)


@app.get("/proxy-image")
async def proxy_image(url: str | None = None):
    """Re-serve a provider-hosted image from this origin."""
    if not url:
        return JSONResponse(status_code=400, content={"error": "URL parameter is required"})
    if not is_allowed_proxy_url(url, get_config().proxy_allowed_hosts):
        return JSONResponse(status_code=400, content={"error": "Invalid URL"})

    try:
        async with proxy_http_client() as client:
            response = await client.get(url, follow_redirects=True)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Error proxying image %s: %s", url, exc)
        return JSONResponse(status_code=500, content={"error": "Failed to proxy image"})

    return Response(
        content=response.content,
        media_type=response.headers.get("content-type", "image/png"),
        headers={"Cache-Control": "public, max-age=31536000"},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
