"""API endpoint tests using FastAPI TestClient."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi.testclient import TestClient

from api.server import app, is_allowed_proxy_url
from vton_studio.config import QuotaConfig
from vton_studio.errors import ProviderError, ValidationError
from vton_studio.models import GenerationMode, GenerationResult
from vton_studio.services import InMemoryCounterStore, RateLimiter, UpstashCounterStore


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def limiter():
    return RateLimiter(InMemoryCounterStore(), QuotaConfig(daily_limit=2))


@pytest.fixture
def mock_generator():
    generator = MagicMock()
    generator.generate = AsyncMock(
        return_value=GenerationResult(
            url="https://v3.fal.media/files/out.png",
            prompt="ignored",
            description="A model in a red dress",
        )
    )
    return generator


@pytest.fixture
def patched(mock_generator, limiter):
    with patch("api.server.get_generator", return_value=mock_generator), \
         patch("api.server.get_rate_limiter", return_value=limiter):
        yield mock_generator


def tryon_files(png_bytes):
    return {
        "model": ("model.png", png_bytes, "image/png"),
        "product": ("dress.png", png_bytes, "image/png"),
    }


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_root_endpoint(self, client):
        """Root endpoint returns OK status."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "service" in data
        assert "version" in data

    def test_health_endpoint(self, client):
        """Health endpoint reports provider and quota store."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert "status" in data
        assert "fal" in data
        assert data["quota_store"] in ("memory", "upstash")


class TestGenerateValidation:
    """Malformed requests are rejected before the quota or the provider."""

    def test_missing_mode(self, client, patched):
        response = client.post("/generate", data={"prompt": "a hat"})

        assert response.status_code == 400
        assert response.json() == {"error": "Mode and prompt are required"}
        patched.generate.assert_not_called()

    def test_missing_prompt(self, client, patched):
        response = client.post("/generate", data={"mode": "text-to-image"})

        assert response.status_code == 400
        assert response.json()["error"] == "Mode and prompt are required"

    def test_invalid_mode(self, client, patched):
        response = client.post("/generate", data={"mode": "sketch", "prompt": "a hat"})

        assert response.status_code == 400
        assert "Invalid mode" in response.json()["error"]

    def test_tryon_missing_product(self, client, patched, png_bytes):
        response = client.post(
            "/generate",
            data={"mode": "virtual-try-on", "prompt": "wear it"},
            files={"model": ("model.png", png_bytes, "image/png")},
        )

        assert response.status_code == 400
        assert response.json()["error"] == (
            "Both model and product images are required for virtual-try-on mode"
        )
        patched.generate.assert_not_called()

    def test_editing_without_images(self, client, patched):
        response = client.post("/generate", data={"mode": "image-editing", "prompt": "make it blue"})

        assert response.status_code == 400
        assert response.json()["error"] == "At least one image is required for editing mode"

    def test_validation_does_not_consume_quota(self, client, patched, limiter, png_bytes):
        for _ in range(3):
            client.post("/generate", data={"mode": "virtual-try-on", "prompt": "x"})

        response = client.post(
            "/generate",
            data={"mode": "virtual-try-on", "prompt": "wear it"},
            files=tryon_files(png_bytes),
        )
        assert response.status_code == 200


class TestGenerateEndpoint:
    """Successful and failing generations."""

    def test_tryon_success(self, client, patched, png_bytes):
        response = client.post(
            "/generate",
            data={"mode": "virtual-try-on", "prompt": "wear it", "aspectRatio": "portrait"},
            files=tryon_files(png_bytes),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["url"] == "https://v3.fal.media/files/out.png"
        assert body["prompt"] == "wear it"
        assert body["description"] == "A model in a red dress"
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"

        request = patched.generate.await_args.args[0]
        assert request.mode == GenerationMode.VIRTUAL_TRY_ON
        assert request.aspect_ratio == "portrait"
        assert len(request.images) == 2
        assert request.images[0].filename == "model.png"
        assert request.images[1].filename == "dress.png"

    def test_text_to_image_defaults_to_square(self, client, patched):
        response = client.post("/generate", data={"mode": "text-to-image", "prompt": "a red hat"})

        assert response.status_code == 200
        request = patched.generate.await_args.args[0]
        assert request.images == []
        assert request.aspect_ratio == "square"

    def test_editing_accepts_urls(self, client, patched, png_bytes):
        response = client.post(
            "/generate",
            data={
                "mode": "image-editing",
                "prompt": "combine",
                "image1Url": "https://v3.fal.media/files/a.png",
            },
            files={"image2": ("b.png", png_bytes, "image/png")},
        )

        assert response.status_code == 200
        request = patched.generate.await_args.args[0]
        assert request.images[0].url == "https://v3.fal.media/files/a.png"
        assert request.images[1].is_inline

    def test_quota_exceeded(self, client, patched, png_bytes):
        for _ in range(2):
            ok = client.post(
                "/generate",
                data={"mode": "virtual-try-on", "prompt": "wear it"},
                files=tryon_files(png_bytes),
            )
            assert ok.status_code == 200

        response = client.post(
            "/generate",
            data={"mode": "virtual-try-on", "prompt": "wear it"},
            files=tryon_files(png_bytes),
        )

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Rate limit exceeded"
        assert "Daily limit of 2" in body["message"]
        assert body["resetAt"]
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert patched.generate.await_count == 2

    def test_quota_exempt_referer(self, client, mock_generator, png_bytes):
        limiter = RateLimiter(
            InMemoryCounterStore(),
            QuotaConfig(daily_limit=0, exempt_referer_hosts=["studio.example.com"]),
        )
        with patch("api.server.get_generator", return_value=mock_generator), \
             patch("api.server.get_rate_limiter", return_value=limiter):
            response = client.post(
                "/generate",
                data={"mode": "text-to-image", "prompt": "a hat"},
                headers={"Referer": "https://studio.example.com/app"},
            )

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers

    def test_provider_failure_returns_500(self, client, patched):
        patched.generate.side_effect = ProviderError("No images generated")

        response = client.post("/generate", data={"mode": "text-to-image", "prompt": "a hat"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate image", "details": "No images generated"}

    def test_adapter_validation_returns_400(self, client, patched):
        patched.generate.side_effect = ValidationError("Image editing takes one or two images")

        response = client.post("/generate", data={"mode": "text-to-image", "prompt": "a hat"})

        assert response.status_code == 400
        assert response.json()["error"] == "Image editing takes one or two images"

    def test_counter_store_failure_returns_500(self, client, mock_generator):
        def handler(request):
            return httpx.Response(503, json={"error": "Service Unavailable"})

        store = UpstashCounterStore("https://eu1-redis.upstash.io", "secret")
        store._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        limiter = RateLimiter(store, QuotaConfig(daily_limit=2))

        with patch("api.server.get_generator", return_value=mock_generator), \
             patch("api.server.get_rate_limiter", return_value=limiter):
            response = client.post("/generate", data={"mode": "text-to-image", "prompt": "a hat"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Failed to check rate limit"
        assert "503" in body["details"]
        mock_generator.generate.assert_not_called()


class TestProxyImage:
    """Tests for the image proxy."""

    def test_missing_url(self, client):
        response = client.get("/proxy-image")

        assert response.status_code == 400
        assert response.json()["error"] == "URL parameter is required"

    def test_disallowed_host(self, client):
        response = client.get("/proxy-image", params={"url": "https://evil.example.com/x.png"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid URL"

    def test_lookalike_host_rejected(self):
        assert not is_allowed_proxy_url("https://fal.media.evil.com/x.png", ["fal.media"])
        assert not is_allowed_proxy_url("ftp://v3.fal.media/x.png", ["fal.media"])
        assert is_allowed_proxy_url("https://v3.fal.media/files/x.png", ["fal.media"])
        assert is_allowed_proxy_url("https://fal.media/x.png", ["fal.media"])

    def test_proxies_bytes(self, client, png_bytes):
        def handler(request):
            return httpx.Response(200, content=png_bytes, headers={"content-type": "image/png"})

        def fake_client():
            return httpx.AsyncClient(transport=httpx.MockTransport(handler))

        with patch("api.server.proxy_http_client", fake_client):
            response = client.get(
                "/proxy-image", params={"url": "https://v3.fal.media/files/out.png"}
            )

        assert response.status_code == 200
        assert response.content == png_bytes
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "public, max-age=31536000"

    def test_upstream_failure(self, client):
        def handler(request):
            return httpx.Response(404)

        def fake_client():
            return httpx.AsyncClient(transport=httpx.MockTransport(handler))

        with patch("api.server.proxy_http_client", fake_client):
            response = client.get(
                "/proxy-image", params={"url": "https://v3.fal.media/files/gone.png"}
            )

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to proxy image"
