# Test fixtures and configuration
import asyncio
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from vton_studio.config import OrchestratorConfig, PreprocessConfig  # noqa: E402
from vton_studio.models import EncodedImage, GenerationResult, UploadEntry  # noqa: E402


def make_image_bytes(width: int, height: int, fmt: str = "PNG", color=(200, 30, 30)) -> bytes:
    """Solid-color image of the given size."""
    buffer = io.BytesIO()
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = color + (255,) if mode == "RGBA" else color
    Image.new(mode, (width, height), fill).save(buffer, format=fmt)
    return buffer.getvalue()


def make_entry(name: str = "model.jpg") -> UploadEntry:
    return UploadEntry(
        original_filename=name,
        image=EncodedImage(data=name.encode(), filename=name, width=100, height=100),
    )


class FakeGenerator:
    """Records requests and answers with a fixed URL (or a scripted outcome)."""

    def __init__(self, delay: float = 0.0, outcomes=None):
        self.delay = delay
        self.outcomes = list(outcomes or [])
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return GenerationResult(
            url=f"https://v3.fal.media/files/result-{len(self.requests)}.png",
            prompt=request.prompt,
        )


@pytest.fixture
def png_bytes():
    """Small valid PNG."""
    return make_image_bytes(64, 64)


@pytest.fixture
def portrait_jpeg_bytes():
    """3:4 JPEG, bigger than the resize edge."""
    return make_image_bytes(1500, 2000, fmt="JPEG")


@pytest.fixture
def fast_orchestrator_config():
    return OrchestratorConfig(progress_interval=0.01, stagger_delay=0.0)


@pytest.fixture
def preprocess_config():
    return PreprocessConfig()


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def model_entries():
    return [make_entry("model-a.jpg"), make_entry("model-b.jpg")]


@pytest.fixture
def product_entries():
    return [make_entry("dress.jpg"), make_entry("jacket.jpg"), make_entry("pants.jpg")]


@pytest.fixture
def notifications():
    """Collects (message, level) pairs from orchestrator/session notifications."""
    received = []

    def notify(message, level):
        received.append((message, level))

    notify.received = received
    return notify
