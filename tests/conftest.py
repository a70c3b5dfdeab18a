import io
from typing import Any, Dict, List, Optional, Tuple

import httpx
import numpy as np
import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from homedecor.core.database import create_db_and_tables
from homedecor.core.scheduler import BackgroundScheduler


# =============================================================================
# Images
# =============================================================================

def make_png(width: int = 64, height: int = 64, color=(120, 120, 120), mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_jpeg(width: int = 64, height: int = 64, color=(120, 120, 120)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


def make_noise_image(width: int, height: int, seed: int = 0) -> Image.Image:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    return Image.fromarray(pixels)


def to_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def alpha_of(png: bytes) -> np.ndarray:
    return np.asarray(Image.open(io.BytesIO(png)).getchannel("A"))


# =============================================================================
# Fakes
# =============================================================================

class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio the cache uses."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.gets = 0

    async def get(self, key: str) -> Optional[str]:
        self.gets += 1
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str):
        self.store[key] = value
        self.ttls[key] = ttl


class BrokenRedis:
    async def get(self, key: str):
        raise ConnectionError("redis down")

    async def setex(self, key: str, ttl: int, value: str):
        raise ConnectionError("redis down")


class RecordingScheduler(BackgroundScheduler):
    """Keeps submitted jobs instead of running them."""

    def __init__(self):
        self.jobs: List[Tuple[str, Any, tuple]] = []

    def submit(self, job_name, func, *args):
        self.jobs.append((job_name, func, args))

    @property
    def names(self) -> List[str]:
        return [name for name, _, _ in self.jobs]


def mock_http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await create_db_and_tables(engine)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def room_png() -> bytes:
    return make_png(96, 64, (180, 170, 160))
