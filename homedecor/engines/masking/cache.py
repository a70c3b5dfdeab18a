"""
Mask Cache

Generated masks are keyed by a fingerprint of the image bytes and the
effective mask options, and stored in Redis as base64 with a TTL.
"""

import base64
import hashlib
import json
from typing import Optional

from homedecor.engines.masking.schemas import MaskOptions


def compute_fingerprint(image_bytes: bytes, options: MaskOptions) -> str:
    """sha256 over the image digest and the canonical JSON of the options."""
    image_digest = hashlib.sha256(image_bytes).hexdigest()
    canonical = json.dumps(options.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(f"{image_digest}:{canonical}".encode()).hexdigest()


class MaskCacheRepository:
    """Repository for caching generated masks in Redis."""

    def __init__(self, redis_client, ttl: int = 3600):
        self.redis = redis_client
        self.ttl = ttl
        self.prefix = "mask"

    def _key(self, fingerprint: str) -> str:
        return f"{self.prefix}:{fingerprint}"

    async def get(self, fingerprint: str) -> Optional[bytes]:
        cached = await self.redis.get(self._key(fingerprint))
        return base64.b64decode(cached) if cached else None

    async def set(self, fingerprint: str, mask_png: bytes):
        await self.redis.setex(
            self._key(fingerprint),
            self.ttl,
            base64.b64encode(mask_png).decode("ascii")
        )
