from abc import ABC, abstractmethod
from typing import List, Tuple

from homedecor.core.logging import get_logger

logger = get_logger(__name__)

ProductMatch = Tuple[str, float]


class IProductMatcher(ABC):

    @abstractmethod
    async def detect_and_match(self, image_url: str) -> List[ProductMatch]:
        """Products visible in the image as (product_id, score), best first."""
        pass


class MockProductMatcherService(IProductMatcher):
    """Fixed ranked list, for development and tests."""

    MATCHES: List[ProductMatch] = [
        ("mock-sofa-001", 0.92),
        ("mock-coffee-table-003", 0.87),
        ("mock-lamp-015", 0.81),
        ("mock-rug-007", 0.75),
        ("mock-wall-art-012", 0.68),
    ]

    async def detect_and_match(self, image_url: str) -> List[ProductMatch]:
        logger.debug("mock_product_match", image_url=image_url, matches=len(self.MATCHES))
        return list(self.MATCHES)
