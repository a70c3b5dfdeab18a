from homedecor.engines.generation.client import ImageGenerationClient
from homedecor.engines.generation.schemas import GenerationResponse

__all__ = ["ImageGenerationClient", "GenerationResponse"]
