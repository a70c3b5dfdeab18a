from pydantic import BaseModel, Field, model_validator
from typing import List, Optional


class GeneratedImage(BaseModel):
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None

    @model_validator(mode="after")
    def check_payload(self) -> "GeneratedImage":
        if not self.url and not self.b64_json:
            raise ValueError("generated image carries neither url nor b64_json")
        return self


class GenerationResponse(BaseModel):
    """Image edit API response (version 1)."""
    created: Optional[int] = None
    data: List[GeneratedImage] = Field(..., min_length=1)
