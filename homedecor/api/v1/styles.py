from typing import List

from fastapi import APIRouter

from homedecor.modules.requests.schemas import StyleResponse
from homedecor.pipeline.prompts import describe_style, get_available_styles

router = APIRouter()


@router.get("", response_model=List[StyleResponse])
async def list_styles():
    """Known style labels. Any other label is accepted too and gets the generic prompt."""
    return [{"label": label, "description": describe_style(label)} for label in get_available_styles()]
