"""
Prompt Resolution

A non-blank custom prompt is sent verbatim. Otherwise the prompt is built
deterministically from the style label, so the same request always produces
the same prompt.
"""

from typing import Dict, List, Optional

FALLBACK_TEMPLATE = (
    "Update the decor style to {style}. Maintain the room's structural integrity, "
    "including walls, windows, ceiling, and floor. Focus on changing decor elements "
    "like furniture, wall art, and lighting."
)

STYLE_CATALOGUE: Dict[str, str] = {
    "Modern": "Clean lines, neutral palette with a bold accent, sleek surfaces and metal or glass details.",
    "Minimalist": "Only essential pieces, monochrome whites and greys, uncluttered surfaces and texture over ornament.",
    "Industrial": "Raw materials, exposed brick or concrete, steel accents and dark, moody tones.",
    "Scandinavian": "Bright and airy, light wood, cozy textiles, soft whites and a few plants.",
    "Mid-Century Modern": "Tapered-leg furniture, organic shapes, earthy colours and graphic patterns.",
    "Coastal": "Relaxed and breezy, white shiplap, sandy neutrals with blue accents, natural fibres.",
    "Contemporary": "Current and uncluttered, soft greys, mixed textures and bold accent pieces.",
    "Traditional": "Classic furniture, rich wood tones, symmetry, moldings and ornate rugs.",
    "Transitional": "A balance of traditional and modern, neutral walls and subtle patterns.",
    "Bohemian": "Eclectic and layered, vibrant colours, global textiles, vintage finds and plants.",
}


def build_fallback_prompt(style_label: str) -> str:
    return FALLBACK_TEMPLATE.format(style=style_label.strip())


def resolve_prompt(style_label: str, custom_prompt: Optional[str] = None) -> str:
    """Custom prompt verbatim when non-blank, else the style fallback."""
    if custom_prompt is not None and custom_prompt.strip():
        return custom_prompt
    return build_fallback_prompt(style_label)


def get_available_styles() -> List[str]:
    return list(STYLE_CATALOGUE)


def describe_style(style_label: str) -> Optional[str]:
    """Catalogue description for a style label, matched case-insensitively."""
    wanted = style_label.strip().lower()
    for label, description in STYLE_CATALOGUE.items():
        if label.lower() == wanted:
            return description
    return None
