# Path: core/expansion/prompts.py
# Purpose: Build LLM instructions for category extensions, abstract expansions and abstractness checks.
# Layer: core/expansion.
# Details: Also holds the curated expansions that are merged ahead of generated ones.

from __future__ import annotations

from typing import Dict, List, Sequence

from core.models.domain import SourceMode

STRUCTURED_SLOTS = ("style", "palette", "typography", "composition")

CURATED_EXPANSIONS: Dict[str, List[str]] = {
    "love": [
        "soft pink and red gradient background",
        "rounded shapes with warm colors",
        "gentle glowing effects and pastel colors",
    ],
    "fun": [
        "bright saturated colors with playful rounded shapes",
        "vibrant colorful buttons and icons",
        "bold colorful text on bright backgrounds",
    ],
    "cozy": [
        "warm brown and orange color scheme",
        "soft rounded corners with warm lighting",
        "warm ambient colors with soft shadows",
    ],
    "serious": [
        "black and white color scheme",
        "sharp edges with high contrast",
        "structured grid layout with minimal colors",
    ],
    "dark": [
        "black background with white elements",
        "dark color palette with high contrast",
        "low-light composition with bright accents",
    ],
}

_CATEGORY_NOUNS = {
    "website": "website designs",
    "packaging": "packaging designs",
    "brand": "brand identity designs",
    "graphic": "graphic designs",
    "logo": "logo designs",
    "app": "app interface designs",
    "fonts": "typeface specimens",
}


def category_noun(category: str) -> str:
    return _CATEGORY_NOUNS.get(category, f"{category} designs")


def _mode_sentence(term: str, source_mode: SourceMode) -> str:
    if source_mode is SourceMode.VIBE:
        return (
            f'The user picked "{term}" as a mood or vibe. Describe how that feeling shows up visually: '
            "colors, light, shapes, textures and layout."
        )
    return (
        f'The user typed "{term}" into a search bar. Describe the literal, concrete visual elements '
        "someone expects to see when they search for it."
    )


def build_grounding_prompt(term: str, category: str, source_mode: SourceMode) -> str:
    """Ask for 3-5 literal visual groundings of the term within a category."""

    noun = category_noun(category)
    return f"""You help a visual search engine match short queries against {noun}.
{_mode_sentence(term, source_mode)}

Write 3 to 5 short visual groundings for "{term}" as they would appear in {noun}.
Each grounding names something a viewer can actually see (objects, materials, colors, shapes,
rendering techniques). No brand names, no emotions without a visual, no full sentences.

Example for "3d" in website designs: ["glossy rendered 3d objects", "isometric scenes with soft shadows",
"floating shapes with depth and perspective"]

Return ONLY a JSON array of strings."""


def build_structured_prompt(term: str, category: str, source_mode: SourceMode) -> str:
    """Ask for a fixed-slot phrase: style, palette, typography, composition."""

    noun = category_noun(category)
    return f"""You help a visual search engine match short queries against {noun}.
{_mode_sentence(term, source_mode)}

Describe "{term}" for {noun} with exactly four short phrases, in this order:
1. style (design movement or rendering style)
2. palette (dominant colors)
3. typography (type treatment)
4. composition (layout and spacing)

Return ONLY a JSON array of exactly four strings, e.g.
["flat minimal style", "muted blue and grey palette", "geometric sans-serif typography", "centered airy composition"]"""


def build_extension_prompt(term: str, category: str, source_mode: SourceMode, grounding: bool) -> str:
    if grounding:
        return build_grounding_prompt(term, category, source_mode)
    return build_structured_prompt(term, category, source_mode)


def format_extension(items: Sequence[str], grounding: bool) -> str:
    """Join parsed phrases into one extension string."""

    if not grounding and len(items) == len(STRUCTURED_SLOTS):
        return ", ".join(
            item if item.lower().endswith(slot) else f"{item} {slot}" for item, slot in zip(items, STRUCTURED_SLOTS)
        )
    return ", ".join(items)


def build_expansion_prompt(term: str) -> str:
    """Ask for 4-6 visual descriptions of an abstract query."""

    return f"""Expand the abstract query "{term}" into 4-6 visual descriptions that CLIP can match against design images.
Focus on general visual patterns, colors, and design elements - not overly specific scenarios.

Write descriptions that are concrete enough for CLIP to understand (specific colors, shapes, patterns)
and general enough to match many designs.

Examples:
- "love" -> ["soft pink and red gradient background", "rounded shapes with warm colors", "warm-toned color palette"]
- "serious" -> ["black and white color scheme", "sharp edges with high contrast", "geometric shapes in monochrome"]

Return ONLY a JSON array of strings."""


def build_classifier_prompt(term: str) -> str:
    """Ask whether a short design query is abstract (mood, feeling) or concrete (objects, techniques)."""

    return f"""Classify the design search query "{term}".
Answer "abstract" if it names a mood, feeling, vibe or quality (e.g. "love", "calm", "playful").
Answer "concrete" if it names objects, techniques, industries or visual elements (e.g. "3d", "bottle", "saas").

Return ONLY a JSON array with one string: ["abstract"] or ["concrete"]."""
