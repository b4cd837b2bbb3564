import json
from app.llm.types import (
    ARCHETYPES,
    FORMALITY_BANDS,
    MATERIAL_FAMILIES,
    PALETTE_COLORS,
    PATTERN_LEVELS,
    SEASON_HEAVINESS,
    STATEMENT_LEVELS,
)


def build_system_prompt(prompt_version: str) -> str:
    return (
        f"[prompt {prompt_version}] You describe the style of a single clothing item in a photo. "
        "Use ONLY the allowed values provided; answer 'unknown' when unsure. "
        "Output a single JSON object and nothing else."
    )


def build_user_prompt() -> str:
    schema = {
        "version": 1,
        "aesthetic": {"primary": "...", "primary_confidence": 0.0, "secondary": "... or none", "secondary_confidence": 0.0},
        "formality": {"band": "...", "confidence": 0.0},
        "statement": {"level": "...", "confidence": 0.0},
        "season": {"heaviness": "...", "confidence": 0.0},
        "palette": {"colors": ["..."], "confidence": 0.0},
        "pattern": {"level": "...", "confidence": 0.0},
        "material": {"family": "...", "confidence": 0.0},
    }
    allowed = {
        "aesthetic": sorted(ARCHETYPES),
        "formality": sorted(FORMALITY_BANDS),
        "statement": sorted(STATEMENT_LEVELS),
        "season": sorted(SEASON_HEAVINESS),
        "palette": sorted(PALETTE_COLORS),
        "pattern": sorted(PATTERN_LEVELS),
        "material": sorted(MATERIAL_FAMILIES),
    }
    return json.dumps({"schema": schema, "allowed": allowed, "max_palette_colors": 4}, ensure_ascii=False)
