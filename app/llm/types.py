from typing import Any, List, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ARCHETYPES = {
    "minimalist", "classic", "workwear", "romantic", "boho", "western",
    "street", "sporty", "edgy", "glam", "preppy", "outdoor_utility",
}
FORMALITY_BANDS = {"athleisure", "casual", "smart_casual", "office", "formal", "evening"}
STATEMENT_LEVELS = {"low", "medium", "high"}
SEASON_HEAVINESS = {"light", "mid", "heavy"}
PATTERN_LEVELS = {"solid", "subtle", "bold"}
MATERIAL_FAMILIES = {"denim", "knit", "leather", "silk_satin", "cotton", "wool", "synthetic_tech", "other"}
PALETTE_COLORS = {
    "black", "white", "cream", "gray", "brown", "tan", "beige", "navy", "denim_blue", "blue",
    "red", "pink", "green", "olive", "yellow", "orange", "purple", "metallic", "multicolor",
}

REQUIRED_KEYS = {
    "aesthetic": "primary",
    "formality": "band",
    "statement": "level",
    "season": "heaviness",
    "palette": "colors",
    "pattern": "level",
    "material": "family",
}

SECONDARY_MIN_CONFIDENCE = 0.35
MAX_PALETTE_COLORS = 4


def clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


def _pick(value: Any, allowed: set[str], fallback: str = "unknown") -> str:
    return value if isinstance(value, str) and value in allowed else fallback


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True)

    @field_validator("*", mode="before")
    @classmethod
    def _clamp(cls, v, info):
        if info.field_name.endswith("confidence"):
            return clamp_confidence(v)
        return v


class Aesthetic(_Section):
    primary: str = "unknown"
    primary_confidence: float = 0.0
    secondary: str = "none"
    secondary_confidence: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["primary"] = _pick(data.get("primary"), ARCHETYPES)
        data["secondary"] = _pick(data.get("secondary"), ARCHETYPES, "none")
        secondary_conf = clamp_confidence(data.get("secondary_confidence"))
        if secondary_conf < SECONDARY_MIN_CONFIDENCE or data["secondary"] == data["primary"]:
            data["secondary"] = "none"
            secondary_conf = 0.0
        data["secondary_confidence"] = secondary_conf
        return data


class Formality(_Section):
    band: str = "unknown"
    confidence: float = 0.0

    @field_validator("band", mode="before")
    @classmethod
    def _band(cls, v):
        return _pick(v, FORMALITY_BANDS)


class Statement(_Section):
    level: str = "unknown"
    confidence: float = 0.0

    @field_validator("level", mode="before")
    @classmethod
    def _level(cls, v):
        return _pick(v, STATEMENT_LEVELS)


class Season(_Section):
    heaviness: str = "unknown"
    confidence: float = 0.0

    @field_validator("heaviness", mode="before")
    @classmethod
    def _heaviness(cls, v):
        return _pick(v, SEASON_HEAVINESS)


class Palette(_Section):
    colors: List[str] = Field(default_factory=lambda: ["unknown"])
    confidence: float = 0.0

    @field_validator("colors", mode="before")
    @classmethod
    def _colors(cls, v):
        if not isinstance(v, list):
            return ["unknown"]
        valid = [c for c in v if isinstance(c, str) and c in PALETTE_COLORS][:MAX_PALETTE_COLORS]
        return valid or ["unknown"]


class Pattern(_Section):
    level: str = "unknown"
    confidence: float = 0.0

    @field_validator("level", mode="before")
    @classmethod
    def _level(cls, v):
        return _pick(v, PATTERN_LEVELS)


class Material(_Section):
    family: str = "unknown"
    confidence: float = 0.0

    @field_validator("family", mode="before")
    @classmethod
    def _family(cls, v):
        return _pick(v, MATERIAL_FAMILIES)


class StyleSignal(BaseModel):
    """Structured output of a vision analysis.

    Every section is required; values inside a section are normalized to the
    known vocabularies instead of being rejected.
    """

    model_config = ConfigDict(frozen=True)

    version: int = 1
    aesthetic: Aesthetic
    formality: Formality
    statement: Statement
    season: Season
    palette: Palette
    pattern: Pattern
    material: Material

    @model_validator(mode="before")
    @classmethod
    def _require_sections(cls, data):
        if not isinstance(data, dict):
            raise ValueError("signal must be an object")
        for section, key in REQUIRED_KEYS.items():
            value = data.get(section)
            if isinstance(value, BaseModel):
                continue
            if not isinstance(value, dict) or value.get(key) in (None, "", []):
                raise ValueError(f"missing {section}.{key}")
        return data

    @field_validator("version", mode="before")
    @classmethod
    def _version(cls, v):
        return v if isinstance(v, int) and not isinstance(v, bool) and v > 0 else 1

    @classmethod
    def unknown(cls) -> "StyleSignal":
        return cls(
            aesthetic=Aesthetic(),
            formality=Formality(),
            statement=Statement(),
            season=Season(),
            palette=Palette(),
            pattern=Pattern(),
            material=Material(),
        )


OperationType = Literal["scan", "wardrobe_add"]


class VisionRequest(BaseModel):
    image_data_url: str
    prompt_version: str
    max_output_tokens: int = 800


class VisionResponse(BaseModel):
    content: str = ""
    model: str = ""
    latency_ms: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
