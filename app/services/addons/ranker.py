import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

ATTRIBUTE_GROUPS: tuple[tuple[str, ...], ...] = (
    ("gold", "golden", "brass"),
    ("tan", "camel", "beige", "khaki"),
    ("structured", "boxy", "rigid"),
    ("minimal", "simple", "clean"),
    ("leather", "faux_leather", "vegan_leather"),
    ("neutral", "nude", "cream", "ivory"),
)

# any member -> its whole group
SYNONYMS: dict[str, tuple[str, ...]] = {member: group for group in ATTRIBUTE_GROUPS for member in group}

CATEGORY_MATCH = 100
PRIORITY_BONUS = 40
PRIORITY_STEP = 20
ATTRIBUTE_MATCH = 10
ATTRIBUTE_CAP = 30

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class AddOnColor:
    hex: str
    name: Optional[str] = None


@dataclass(frozen=True)
class AddOnItem:
    id: str
    category: str
    colors: tuple[AddOnColor, ...] = ()
    detected_label: Optional[str] = None
    user_style_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class ElevateBullet:
    category: str
    attributes: tuple[str, ...] = ()


def tokenize(text: str) -> set[str]:
    return set(_NON_ALNUM.sub(" ", text.lower()).split())


def matchable_text(item: AddOnItem) -> str:
    parts: list[str] = []
    if item.colors and item.colors[0].name:
        parts.append(item.colors[0].name)
    if item.detected_label:
        parts.append(item.detected_label)
    parts.extend(item.user_style_tags)
    return " ".join(parts)


def wanted_categories(suggestions: Iterable[ElevateBullet]) -> list[str]:
    seen: list[str] = []
    for bullet in suggestions:
        if bullet.category not in seen:
            seen.append(bullet.category)
    return seen


def wanted_attributes(suggestions: Iterable[ElevateBullet]) -> set[str]:
    wanted: set[str] = set()
    for bullet in suggestions:
        for attr in bullet.attributes:
            normalized = attr.lower().strip()
            if normalized in SYNONYMS:
                wanted.update(SYNONYMS[normalized])
            elif normalized:
                wanted.add(normalized)
    return wanted


def score_add_on(item: AddOnItem, categories: Sequence[str], attributes: set[str]) -> int:
    score = 0
    if item.category in categories:
        rank = categories.index(item.category)
        score += CATEGORY_MATCH + max(0, PRIORITY_BONUS - PRIORITY_STEP * rank)
    matches = len(attributes & tokenize(matchable_text(item)))
    score += min(matches * ATTRIBUTE_MATCH, ATTRIBUTE_CAP)
    return score


def rank_add_ons(items: Sequence[AddOnItem], suggestions: Optional[Sequence[ElevateBullet]]) -> list[AddOnItem]:
    """Order add-on candidates by how well they answer the "elevate" suggestions.

    Pure and stable: equal scores keep their input order, and no suggestions leaves
    the input order untouched.
    """
    if not items:
        return []
    suggestions = suggestions or ()
    categories = wanted_categories(suggestions)
    attributes = wanted_attributes(suggestions)
    scored = [(score_add_on(item, categories, attributes), idx, item) for idx, item in enumerate(items)]
    scored.sort(key=lambda t: (-t[0], t[1]))
    return [item for _, _, item in scored]
