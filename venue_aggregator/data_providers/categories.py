"""
Category Taxonomy

Static lookup table from normalized provider category labels to the
canonical category, subcategory and mood tags. The table is validated
when this module is imported so a bad entry fails at startup instead of
silently falling through at merge time.

Mood tags are a lossy keyword heuristic, not ground truth. Every
derivation returns a confidence so callers can tell a table hit from a
keyword guess or the default.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional


STANDARD_CATEGORIES = frozenset({
    "Restaurant",
    "Bar",
    "Entertainment",
    "Activity",
    "Shopping",
    "Service",
})

MOOD_TAGS = frozenset({
    "cozy",
    "energetic",
    "special",
    "relaxed",
    "romantic",
    "social",
    "cultural",
    "adventurous",
    "quick",
})

DEFAULT_MOOD_TAGS = ("cozy",)

# Confidence by how the mood tags were derived
TABLE_CONFIDENCE = 0.9
PARTIAL_CONFIDENCE = 0.7
KEYWORD_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE = 0.2


@dataclass(frozen=True)
class CategoryMapping:
    category: str
    subcategory: str
    mood_tags: tuple[str, ...]


def _m(category: str, subcategory: str, *mood_tags: str) -> CategoryMapping:
    return CategoryMapping(category, subcategory, tuple(mood_tags))


CATEGORY_TABLE: dict[str, CategoryMapping] = {
    # Food
    "restaurant": _m("Restaurant", "Restaurant", "social"),
    "restaurants": _m("Restaurant", "Restaurant", "social"),
    "food": _m("Restaurant", "Restaurant", "social"),
    "coffee shop": _m("Restaurant", "Coffee Shop", "cozy", "relaxed"),
    "coffee & tea": _m("Restaurant", "Coffee Shop", "cozy", "relaxed"),
    "coffee": _m("Restaurant", "Coffee Shop", "cozy", "relaxed"),
    "cafe": _m("Restaurant", "Cafe", "cozy", "relaxed"),
    "café": _m("Restaurant", "Cafe", "cozy", "relaxed"),
    "bakery": _m("Restaurant", "Bakery", "cozy", "quick"),
    "fine dining": _m("Restaurant", "Fine Dining", "special", "romantic"),
    "casual dining": _m("Restaurant", "Casual Dining", "relaxed", "social"),
    "fast food": _m("Restaurant", "Fast Food", "quick"),
    "pizza": _m("Restaurant", "Pizza", "social", "quick"),
    "food truck": _m("Restaurant", "Food Truck", "quick"),
    # Drinks and nightlife
    "bar": _m("Bar", "Bar", "social", "energetic"),
    "bars": _m("Bar", "Bar", "social", "energetic"),
    "pub": _m("Bar", "Pub", "social", "relaxed"),
    "cocktail bar": _m("Bar", "Cocktail Bar", "special", "romantic"),
    "wine bar": _m("Bar", "Wine Bar", "romantic", "relaxed"),
    "sports bar": _m("Bar", "Sports Bar", "energetic", "social"),
    "brewery": _m("Bar", "Brewery", "social", "relaxed"),
    "nightclub": _m("Entertainment", "Nightclub", "energetic", "social"),
    "nightlife": _m("Entertainment", "Nightlife", "energetic", "social"),
    # Culture and entertainment
    "arts": _m("Entertainment", "Arts", "cultural"),
    "museum": _m("Entertainment", "Museum", "cultural", "relaxed"),
    "art gallery": _m("Entertainment", "Art Gallery", "cultural", "relaxed"),
    "theater": _m("Entertainment", "Theater", "cultural", "special"),
    "music venue": _m("Entertainment", "Music Venue", "energetic", "social"),
    "cinema": _m("Entertainment", "Cinema", "relaxed"),
    # Activities
    "active": _m("Activity", "Active Life", "adventurous", "energetic"),
    "park": _m("Activity", "Park", "relaxed", "adventurous"),
    "gym": _m("Activity", "Gym", "energetic"),
    "bowling": _m("Activity", "Bowling", "social", "energetic"),
    # Shopping and services
    "shopping": _m("Shopping", "Shopping", "relaxed"),
    "market": _m("Shopping", "Market", "social"),
    "store": _m("Shopping", "Store", "quick"),
    "business": _m("Service", "Business", "quick"),
    "service": _m("Service", "Service", "quick"),
}

# Keyword heuristics used when no table key matches
MOOD_KEYWORD_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("coffee", "cafe", "café", "tea"), ("cozy",)),
    (("bar", "club", "pub", "lounge"), ("energetic",)),
    (("fine dining", "upscale", "tasting"), ("special",)),
)

FEATURE_MOOD_RULES: dict[str, tuple[str, ...]] = {
    "live_music": ("energetic",),
    "outdoor_seating": ("relaxed",),
    "full_bar": ("social",),
}


def normalize_label(label: str) -> str:
    """Lowercase and collapse whitespace."""
    return re.sub(r"\s+", " ", (label or "").strip().lower())


def validate_category_table(table: dict[str, CategoryMapping]) -> None:
    """
    Raises:
        ValueError: a key is not normalized, a category is not standard,
            or a mood tag is unknown
    """
    for key, mapping in table.items():
        if key != normalize_label(key) or not key:
            raise ValueError(f"Category key {key!r} is not normalized")
        if mapping.category not in STANDARD_CATEGORIES:
            raise ValueError(f"Category {key!r} maps to unknown category {mapping.category!r}")
        if not mapping.mood_tags:
            raise ValueError(f"Category {key!r} has no mood tags")
        unknown = set(mapping.mood_tags) - MOOD_TAGS
        if unknown:
            raise ValueError(f"Category {key!r} has unknown mood tags {sorted(unknown)}")


validate_category_table(CATEGORY_TABLE)

# Longest keys first so "cocktail bar" wins over "bar"
_PARTIAL_KEYS = sorted(CATEGORY_TABLE, key=len, reverse=True)


def lookup_category(label: str) -> tuple[Optional[CategoryMapping], bool]:
    """
    Map a provider label to a canonical category.

    Returns:
        (mapping, exact) where exact is False for a whole-word partial match;
        (None, False) when nothing matches
    """
    normalized = normalize_label(label)
    if not normalized:
        return None, False
    if normalized in CATEGORY_TABLE:
        return CATEGORY_TABLE[normalized], True
    for key in _PARTIAL_KEYS:
        if re.search(rf"\b{re.escape(key)}\b", normalized):
            return CATEGORY_TABLE[key], False
    return None, False


def derive_mood_tags(labels: Iterable[str], features: Iterable[str] = ()) -> tuple[tuple[str, ...], float]:
    """
    Heuristic mood tags from category labels and feature keywords.

    Returns:
        (tags, confidence); falls back to DEFAULT_MOOD_TAGS with low confidence
    """
    labels = [normalize_label(label) for label in labels if label]

    for label in labels:
        mapping, exact = lookup_category(label)
        if mapping is not None:
            return mapping.mood_tags, TABLE_CONFIDENCE if exact else PARTIAL_CONFIDENCE

    tags: list[str] = []
    for label in labels:
        for keywords, mood in MOOD_KEYWORD_RULES:
            if any(k in label for k in keywords):
                tags.extend(t for t in mood if t not in tags)
    for feature in features:
        for tag in FEATURE_MOOD_RULES.get(feature, ()):
            if tag not in tags:
                tags.append(tag)

    if tags:
        return tuple(tags), KEYWORD_CONFIDENCE
    return DEFAULT_MOOD_TAGS, DEFAULT_CONFIDENCE
