"""
Data Normalizer

Merges raw records from several providers that describe the same venue
into one canonical venue. Each field walks the records in provider
priority order and takes the first value that transforms cleanly and
passes its validator.
"""
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional
from loguru import logger

from venue_aggregator.data_providers.categories import (
    derive_mood_tags,
    lookup_category,
)
from venue_aggregator.data_providers.models import (
    CanonicalVenue,
    Coordinates,
    DataSourceInfo,
    RawVenueRecord,
)


REQUIRED_FIELDS = ("name", "address", "coordinates", "category")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]{10,}$")
URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
MAX_DESCRIPTION_LENGTH = 500
MAX_IMAGES = 10


class FieldRejected(ValueError):
    """Transform could not produce a value for this source."""


# ==================== Transforms ====================

def clean_text(value: Any) -> str:
    if value is None:
        raise FieldRejected("empty")
    text = re.sub(r"\s+", " ", str(value)).strip()
    if not text:
        raise FieldRejected("empty")
    return text


def clean_address(value: Any) -> str:
    text = clean_text(value)
    text = re.sub(r"\s*,\s*", ", ", text)
    text = re.sub(r"(,\s*)+", ", ", text).strip(" ,")
    if not text:
        raise FieldRejected("empty address")
    return text


def normalize_rating(value: Any) -> float:
    if value is None:
        raise FieldRejected("no rating")
    rating = float(value)
    return round(min(5.0, max(0.0, rating)), 1)


def normalize_review_count(value: Any) -> int:
    if value is None:
        raise FieldRejected("no review count")
    return max(0, int(value))


def normalize_price(value: Any) -> int:
    """'$$' -> 2, integers clamped to 1..4."""
    if value is None or value == "":
        raise FieldRejected("no price")
    if isinstance(value, str):
        stripped = value.strip()
        if stripped and set(stripped) <= {"$", "€", "£"}:
            return min(4, len(stripped))
        value = int(stripped)
    return min(4, max(1, int(value)))


def normalize_phone(value: Any) -> str:
    """Digits only; 10 digits assumed North American."""
    if not value:
        raise FieldRejected("no phone")
    digits = re.sub(r"\D", "", str(value))
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) >= 10:
        return f"+{digits}"
    raise FieldRejected(f"phone too short: {value}")


def normalize_feature(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.strip().lower()).strip("_")


def is_valid_url(value: str) -> bool:
    return bool(value) and bool(URL_PATTERN.match(value))


# ==================== Field Rules ====================

@dataclass(frozen=True)
class FieldRule:
    """How one canonical field is extracted, transformed and validated."""
    name: str
    getter: Callable[[RawVenueRecord], Any]
    transform: Callable[[Any], Any]
    validator: Callable[[Any], bool] = lambda value: value is not None


def _category_transform(record_value: tuple[str, tuple[str, ...]]) -> tuple[str, str]:
    """Table mapping for the primary label or an alias, else the provider's own label."""
    primary, aliases = record_value
    for label in (primary, *aliases):
        mapping, _ = lookup_category(label)
        if mapping is not None:
            return mapping.category, mapping.subcategory
    label = clean_text(primary)
    return label, label


def _coordinates_transform(value: Optional[Coordinates]) -> Coordinates:
    if value is None:
        raise FieldRejected("no coordinates")
    return Coordinates(float(value.lat), float(value.lng))


def _description_transform(value: Any) -> str:
    return clean_text(value)[:MAX_DESCRIPTION_LENGTH]


def _hours_transform(value: Any) -> tuple:
    if not value:
        raise FieldRejected("no hours")
    return tuple(value)


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule("name", lambda r: r.name, clean_text, lambda v: 0 < len(v) <= 200),
    FieldRule("address", lambda r: r.address, clean_address, lambda v: len(v) >= 3),
    FieldRule("coordinates", lambda r: r.coordinates, _coordinates_transform, lambda v: v.is_valid()),
    FieldRule(
        "category",
        lambda r: (r.category, r.categories),
        _category_transform,
        lambda v: bool(v[0]),
    ),
    FieldRule("rating", lambda r: r.rating, normalize_rating, lambda v: 0.0 <= v <= 5.0),
    FieldRule("review_count", lambda r: r.review_count, normalize_review_count, lambda v: v >= 0),
    FieldRule("price_level", lambda r: r.price_level, normalize_price, lambda v: 1 <= v <= 4),
    FieldRule("phone", lambda r: r.phone, normalize_phone, lambda v: bool(PHONE_PATTERN.match(v))),
    FieldRule("website", lambda r: r.website, clean_text, is_valid_url),
    FieldRule("description", lambda r: r.description, _description_transform, lambda v: len(v) > 0),
    FieldRule("hours", lambda r: r.hours, _hours_transform, lambda v: len(v) > 0),
)


# ==================== Engine ====================

class NormalizationEngine:
    """
    Field-level merge of raw provider records.

    Features:
    - Deterministic provider priority ordering (input order irrelevant)
    - Optional per-field priority overrides
    - Transform + validate per field, first acceptable source wins
    - Rejects merges missing name, address, coordinates or category
    - Heuristic mood tags with an advisory confidence
    """

    def __init__(
        self,
        source_priorities: dict[str, int],
        field_priorities: Optional[dict[str, dict[str, int]]] = None,
    ):
        self._source_priorities = dict(source_priorities)
        self._field_priorities = {k: dict(v) for k, v in (field_priorities or {}).items()}

    def update_priorities(self, source_priorities: dict[str, int]) -> None:
        """Swap provider priorities after a registry reload."""
        self._source_priorities = dict(source_priorities)

    def _order(self, records: Iterable[RawVenueRecord], field: Optional[str] = None) -> list[RawVenueRecord]:
        overrides = self._field_priorities.get(field, {}) if field else {}

        def key(record: RawVenueRecord):
            priority = overrides.get(record.source, self._source_priorities.get(record.source, 0))
            return (-priority, record.source, record.external_id)

        return sorted(records, key=key)

    def _accepted(self, records: list[RawVenueRecord]) -> list[RawVenueRecord]:
        accepted = []
        for record in records:
            if record.source not in self._source_priorities:
                logger.warning(
                    f"Dropping record {record.external_id} from {record.source}: provider not enabled"
                )
                continue
            accepted.append(record)
        return accepted

    def _resolve(self, rule: FieldRule, records: list[RawVenueRecord]) -> tuple[Any, Optional[str]]:
        """First transformed and validated value, with the source that supplied it."""
        for record in self._order(records, rule.name):
            raw_value = rule.getter(record)
            try:
                value = rule.transform(raw_value)
            except (FieldRejected, TypeError, ValueError, AttributeError):
                continue
            try:
                if rule.validator(value):
                    return value, record.source
            except (TypeError, ValueError):
                continue
        return None, None

    def merge(self, records: Iterable[RawVenueRecord]) -> Optional[CanonicalVenue]:
        """
        Merge records describing one venue.

        Returns:
            CanonicalVenue, or None when a required field cannot be resolved
        """
        records = self._order(self._accepted(list(records)))
        if not records:
            return None

        values: dict[str, Any] = {}
        for rule in FIELD_RULES:
            value, _ = self._resolve(rule, records)
            values[rule.name] = value

        missing = [f for f in REQUIRED_FIELDS if not values.get(f)]
        if missing:
            logger.debug(
                f"Merge rejected for {records[0].source}:{records[0].external_id}, missing {missing}"
            )
            return None

        category, subcategory = values["category"]
        features = self._merge_features(records)
        images = self._merge_images(records)
        labels = [label for r in records for label in (r.category, *r.categories)]
        mood_tags, mood_confidence = derive_mood_tags(labels, features)

        sources = tuple(
            DataSourceInfo(
                provider=r.source,
                external_id=r.external_id,
                confidence=self.source_confidence(r),
                last_updated=r.fetched_at,
                is_active=True,
            )
            for r in records
        )
        seed = records[0]

        return CanonicalVenue(
            id=self.canonical_id(seed.source, values["name"], values["coordinates"]),
            name=values["name"],
            address=values["address"],
            coordinates=values["coordinates"],
            category=category,
            subcategory=subcategory,
            rating=values["rating"],
            review_count=values["review_count"],
            price_level=values["price_level"],
            phone=values["phone"] or "",
            website=values["website"] or "",
            description=values["description"] or "",
            image_url=images[0] if images else "",
            image_urls=tuple(images),
            hours=values["hours"] or (),
            features=tuple(features),
            mood_tags=tuple(mood_tags),
            mood_tag_confidence=mood_confidence,
            sources=sources,
            primary_source=seed.source,
            data_quality_score=self.quality_score(sources),
            provider_refs={
                r.source: {"external_id": r.external_id, "raw": r.raw} for r in records
            },
        )

    def normalize(self, record: RawVenueRecord) -> Optional[CanonicalVenue]:
        """Canonical venue from a single provider record."""
        return self.merge([record])

    def merge_groups(self, groups: Iterable[list[RawVenueRecord]]) -> list[CanonicalVenue]:
        """Merge each group, dropping rejected ones."""
        venues = []
        rejected = 0
        for group in groups:
            venue = self.merge(group)
            if venue is None:
                rejected += 1
            else:
                venues.append(venue)
        if rejected:
            logger.info(f"Rejected {rejected} venue groups missing required fields")
        return venues

    # ==================== Helpers ====================

    @staticmethod
    def canonical_id(source: str, name: str, coordinates: Coordinates) -> str:
        slug = re.sub(r"[^a-z0-9]", "", name.lower())
        return f"{source}-{slug}-{str(coordinates.lat)[:8]}-{str(coordinates.lng)[:8]}"

    @staticmethod
    def source_confidence(record: RawVenueRecord) -> float:
        """0.5 base plus 0.1 per populated core attribute."""
        confidence = 0.5
        if record.name and record.name.strip():
            confidence += 0.1
        if record.address and record.address.strip():
            confidence += 0.1
        if record.coordinates is not None and record.coordinates.is_valid():
            confidence += 0.1
        if record.rating:
            confidence += 0.1
        if record.review_count:
            confidence += 0.1
        return round(min(1.0, confidence), 4)

    @staticmethod
    def quality_score(sources: tuple[DataSourceInfo, ...]) -> float:
        """Average source confidence plus a capped corroboration bonus."""
        if not sources:
            return 0.0
        average = sum(s.confidence for s in sources) / len(sources)
        bonus = min(0.2, (len(sources) - 1) * 0.05)
        return round(min(1.0, average + bonus), 4)

    def _merge_features(self, records: list[RawVenueRecord]) -> list[str]:
        features = set()
        for record in records:
            for feature in record.features:
                normalized = normalize_feature(feature)
                if normalized:
                    features.add(normalized)
        return sorted(features)

    def _merge_images(self, records: list[RawVenueRecord]) -> list[str]:
        images: list[str] = []
        for record in self._order(records, "image_urls"):
            for url in record.image_urls:
                if is_valid_url(url) and url not in images:
                    images.append(url)
                if len(images) >= MAX_IMAGES:
                    return images
        return images
