"""
Venue Data Models

Value types shared across adapters, the normalization engine,
the quality validator and the orchestrator.
"""
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


EARTH_RADIUS_METERS = 6_371_000
STALE_AFTER_HOURS = 24
MAX_QUERY_LIMIT = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Coordinates:
    """Geographic point in decimal degrees."""
    lat: float
    lng: float

    def is_valid(self) -> bool:
        """Latitude within [-90, 90] and longitude within [-180, 180]."""
        try:
            lat, lng = float(self.lat), float(self.lng)
        except (TypeError, ValueError):
            return False
        if math.isnan(lat) or math.isnan(lng):
            return False
        return -90 <= lat <= 90 and -180 <= lng <= 180

    def is_over_precise(self, max_decimals: int = 10) -> bool:
        """More than max_decimals digits after the point usually means synthetic data."""
        return any(_decimal_places(v) > max_decimals for v in (self.lat, self.lng))

    def distance_to(self, other: "Coordinates") -> float:
        """Haversine distance in meters."""
        lat1, lat2 = math.radians(self.lat), math.radians(other.lat)
        dlat = lat2 - lat1
        dlng = math.radians(other.lng - self.lng)
        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
        return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


def _decimal_places(value: float) -> int:
    text = repr(float(value))
    if "e" in text or "E" in text:
        mantissa, _, exponent = text.lower().partition("e")
        digits = len(mantissa.partition(".")[2].rstrip("0"))
        return max(0, digits - int(exponent))
    return len(text.partition(".")[2].rstrip("0"))


@dataclass(frozen=True)
class OpeningPeriod:
    """One opening interval. day: 0 = Monday ... 6 = Sunday."""
    day: int
    start: str
    end: str
    is_overnight: bool = False

    @property
    def is_open_24h(self) -> bool:
        return self.start == "00:00" and self.end in ("00:00", "24:00")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RawVenueRecord:
    """
    Venue as returned by exactly one adapter call.

    Ratings are already on the 0-5 scale and price levels on 1-4;
    adapters translate at construction time.
    """
    source: str
    external_id: str
    name: str
    address: str = ""
    coordinates: Optional[Coordinates] = None
    category: str = ""
    categories: tuple[str, ...] = ()
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[int] = None
    phone: str = ""
    website: str = ""
    description: str = ""
    image_urls: tuple[str, ...] = ()
    hours: tuple[OpeningPeriod, ...] = ()
    features: tuple[str, ...] = ()
    raw: dict = field(default_factory=dict, compare=False, hash=False, repr=False)
    fetched_at: datetime = field(default_factory=utcnow)

    def age_hours(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return (now - self.fetched_at).total_seconds() / 3600

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        return self.age_hours(now) > STALE_AFTER_HOURS


@dataclass(frozen=True)
class DataSourceInfo:
    """Contribution of one provider to a canonical venue."""
    provider: str
    external_id: str
    confidence: float
    last_updated: datetime
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "external_id": self.external_id,
            "confidence": self.confidence,
            "last_updated": self.last_updated.isoformat(),
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DataSourceInfo":
        return cls(
            provider=data["provider"],
            external_id=data["external_id"],
            confidence=float(data["confidence"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(frozen=True)
class CanonicalVenue:
    """
    Merged, de-duplicated venue exposed to callers.

    Never mutated; re-aggregation produces a new value.
    mood_tags come from a keyword heuristic and mood_tag_confidence
    says how much of it matched. Neither feeds data_quality_score.
    """
    id: str
    name: str
    address: str
    coordinates: Coordinates
    category: str
    subcategory: str = ""
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[int] = None
    phone: str = ""
    website: str = ""
    description: str = ""
    image_url: str = ""
    image_urls: tuple[str, ...] = ()
    hours: tuple[OpeningPeriod, ...] = ()
    features: tuple[str, ...] = ()
    mood_tags: tuple[str, ...] = ()
    mood_tag_confidence: float = 0.0
    sources: tuple[DataSourceInfo, ...] = ()
    primary_source: str = ""
    data_quality_score: float = 0.0
    provider_refs: dict = field(default_factory=dict, compare=False, hash=False, repr=False)

    def __post_init__(self):
        if not self.sources:
            raise ValueError(f"Canonical venue {self.id} has no contributing sources")

    @property
    def source_names(self) -> list[str]:
        return [s.provider for s in self.sources]

    def normalized_fields(self) -> dict[str, Any]:
        """All merged fields, excluding audit data and timestamps."""
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "coordinates": self.coordinates.to_dict(),
            "category": self.category,
            "subcategory": self.subcategory,
            "rating": self.rating,
            "review_count": self.review_count,
            "price_level": self.price_level,
            "phone": self.phone,
            "website": self.website,
            "description": self.description,
            "image_url": self.image_url,
            "image_urls": list(self.image_urls),
            "hours": [h.to_dict() for h in self.hours],
            "features": list(self.features),
            "mood_tags": list(self.mood_tags),
            "mood_tag_confidence": self.mood_tag_confidence,
            "primary_source": self.primary_source,
            "data_quality_score": self.data_quality_score,
        }

    def to_dict(self) -> dict:
        data = self.normalized_fields()
        data["sources"] = [s.to_dict() for s in self.sources]
        data["provider_refs"] = self.provider_refs
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CanonicalVenue":
        coords = data["coordinates"]
        return cls(
            id=data["id"],
            name=data["name"],
            address=data["address"],
            coordinates=Coordinates(coords["lat"], coords["lng"]),
            category=data["category"],
            subcategory=data.get("subcategory", ""),
            rating=data.get("rating"),
            review_count=data.get("review_count"),
            price_level=data.get("price_level"),
            phone=data.get("phone", ""),
            website=data.get("website", ""),
            description=data.get("description", ""),
            image_url=data.get("image_url", ""),
            image_urls=tuple(data.get("image_urls", ())),
            hours=tuple(OpeningPeriod(**h) for h in data.get("hours", ())),
            features=tuple(data.get("features", ())),
            mood_tags=tuple(data.get("mood_tags", ())),
            mood_tag_confidence=data.get("mood_tag_confidence", 0.0),
            sources=tuple(DataSourceInfo.from_dict(s) for s in data.get("sources", ())),
            primary_source=data.get("primary_source", ""),
            data_quality_score=data.get("data_quality_score", 0.0),
            provider_refs=data.get("provider_refs", {}),
        )


class SortBy(str, Enum):
    """Result ordering requested by the caller."""
    BEST_MATCH = "best_match"
    RATING = "rating"
    DISTANCE = "distance"
    PRICE = "price"
    REVIEWS = "reviews"


@dataclass
class VenueQuery:
    """Search request fanned out to every selected provider."""
    term: Optional[str] = None
    location: Optional[Coordinates] = None
    radius_meters: Optional[int] = None
    categories: list[str] = field(default_factory=list)
    limit: int = 20
    offset: int = 0
    sort_by: SortBy = SortBy.BEST_MATCH
    providers: Optional[list[str]] = None
    max_sources: Optional[int] = None

    def __post_init__(self):
        self.limit = max(1, min(int(self.limit), MAX_QUERY_LIMIT))
        self.offset = max(0, int(self.offset))
        self.sort_by = SortBy(self.sort_by)

    def fingerprint(self) -> dict:
        """Stable representation used for cache keys."""
        return {
            "term": (self.term or "").strip().lower(),
            "lat": round(self.location.lat, 3) if self.location else None,
            "lng": round(self.location.lng, 3) if self.location else None,
            "radius": int(round(self.radius_meters)) if self.radius_meters else None,
            "categories": sorted(c.lower() for c in self.categories),
            "limit": self.limit,
            "offset": self.offset,
            "sort_by": self.sort_by.value,
            "providers": sorted(self.providers) if self.providers else None,
            "max_sources": self.max_sources,
        }


@dataclass
class AggregationMetadata:
    """Diagnostics attached to every aggregation result."""
    total_sources: int = 0
    successful_sources: list[str] = field(default_factory=list)
    failed_sources: dict[str, str] = field(default_factory=dict)
    cached: bool = False
    average_quality: float = 0.0
    low_quality_count: int = 0
    quality_issues: list[str] = field(default_factory=list)
    total_time_ms: float = 0.0
    cache_hit_rate: float = 0.0
    api_call_count: int = 0


@dataclass
class AggregationResult:
    """Venues plus metadata; empty_reason is set when nothing could be assembled."""
    venues: list[CanonicalVenue] = field(default_factory=list)
    metadata: AggregationMetadata = field(default_factory=AggregationMetadata)
    empty_reason: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.venues
