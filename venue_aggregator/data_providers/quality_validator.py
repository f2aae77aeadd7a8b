"""
Data Quality Validator

Scores canonical venues field by field and computes completeness,
cross-source consistency, accuracy and confidence metrics. Results are
advisory: they are attached to responses but never filter them.
"""
import re
import statistics
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from venue_aggregator.data_providers.categories import STANDARD_CATEGORIES, normalize_label
from venue_aggregator.data_providers.data_normalizer import PHONE_PATTERN, is_valid_url
from venue_aggregator.data_providers.models import CanonicalVenue, Coordinates, RawVenueRecord, utcnow


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


FIELD_WEIGHTS = {
    "name": 0.2,
    "address": 0.15,
    "coordinates": 0.2,
    "category": 0.1,
    "rating": 0.1,
    "review_count": 0.05,
    "price_level": 0.05,
    "phone": 0.05,
    "website": 0.05,
    "description": 0.05,
}

CRITICAL_FIELDS = ("name", "address", "coordinates", "category")
OPTIONAL_FIELDS = ("phone", "website", "description", "image_url", "features")

STREET_WORDS = re.compile(
    r"\b(st|street|ave|avenue|rd|road|blvd|boulevard|ln|lane|dr|drive|way|pl|place|ct|court|sq|square|hwy|pkwy)\b\.?",
    re.IGNORECASE,
)

COORDINATE_TOLERANCE_METERS = 100.0
RATING_VARIANCE_TOLERANCE = 0.5
RAW_DISTANCE_CONFLICT_METERS = 1000.0
LOW_QUALITY_THRESHOLD = 0.6


@dataclass
class FieldValidation:
    """Result of one field rule."""
    field: str
    score: float
    severity: Severity = Severity.INFO
    message: str = ""
    suggested_fix: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.severity != Severity.ERROR


@dataclass
class QualityReport:
    """Quality metrics for one canonical venue."""
    venue_id: str
    overall_score: float
    completeness: float
    consistency: float
    accuracy: float
    confidence: float
    field_results: dict[str, FieldValidation] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_low_quality(self) -> bool:
        return self.overall_score < LOW_QUALITY_THRESHOLD

    def to_dict(self) -> dict:
        return {
            "venue_id": self.venue_id,
            "overall_score": self.overall_score,
            "completeness": self.completeness,
            "consistency": self.consistency,
            "accuracy": self.accuracy,
            "confidence": self.confidence,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
        }


@dataclass
class RawValidationIssue:
    """Problem found in raw records before merging."""
    code: str
    message: str
    source: Optional[str] = None


# ==================== Field Rules ====================

def _missing(field_name: str, fix: str) -> FieldValidation:
    return FieldValidation(field_name, 0.5, Severity.INFO, f"{field_name} missing", fix)


def validate_name(name: str) -> FieldValidation:
    if not name or not name.strip():
        return FieldValidation("name", 0.0, Severity.ERROR, "Name is required", "Provide the venue name")
    name = name.strip()
    if len(name) < 2:
        return FieldValidation("name", 0.3, Severity.WARNING, "Name is very short", "Verify the venue name")
    if len(name) > 100:
        return FieldValidation("name", 0.8, Severity.WARNING, "Name is unusually long", "Shorten to the trading name")
    if name.isupper() and any(c.isalpha() for c in name):
        return FieldValidation("name", 0.7, Severity.INFO, "Name is all caps", "Use title case")
    return FieldValidation("name", 1.0)


def validate_address(address: str) -> FieldValidation:
    if not address or not address.strip():
        return FieldValidation("address", 0.0, Severity.ERROR, "Address is required", "Provide a street address")
    if len(address.strip()) < 10:
        return FieldValidation("address", 0.4, Severity.WARNING, "Address seems incomplete", "Add street and city")
    score = 0.5
    if re.search(r"\d", address):
        score += 0.25
    if STREET_WORDS.search(address):
        score += 0.25
    if score < 1.0:
        return FieldValidation("address", score, Severity.INFO, "Address lacks number or street type", "Use full street address")
    return FieldValidation("address", 1.0)


def validate_coordinates(coordinates: Optional[Coordinates]) -> FieldValidation:
    if coordinates is None:
        return FieldValidation("coordinates", 0.0, Severity.ERROR, "Coordinates are required", "Geocode the address")
    if not coordinates.is_valid():
        return FieldValidation(
            "coordinates", 0.0, Severity.ERROR,
            f"Coordinates out of range: ({coordinates.lat}, {coordinates.lng})",
            "Check latitude/longitude order and range",
        )
    if coordinates.is_over_precise():
        return FieldValidation(
            "coordinates", 0.8, Severity.WARNING,
            "Coordinates have suspicious precision (likely synthetic)",
            "Round to 6 decimal places",
        )
    return FieldValidation("coordinates", 1.0)


def validate_category(category: str) -> FieldValidation:
    if not category:
        return FieldValidation("category", 0.0, Severity.ERROR, "Category is required", "Assign a category")
    if category not in STANDARD_CATEGORIES:
        return FieldValidation("category", 0.6, Severity.WARNING, f"Non-standard category {category}", "Map to a standard category")
    return FieldValidation("category", 1.0)


def validate_rating(rating: Optional[float]) -> FieldValidation:
    if rating is None:
        return _missing("rating", "Fetch rating from a review provider")
    if not 0 <= rating <= 5:
        return FieldValidation("rating", 0.0, Severity.ERROR, f"Rating {rating} outside 0-5", "Clamp to 0-5")
    return FieldValidation("rating", 1.0)


def validate_review_count(count: Optional[int]) -> FieldValidation:
    if count is None:
        return _missing("review_count", "Fetch review count")
    if count < 0:
        return FieldValidation("review_count", 0.0, Severity.ERROR, "Negative review count", "Use 0")
    return FieldValidation("review_count", 1.0)


def validate_price(price: Optional[int]) -> FieldValidation:
    if price is None:
        return _missing("price_level", "Fetch price level")
    if price not in (1, 2, 3, 4):
        return FieldValidation("price_level", 0.0, Severity.ERROR, f"Price level {price} outside 1-4", "Clamp to 1-4")
    return FieldValidation("price_level", 1.0)


def validate_phone(phone: str) -> FieldValidation:
    if not phone:
        return _missing("phone", "Add a contact phone number")
    if not PHONE_PATTERN.match(phone):
        return FieldValidation("phone", 0.3, Severity.WARNING, "Phone format invalid", "Use international format")
    return FieldValidation("phone", 1.0)


def validate_website(website: str) -> FieldValidation:
    if not website:
        return _missing("website", "Add the venue website")
    if not is_valid_url(website):
        return FieldValidation("website", 0.3, Severity.WARNING, "Website is not a valid URL", "Use an http(s) URL")
    return FieldValidation("website", 1.0)


def validate_description(description: str) -> FieldValidation:
    if not description:
        return _missing("description", "Add a short description")
    if len(description) < 10:
        return FieldValidation("description", 0.6, Severity.INFO, "Description is very short", "Expand the description")
    if len(description) > 1000:
        return FieldValidation("description", 0.8, Severity.INFO, "Description is very long", "Summarise the description")
    return FieldValidation("description", 1.0)


FIELD_VALIDATORS: dict[str, tuple[Callable[[CanonicalVenue], Any], Callable[[Any], FieldValidation]]] = {
    "name": (lambda v: v.name, validate_name),
    "address": (lambda v: v.address, validate_address),
    "coordinates": (lambda v: v.coordinates, validate_coordinates),
    "category": (lambda v: v.category, validate_category),
    "rating": (lambda v: v.rating, validate_rating),
    "review_count": (lambda v: v.review_count, validate_review_count),
    "price_level": (lambda v: v.price_level, validate_price),
    "phone": (lambda v: v.phone, validate_phone),
    "website": (lambda v: v.website, validate_website),
    "description": (lambda v: v.description, validate_description),
}


# ==================== Validator ====================

class QualityValidator:
    """
    Data quality scoring for canonical venues.

    Features:
    - Weighted per-field scores with severities and suggested fixes
    - Completeness over critical and optional fields
    - Consistency of name, coordinates and rating across sources
    - Accuracy and confidence estimates
    - Raw-record checks for staleness and cross-source conflicts
    """

    def __init__(self, weights: Optional[dict[str, float]] = None):
        self.weights = dict(weights or FIELD_WEIGHTS)

    def validate(
        self,
        venue: CanonicalVenue,
        raw_records: Optional[list[RawVenueRecord]] = None,
    ) -> QualityReport:
        field_results = {}
        for name, (getter, rule) in FIELD_VALIDATORS.items():
            field_results[name] = rule(getter(venue))

        total_weight = sum(self.weights.get(f, 0.0) for f in field_results)
        overall = sum(r.score * self.weights.get(f, 0.0) for f, r in field_results.items())
        overall = overall / total_weight if total_weight else 0.0

        issues = [
            f"{r.field}: {r.message}"
            for r in field_results.values()
            if r.severity in (Severity.ERROR, Severity.WARNING)
        ]

        report = QualityReport(
            venue_id=venue.id,
            overall_score=round(overall, 4),
            completeness=self.completeness(venue),
            consistency=self.consistency(raw_records or []),
            accuracy=self.accuracy(venue),
            confidence=self.confidence(venue),
            field_results=field_results,
            issues=issues,
        )
        report.recommendations = self.recommendations(report)
        return report

    def completeness(self, venue: CanonicalVenue) -> float:
        fields = CRITICAL_FIELDS + OPTIONAL_FIELDS
        present = sum(1 for f in fields if _has_value(getattr(venue, f, None)))
        return round(present / len(fields), 4)

    def consistency(self, records: list[RawVenueRecord]) -> float:
        """Fraction of checkable cross-source fields that agree; 1.0 when nothing is checkable."""
        checks: list[bool] = []

        names = {normalize_label(r.name) for r in records if r.name}
        if len([r for r in records if r.name]) >= 2:
            checks.append(len(names) == 1)

        coords = [r.coordinates for r in records if r.coordinates is not None and r.coordinates.is_valid()]
        if len(coords) >= 2:
            max_distance = max(a.distance_to(b) for i, a in enumerate(coords) for b in coords[i + 1:])
            checks.append(max_distance < COORDINATE_TOLERANCE_METERS)

        ratings = [r.rating for r in records if r.rating is not None]
        if len(ratings) >= 2:
            checks.append(statistics.pvariance(ratings) < RATING_VARIANCE_TOLERANCE)

        if not checks:
            return 1.0
        return round(sum(checks) / len(checks), 4)

    def accuracy(self, venue: CanonicalVenue) -> float:
        score = 0.8
        if venue.coordinates.is_valid() and not venue.coordinates.is_over_precise():
            score += 0.1
        if venue.phone and PHONE_PATTERN.match(venue.phone):
            score += 0.1
        return round(min(1.0, score), 4)

    def confidence(self, venue: CanonicalVenue) -> float:
        if not venue.sources:
            return 0.0
        average = sum(s.confidence for s in venue.sources) / len(venue.sources)
        bonus = min(0.2, (len(venue.sources) - 1) * 0.05)
        return round(min(1.0, average + bonus), 4)

    def recommendations(self, report: QualityReport) -> list[str]:
        recommendations = []
        for result in report.field_results.values():
            if result.score >= 1.0 or not result.suggested_fix:
                continue
            if result.score < 0.3:
                recommendations.append(f"Critical: {result.field} - {result.suggested_fix}")
            elif result.score < 0.6:
                recommendations.append(f"Improve {result.field}: {result.suggested_fix}")
            else:
                recommendations.append(f"Consider {result.field}: {result.suggested_fix}")
        if report.consistency < 1.0:
            recommendations.append("Improve consistency: sources disagree on name, location or rating")
        return recommendations

    def validate_raw(
        self,
        records: list[RawVenueRecord],
        now: Optional[datetime] = None,
    ) -> list[RawValidationIssue]:
        """Staleness, missing core fields and cross-source conflicts."""
        now = now or utcnow()
        issues = []

        for record in records:
            if record.is_stale(now):
                issues.append(RawValidationIssue(
                    "stale", f"{record.external_id} is {record.age_hours(now):.0f}h old", record.source,
                ))
            if not record.name or not record.name.strip():
                issues.append(RawValidationIssue("missing_name", f"{record.external_id} has no name", record.source))
            if record.coordinates is None:
                issues.append(RawValidationIssue(
                    "missing_coordinates", f"{record.external_id} has no coordinates", record.source,
                ))
            elif not record.coordinates.is_valid():
                issues.append(RawValidationIssue(
                    "invalid_coordinates", f"{record.external_id} coordinates out of range", record.source,
                ))

        names = {normalize_label(r.name) for r in records if r.name}
        if len(names) > 1:
            issues.append(RawValidationIssue("name_mismatch", f"Sources disagree on name: {sorted(names)}"))

        coords = [r.coordinates for r in records if r.coordinates is not None and r.coordinates.is_valid()]
        for i, a in enumerate(coords):
            if any(a.distance_to(b) > RAW_DISTANCE_CONFLICT_METERS for b in coords[i + 1:]):
                issues.append(RawValidationIssue("location_conflict", "Sources more than 1km apart"))
                break

        return issues


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, tuple, list, dict)):
        return len(value) > 0
    return True
