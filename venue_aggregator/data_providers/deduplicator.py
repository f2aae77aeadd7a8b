"""
Venue Deduplicator

Groups raw records from different providers that describe the same
real-world venue, so the normalization engine can merge each group.
"""
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from loguru import logger
from rapidfuzz import fuzz

from venue_aggregator.data_providers.models import RawVenueRecord


@dataclass
class MatchWeights:
    name: float = 0.4
    location: float = 0.3
    address: float = 0.2
    phone: float = 0.1


@dataclass
class MatchResult:
    """Outcome of comparing two records."""
    confidence: float
    matching_fields: list[str] = field(default_factory=list)
    conflicting_fields: list[str] = field(default_factory=list)

    @property
    def name_matched(self) -> bool:
        return "name" in self.matching_fields


def _normalize_name(name: str) -> str:
    text = re.sub(r"[^a-z0-9 ]", " ", (name or "").lower())
    text = re.sub(r"\b(the|and|restaurant|bar|cafe)\b", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _digits(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    return digits[-10:]


class VenueDeduplicator:
    """
    Cross-provider record matching.

    Confidence is the weight earned by matching signals divided by the
    weight of the signals both records carry, so a pair without phone
    numbers is not penalised for it. Records from the same provider
    are never grouped.
    """

    def __init__(
        self,
        threshold: float = 0.75,
        name_similarity: float = 0.8,
        address_similarity: float = 0.7,
        max_distance_meters: float = 100.0,
        weights: Optional[MatchWeights] = None,
    ):
        self.threshold = threshold
        self.name_similarity = name_similarity
        self.address_similarity = address_similarity
        self.max_distance = max_distance_meters
        self.weights = weights or MatchWeights()

    def compare(self, a: RawVenueRecord, b: RawVenueRecord) -> MatchResult:
        """Score how likely two records describe the same venue."""
        result = MatchResult(confidence=0.0)
        earned = 0.0
        available = 0.0

        name_a, name_b = _normalize_name(a.name), _normalize_name(b.name)
        if name_a and name_b:
            available += self.weights.name
            similarity = fuzz.ratio(name_a, name_b) / 100
            if similarity > self.name_similarity:
                result.matching_fields.append("name")
                earned += self.weights.name * similarity
            elif similarity < 0.3:
                result.conflicting_fields.append("name")

        coords_a, coords_b = a.coordinates, b.coordinates
        if coords_a and coords_b and coords_a.is_valid() and coords_b.is_valid():
            available += self.weights.location
            distance = coords_a.distance_to(coords_b)
            if distance < self.max_distance:
                result.matching_fields.append("location")
                earned += self.weights.location * (1 - distance / self.max_distance)
            elif distance > 1000:
                result.conflicting_fields.append("location")

        if a.address and b.address:
            available += self.weights.address
            similarity = fuzz.token_sort_ratio(a.address.lower(), b.address.lower()) / 100
            if similarity > self.address_similarity:
                result.matching_fields.append("address")
                earned += self.weights.address * similarity

        phone_a, phone_b = _digits(a.phone), _digits(b.phone)
        if phone_a and phone_b:
            available += self.weights.phone
            if phone_a == phone_b:
                result.matching_fields.append("phone")
                earned += self.weights.phone

        # A name alone is not enough evidence
        if available <= self.weights.name:
            result.confidence = 0.0
        else:
            result.confidence = round(earned / available, 4)
        return result

    def is_match(self, a: RawVenueRecord, b: RawVenueRecord) -> bool:
        if a.source == b.source:
            return False
        result = self.compare(a, b)
        return result.name_matched and result.confidence >= self.threshold

    def group(self, records: Iterable[RawVenueRecord]) -> list[list[RawVenueRecord]]:
        """
        Greedy grouping in deterministic order.

        Each record joins the first group that has no record from the
        same provider and whose seed record matches it.
        """
        ordered = sorted(records, key=lambda r: (r.source, r.external_id))
        groups: list[list[RawVenueRecord]] = []

        for record in ordered:
            for group in groups:
                if any(member.source == record.source for member in group):
                    continue
                if self.is_match(group[0], record):
                    group.append(record)
                    break
            else:
                groups.append([record])

        merged = len(ordered) - len(groups)
        if merged:
            logger.debug(f"Deduplicated {len(ordered)} records into {len(groups)} venues")
        return groups
