"""
Unit Tests - Data Normalizer
Tests for field transforms and priority-ordered merging.
"""
import pytest

from venue_aggregator.data_providers.data_normalizer import (
    FieldRejected,
    MAX_DESCRIPTION_LENGTH,
    NormalizationEngine,
    clean_address,
    normalize_feature,
    normalize_phone,
    normalize_price,
    normalize_rating,
)
from venue_aggregator.data_providers.models import Coordinates
from venue_aggregator.data_providers.quality_validator import QualityValidator


PRIORITIES = {"yelp": 9, "foursquare": 7, "city_apis": 6}


@pytest.fixture
def engine():
    return NormalizationEngine(PRIORITIES)


class TestTransforms:
    """Tests for per-field transforms."""

    @pytest.mark.parametrize("raw,expected", [
        ("(415) 555-0100", "+14155550100"),
        ("1-415-555-0100", "+14155550100"),
        ("+44 20 7946 0958", "+442079460958"),
    ])
    def test_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_short_phone_rejected(self):
        with pytest.raises(FieldRejected):
            normalize_phone("555-0100")

    @pytest.mark.parametrize("raw,expected", [("$", 1), ("$$", 2), ("$$$$$", 4), (3, 3), (7, 4), (0, 1), ("2", 2)])
    def test_price(self, raw, expected):
        assert normalize_price(raw) == expected

    def test_rating_clamped_and_rounded(self):
        assert normalize_rating(4.44) == 4.4
        assert normalize_rating(7) == 5.0
        assert normalize_rating(-1) == 0.0

    def test_address_commas(self):
        assert clean_address(" 66 Mint St ,San Francisco,, CA ") == "66 Mint St, San Francisco, CA"

    def test_feature(self):
        assert normalize_feature("Outdoor Seating") == "outdoor_seating"
        assert normalize_feature("Wi-Fi!") == "wi_fi"


class TestMerge:
    """Tests for NormalizationEngine.merge."""

    def test_single_record(self, engine, make_record):
        venue = engine.normalize(make_record(rating=4.5, review_count=1520, price_level=2))
        assert venue.name == "Blue Bottle Coffee"
        assert venue.category == "Restaurant"
        assert venue.subcategory == "Coffee Shop"
        assert venue.mood_tags == ("cozy", "relaxed")
        assert venue.mood_tag_confidence == 0.9
        assert venue.primary_source == "yelp"
        assert venue.id.startswith("yelp-bluebottlecoffee-")
        assert venue.source_names == ["yelp"]

    def test_priority_wins(self, engine, make_record):
        """The highest-priority provider's valid value wins."""
        yelp = make_record(rating=4.2)
        foursquare = make_record(source="foursquare", external_id="fsq-1", rating=4.4)
        venue = engine.merge([foursquare, yelp])
        assert venue.rating == 4.2
        assert venue.primary_source == "yelp"

    def test_falls_through_to_next_source(self, engine, make_record):
        """A field missing from the preferred source comes from the next one."""
        yelp = make_record(address="", phone="")
        foursquare = make_record(
            source="foursquare",
            external_id="fsq-1",
            address="66 Mint St",
            phone="(415) 555-0100",
        )
        venue = engine.merge([yelp, foursquare])
        assert venue.address == "66 Mint St"
        assert venue.phone == "+14155550100"

    def test_invalid_value_skipped(self, engine, make_record):
        """Out-of-range coordinates are rejected in favour of a valid source."""
        yelp = make_record(coordinates=Coordinates(200, 50), website="not a url")
        city = make_record(
            source="city_apis",
            external_id="city_0_1",
            coordinates=Coordinates(37.7826, -122.4072),
            website="https://bluebottlecoffee.com",
        )
        venue = engine.merge([yelp, city])
        assert venue.coordinates == Coordinates(37.7826, -122.4072)
        assert venue.website == "https://bluebottlecoffee.com"

    def test_missing_required_field_rejects(self, engine, make_record):
        """No source supplying coordinates means no venue."""
        assert engine.merge([make_record(coordinates=None)]) is None
        assert engine.merge([make_record(category="", categories=())]) is None
        assert engine.merge([]) is None

    def test_unmapped_category_kept(self, engine, make_record):
        """Should keep the provider's own label when the table has no mapping."""
        venue = engine.normalize(make_record(category=" Thai ", categories=("thai",)))
        assert venue is not None
        assert (venue.category, venue.subcategory) == ("Thai", "Thai")
        assert "category: Non-standard category Thai" in QualityValidator().validate(venue).issues

    def test_mapped_alias_beats_own_label(self, engine, make_record):
        venue = engine.normalize(make_record(category="Neapolitan", categories=("pizza",)))
        assert (venue.category, venue.subcategory) == ("Restaurant", "Pizza")

    def test_category_from_alias(self, engine, make_record):
        venue = engine.normalize(make_record(category="Slices", categories=("Pizza",)))
        assert (venue.category, venue.subcategory) == ("Restaurant", "Pizza")

    def test_unknown_source_dropped(self, engine, make_record):
        """Records from providers without a priority are not merged."""
        assert engine.normalize(make_record(source="tripadvisor")) is None

    def test_order_independent(self, engine, make_record):
        """Merging is deterministic regardless of input order."""
        records = [
            make_record(rating=4.5, features=("WiFi",)),
            make_record(source="foursquare", external_id="fsq-1", rating=4.4, features=("Outdoor Seating",)),
            make_record(source="city_apis", external_id="city_0_9", features=("licensed",)),
        ]
        forward = engine.merge(records)
        backward = engine.merge(list(reversed(records)))
        assert forward == backward
        assert forward.features == ("licensed", "outdoor_seating", "wifi")
        assert engine.merge(records).normalized_fields() == forward.normalized_fields()

    def test_field_priority_override(self, make_record):
        """Per-field overrides reorder sources for that field only."""
        engine = NormalizationEngine(PRIORITIES, field_priorities={"rating": {"foursquare": 10}})
        yelp = make_record(rating=4.2, phone="(415) 555-0100")
        foursquare = make_record(source="foursquare", external_id="fsq-1", rating=4.4, phone="(415) 555-0199")
        venue = engine.merge([yelp, foursquare])
        assert venue.rating == 4.4
        assert venue.phone == "+14155550100"

    def test_update_priorities(self, engine, make_record):
        engine.update_priorities({"yelp": 1, "foursquare": 7})
        venue = engine.merge([
            make_record(rating=4.2),
            make_record(source="foursquare", external_id="fsq-1", rating=4.4),
        ])
        assert venue.rating == 4.4
        assert venue.primary_source == "foursquare"

    def test_images_deduplicated_and_validated(self, engine, make_record):
        yelp = make_record(image_urls=("https://a.example/1.jpg", "ftp://bad"))
        foursquare = make_record(
            source="foursquare",
            external_id="fsq-1",
            image_urls=("https://a.example/1.jpg", "https://b.example/2.jpg"),
        )
        venue = engine.merge([foursquare, yelp])
        assert venue.image_urls == ("https://a.example/1.jpg", "https://b.example/2.jpg")
        assert venue.image_url == "https://a.example/1.jpg"

    def test_description_truncated(self, engine, make_record):
        venue = engine.normalize(make_record(description="x" * 800))
        assert len(venue.description) == MAX_DESCRIPTION_LENGTH

    def test_quality_score(self, engine, make_record):
        """Average source confidence plus a corroboration bonus."""
        venue = engine.merge([
            make_record(),
            make_record(source="foursquare", external_id="fsq-1"),
        ])
        assert [s.confidence for s in venue.sources] == [0.8, 0.8]
        assert venue.data_quality_score == pytest.approx(0.85)
        assert set(venue.provider_refs) == {"yelp", "foursquare"}
