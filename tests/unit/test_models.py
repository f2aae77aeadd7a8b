"""
Unit Tests - Venue Models
"""
import pytest

from venue_aggregator.data_providers.models import (
    CanonicalVenue,
    Coordinates,
    DataSourceInfo,
    OpeningPeriod,
    SortBy,
    VenueQuery,
    utcnow,
)


class TestCoordinates:
    """Tests for Coordinates."""

    @pytest.mark.parametrize("lat,lng,valid", [
        (37.7825, -122.4071, True),
        (90, 180, True),
        (-90, -180, True),
        (90.1, 0, False),
        (0, -180.5, False),
        (float("nan"), 0, False),
    ])
    def test_is_valid(self, lat, lng, valid):
        assert Coordinates(lat, lng).is_valid() is valid

    def test_distance(self):
        """One degree of longitude at the equator is ~111km."""
        assert Coordinates(0, 0).distance_to(Coordinates(0, 1)) == pytest.approx(111_195, rel=1e-3)
        assert Coordinates(37.7825, -122.4071).distance_to(Coordinates(37.7825, -122.4071)) == 0

    def test_over_precise(self):
        assert Coordinates(37.78250000000123, -122.4071).is_over_precise()
        assert not Coordinates(37.782512, -122.407133).is_over_precise()


class TestVenueQuery:
    """Tests for VenueQuery."""

    def test_limit_clamped(self):
        assert VenueQuery(limit=500).limit == 50
        assert VenueQuery(limit=0).limit == 1
        assert VenueQuery(offset=-5).offset == 0

    def test_sort_by_from_string(self):
        assert VenueQuery(sort_by="rating").sort_by == SortBy.RATING

    def test_fingerprint_normalizes(self):
        """Equivalent queries share a cache fingerprint."""
        a = VenueQuery(term=" Coffee ", location=Coordinates(37.7831, -122.4071), categories=["Cafe", "bar"])
        b = VenueQuery(term="coffee", location=Coordinates(37.78312, -122.40714), categories=["bar", "cafe"])
        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint() != VenueQuery(term="tea").fingerprint()


class TestCanonicalVenue:
    """Tests for CanonicalVenue."""

    @pytest.fixture
    def venue(self):
        return CanonicalVenue(
            id="yelp-bluebottlecoffee-37.7825--122.407",
            name="Blue Bottle Coffee",
            address="66 Mint St, San Francisco, CA 94103",
            coordinates=Coordinates(37.7825, -122.4071),
            category="Restaurant",
            subcategory="Coffee Shop",
            rating=4.5,
            hours=(OpeningPeriod(0, "07:00", "18:00"),),
            mood_tags=("cozy",),
            sources=(DataSourceInfo("yelp", "blue-bottle-sf", 1.0, utcnow()),),
            primary_source="yelp",
            provider_refs={"yelp": {"external_id": "blue-bottle-sf", "raw": {}}},
        )

    def test_requires_sources(self):
        """A canonical venue always has at least one contributing source."""
        with pytest.raises(ValueError):
            CanonicalVenue(
                id="x",
                name="X",
                address="1 Main St",
                coordinates=Coordinates(0, 0),
                category="Restaurant",
            )

    def test_dict_round_trip(self, venue):
        """Cached dicts rebuild an equal venue."""
        restored = CanonicalVenue.from_dict(venue.to_dict())
        assert restored == venue
        assert restored.provider_refs == venue.provider_refs

    def test_immutable(self, venue):
        with pytest.raises(AttributeError):
            venue.rating = 1.0


class TestRawVenueRecord:
    """Tests for RawVenueRecord staleness."""

    def test_stale_after_a_day(self, make_record, stale_timestamp):
        assert make_record(fetched_at=stale_timestamp).is_stale()
        assert not make_record().is_stale()


class TestOpeningPeriod:

    def test_open_24h(self):
        assert OpeningPeriod(0, "00:00", "24:00").is_open_24h
        assert not OpeningPeriod(0, "07:00", "18:00").is_open_24h
