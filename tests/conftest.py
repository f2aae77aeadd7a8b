"""
Venue Aggregator - Test Configuration
Shared fixtures and test configuration.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Optional
import pytest
from unittest.mock import AsyncMock, MagicMock

# Set test environment before settings are imported
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("YELP_API_KEY", "test-yelp-key")
os.environ.setdefault("FOURSQUARE_API_KEY", "test-foursquare-key")

from venue_aggregator.data_providers.error_handler import ErrorHandler
from venue_aggregator.data_providers.health_monitor import ProviderHealthMonitor
from venue_aggregator.data_providers.models import Coordinates, RawVenueRecord
from venue_aggregator.data_providers.rate_limiter import RateLimiter
from venue_aggregator.data_providers.resilience import ResilienceLayer


# =========================
# Time Fixtures
# =========================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    """Stands in for asyncio.sleep in retry loops."""
    return AsyncMock(return_value=None)


@pytest.fixture
def resilience(clock, fake_sleep) -> ResilienceLayer:
    """Resilience layer driven by the fake clock, no real sleeping."""
    return ResilienceLayer(
        rate_limiter=RateLimiter(clock=clock),
        health=ProviderHealthMonitor(clock=clock),
        errors=ErrorHandler(clock=clock),
        sleep=fake_sleep,
    )


# =========================
# Record Fixtures
# =========================

@pytest.fixture
def make_record():
    """Factory for raw venue records with sensible defaults."""
    def _make(
        source: str = "yelp",
        external_id: str = "ext-1",
        name: str = "Blue Bottle Coffee",
        address: str = "66 Mint St, San Francisco, CA 94103",
        coordinates: Optional[Coordinates] = Coordinates(37.7825, -122.4071),
        category: str = "Coffee & Tea",
        **kwargs,
    ) -> RawVenueRecord:
        return RawVenueRecord(
            source=source,
            external_id=external_id,
            name=name,
            address=address,
            coordinates=coordinates,
            category=category,
            **kwargs,
        )
    return _make


@pytest.fixture
def stale_timestamp() -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=30)


# =========================
# Provider Payload Fixtures
# =========================

@pytest.fixture
def yelp_business() -> dict:
    """Sample Yelp Fusion business."""
    return {
        "id": "blue-bottle-sf",
        "name": "Blue Bottle Coffee",
        "image_url": "https://s3-media.fl.yelpcdn.com/bphoto/abc/o.jpg",
        "review_count": 1520,
        "categories": [
            {"alias": "coffee", "title": "Coffee & Tea"},
            {"alias": "cafes", "title": "Cafes"},
        ],
        "rating": 4.5,
        "coordinates": {"latitude": 37.7825, "longitude": -122.4071},
        "transactions": ["pickup", "delivery"],
        "price": "$$",
        "location": {
            "address1": "66 Mint St",
            "city": "San Francisco",
            "display_address": ["66 Mint St", "San Francisco, CA 94103"],
        },
        "phone": "+14155550100",
        "display_phone": "(415) 555-0100",
    }


@pytest.fixture
def yelp_details(yelp_business) -> dict:
    """Sample Yelp business details with hours and photos."""
    return {
        **yelp_business,
        "photos": [
            "https://s3-media.fl.yelpcdn.com/bphoto/abc/o.jpg",
            "https://s3-media.fl.yelpcdn.com/bphoto/def/o.jpg",
        ],
        "hours": [{
            "open": [
                {"is_overnight": False, "start": "0700", "end": "1800", "day": 0},
                {"is_overnight": True, "start": "2200", "end": "0200", "day": 5},
            ],
            "hours_type": "REGULAR",
            "is_open_now": True,
        }],
        "messaging": {"url": "https://www.yelp.com/raq/blue-bottle-sf"},
    }


@pytest.fixture
def foursquare_place() -> dict:
    """Sample Foursquare Places v3 result."""
    return {
        "fsq_id": "4b058804f964a520",
        "name": "Blue Bottle Coffee",
        "geocodes": {"main": {"latitude": 37.78251, "longitude": -122.40712}},
        "location": {
            "address": "66 Mint St",
            "formatted_address": "66 Mint St, San Francisco, CA 94103",
        },
        "categories": [{"id": 13035, "name": "Coffee Shop"}, {"id": 13065, "name": "Cafe"}],
        "rating": 8.8,
        "stats": {"total_ratings": 310},
        "price": 2,
        "tel": "(415) 555-0100",
        "website": "https://bluebottlecoffee.com",
        "chains": [{"id": "ab12", "name": "Blue Bottle"}],
        "photos": [{"prefix": "https://fastly.4sqi.net/img/general/", "suffix": "/abc.jpg"}],
        "hours": {"regular": [{"day": 1, "open": "0700", "close": "1800"}]},
    }


@pytest.fixture
def city_record() -> dict:
    """Sample NYC open-data row."""
    return {
        "camis": "50012345",
        "dba": "JOE'S PIZZA",
        "building": "7",
        "street": "Carmine St",
        "zipcode": "10014",
        "phone": "2123661182",
        "cuisine_description": "Pizza",
        "latitude": "40.730583",
        "longitude": "-74.002197",
    }


# =========================
# HTTP Helpers
# =========================

def mock_response(payload=None, status: int = 200, headers: Optional[dict] = None, text: str = ""):
    """aiohttp-like response usable as an async context manager."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def mock_session(*responses):
    """ClientSession mock returning the given responses in order."""
    session = MagicMock()
    session.closed = False
    session.get = MagicMock(side_effect=list(responses))
    session.close = AsyncMock()
    return session


@pytest.fixture
def make_response():
    return mock_response


@pytest.fixture
def make_session():
    return mock_session
