"""
Foursquare Places Adapter

Provides:
- Place search around a point
- Place details with features, hours and photos

Foursquare rates places 0-10; records are rescaled to 0-5.

Docs: https://docs.foursquare.com/developer/reference/place-search
"""
from typing import Optional
from loguru import logger

from venue_aggregator.data_providers.adapters.base import BaseAdapter, NotFoundError, format_hhmm
from venue_aggregator.data_providers.models import (
    Coordinates,
    OpeningPeriod,
    RawVenueRecord,
    SortBy,
    VenueQuery,
)
from venue_aggregator.data_providers.registry import ProviderConfig, create_provider_config


MAX_LIMIT = 50
MAX_RADIUS_METERS = 100000
MAX_PHOTOS = 10
PHOTO_SIZE = "300x300"

DETAIL_FIELDS = (
    "fsq_id,name,geocodes,location,categories,website,tel,description,"
    "features,hours,photos,price,rating,stats,chains"
)

SORT_MAP = {
    SortBy.BEST_MATCH: "RELEVANCE",
    SortBy.RATING: "RATING",
    SortBy.DISTANCE: "DISTANCE",
    SortBy.REVIEWS: "RATING",
}

# (path into the features object, feature tag)
FEATURE_FLAGS = (
    (("services", "delivery"), "delivery"),
    (("services", "takeout"), "takeout"),
    (("services", "dine_in", "reservations"), "reservations"),
    (("services", "drive_through"), "drive_through"),
    (("amenities", "outdoor_seating"), "outdoor_seating"),
    (("amenities", "wheelchair_accessible"), "wheelchair_accessible"),
    (("amenities", "live_music"), "live_music"),
    (("food_and_drink", "alcohol", "full_bar"), "full_bar"),
    (("payment", "credit_cards", "accepts_credit_cards"), "credit_cards"),
)


def create_foursquare_config(api_key: str, enabled: bool = True) -> ProviderConfig:
    """Create default Foursquare configuration."""
    return create_provider_config("foursquare", api_key, enabled)


def _dig(data: dict, path: tuple[str, ...]):
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class FoursquareAdapter(BaseAdapter):
    """Foursquare Places API v3 adapter (raw key in the Authorization header)."""

    async def search(self, query: VenueQuery) -> list[RawVenueRecord]:
        params = {
            "query": query.term,
            "limit": min(query.limit, MAX_LIMIT),
            "categories": query.categories or None,
            "sort": SORT_MAP.get(query.sort_by, "RELEVANCE"),
        }
        if query.location:
            params["ll"] = f"{query.location.lat},{query.location.lng}"
        if query.radius_meters:
            params["radius"] = min(int(query.radius_meters), MAX_RADIUS_METERS)

        url = self.build_url(self.config.base_url, "/places/search", params)
        data = await self._get_json(url, "search")
        records = self._parse_items(data.get("results", []), self._parse_place)
        logger.debug(f"Foursquare search returned {len(records)} places")
        return records

    async def get_details(self, external_id: str) -> Optional[RawVenueRecord]:
        url = self.build_url(self.config.base_url, f"/places/{external_id}", {"fields": DETAIL_FIELDS})
        try:
            data = await self._get_json(url, "details")
        except NotFoundError:
            return None
        return self._parse_place(data, detailed=True)

    async def by_location(self, lat: float, lng: float, radius_meters: int) -> list[RawVenueRecord]:
        query = VenueQuery(
            location=Coordinates(lat, lng),
            radius_meters=radius_meters,
            limit=MAX_LIMIT,
        )
        return await self.search(query)

    # ==================== Parsing ====================

    def _parse_place(self, item: dict, detailed: bool = False) -> RawVenueRecord:
        main = _dig(item, ("geocodes", "main")) or {}
        coordinates = None
        if main.get("latitude") is not None and main.get("longitude") is not None:
            coordinates = Coordinates(float(main["latitude"]), float(main["longitude"]))

        categories = item.get("categories") or []
        location = item.get("location") or {}

        features = ["chain"] if item.get("chains") else []
        if detailed:
            features.extend(self._extract_features(item.get("features") or {}))

        rating = item.get("rating")
        price = item.get("price")
        return RawVenueRecord(
            source=self.name,
            external_id=str(item["fsq_id"]),
            name=item["name"],
            address=location.get("formatted_address") or location.get("address") or "",
            coordinates=coordinates,
            category=categories[0]["name"] if categories else "Place",
            categories=tuple(c["name"] for c in categories[1:] if c.get("name")),
            rating=round(float(rating) / 2, 2) if rating is not None else None,
            review_count=_dig(item, ("stats", "total_ratings")),
            price_level=int(price) if price is not None else None,
            phone=item.get("tel") or "",
            website=item.get("website") or "",
            description=item.get("description") or "",
            image_urls=self._photo_urls(item.get("photos")),
            hours=self._parse_hours(item.get("hours")),
            features=tuple(features),
            raw=item,
        )

    @staticmethod
    def _extract_features(data: dict) -> list[str]:
        features = [tag for path, tag in FEATURE_FLAGS if _dig(data, path)]
        if _dig(data, ("amenities", "wifi")) == "free":
            features.append("free_wifi")
        return features

    @staticmethod
    def _photo_urls(photos: Optional[list]) -> tuple[str, ...]:
        if not photos:
            return ()
        return tuple(
            f"{p['prefix']}{PHOTO_SIZE}{p['suffix']}"
            for p in photos[:MAX_PHOTOS]
            if p.get("prefix") and p.get("suffix")
        )

    @staticmethod
    def _parse_hours(hours: Optional[dict]) -> tuple[OpeningPeriod, ...]:
        regular = (hours or {}).get("regular") or []
        periods = []
        for entry in regular:
            start, end = entry.get("open", ""), entry.get("close", "")
            overnight = end.startswith("+")  # "+0200" closes the next day
            end = end.lstrip("+")
            periods.append(OpeningPeriod(
                day=(int(entry["day"]) - 1) % 7,  # Foursquare: 1 = Monday
                start=format_hhmm(start),
                end=format_hhmm(end),
                is_overnight=overnight or end < start,
            ))
        return tuple(periods)
