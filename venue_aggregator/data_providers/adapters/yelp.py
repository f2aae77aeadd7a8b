"""
Yelp Fusion Adapter

Provides:
- Business search by term, location and category
- Business details with hours and photos
- Location search

Docs: https://docs.developer.yelp.com/reference/v3_business_search
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
MAX_RADIUS_METERS = 40000

SORT_MAP = {
    SortBy.BEST_MATCH: "best_match",
    SortBy.RATING: "rating",
    SortBy.DISTANCE: "distance",
    SortBy.REVIEWS: "review_count",
}

TRANSACTION_FEATURES = {
    "delivery": "delivery",
    "pickup": "pickup",
    "restaurant_reservation": "reservations",
}


def create_yelp_config(api_key: str, enabled: bool = True) -> ProviderConfig:
    """Create default Yelp configuration."""
    return create_provider_config("yelp", api_key, enabled)


class YelpAdapter(BaseAdapter):
    """Yelp Fusion API adapter. Ratings are native 0-5; price is '$'..'$$$$'."""

    async def search(self, query: VenueQuery) -> list[RawVenueRecord]:
        params = {
            "term": query.term or "restaurants",
            "limit": min(query.limit, MAX_LIMIT),
            "offset": query.offset,
            "categories": [c.lower() for c in query.categories] or None,
            "sort_by": SORT_MAP.get(query.sort_by, "best_match"),
        }
        if query.location:
            params["latitude"] = query.location.lat
            params["longitude"] = query.location.lng
        if query.radius_meters:
            params["radius"] = min(int(query.radius_meters), MAX_RADIUS_METERS)

        url = self.build_url(self.config.base_url, "/businesses/search", params)
        data = await self._get_json(url, "search")
        records = self._parse_items(data.get("businesses", []), self._parse_business)
        logger.debug(f"Yelp search returned {len(records)} businesses")
        return records

    async def get_details(self, external_id: str) -> Optional[RawVenueRecord]:
        url = self.build_url(self.config.base_url, f"/businesses/{external_id}")
        try:
            data = await self._get_json(url, "details")
        except NotFoundError:
            return None
        return self._parse_business(data, detailed=True)

    async def by_location(self, lat: float, lng: float, radius_meters: int) -> list[RawVenueRecord]:
        query = VenueQuery(
            location=Coordinates(lat, lng),
            radius_meters=radius_meters,
            limit=MAX_LIMIT,
        )
        return await self.search(query)

    # ==================== Parsing ====================

    def _parse_business(self, item: dict, detailed: bool = False) -> RawVenueRecord:
        coords = item.get("coordinates") or {}
        coordinates = None
        if coords.get("latitude") is not None and coords.get("longitude") is not None:
            coordinates = Coordinates(float(coords["latitude"]), float(coords["longitude"]))

        categories = item.get("categories") or []
        location = item.get("location") or {}

        features = [
            TRANSACTION_FEATURES[t] for t in item.get("transactions", []) if t in TRANSACTION_FEATURES
        ]
        if detailed and item.get("messaging"):
            features.append("messaging")

        images = []
        if detailed:
            images.extend(item.get("photos") or [])
        if item.get("image_url") and item["image_url"] not in images:
            images.insert(0, item["image_url"])

        price = item.get("price")
        return RawVenueRecord(
            source=self.name,
            external_id=str(item["id"]),
            name=item["name"],
            address=", ".join(location.get("display_address") or []),
            coordinates=coordinates,
            category=categories[0]["title"] if categories else "Restaurant",
            categories=tuple(c["alias"] for c in categories if c.get("alias")),
            rating=float(item["rating"]) if item.get("rating") is not None else None,
            review_count=item.get("review_count"),
            price_level=min(len(price), 4) if price else None,
            phone=item.get("display_phone") or item.get("phone") or "",
            image_urls=tuple(images),
            hours=self._parse_hours(item.get("hours")) if detailed else (),
            features=tuple(features),
            raw=item,
        )

    @staticmethod
    def _parse_hours(hours: Optional[list]) -> tuple[OpeningPeriod, ...]:
        if not hours:
            return ()
        periods = []
        for period in hours[0].get("open", []):
            start, end = period.get("start", ""), period.get("end", "")
            periods.append(OpeningPeriod(
                day=int(period["day"]),
                start=format_hhmm(start),
                end=format_hhmm(end),
                is_overnight=bool(period.get("is_overnight", False)),
            ))
        return tuple(periods)
