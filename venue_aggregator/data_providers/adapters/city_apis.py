"""
City Open Data Adapter

Municipal business/licensing datasets published through Socrata
(NYC, San Francisco, Los Angeles). Public endpoints, no API key.
These sources carry no ratings or prices; their value is
government-verified names, addresses and coordinates.
"""
from dataclasses import dataclass
from typing import Optional
from loguru import logger

from venue_aggregator.data_providers.adapters.base import BaseAdapter, ProviderError
from venue_aggregator.data_providers.models import Coordinates, RawVenueRecord, VenueQuery
from venue_aggregator.data_providers.registry import ProviderConfig, create_provider_config


DEFAULT_RADIUS_METERS = 5000
MAX_LIMIT = 100


@dataclass(frozen=True)
class CityEndpoint:
    index: int
    key: str
    name: str
    url: str
    city: str
    state: str
    id_field: str


CITY_ENDPOINTS = {
    "nyc": CityEndpoint(
        0, "nyc", "NYC Open Data", "https://data.cityofnewyork.us/resource/w7w3-xahh.json",
        "New York", "NY", "camis",
    ),
    "sf": CityEndpoint(
        1, "sf", "SF Open Data", "https://data.sfgov.org/resource/kvj8-g7jh.json",
        "San Francisco", "CA", "location_id",
    ),
    "la": CityEndpoint(
        2, "la", "LA Open Data", "https://data.lacity.org/resource/6rrh-rzua.json",
        "Los Angeles", "CA", "location_account",
    ),
}


def create_city_apis_config(enabled: bool = True) -> ProviderConfig:
    """Create default city open-data configuration."""
    return create_provider_config("city_apis", enabled=enabled)


def _first(item: dict, *fields: str) -> str:
    for field_name in fields:
        value = item.get(field_name)
        if value not in (None, ""):
            return str(value).strip()
    return ""


class CityApiAdapter(BaseAdapter):
    """Socrata open-data adapter spanning several city portals."""

    def __init__(
        self,
        config: ProviderConfig,
        resilience,
        cities: Optional[list[str]] = None,
        cache=None,
    ):
        super().__init__(config, resilience, cache)
        keys = cities or list(CITY_ENDPOINTS)
        unknown = [k for k in keys if k not in CITY_ENDPOINTS]
        if unknown:
            raise ValueError(f"Unknown city endpoints: {unknown}")
        self.endpoints = [CITY_ENDPOINTS[k] for k in keys]

    async def search(self, query: VenueQuery) -> list[RawVenueRecord]:
        limit = min(query.limit, MAX_LIMIT)
        per_endpoint = max(1, -(-limit // len(self.endpoints)))
        records = await self._search_endpoints(query, per_endpoint)
        return records[:limit]

    async def get_details(self, external_id: str) -> Optional[RawVenueRecord]:
        # external_id format: city_{endpoint index}_{dataset id}
        parts = external_id.split("_", 2)
        if len(parts) != 3 or parts[0] != "city" or not parts[1].isdigit():
            return None
        endpoint = next((e for e in CITY_ENDPOINTS.values() if e.index == int(parts[1])), None)
        if endpoint is None:
            return None
        dataset_id = parts[2].replace("'", "''")

        url = self.build_url(endpoint.url, "", {
            "$where": f"{endpoint.id_field}='{dataset_id}'",
            "$limit": 1,
        })
        data = await self._get_json(url, "details")
        records = self._parse_items(data, lambda item: self._parse_business(item, endpoint))
        return records[0] if records else None

    async def by_location(self, lat: float, lng: float, radius_meters: int) -> list[RawVenueRecord]:
        query = VenueQuery(location=Coordinates(lat, lng), radius_meters=radius_meters, limit=50)
        return await self._search_endpoints(query, 50)

    async def _search_endpoints(self, query: VenueQuery, limit: int) -> list[RawVenueRecord]:
        """Query each city; one failing city does not hide the others."""
        records: list[RawVenueRecord] = []
        errors: list[ProviderError] = []

        for endpoint in self.endpoints:
            params = {"$limit": limit, "$q": query.term or None}
            if query.location:
                # Socrata within_circle takes the radius in metres
                radius = int(query.radius_meters or DEFAULT_RADIUS_METERS)
                params["$where"] = (
                    f"within_circle(location, {query.location.lat}, {query.location.lng}, {radius})"
                )
            url = self.build_url(endpoint.url, "", params)
            try:
                data = await self._get_json(url, f"search_{endpoint.key}")
            except ProviderError as e:
                logger.warning(f"Error fetching from {endpoint.name}: {e}")
                errors.append(e)
                continue
            records.extend(self._parse_items(data, lambda item, ep=endpoint: self._parse_business(item, ep)))

        if errors and len(errors) == len(self.endpoints):
            raise errors[-1]
        return records

    # ==================== Parsing ====================

    def _parse_business(self, item: dict, endpoint: CityEndpoint) -> Optional[RawVenueRecord]:
        dataset_id = _first(item, endpoint.id_field, "id")
        if not dataset_id:
            raise ValueError(f"{endpoint.name} record without {endpoint.id_field}")

        street = _first(item, "address", "street_address")
        if not street and _first(item, "building", "street"):
            street = f"{_first(item, 'building')} {_first(item, 'street')}".strip()
        city = _first(item, "city") or endpoint.city
        state = _first(item, "state") or endpoint.state
        zip_code = _first(item, "zip", "zipcode")
        address = ", ".join(p for p in (street, city, f"{state} {zip_code}".strip()) if p) if street else ""

        features = ["licensed", "government_verified"]
        if _first(item, "license_number"):
            features.append("license_on_file")

        return RawVenueRecord(
            source=self.name,
            external_id=f"city_{endpoint.index}_{dataset_id}",
            name=_first(item, "name", "business_name", "dba") or "Unknown Business",
            address=address,
            coordinates=self._coordinates(item),
            category=_first(item, "category", "business_type", "license_type", "cuisine_description") or "Business",
            phone=_first(item, "phone"),
            description=f"Listed in {endpoint.name}",
            features=tuple(features),
            raw=item,
        )

    @staticmethod
    def _coordinates(item: dict) -> Optional[Coordinates]:
        location = item.get("location") if isinstance(item.get("location"), dict) else {}
        lat = item.get("latitude", location.get("latitude"))
        lng = item.get("longitude", location.get("longitude"))
        if lat in (None, "") or lng in (None, ""):
            return None
        return Coordinates(float(lat), float(lng))
