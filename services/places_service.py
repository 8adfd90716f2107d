# services/places_service.py
from __future__ import annotations

import asyncio
import logging
import math
import re
from typing import Any, Dict, List, Optional

import httpx

from errors import VerificationMismatch
from request_context import get_request_id
from services.domain import Coordinates, DistrictContext, PlaceMatch
from services.stores import PlaceSearch

log = logging.getLogger("places")

_TEXTSEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

EXCLUDED_BUSINESS_STATUS = frozenset({"CLOSED_PERMANENTLY", "CLOSED_TEMPORARILY"})

# Non-tourism Google place types.
EXCLUDED_PLACE_TYPES = frozenset({
    "travel_agency", "insurance_agency", "real_estate_agency", "lawyer", "accounting",
    "bank", "library", "local_government_office", "city_hall", "courthouse", "post_office",
    "police", "fire_station", "hospital", "doctor", "dentist", "pharmacy", "veterinary_care",
    "school", "primary_school", "secondary_school", "university", "car_dealer", "car_rental",
    "car_repair", "car_wash", "gas_station", "parking", "transit_station", "bus_station",
    "train_station", "subway_station", "taxi_stand", "atm", "funeral_home", "cemetery",
    "supermarket", "convenience_store", "laundry", "locksmith", "moving_company",
    "plumber", "electrician", "roofing_contractor", "painter", "storage",
})

GENERIC_NAME_PATTERNS = (
    "探索", "旅行社",
    "農會", "公所", "縣政府", "市政府", "衛生所", "戶政事務所",
    "警察局", "派出所", "消防隊", "消防局", "郵局", "稅務局", "地政事務所",
    "診所", "牙醫", "醫院", "藥局", "獸醫", "銀行", "加油站", "停車場", "機車行",
    "葬儀", "殯儀館", "靈骨塔", "納骨塔",
    "服務中心", "遊客中心", "超市", "便利商店", "7-11", "全家", "萊爾富",
)

# English generic words, matched as whole words.
GENERIC_NAME_WORDS = re.compile(r"\b(?:Travel|Explore)\b", re.IGNORECASE)

def is_place_valid(place: PlaceMatch) -> bool:
    if place.business_status and place.business_status in EXCLUDED_BUSINESS_STATUS:
        return False
    if any(t in EXCLUDED_PLACE_TYPES for t in place.types):
        return False
    if any(p in place.name for p in GENERIC_NAME_PATTERNS):
        return False
    if GENERIC_NAME_WORDS.search(place.name):
        return False
    return True

def haversine_km(a: Coordinates, b: Coordinates) -> float:
    r = 6371.0
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2)
    return r * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

def within_radius(center: Coordinates, point: Coordinates, radius_km: float) -> bool:
    return haversine_km(center, point) <= radius_km

def _match_from_result(r: Dict[str, Any]) -> Optional[PlaceMatch]:
    place_id = r.get("place_id")
    name = r.get("name")
    if not place_id or not name:
        return None
    loc = ((r.get("geometry") or {}).get("location") or {})
    coords = None
    if loc.get("lat") is not None and loc.get("lng") is not None:
        coords = Coordinates(lat=float(loc["lat"]), lng=float(loc["lng"]))
    rating = r.get("rating")
    return PlaceMatch(
        place_id=str(place_id),
        name=str(name),
        address=r.get("formatted_address"),
        coordinates=coords,
        rating=float(rating) if rating is not None else None,
        types=tuple(r.get("types") or ()),
        business_status=r.get("business_status"),
    )

class GooglePlacesClient:
    """
    Google Places Text Search + Geocoding over the legacy JSON endpoints.
    Transport errors propagate as httpx errors; the verification gate maps them.
    """

    def __init__(self, api_key: str, language: str = "zh-TW", timeout: float = 8.0,
                 client: httpx.AsyncClient | None = None) -> None:
        self._key = api_key
        self._language = language
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": "district-itinerary-engine/1.0"}
        )

    async def search_text(self, query: str) -> List[PlaceMatch]:
        r = await self._client.get(
            _TEXTSEARCH_URL,
            params={"query": query, "key": self._key, "language": self._language},
        )
        r.raise_for_status()
        data = r.json() or {}
        status = data.get("status")
        if status not in ("OK", "ZERO_RESULTS"):
            log.warning("Places API status %s", status, extra={
                "request_id": get_request_id(),
                "error_message": data.get("error_message"),
            })
            return []
        matches = [_match_from_result(x) for x in data.get("results") or [] if isinstance(x, dict)]
        return [m for m in matches if m is not None]

    async def geocode(self, address: str) -> Optional[Coordinates]:
        r = await self._client.get(
            _GEOCODE_URL,
            params={"address": address, "key": self._key, "language": self._language},
        )
        r.raise_for_status()
        data = r.json() or {}
        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            return None
        loc = ((results[0].get("geometry") or {}).get("location") or {})
        if loc.get("lat") is None or loc.get("lng") is None:
            return None
        return Coordinates(lat=float(loc["lat"]), lng=float(loc["lng"]))

    async def aclose(self) -> None:
        await self._client.aclose()

class VerificationGate:
    """Confirms a proposed name is a real, tourism-relevant place near the district centroid."""

    def __init__(self, places: PlaceSearch, radius_km: float, timeout_s: float) -> None:
        self._places = places
        self._radius_km = radius_km
        self._timeout_s = timeout_s

    async def verify(self, name: str, ctx: DistrictContext) -> PlaceMatch:
        query = f"{name} {ctx.district_name} {ctx.region_name}"
        try:
            matches = await asyncio.wait_for(self._places.search_text(query), self._timeout_s)
        except asyncio.TimeoutError:
            raise VerificationMismatch(name, "timeout") from None
        except (httpx.HTTPError, ValueError) as e:
            # ValueError covers non-JSON bodies from r.json()
            log.warning("Place search failed: %s", e, extra={"request_id": get_request_id()})
            raise VerificationMismatch(name, "search_error") from e

        if not matches:
            raise VerificationMismatch(name, "not_found")
        valid = [m for m in matches if is_place_valid(m) and m.coordinates is not None]
        if not valid:
            raise VerificationMismatch(name, "filtered")
        if ctx.centroid is None:
            # Nothing to measure against; a valid located hit is accepted.
            return valid[0]
        for m in valid:
            if within_radius(ctx.centroid, m.coordinates, self._radius_km):  # type: ignore[arg-type]
                return m
        raise VerificationMismatch(name, "outside_radius")

    async def locate_centroid(self, ctx: DistrictContext) -> Optional[Coordinates]:
        if ctx.centroid is not None:
            return ctx.centroid
        address = f"{ctx.district_name}, {ctx.region_name}, {ctx.country_name}"
        try:
            return await asyncio.wait_for(self._places.geocode(address), self._timeout_s)
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError):
            log.warning("District geocoding failed", extra={
                "request_id": get_request_id(),
                "district": ctx.district_name,
            }, exc_info=True)
            return None
