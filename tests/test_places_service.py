import asyncio

import httpx
import pytest

from errors import VerificationMismatch
from services.domain import Coordinates, PlaceMatch
from services.places_service import (
    GooglePlacesClient,
    VerificationGate,
    haversine_km,
    is_place_valid,
    within_radius,
)

from conftest import WANHUA_CENTER, FakePlaces

def _place(name="青山宮", types=("tourist_attraction",), status="OPERATIONAL", coords=WANHUA_CENTER):
    return PlaceMatch(place_id="p1", name=name, address=None, coordinates=coords,
                      types=types, business_status=status)

def test_haversine_known_distance():
    taipei_main = Coordinates(25.0478, 121.5170)
    longshan = Coordinates(25.0372, 121.4999)
    assert 1.8 < haversine_km(taipei_main, longshan) < 2.2
    assert haversine_km(longshan, longshan) == 0

def test_within_radius():
    assert within_radius(WANHUA_CENTER, Coordinates(25.05, 121.50), 5.0)
    assert not within_radius(WANHUA_CENTER, Coordinates(24.8270, 121.7700), 5.0)

@pytest.mark.parametrize("place, ok", [
    (_place(), True),
    (_place(status="CLOSED_PERMANENTLY"), False),
    (_place(types=("bank", "point_of_interest")), False),
    (_place(name="萬華區遊客中心"), False),
    (_place(name="Taipei Travel Agency"), False),
])
def test_place_validity(place, ok):
    assert is_place_valid(place) is ok

def _client(handler):
    transport = httpx.MockTransport(handler)
    return GooglePlacesClient("k", client=httpx.AsyncClient(transport=transport))

def test_search_text_parses_results():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["query"] == "青山宮 萬華區"
        assert request.url.params["language"] == "zh-TW"
        return httpx.Response(200, json={"status": "OK", "results": [{
            "place_id": "ChIJ-qs", "name": "艋舺青山宮", "formatted_address": "貴陽街二段218號",
            "geometry": {"location": {"lat": 25.0387, "lng": 121.5010}},
            "rating": 4.5, "types": ["place_of_worship"], "business_status": "OPERATIONAL",
        }, {"name": "no id"}]})

    matches = asyncio.run(_client(handler).search_text("青山宮 萬華區"))

    assert len(matches) == 1
    m = matches[0]
    assert m.place_id == "ChIJ-qs"
    assert m.coordinates == Coordinates(25.0387, 121.5010)
    assert m.types == ("place_of_worship",)

def test_search_text_error_status_returns_empty():
    def handler(request):
        return httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"})

    assert asyncio.run(_client(handler).search_text("x")) == []

def test_geocode():
    def handler(request):
        assert "geocode" in request.url.path
        return httpx.Response(200, json={"status": "OK", "results": [
            {"geometry": {"location": {"lat": 25.03, "lng": 121.50}}}
        ]})

    assert asyncio.run(_client(handler).geocode("萬華區, 台北市, 台灣")) == Coordinates(25.03, 121.50)

def test_gate_accepts_first_valid_match_in_radius(district):
    far = _place(name="遠方", coords=Coordinates(22.6, 120.3))
    near = _place(name="青山宮", coords=Coordinates(25.04, 121.50))
    gate = VerificationGate(FakePlaces(overrides={"青山宮": [far, near]}), 5.0, 1.0)

    assert asyncio.run(gate.verify("青山宮", district)) == near

@pytest.mark.parametrize("matches, reason", [
    ([], "not_found"),
    ([_place(status="CLOSED_TEMPORARILY")], "filtered"),
    ([_place(coords=None)], "filtered"),
    ([_place(coords=Coordinates(22.6, 120.3))], "outside_radius"),
])
def test_gate_rejections(district, matches, reason):
    gate = VerificationGate(FakePlaces(overrides={"青山宮": matches}), 5.0, 1.0)
    with pytest.raises(VerificationMismatch) as exc:
        asyncio.run(gate.verify("青山宮", district))
    assert exc.value.reason == reason

def test_gate_maps_transport_errors(district):
    class Down:
        async def search_text(self, query):
            raise httpx.ConnectError("boom")

    gate = VerificationGate(Down(), 5.0, 1.0)
    with pytest.raises(VerificationMismatch) as exc:
        asyncio.run(gate.verify("青山宮", district))
    assert exc.value.reason == "search_error"

def test_gate_without_centroid_accepts_located_match(district):
    from dataclasses import replace
    gate = VerificationGate(FakePlaces(overrides={"青山宮": [_place(coords=Coordinates(22.6, 120.3))]}), 5.0, 1.0)
    assert asyncio.run(gate.verify("青山宮", replace(district, centroid=None))).name == "青山宮"

def test_locate_centroid_geocodes_once(district):
    from dataclasses import replace
    gate = VerificationGate(FakePlaces(geocode_result=Coordinates(25.0, 121.5)), 5.0, 1.0)
    assert asyncio.run(gate.locate_centroid(replace(district, centroid=None))) == Coordinates(25.0, 121.5)
    assert asyncio.run(gate.locate_centroid(district)) == district.centroid

def test_gate_maps_non_json_body_to_search_error(district):
    def handler(request):
        return httpx.Response(200, text="<html>quota page</html>")

    gate = VerificationGate(_client(handler), 5.0, 1.0)
    with pytest.raises(VerificationMismatch) as exc:
        asyncio.run(gate.verify("青山宮", district))
    assert exc.value.reason == "search_error"

@pytest.mark.parametrize("name", ["Travelers Cafe", "Explorer Bar"])
def test_english_names_containing_generic_words_are_valid(name):
    assert is_place_valid(_place(name=name))
