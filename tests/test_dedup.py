import pytest

from services.dedup import SeenPlaces, dedupe, dedupe_resolved, normalize_name
from services.domain import Candidate, ResolvedSlot, Slot

def _c(name, place_id=None):
    return Candidate(name=name, description="", category="scenery", subcategory="park",
                     origin="generated", place_id=place_id)

@pytest.mark.parametrize("raw, expected", [
    ("  大安森林公園  ", "大安森林公園"),
    ("北投溫泉博物館（北投）", "北投溫泉博物館"),
    ("Taipei 101 (Observatory)", "taipei 101"),
    ("宜蘭傳藝園區", "宜蘭傳藝"),
    ("蘭陽博物館 遊客中心", "蘭陽博物館"),
    ("Kavalan   Whisky Visitor Center", "kavalan whisky"),
    ("觀光工廠", "觀光工廠"),
])
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected

def test_duplicate_by_place_id():
    items = [_c("龍山寺", "p1"), _c("艋舺龍山寺", "p1")]
    assert [c.name for c in dedupe(items, lambda c: c)] == ["龍山寺"]

def test_duplicate_by_normalized_name():
    items = [_c("宜蘭傳藝園區", "p1"), _c("宜蘭傳藝 (園區)", "p2"), _c("宜蘭傳藝", None)]
    assert [c.place_id for c in dedupe(items, lambda c: c)] == ["p1"]

def test_first_occurrence_wins_and_order_is_kept():
    slot = Slot("scenery", "park", "morning", "10:00", "medium")
    items = [ResolvedSlot(slot, _c(n)) for n in ("A", "B", "a", "C", "b")]
    assert [r.candidate.name for r in dedupe_resolved(items)] == ["A", "B", "C"]

def test_seen_places_accept():
    seen = SeenPlaces()
    assert seen.accept(_c("青山宮", "p9"))
    assert not seen.accept(_c("青山宮"))
    assert not seen.accept(_c("別名", "p9"))
    assert seen.accept(_c("剝皮寮"))
