import pytest

from caseroll.casino.catalog import CASES, RARITIES, get_case
from caseroll.casino.reels import (
    REEL_LENGTH,
    build_adjusted_pool,
    generate_preview,
    generate_reel,
    generate_slot,
    generate_slots,
    roll_item,
    winner_index,
)
from caseroll.casino.rng import create_seeded_rng, seeded_random
from caseroll.economy import q2_exact


def single_item_case(rarity_index=0, low=1.0, high=3.0):
    return {
        "id": "solo",
        "name": "Solo",
        "price": 1.0,
        "items": [{"name": "Thing", "icon": "x", "min_value": low, "max_value": high, "rarity_index": rarity_index}],
    }


class TestAdjustedPool:
    def test_last_entry_pinned_to_100(self):
        for case in CASES.values():
            pool = build_adjusted_pool(case)
            assert pool[-1]["cumulative"] == 100.0

    def test_cumulative_is_monotonic(self):
        pool = build_adjusted_pool(get_case("utility_box"))
        values = [p["cumulative"] for p in pool]
        assert values == sorted(values)

    def test_missing_tiers_are_redistributed(self):
        # starter_box has no Mythic item
        pool = build_adjusted_pool(get_case("starter_box"))
        total = sum(r["chance"] for r in RARITIES[:5])
        commons = [p for p in pool if p["rarity"]["name"] == "Common"]
        assert len(commons) == 2
        assert commons[-1]["cumulative"] == pytest.approx(55 / total * 100)

    def test_items_in_a_tier_share_its_weight(self):
        pool = build_adjusted_pool(get_case("starter_box"))
        assert pool[0]["cumulative"] == pytest.approx(pool[1]["cumulative"] - pool[0]["cumulative"])

    def test_empty_case(self):
        assert build_adjusted_pool({"items": []}) == []


class TestRollItem:
    def test_deterministic(self):
        case = get_case("military_case")
        assert roll_item(case, "seed-1") == roll_item(case, "seed-1")

    def test_value_within_item_range(self):
        case = get_case("treasure_chest")
        ranges = {it["name"]: (it["min_value"], it["max_value"]) for it in case["items"]}
        for i in range(100):
            item = roll_item(case, f"roll-{i}")
            low, high = ranges[item["name"]]
            assert low <= item["value"] <= high

    def test_value_uses_second_draw(self):
        case = single_item_case(low=2.0, high=6.0)
        rng = create_seeded_rng("two-draws")
        rng()
        expected = float(q2_exact(2.0 + rng() * 4.0))
        assert roll_item(case, "two-draws")["value"] == expected

    def test_value_rounds_like_browser_to_fixed(self):
        # 1.005 is stored as 1.00499999999999989...
        case = single_item_case(low=1.005, high=1.005)
        assert roll_item(case, "to-fixed")["value"] == 1.0

    def test_shape(self):
        item = roll_item(single_item_case(rarity_index=3), "shape")
        assert set(item) == {"name", "icon", "value", "rarity", "rarityColor", "rarityIcon"}
        assert item["rarity"] == "Epic"
        assert item["rarityColor"] == RARITIES[3]["color"]

    def test_midpoint_fallback_when_no_tier_matches(self):
        item = roll_item(single_item_case(rarity_index=9, low=4.0, high=5.0), "fallback")
        assert item["value"] == 4.5
        assert item["rarity"] == "Mythic"

    def test_empty_case_rolls_nothing(self):
        assert roll_item({"items": []}, "nothing") is None


class TestSlots:
    def test_reel_length_and_winner(self):
        slot = generate_slot(get_case("starter_box"), "master", 0)
        assert len(slot["items"]) == REEL_LENGTH
        assert 20 <= slot["winnerIndex"] <= 76
        assert slot["winner"] == slot["items"][slot["winnerIndex"]]

    def test_winner_index_range_over_many_seeds(self):
        indexes = {winner_index(f"m-{i}", 0) for i in range(500)}
        assert min(indexes) >= 20
        assert max(indexes) <= 76

    def test_winner_index_formula(self):
        assert winner_index("m", 2) == 20 + int(seeded_random("m-slot2-index") * 57)

    def test_slots_replay_from_seed(self):
        case = get_case("toy_box")
        assert generate_slots(case, "replay", 3) == generate_slots(case, "replay", 3)

    def test_each_slot_has_its_own_reel(self):
        case = get_case("toy_box")
        slots = generate_slots(case, "replay", 2)
        assert slots[1]["items"] == generate_reel(case, "replay", 1)
        assert slots[0]["items"] != slots[1]["items"]


def test_preview_returns_full_reels():
    previews = generate_preview(get_case("green_box"), 2, "preview-green_box-1")
    assert len(previews) == 2
    assert all(len(reel) == REEL_LENGTH for reel in previews)
