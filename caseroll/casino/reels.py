from caseroll.casino.catalog import RARITIES, get_rarity
from caseroll.casino.rng import create_seeded_rng, seeded_random
from caseroll.economy import q2_exact


REEL_LENGTH = 96
WINNER_INDEX_MIN = 20
WINNER_INDEX_SPAN = 57


def build_adjusted_pool(case: dict) -> list[dict]:
    """Flatten a case into cumulative percent weights over the tiers it has.

    Tiers missing from the case give their share to the present ones, split
    evenly between the items of each tier. The last entry is pinned to 100.
    """
    items = case.get("items") or []
    buckets = []
    for idx, rarity in enumerate(RARITIES):
        members = [it for it in items if int(it["rarity_index"]) == idx]
        if members:
            buckets.append((rarity, members))
    if not buckets:
        return []

    total_base = sum(rarity["chance"] for rarity, _ in buckets)
    pool: list[dict] = []
    cumulative = 0.0
    for rarity, members in buckets:
        per_item = (rarity["chance"] / total_base) * 100 / len(members)
        for item in members:
            cumulative += per_item
            pool.append({"item": item, "rarity": rarity, "cumulative": cumulative})
    pool[-1]["cumulative"] = 100.0
    return pool


def _opened(item: dict, rarity: dict, value) -> dict:
    return {
        "name": item["name"],
        "icon": item["icon"],
        "value": float(q2_exact(value)),
        "rarity": rarity["name"],
        "rarityColor": rarity["color"],
        "rarityIcon": rarity["icon"],
    }


def roll_item(case: dict, seed) -> dict | None:
    rng = create_seeded_rng(seed)
    pool = build_adjusted_pool(case)
    if not pool:
        items = case.get("items") or []
        if not items:
            return None
        fallback = items[0]
        mid = (fallback["min_value"] + fallback["max_value"]) / 2
        return _opened(fallback, get_rarity(fallback["rarity_index"]), mid)

    roll = rng() * 100
    hit = next((p for p in pool if roll <= p["cumulative"]), pool[-1])
    item = hit["item"]
    value = item["min_value"] + rng() * (item["max_value"] - item["min_value"])
    return _opened(item, hit["rarity"], value)


def winner_index(master_seed: str, slot: int) -> int:
    return WINNER_INDEX_MIN + int(seeded_random(f"{master_seed}-slot{slot}-index") * WINNER_INDEX_SPAN)


def generate_reel(case: dict, seed_prefix: str, slot: int, length: int = REEL_LENGTH) -> list:
    return [roll_item(case, f"{seed_prefix}-slot{slot}-item{i}") for i in range(length)]


def generate_slot(case: dict, master_seed: str, slot: int) -> dict:
    items = generate_reel(case, master_seed, slot)
    index = winner_index(master_seed, slot)
    return {"items": items, "winnerIndex": index, "winner": items[index]}


def generate_slots(case: dict, master_seed: str, quantity: int) -> list[dict]:
    return [generate_slot(case, master_seed, slot) for slot in range(int(quantity))]


def generate_preview(case: dict, quantity: int, seed: str) -> list[list[dict]]:
    previews = []
    for slot in range(int(quantity)):
        previews.append([item for item in generate_reel(case, seed, slot) if item is not None])
    return previews
