RARITIES = [
    {"name": "Common", "chance": 55.0, "color": "#9ca3af", "icon": "⚪"},
    {"name": "Uncommon", "chance": 25.0, "color": "#22c55e", "icon": "🟢"},
    {"name": "Rare", "chance": 12.0, "color": "#3b82f6", "icon": "🔵"},
    {"name": "Epic", "chance": 5.0, "color": "#a855f7", "icon": "🟣"},
    {"name": "Legendary", "chance": 2.5, "color": "#eab308", "icon": "🟡"},
    {"name": "Mythic", "chance": 0.5, "color": "#ef4444", "icon": "🔴"},
]

# Tiers that trigger a chat broadcast when dropped.
ANNOUNCED_RARITIES = {"Legendary", "Mythic"}


def _item(name: str, icon: str, min_value: float, max_value: float, rarity_index: int) -> dict:
    return {"name": name, "icon": icon, "min_value": min_value, "max_value": max_value, "rarity_index": rarity_index}


CASES = {
    "starter_box": {
        "id": "starter_box",
        "name": "Starter Box",
        "icon": "📦",
        "price": 5.0,
        "color": "#9ca3af",
        "items": [
            _item("Basic Coin", "🪙", 0.50, 1.50, 0),
            _item("Snack Pack", "🧃", 1.00, 2.80, 0),
            _item("Mini Plush", "🧸", 2.00, 4.20, 1),
            _item("Old Manual", "📄", 3.50, 6.50, 2),
            _item("Collector Pin", "📍", 6.00, 11.00, 3),
            _item("Mythic Token", "✨", 12.00, 25.00, 4),
        ],
    },
    "utility_box": {
        "id": "utility_box",
        "name": "Utility Box",
        "icon": "🧰",
        "price": 9.0,
        "color": "#065f46",
        "items": [
            _item("Small Hammer", "🔨", 1.50, 4.00, 0),
            _item("Screwdriver", "🪛", 2.50, 5.50, 0),
            _item("Weak Flashlight", "🔦", 4.00, 8.00, 1),
            _item("Metal Screw", "🔩", 7.00, 13.00, 2),
            _item("Mini Canteen", "🧃", 11.00, 20.00, 3),
            _item("Compact Extinguisher", "🧯", 18.00, 35.00, 4),
            _item("Prototype Gadget", "🛰️", 30.00, 60.00, 5),
        ],
    },
    "green_box": {
        "id": "green_box",
        "name": "Green Box",
        "icon": "📦",
        "price": 14.0,
        "color": "#3b82f6",
        "items": [
            _item("Cardboard Stash", "📦", 2.00, 6.00, 0),
            _item("Sealed Supply", "📮", 5.00, 11.00, 1),
            _item("Crate Cache", "🧰", 9.00, 17.00, 2),
            _item("Fortified Box", "🪤", 15.00, 28.00, 3),
            _item("Vaulted Shipment", "💼", 25.00, 48.00, 4),
            _item("Mythic Cargo", "🎁", 50.00, 95.00, 5),
        ],
    },
    "urban_box": {
        "id": "urban_box",
        "name": "Urban Box",
        "icon": "🏙️",
        "price": 22.0,
        "color": "#6b7280",
        "items": [
            _item("Street Headphones", "🎧", 5.00, 12.00, 0),
            _item("Graffiti Note", "🗒️", 8.00, 18.00, 1),
            _item("Keychain Key", "🔑", 14.00, 26.00, 2),
            _item("Crushed Can", "🥫", 22.00, 40.00, 3),
            _item("Neon Mask", "🎭", 35.00, 65.00, 4),
            _item("Underground Pass", "🚇", 70.00, 130.00, 5),
        ],
    },
    "old_stuff": {
        "id": "old_stuff",
        "name": "Old Stuff Box",
        "icon": "🏺",
        "price": 35.0,
        "color": "#a16207",
        "items": [
            _item("Worn Coin", "🪙", 8.00, 18.00, 0),
            _item("Rusty Key", "🗝️", 15.00, 28.00, 1),
            _item("Old Scroll", "📜", 24.00, 45.00, 2),
            _item("Ancient Compass", "🧭", 38.00, 70.00, 3),
            _item("Broken Relic", "🪨", 65.00, 120.00, 4),
            _item("Forgotten Medallion", "🏺", 130.00, 250.00, 5),
        ],
    },
    "toy_box": {
        "id": "toy_box",
        "name": "Toy Box",
        "icon": "🧸",
        "price": 48.0,
        "color": "#ec4899",
        "items": [
            _item("Blue Bunny Plush", "🐰", 12.00, 25.00, 0),
            _item("Heart Emoji Ball", "😍", 20.00, 38.00, 1),
            _item("Toy Dolphin", "🐬", 32.00, 60.00, 2),
            _item("Holographic Stickers", "✨", 50.00, 95.00, 3),
            _item("Color Spring", "🌀", 85.00, 160.00, 4),
            _item("Limited Figure", "🧩", 170.00, 320.00, 5),
        ],
    },
    "scrap_box": {
        "id": "scrap_box",
        "name": "Scrap Box",
        "icon": "⚙️",
        "price": 65.0,
        "color": "#525252",
        "items": [
            _item("Metal Gears", "⚙️", 15.00, 32.00, 0),
            _item("Old Circuit Board", "🖥️", 28.00, 52.00, 1),
            _item("Bolts & Nuts", "🔩", 45.00, 85.00, 2),
            _item("Brushed Metal Block", "⬛", 70.00, 135.00, 3),
            _item("Alloy Core", "🧊", 120.00, 230.00, 4),
            _item("Singularity Scrap", "🌀", 250.00, 480.00, 5),
        ],
    },
    "mixed_box": {
        "id": "mixed_box",
        "name": "Mixed Box",
        "icon": "🧳",
        "price": 85.0,
        "color": "#22d3ee",
        "items": [
            _item("Thermal Cup", "☕", 20.00, 42.00, 0),
            _item("Rest Pillow", "😴", 35.00, 68.00, 1),
            _item("Photo Frame", "🖼️", 55.00, 105.00, 2),
            _item("Snack Container", "🍱", 90.00, 170.00, 3),
            _item("Weekend Bag", "👜", 150.00, 285.00, 4),
            _item("Premium Travel Kit", "🧴", 300.00, 550.00, 5),
        ],
    },
    "basic_gun": {
        "id": "basic_gun",
        "name": "Basic Gun",
        "icon": "🔫",
        "price": 120.0,
        "color": "#ef4444",
        "items": [
            _item("Training Pistol", "🔫", 30.00, 65.00, 0),
            _item("Old Revolver", "🤠", 55.00, 110.00, 1),
            _item("Rusty SMG", "💥", 90.00, 175.00, 2),
            _item("Ammo Pack", "📦", 140.00, 270.00, 3),
            _item("Weapon Parts", "🧩", 240.00, 450.00, 4),
            _item("Collector Weapon", "🎯", 500.00, 900.00, 5),
        ],
    },
    "travel_box": {
        "id": "travel_box",
        "name": "Travel Box",
        "icon": "🧭",
        "price": 175.0,
        "color": "#f97316",
        "items": [
            _item("Trail Flashlight", "🔦", 45.00, 90.00, 0),
            _item("Adventure Passport", "📘", 75.00, 145.00, 1),
            _item("Star Map", "🌌", 120.00, 230.00, 2),
            _item("Aluminum Canteen", "🥤", 190.00, 360.00, 3),
            _item("Magnetic Compass", "🧭", 320.00, 600.00, 4),
            _item("First Aid Kit", "🩹", 650.00, 1200.00, 5),
        ],
    },
    "treasure_chest": {
        "id": "treasure_chest",
        "name": "Treasure Chest",
        "icon": "💎",
        "price": 250.0,
        "color": "#a855f7",
        "items": [
            _item("Bronze Coin", "🪙", 60.00, 120.00, 0),
            _item("Emerald Ring", "💍", 110.00, 210.00, 1),
            _item("Sapphire Gem", "💠", 180.00, 350.00, 2),
            _item("Ruby Crown", "👑", 300.00, 580.00, 3),
            _item("Diamond Scepter", "🔱", 550.00, 1050.00, 4),
            _item("Ancient Artifact", "🏺", 1200.00, 2500.00, 5),
        ],
    },
    "military_case": {
        "id": "military_case",
        "name": "Military Case",
        "icon": "🪖",
        "price": 400.0,
        "color": "#374151",
        "items": [
            _item("Military Helmet", "🪖", 100.00, 200.00, 0),
            _item("Ammo Crate", "📦", 180.00, 350.00, 1),
            _item("Light Rifle", "🔫", 300.00, 580.00, 2),
            _item("Armored Jeep", "🚙", 500.00, 950.00, 3),
            _item("Battle Tank", "🛡️", 900.00, 1700.00, 4),
            _item("Fighter Jet", "✈️", 2000.00, 4000.00, 5),
        ],
    },
}

PASSES = {
    "quick_roll": {"id": "quick_roll", "name": "Quick Roll", "cost": 100, "requires": None},
    "multi_2x": {"id": "multi_2x", "name": "2x Multi-Open", "cost": 50, "requires": None},
    "multi_3x": {"id": "multi_3x", "name": "3x Multi-Open", "cost": 100, "requires": "multi_2x"},
    "multi_4x": {"id": "multi_4x", "name": "4x Multi-Open", "cost": 150, "requires": "multi_3x"},
}

MULTI_OPEN_PASSES = {1: None, 2: "multi_2x", 3: "multi_3x", 4: "multi_4x"}


def get_case(case_id) -> dict | None:
    return CASES.get(str(case_id or "").strip())


def get_rarity(index: int) -> dict:
    return RARITIES[min(max(int(index), 0), len(RARITIES) - 1)]


def get_pass(pass_id) -> dict | None:
    return PASSES.get(str(pass_id or ""))


def list_cases() -> list[dict]:
    return [
        {"id": c["id"], "name": c["name"], "icon": c["icon"], "price": c["price"], "color": c["color"]}
        for c in CASES.values()
    ]


def constants(case_id: str) -> dict:
    case = get_case(case_id)
    if not case:
        return {}
    return {
        "case": {"id": case["id"], "name": case["name"], "price": case["price"]},
        "items": [dict(item, rarity=get_rarity(item["rarity_index"])["name"]) for item in case["items"]],
    }
