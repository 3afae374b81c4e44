"""Replayable randomness for case reels.

Every reel a client animates is rebuilt from the seed string returned by the
server, so item rolls never touch the ambient random source. Only the master
seed itself comes from ``secrets``.
"""

import math
import secrets
from typing import Callable


SEED_BYTES = 32
NONCE_LIMIT = 1_000_000


def _int32(value: int) -> int:
    return ((value + 0x80000000) & 0xFFFFFFFF) - 0x80000000


def _code_units(text: str):
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def _seed_text(seed) -> str:
    if isinstance(seed, bool):
        return "true" if seed else "false"
    if isinstance(seed, float) and seed.is_integer():
        return str(int(seed))
    return str(seed)


def seed_hash(seed) -> int:
    acc = 0
    for unit in _code_units(_seed_text(seed)):
        acc = _int32(acc * 31 + unit)
    return acc


def _fold(x: int) -> float:
    v = math.sin(abs(x)) * 10000
    return v - math.floor(v)


def create_seeded_rng(seed) -> Callable[[], float]:
    state = seed_hash(seed)

    def draw() -> float:
        nonlocal state
        value = _fold(state)
        state += 1
        return value

    return draw


def seeded_random(seed) -> float:
    return _fold(seed_hash(seed))


def generate_secure_seed(user_id: str, case_id: str, timestamp: int) -> str:
    random_hex = secrets.token_hex(SEED_BYTES)
    nonce = secrets.randbelow(NONCE_LIMIT)
    return f"case-{user_id}-{case_id}-{int(timestamp)}-{nonce}-{random_hex}"
