import json

import pytest

from caseroll import database
from caseroll.backend import Backend
from caseroll.economy import BalanceChanged, InsufficientFunds, to_cents


@pytest.fixture(autouse=True)
def dbroot(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DBROOT", tmp_path / "database")
    database.setup()
    return tmp_path / "database"


@pytest.fixture
def make_player():
    """Create an account with a live session and optional stat overrides."""

    def make(username="alice", money="100.00", diamonds=0, passes=(), max_inventory=None, discount=0):
        userid = database.createaccount(username, "not-a-real-hash", to_cents(money))
        with database.connect("accounts") as db:
            db.execute(
                "UPDATE player_stats SET diamonds = ?, unlocked_passes = ?, case_discount_level = ? WHERE user_id = ?",
                (int(diamonds), json.dumps(list(passes)), int(discount), userid),
            )
            if max_inventory is not None:
                db.execute("UPDATE player_stats SET max_inventory = ? WHERE user_id = ?", (int(max_inventory), userid))
        return {"user_id": str(userid), "token": database.createsession(userid), "username": username}

    return make


@pytest.fixture
def server():
    from caseroll import server

    server.LIMITER.reset()
    server.INVENTORY_LIMITER.reset()
    return server


@pytest.fixture
def client(server):
    return server.app.test_client()


class FakeBackend(Backend):
    """In-memory collaborator set with switchable failures."""

    def __init__(self, money=10_000, passes=(), count=0, max_inventory=15, discount=0, diamonds=0, username="alice", level=3):
        self.stats = {
            "money": money,
            "username": username,
            "level": level,
            "avatar_url": None,
            "max_inventory": max_inventory,
            "case_discount_level": discount,
            "unlocked_passes": list(passes),
            "diamonds": diamonds,
        }
        self.count = count
        self.fail: set[str] = set()
        self.ledger: list[dict] = []
        self.inventory: list[dict] = []
        self.drops: list[dict] = []
        self.chat: list[dict] = []
        self.audits: list[tuple] = []
        self.best_drops: list[int] = []
        self.opened = 0
        self.pass_result = None

    def _check(self, name):
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    def validate_session(self, auth_token, user_id, fields=("user_id",)):
        self._check("session")
        if auth_token != "token":
            return {"valid": False, "error": "Invalid session"}
        if str(user_id) != "1":
            return {"valid": False, "error": "User mismatch"}
        return {"valid": True, "user_id": 1, "stats": dict(self.stats)}

    def adjust_balance(self, user_id, amount, description, reference_id, tx_type, expected_balance=None):
        kind = "refund" if reference_id.endswith(":refund") else "debit"
        self._check(kind)
        if f"{kind}:insufficient" in self.fail:
            raise InsufficientFunds(self.stats["money"])
        if f"{kind}:changed" in self.fail:
            raise BalanceChanged(self.stats["money"])
        if expected_balance is not None and expected_balance != self.stats["money"]:
            raise BalanceChanged(self.stats["money"])
        self.stats["money"] += amount
        self.ledger.append({"amount": amount, "reference_id": reference_id, "type": tx_type, "expected": expected_balance})
        return self.stats["money"]

    def balance(self, user_id):
        return self.stats["money"]

    def inventory_count(self, user_id):
        self._check("count")
        return self.count

    def insert_inventory(self, rows):
        self._check("inventory")
        self.inventory.extend(rows)
        return list(range(1, len(rows) + 1))

    def update_best_drop(self, user_id, value):
        self._check("best_drop")
        self.best_drops.append(value)
        return True

    def record_cases_opened(self, user_id, count):
        self._check("cases_opened")
        self.opened += count

    def insert_drop_history(self, rows):
        self._check("drops")
        self.drops.extend(rows)

    def insert_drop_history_row(self, row):
        self._check("drop_row")
        self.drops.append(row)

    def insert_chat_notification(self, user_id, username, message, user_level, avatar_url):
        self._check("chat")
        self.chat.append({"user_id": user_id, "username": username, "message": message, "user_level": user_level})
        return len(self.chat)

    def purchase_pass(self, user_id, pass_id, cost, required):
        self._check("purchase")
        if self.pass_result is not None:
            return self.pass_result
        self.stats["unlocked_passes"].append(pass_id)
        self.stats["diamonds"] -= cost
        return {"success": True, "newDiamonds": self.stats["diamonds"], "unlockedPasses": list(self.stats["unlocked_passes"])}

    def set_discount_level(self, user_id, level):
        self._check("discount")
        self.stats["case_discount_level"] = level
        return True

    def log_audit(self, user_id, action, details, ip="unknown", useragent="unknown"):
        self.audits.append((str(user_id), action, details))


@pytest.fixture
def fake_backend():
    return FakeBackend
