"""Persistence collaborators consumed by the case-opening and inventory handlers.

Handlers only talk to a Backend instance so that a request is a function of
its payload and these calls. Every method may raise; callers decide whether
a failure is fatal, compensated or ignored.
"""

import logging
import sqlite3

from caseroll import database
from caseroll.economy import adjust_balance, get_balance


logger = logging.getLogger(__name__)


class Backend:
    def validate_session(self, auth_token, user_id, fields: tuple[str, ...] = ("user_id",)) -> dict:
        if not auth_token or not isinstance(auth_token, str):
            return {"valid": False, "error": "Invalid token format"}
        try:
            owner = database.sessionuser(auth_token)
            if owner is None:
                return {"valid": False, "error": "Invalid session"}
            if user_id is not None and str(owner) != str(user_id):
                return {"valid": False, "error": "User mismatch"}
            stats = database.playerstats(owner)
        except sqlite3.Error as exc:
            logger.error("session validation failed: %s", exc)
            return {"valid": False, "error": "Validation failed"}
        if not stats:
            return {"valid": False, "error": "User not found"}
        return {"valid": True, "user_id": owner, "stats": {k: stats.get(k) for k in fields}}

    def adjust_balance(self, user_id, amount: int, description: str, reference_id: str, tx_type: str, expected_balance: int | None = None) -> int:
        return adjust_balance(int(user_id), amount, tx_type, description, reference_id, expected_balance)

    def balance(self, user_id) -> int:
        return get_balance(int(user_id))

    def inventory_count(self, user_id) -> int:
        return database.inventorycount(int(user_id))

    def insert_inventory(self, rows: list[dict]) -> list[int]:
        return database.inventoryinsert(rows)

    def inventory_rows(self, user_id, ids: list[int] | None = None) -> list[dict]:
        return database.inventoryrows(int(user_id), ids)

    def delete_inventory(self, user_id, ids: list[int]) -> list[dict]:
        return database.inventorydelete(int(user_id), ids)

    def restore_inventory(self, rows: list[dict]) -> None:
        database.inventoryrestore(rows)

    def update_best_drop(self, user_id, value: int) -> bool:
        return database.updatebestdrop(int(user_id), value)

    def record_cases_opened(self, user_id, count: int) -> None:
        database.incrementcasesopened(int(user_id), count)

    def insert_drop_history(self, rows: list[dict]) -> None:
        database.insertdrops(rows)

    def insert_drop_history_row(self, row: dict) -> None:
        database.insertdrop(row)

    def insert_chat_notification(self, user_id, username: str, message: str, user_level: int, avatar_url) -> int:
        return database.insertchat(user_id, username, message, user_level, avatar_url, kind="drop")

    def purchase_pass(self, user_id, pass_id: str, cost: int, required: str | None) -> dict:
        return database.purchasepass(int(user_id), pass_id, cost, required)

    def set_discount_level(self, user_id, level: int) -> bool:
        return database.setdiscountlevel(int(user_id), level)

    def log_audit(self, user_id, action: str, details: dict, ip: str = "unknown", useragent: str = "unknown") -> None:
        try:
            database.logaudit(str(user_id), action, details, ip, useragent)
        except sqlite3.Error as exc:
            logger.error("failed to log action %s: %s", action, exc)
