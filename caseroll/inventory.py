import logging
import secrets

from caseroll.backend import Backend
from caseroll.database import DEFAULT_MAX_INVENTORY
from caseroll.economy import TX_SALE, from_cents


logger = logging.getLogger(__name__)

MAX_BULK_SELL = 100


def _item(row: dict) -> dict:
    return {
        "id": row["id"],
        "itemName": row["item_name"],
        "rarity": row["rarity"],
        "color": row["color"],
        "value": from_cents(row["value"]),
        "caseName": row["case_name"],
        "obtainedAt": row["obtained_at"],
    }


def _item_id(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        item_id = int(value)
    except (TypeError, ValueError):
        return None
    return item_id if item_id > 0 else None


class InventoryManager:
    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    def _audit(self, user_id, action: str, details: dict, client: dict | None) -> None:
        client = client or {}
        self.backend.log_audit(user_id, action, details, client.get("ip", "unknown"), client.get("useragent", "unknown"))

    def dispatch(self, action, payload: dict, client: dict | None = None) -> tuple[dict, int]:
        payload = payload or {}
        user_id = payload.get("userId")
        auth_token = payload.get("authToken")
        if not action or not isinstance(action, str):
            return {"error": "Invalid action"}, 400
        if not user_id:
            return {"error": "Invalid userId"}, 400
        if not auth_token or not isinstance(auth_token, str):
            return {"error": "Invalid authToken"}, 400

        session = self.backend.validate_session(auth_token, user_id, ("max_inventory",))
        if not session.get("valid"):
            self._audit(user_id, "AUTH_FAILED", {"action": action, "error": session.get("error")}, client)
            return {"error": session.get("error") or "Validation failed"}, 401

        handlers = {
            "fetchInventory": self.fetch_inventory,
            "sellItem": self.sell_item,
            "sellSelected": self.sell_selected,
            "sellAll": self.sell_all,
        }
        handler = handlers.get(action)
        if handler is None:
            return {"error": "Invalid action"}, 400
        try:
            return handler(session["user_id"], payload, session["stats"], client)
        except Exception:
            logger.exception("inventory action %s failed user=%s", action, user_id)
            self._audit(user_id, "ERROR", {"action": action}, client)
            return {"error": "Internal server error"}, 500

    def fetch_inventory(self, user_id, payload: dict, stats: dict, client=None) -> tuple[dict, int]:
        rows = self.backend.inventory_rows(user_id)
        return {
            "success": True,
            "items": [_item(r) for r in rows],
            "count": len(rows),
            "maxInventory": stats.get("max_inventory") or DEFAULT_MAX_INVENTORY,
        }, 200

    def sell_item(self, user_id, payload: dict, stats: dict, client=None) -> tuple[dict, int]:
        item_id = _item_id(payload.get("itemId"))
        if item_id is None:
            return {"error": "Invalid item ID"}, 400
        rows = self.backend.inventory_rows(user_id, [item_id])
        if rows:
            sold, new_balance = self._sell(user_id, [item_id], f"Sold {rows[0]['item_name']}", client)
        else:
            sold, new_balance = [], None
        if not sold:
            self._audit(user_id, "SELL_ITEM_NOT_FOUND", {"itemId": item_id}, client)
            return {"error": "Item not found or not owned by you"}, 404
        if new_balance is None:
            return {"error": "Transaction failed. Item restored."}, 500
        return {
            "success": True,
            "soldValue": from_cents(sold[0]["value"]),
            "newBalance": from_cents(new_balance),
            "itemName": sold[0]["item_name"],
        }, 200

    def sell_selected(self, user_id, payload: dict, stats: dict, client=None) -> tuple[dict, int]:
        raw = payload.get("itemIds")
        if not isinstance(raw, list) or not raw:
            return {"error": "Invalid item IDs"}, 400
        if len(raw) > MAX_BULK_SELL:
            return {"error": "Maximum 100 items at once"}, 400
        ids = [i for i in (_item_id(v) for v in raw) if i is not None]
        rows = self.backend.inventory_rows(user_id, ids)
        if not rows:
            self._audit(user_id, "SELL_SELECTED_NO_ITEMS", {"requestedCount": len(raw)}, client)
            return {"error": "No valid items found"}, 404
        return self._sell_bulk(user_id, rows, client, "No valid items found")

    def sell_all(self, user_id, payload: dict, stats: dict, client=None) -> tuple[dict, int]:
        rows = self.backend.inventory_rows(user_id)
        if not rows:
            return {"error": "No items to sell"}, 404
        return self._sell_bulk(user_id, rows, client, "No items to sell")

    def _sell_bulk(self, user_id, rows: list[dict], client, missing: str) -> tuple[dict, int]:
        rows = [r for r in rows if r["value"] >= 0]
        if not rows:
            return {"error": "No valid items to sell"}, 400
        sold, new_balance = self._sell(user_id, [r["id"] for r in rows], f"Sold {len(rows)} items (bulk)", client)
        if not sold:
            return {"error": missing}, 404
        if new_balance is None:
            return {"error": "Transaction failed. Items restored."}, 500
        return {
            "success": True,
            "soldCount": len(sold),
            "totalValue": from_cents(sum(r["value"] for r in sold)),
            "newBalance": from_cents(new_balance),
        }, 200

    def _sell(self, user_id, ids: list[int], description: str, client) -> tuple[list[dict], int | None]:
        """Delete ``ids`` and credit the value of the rows actually removed.

        Rows already gone (sold by a concurrent request) are neither credited
        nor reported. Returns ``(sold_rows, new_balance)``; ``new_balance`` is
        None when the credit failed and the rows were put back.
        """
        sold = self.backend.delete_inventory(user_id, ids)
        if not sold:
            return [], None
        total = sum(r["value"] for r in sold)
        if total <= 0:
            return sold, self.backend.balance(user_id)
        try:
            new_balance = self.backend.adjust_balance(user_id, total, description, f"sale:{secrets.token_hex(10)}", TX_SALE)
        except Exception as exc:
            logger.error("credit failed after delete user=%s items=%s: %s", user_id, [r["id"] for r in sold], exc)
            self.backend.restore_inventory(sold)
            self._audit(user_id, "SELL_BALANCE_FAILED_ROLLBACK", {"count": len(sold), "error": str(exc)}, client)
            return sold, None
        self._audit(user_id, "SELL_SUCCESS", {"count": len(sold), "value": total, "newBalance": new_balance}, client)
        return sold, new_balance
