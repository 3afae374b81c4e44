import logging
import math
import secrets
import time
from decimal import Decimal

from caseroll.backend import Backend
from caseroll.casino.catalog import ANNOUNCED_RARITIES, MULTI_OPEN_PASSES, get_case, get_pass
from caseroll.casino.reels import generate_preview, generate_slots
from caseroll.casino.rng import generate_secure_seed
from caseroll.database import DEFAULT_MAX_INVENTORY
from caseroll.economy import (
    TX_CASE_OPENING,
    TX_REFUND,
    TX_UPGRADE,
    BalanceChanged,
    InsufficientFunds,
    from_cents,
    q2,
    to_cents,
)
from caseroll.security import CsrfGuard


logger = logging.getLogger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 4
MAX_DISCOUNT_LEVEL = 40
OPENING_FIELDS = (
    "money",
    "username",
    "level",
    "avatar_url",
    "max_inventory",
    "case_discount_level",
    "unlocked_passes",
)


def parse_quantity(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        return None
    if value < MIN_QUANTITY or value > MAX_QUANTITY:
        return None
    return value


def opening_cost(price, quantity: int, discount_level: int) -> int:
    """Total price in cents after the case discount, rounded half up to the cent."""
    discount = min(max(int(discount_level or 0), 0), MAX_DISCOUNT_LEVEL)
    factor = 1 - Decimal(discount) / 100
    return to_cents(Decimal(str(price)) * int(quantity) * factor)


def discount_upgrade_cost(level: int) -> int:
    return int(math.floor(100 * math.pow(1.38, int(level)) + 0.5))


def _fmt_value(value: float) -> str:
    text = format(Decimal(str(value)).normalize(), "f")
    return text.rstrip("0").rstrip(".") if "." in text else text


def drop_message(username: str, item: dict, case: dict) -> str:
    return f"{username} just dropped {item['rarityIcon']} {item['name']} (${_fmt_value(item['value'])}) from {case['name']}!"


class CaseOpeningManager:
    def __init__(self, backend: Backend, csrf: CsrfGuard | None = None) -> None:
        self.backend = backend
        self.csrf = csrf

    def dispatch(self, action, payload: dict, csrf_token: str | None = None, client: dict | None = None) -> tuple[dict, int]:
        if action == "openCases":
            return self.open_cases(payload, csrf_token, client)
        if action == "generatePreview":
            return self.generate_preview(payload)
        if action == "purchasePass":
            return self.purchase_pass(payload, csrf_token, client)
        if action == "upgradeCaseDiscount":
            return self.upgrade_case_discount(payload, client)
        return {"error": "Invalid action"}, 400

    def _audit(self, user_id, action: str, details: dict, client: dict | None) -> None:
        client = client or {}
        self.backend.log_audit(user_id or "unknown", action, details, client.get("ip", "unknown"), client.get("useragent", "unknown"))

    def _check_csrf(self, csrf_token, user_id, auth_token: str) -> tuple[bool, str]:
        if self.csrf is None:
            return True, ""
        return self.csrf.validate(csrf_token, user_id, auth_token)

    def check_capacity(self, user_id, quantity: int, provided_max=None) -> dict:
        max_capacity = DEFAULT_MAX_INVENTORY
        if isinstance(provided_max, int) and not isinstance(provided_max, bool) and provided_max > 0:
            max_capacity = provided_max
        try:
            current = int(self.backend.inventory_count(user_id))
        except Exception:
            logger.exception("capacity check failed user=%s", user_id)
            return {"valid": False, "error": "Failed to count inventory"}
        if current + quantity > max_capacity:
            return {
                "valid": False,
                "error": "INVENTORY_FULL",
                "current": current,
                "max": max_capacity,
                "available": max_capacity - current,
            }
        return {"valid": True, "current": current, "max": max_capacity}

    def open_cases(self, payload: dict, csrf_token: str | None = None, client: dict | None = None) -> tuple[dict, int]:
        try:
            return self._open_cases(payload or {}, csrf_token, client)
        except Exception:
            logger.exception("fatal error in openCases")
            return {"error": "Internal server error"}, 500

    def _open_cases(self, payload: dict, csrf_token, client) -> tuple[dict, int]:
        user_id = payload.get("userId")
        auth_token = payload.get("authToken")
        case_id = payload.get("caseId")
        quantity = payload.get("quantity")

        if not auth_token:
            return {"error": "Missing required fields: authToken"}, 400
        qty = parse_quantity(quantity)
        if qty is None:
            logger.warning("invalid case quantity user=%s quantity=%r", user_id, quantity)
            self._audit(user_id, "INVALID_CASE_QUANTITY", {"quantity": quantity}, client)
            return {"error": "Invalid quantity (1-4)"}, 400
        if not user_id or not case_id:
            return {"error": "Missing required fields: userId, caseId, quantity"}, 400

        session = self.backend.validate_session(auth_token, user_id, OPENING_FIELDS)
        if not session.get("valid"):
            return {"error": session.get("error") or "Validation failed"}, 401
        stats = session["stats"]

        required_pass = MULTI_OPEN_PASSES.get(qty)
        if required_pass and required_pass not in (stats.get("unlocked_passes") or []):
            config = get_pass(required_pass)
            return {
                "error": "PASS_REQUIRED",
                "requiredPass": required_pass,
                "passName": config["name"] if config else required_pass,
            }, 403

        ok, reason = self._check_csrf(csrf_token, user_id, auth_token)
        if not ok:
            logger.warning("csrf validation failed user=%s reason=%s", user_id, reason)
            self._audit(user_id, "CSRF_FAILED", {"action": "openCases", "reason": reason}, client)
            return {"error": "Security validation failed"}, 403

        capacity = self.check_capacity(user_id, qty, stats.get("max_inventory"))
        if not capacity["valid"]:
            if capacity["error"] == "INVENTORY_FULL":
                return {
                    "error": "INVENTORY_FULL",
                    "current": capacity["current"],
                    "max": capacity["max"],
                    "available": capacity["available"],
                }, 400
            return {"error": capacity["error"]}, 500

        case = get_case(case_id)
        if not case:
            return {"error": "Case not found"}, 404

        balance = int(stats.get("money") or 0)
        total_cost = opening_cost(case["price"], qty, stats.get("case_discount_level"))
        if balance < total_cost:
            logger.info("insufficient funds user=%s balance=%s cost=%s", user_id, balance, total_cost)
            return {"error": "Insufficient funds"}, 400

        opening_id = secrets.token_hex(10)
        try:
            new_balance = self.backend.adjust_balance(
                user_id,
                -total_cost,
                f"Opened {qty}x {case['name']}",
                f"caseopening:{opening_id}:debit",
                TX_CASE_OPENING,
                expected_balance=balance,
            )
        except InsufficientFunds as exc:
            logger.warning("debit rejected user=%s: %s", user_id, exc)
            return {"error": "Insufficient funds"}, 400
        except BalanceChanged as exc:
            logger.warning("debit rejected user=%s: %s", user_id, exc)
            return {"error": str(exc)}, 409
        except Exception:
            logger.exception("failed to deduct cost user=%s opening=%s", user_id, opening_id)
            return {"error": "Failed to update balance"}, 500

        master_seed = generate_secure_seed(user_id, case["id"], int(time.time() * 1000))
        slots = generate_slots(case, master_seed, qty)
        winners = [slot["winner"] for slot in slots]
        total_value = q2(sum((Decimal(str(w["value"])) for w in winners if w), Decimal("0")))

        rows = [self._inventory_row(user_id, case, item) for item in winners]
        try:
            self.backend.insert_inventory(rows)
        except Exception:
            logger.exception("failed to add items to inventory user=%s opening=%s", user_id, opening_id)
            return self._refund_opening(user_id, total_cost, qty, case, opening_id, client)

        self._after_opening(user_id, stats, case, winners, qty)
        self._audit(
            user_id,
            "CASES_OPENED",
            {"caseId": case["id"], "quantity": qty, "cost": total_cost, "value": to_cents(total_value), "opening": opening_id},
            client,
        )

        cost = q2(from_cents(total_cost))
        return {
            "success": True,
            "seed": master_seed,
            "slots": slots,
            "winners": winners,
            "totalValue": float(total_value),
            "totalCost": float(cost),
            "netProfit": float(q2(total_value - cost)),
            "newBalance": from_cents(new_balance),
            "inventoryUpdated": True,
        }, 200

    def _inventory_row(self, user_id, case: dict, item: dict | None) -> dict:
        item = item or {}
        return {
            "user_id": user_id,
            "item_name": item.get("name") or "Unknown",
            "rarity": item.get("rarity") or "Unknown",
            "color": item.get("rarityColor") or "#999999",
            "value": to_cents(item.get("value") or 0),
            "case_name": case["name"],
        }

    def _refund_opening(self, user_id, total_cost: int, qty: int, case: dict, opening_id: str, client) -> tuple[dict, int]:
        try:
            refunded_balance = self.backend.adjust_balance(
                user_id,
                total_cost,
                f"Refund: failed to add items for {qty}x {case['name']}",
                f"caseopening:{opening_id}:refund",
                TX_REFUND,
            )
        except Exception:
            logger.exception("refund failed after inventory insert failure user=%s opening=%s", user_id, opening_id)
            self._audit(user_id, "REFUND_FAILED", {"opening": opening_id, "amount": total_cost}, client)
            return {"error": "Failed to add items to inventory", "refunded": False}, 500
        self._audit(user_id, "REFUNDED", {"opening": opening_id, "amount": total_cost}, client)
        return {
            "error": "Failed to add items to inventory",
            "refunded": True,
            "newBalance": from_cents(refunded_balance),
        }, 500

    def _after_opening(self, user_id, stats: dict, case: dict, winners: list, qty: int) -> None:
        username = stats.get("username") or "Unknown"
        won = [w for w in winners if w]

        best = max((w["value"] for w in won), default=0)
        if best > 0:
            try:
                self.backend.update_best_drop(user_id, to_cents(best))
            except Exception as exc:
                logger.warning("failed to update best_drop user=%s: %s", user_id, exc)

        try:
            self.backend.record_cases_opened(user_id, qty)
        except Exception as exc:
            logger.warning("failed to record cases opened user=%s: %s", user_id, exc)

        drops = [
            {
                "user_id": user_id,
                "username": username,
                "item_name": w["name"],
                "rarity": w["rarity"],
                "color": w["rarityColor"],
                "value": to_cents(w["value"]),
                "drop_type": "case_opening",
            }
            for w in won
        ]
        try:
            self.backend.insert_drop_history(drops)
        except Exception as exc:
            logger.warning("batch drop insert failed, falling back to single rows: %s", exc)
            failed = 0
            for row in drops:
                try:
                    self.backend.insert_drop_history_row(row)
                except Exception:
                    failed += 1
            if failed:
                logger.error("failed to insert drops: %s", failed)

        failed = 0
        for item in won:
            if item["rarity"] not in ANNOUNCED_RARITIES:
                continue
            try:
                self.backend.insert_chat_notification(
                    user_id,
                    username,
                    drop_message(username, item, case),
                    stats.get("level") or 1,
                    stats.get("avatar_url"),
                )
            except Exception:
                failed += 1
        if failed:
            logger.error("failed to send drop notifications: %s", failed)

    def generate_preview(self, payload: dict) -> tuple[dict, int]:
        payload = payload or {}
        case_id = payload.get("caseId")
        qty = parse_quantity(payload.get("quantity"))
        if not case_id or qty is None:
            return {"error": "Invalid request"}, 400
        case = get_case(case_id)
        if not case:
            return {"error": "Case not found"}, 404
        try:
            seed = f"preview-{case_id}-{int(time.time() * 1000)}"
            return {"success": True, "previews": generate_preview(case, qty, seed)}, 200
        except Exception:
            logger.exception("preview generation error")
            return {"error": "Failed to generate preview"}, 500

    def purchase_pass(self, payload: dict, csrf_token: str | None = None, client: dict | None = None) -> tuple[dict, int]:
        try:
            return self._purchase_pass(payload or {}, csrf_token, client)
        except Exception:
            logger.exception("fatal error in purchasePass")
            return {"error": "Internal server error"}, 500

    def _purchase_pass(self, payload: dict, csrf_token, client) -> tuple[dict, int]:
        user_id = payload.get("userId")
        auth_token = payload.get("authToken")
        pass_id = payload.get("passId")
        cost = payload.get("cost")
        required_pass = payload.get("requiredPass")
        if not user_id or not pass_id or not cost or not auth_token:
            return {"error": "Missing required fields"}, 400

        session = self.backend.validate_session(auth_token, user_id, ("diamonds", "unlocked_passes"))
        if not session.get("valid"):
            return {"error": session.get("error") or "Validation failed"}, 401

        ok, reason = self._check_csrf(csrf_token, user_id, auth_token)
        if not ok:
            logger.warning("csrf validation failed user=%s reason=%s", user_id, reason)
            self._audit(user_id, "CSRF_FAILED", {"action": "purchasePass", "reason": reason}, client)
            return {"error": "Security validation failed"}, 403

        config = get_pass(pass_id)
        if not config:
            return {"error": "Pass not found"}, 404
        if isinstance(cost, bool) or cost != config["cost"]:
            logger.warning("pass cost mismatch pass=%s expected=%s received=%r", pass_id, config["cost"], cost)
            return {"error": "Invalid pass cost"}, 400
        if required_pass != config["requires"]:
            logger.warning("required pass mismatch pass=%s expected=%s received=%r", pass_id, config["requires"], required_pass)
            return {"error": "Invalid required pass"}, 400

        try:
            result = self.backend.purchase_pass(user_id, config["id"], config["cost"], config["requires"])
        except Exception:
            logger.exception("purchase_pass failed user=%s pass=%s", user_id, pass_id)
            return {"error": "Failed to purchase pass"}, 500

        if not result.get("success"):
            error = result.get("error")
            if error == "PASS_ALREADY_OWNED":
                return {"error": "PASS_ALREADY_OWNED"}, 400
            if error == "INSUFFICIENT_DIAMONDS":
                return {"error": "INSUFFICIENT_DIAMONDS", "current": result.get("current"), "needed": result.get("needed")}, 400
            if error == "REQUIRED_PASS_NOT_OWNED":
                return {"error": "REQUIRED_PASS_NOT_OWNED", "requiredPass": result.get("requiredPass")}, 400
            if error == "USER_NOT_FOUND":
                return {"error": "User not found"}, 404
            return {"error": error or "Unknown error"}, 500

        self._audit(user_id, "PASS_PURCHASED", {"passId": config["id"], "cost": config["cost"]}, client)
        return {
            "success": True,
            "passId": config["id"],
            "newDiamonds": result.get("newDiamonds"),
            "unlockedPasses": result.get("unlockedPasses"),
        }, 200

    def upgrade_case_discount(self, payload: dict, client: dict | None = None) -> tuple[dict, int]:
        try:
            return self._upgrade_case_discount(payload or {}, client)
        except Exception:
            logger.exception("fatal error in upgradeCaseDiscount")
            return {"error": "Internal server error"}, 500

    def _upgrade_case_discount(self, payload: dict, client) -> tuple[dict, int]:
        user_id = payload.get("userId")
        auth_token = payload.get("authToken")
        if not user_id or not auth_token:
            return {"error": "Missing required fields"}, 400

        session = self.backend.validate_session(auth_token, user_id, ("money", "case_discount_level"))
        if not session.get("valid"):
            return {"error": session.get("error") or "Validation failed"}, 401
        stats = session["stats"]

        current_level = min(int(stats.get("case_discount_level") or 0), 1000)
        if current_level >= MAX_DISCOUNT_LEVEL:
            return {"error": "MAX_DISCOUNT_REACHED", "level": current_level, "maxLevel": MAX_DISCOUNT_LEVEL}, 400

        balance = int(stats.get("money") or 0)
        cost = discount_upgrade_cost(current_level) * 100
        if balance < cost:
            return {"error": "INSUFFICIENT_FUNDS", "needed": from_cents(cost - balance)}, 400

        new_level = current_level + 1
        upgrade_id = secrets.token_hex(10)
        try:
            new_balance = self.backend.adjust_balance(
                user_id,
                -cost,
                f"Case discount upgrade to {new_level}",
                f"discount:{upgrade_id}:debit",
                TX_UPGRADE,
                expected_balance=balance,
            )
        except InsufficientFunds:
            return {"error": "INSUFFICIENT_FUNDS"}, 400
        except BalanceChanged as exc:
            return {"error": str(exc)}, 409
        except Exception:
            logger.exception("failed to charge discount upgrade user=%s", user_id)
            return {"error": "Failed to update balance"}, 500

        try:
            saved = self.backend.set_discount_level(user_id, new_level)
        except Exception:
            logger.exception("failed to persist discount level user=%s", user_id)
            saved = False
        if not saved:
            try:
                self.backend.adjust_balance(
                    user_id,
                    cost,
                    f"Refund: failed upgrade to {new_level}",
                    f"discount:{upgrade_id}:refund",
                    TX_REFUND,
                )
            except Exception:
                logger.exception("refund failed after upgrade persist error user=%s", user_id)
            return {"error": "Failed to save discount level"}, 500

        self._audit(user_id, "DISCOUNT_UPGRADED", {"level": new_level, "cost": cost}, client)
        return {
            "success": True,
            "level": new_level,
            "discountPercent": min(new_level, MAX_DISCOUNT_LEVEL),
            "newBalance": from_cents(new_balance),
            "nextCost": None if new_level >= MAX_DISCOUNT_LEVEL else discount_upgrade_cost(new_level),
            "maxLevel": MAX_DISCOUNT_LEVEL,
        }, 200
