import pytest

from caseroll.casino import opening
from caseroll.casino.opening import (
    CaseOpeningManager,
    discount_upgrade_cost,
    drop_message,
    opening_cost,
    parse_quantity,
)
from caseroll.security import CsrfGuard


GUARD = CsrfGuard("test-secret")

GOLD_CASE = {
    "id": "gold_case",
    "name": "Gold Case",
    "icon": "g",
    "price": 1.0,
    "color": "#eab308",
    "items": [{"name": "Crown", "icon": "c", "min_value": 10.0, "max_value": 10.0, "rarity_index": 4}],
}


def request(**overrides):
    payload = {"userId": "1", "authToken": "token", "caseId": "starter_box", "quantity": 1}
    payload.update(overrides)
    return payload


@pytest.fixture
def backend(fake_backend):
    return fake_backend()


@pytest.fixture
def manager(backend):
    return CaseOpeningManager(backend, GUARD)


@pytest.fixture
def csrf():
    return GUARD.issue("1", "token")


class TestHelpers:
    @pytest.mark.parametrize("value, expected", [(1, 1), (4, 4), (2.0, 2), (0, None), (5, None), ("2", None), (2.5, None), (True, None), (None, None)])
    def test_parse_quantity(self, value, expected):
        assert parse_quantity(value) == expected

    def test_opening_cost_applies_discount(self):
        assert opening_cost(5.0, 1, 0) == 500
        assert opening_cost(5.0, 1, 10) == 450
        assert opening_cost(9.0, 3, 15) == 2295

    def test_discount_is_capped(self):
        assert opening_cost(100.0, 1, 90) == 6000

    def test_upgrade_cost_curve(self):
        assert [discount_upgrade_cost(n) for n in range(3)] == [100, 138, 190]

    def test_drop_message(self):
        item = {"name": "Crown", "value": 12.5, "rarityIcon": "*"}
        assert drop_message("bob", item, {"name": "Gold Case"}) == "bob just dropped * Crown ($12.5) from Gold Case!"


class TestOpenCasesSuccess:
    def test_single_opening(self, manager, backend, csrf):
        body, status = manager.open_cases(request(), csrf)
        assert status == 200
        assert body["success"] and body["inventoryUpdated"]
        assert body["seed"].startswith("case-1-starter_box-")
        assert body["totalCost"] == 5.0
        assert body["newBalance"] == 95.0
        assert len(body["slots"]) == 1
        slot = body["slots"][0]
        assert len(slot["items"]) == 96
        assert 20 <= slot["winnerIndex"] <= 76
        assert body["winners"] == [slot["winner"]]
        assert body["totalValue"] == slot["winner"]["value"]
        assert body["netProfit"] == round(body["totalValue"] - 5.0, 2)

    def test_debit_is_conditional_on_observed_balance(self, manager, backend, csrf):
        manager.open_cases(request(), csrf)
        (debit,) = backend.ledger
        assert debit["amount"] == -500
        assert debit["expected"] == 10_000
        assert debit["reference_id"].startswith("caseopening:")
        assert debit["reference_id"].endswith(":debit")

    def test_inventory_rows_match_winners(self, manager, backend, csrf):
        body, _ = manager.open_cases(request(), csrf)
        (row,) = backend.inventory
        winner = body["winners"][0]
        assert row["item_name"] == winner["name"]
        assert row["value"] == round(winner["value"] * 100)
        assert row["case_name"] == "Starter Box"

    def test_multi_open_with_pass(self, fake_backend, csrf):
        backend = fake_backend(passes=["multi_2x", "multi_3x", "multi_4x"])
        body, status = CaseOpeningManager(backend, GUARD).open_cases(request(quantity=4), csrf)
        assert status == 200
        assert len(body["slots"]) == 4
        assert body["totalCost"] == 20.0
        assert len(backend.inventory) == 4
        assert backend.opened == 4

    def test_discount_reduces_cost(self, fake_backend, csrf):
        backend = fake_backend(discount=10)
        body, _ = CaseOpeningManager(backend, GUARD).open_cases(request(), csrf)
        assert body["totalCost"] == 4.5
        assert body["newBalance"] == 95.5

    def test_side_effects(self, manager, backend, csrf, monkeypatch):
        monkeypatch.setattr(opening, "get_case", lambda case_id: GOLD_CASE)
        body, status = manager.open_cases(request(caseId="gold_case"), csrf)
        assert status == 200
        assert backend.best_drops == [1000]
        assert backend.drops[0]["rarity"] == "Legendary"
        assert backend.chat[0]["message"] == "alice just dropped 🟡 Crown ($10) from Gold Case!"
        assert backend.chat[0]["user_level"] == 3
        assert any(a[1] == "CASES_OPENED" for a in backend.audits)

    def test_common_drops_are_not_announced(self, manager, backend, csrf, monkeypatch):
        case = dict(GOLD_CASE, items=[dict(GOLD_CASE["items"][0], rarity_index=0)])
        monkeypatch.setattr(opening, "get_case", lambda case_id: case)
        manager.open_cases(request(caseId="gold_case"), csrf)
        assert backend.chat == []
        assert len(backend.drops) == 1

    def test_best_effort_failures_are_ignored(self, manager, backend, csrf, monkeypatch):
        monkeypatch.setattr(opening, "get_case", lambda case_id: GOLD_CASE)
        backend.fail |= {"best_drop", "cases_opened", "drops", "drop_row", "chat"}
        body, status = manager.open_cases(request(caseId="gold_case"), csrf)
        assert status == 200
        assert body["newBalance"] == 99.0

    def test_drop_history_falls_back_to_single_rows(self, fake_backend, csrf):
        backend = fake_backend(passes=["multi_2x"])
        backend.fail.add("drops")
        CaseOpeningManager(backend, GUARD).open_cases(request(quantity=2), csrf)
        assert len(backend.drops) == 2


class TestOpenCasesRejections:
    def test_missing_auth_token_checked_first(self, manager):
        assert manager.open_cases(request(authToken=None, quantity=9)) == (
            {"error": "Missing required fields: authToken"},
            400,
        )

    @pytest.mark.parametrize("quantity", [0, 5, "2", 2.5, None])
    def test_invalid_quantity(self, manager, backend, quantity):
        assert manager.open_cases(request(quantity=quantity)) == ({"error": "Invalid quantity (1-4)"}, 400)
        assert backend.audits[-1][1] == "INVALID_CASE_QUANTITY"

    def test_missing_case(self, manager):
        body, status = manager.open_cases(request(caseId=""))
        assert status == 400
        assert body["error"].startswith("Missing required fields")

    def test_invalid_session(self, manager):
        assert manager.open_cases(request(authToken="nope")) == ({"error": "Invalid session"}, 401)

    def test_pass_required(self, manager, backend):
        body, status = manager.open_cases(request(quantity=2), "bad-csrf")
        assert status == 403
        assert body == {"error": "PASS_REQUIRED", "requiredPass": "multi_2x", "passName": "2x Multi-Open"}
        assert backend.ledger == []

    def test_each_quantity_needs_its_own_pass(self, fake_backend, csrf):
        backend = fake_backend(passes=["multi_2x"])
        body, status = CaseOpeningManager(backend, GUARD).open_cases(request(quantity=3), csrf)
        assert status == 403
        assert body["requiredPass"] == "multi_3x"

    def test_bad_csrf(self, manager, backend):
        assert manager.open_cases(request(), "bad-csrf") == ({"error": "Security validation failed"}, 403)
        assert backend.ledger == []

    def test_csrf_for_another_session(self, manager):
        token = GUARD.issue("1", "stolen")
        assert manager.open_cases(request(), token)[1] == 403

    def test_inventory_full(self, fake_backend, csrf):
        backend = fake_backend(passes=["multi_2x"], count=14, max_inventory=15)
        body, status = CaseOpeningManager(backend, GUARD).open_cases(request(quantity=2), csrf)
        assert status == 400
        assert body == {"error": "INVENTORY_FULL", "current": 14, "max": 15, "available": 1}
        assert backend.ledger == []

    def test_inventory_count_failure(self, manager, backend, csrf):
        backend.fail.add("count")
        assert manager.open_cases(request(), csrf)[1] == 500
        assert backend.ledger == []

    def test_unknown_case(self, manager, csrf):
        assert manager.open_cases(request(caseId="nope"), csrf) == ({"error": "Case not found"}, 404)

    def test_insufficient_funds(self, fake_backend, csrf):
        backend = fake_backend(money=499)
        assert CaseOpeningManager(backend, GUARD).open_cases(request(), csrf) == ({"error": "Insufficient funds"}, 400)
        assert backend.ledger == []

    def test_unexpected_error_is_generic(self, manager, backend, csrf):
        backend.fail.add("session")
        assert manager.open_cases(request(), csrf) == ({"error": "Internal server error"}, 500)


class TestDebitFailures:
    def test_debit_insufficient(self, manager, backend, csrf):
        backend.fail.add("debit:insufficient")
        assert manager.open_cases(request(), csrf) == ({"error": "Insufficient funds"}, 400)

    def test_debit_concurrent_change(self, manager, backend, csrf):
        backend.fail.add("debit:changed")
        assert manager.open_cases(request(), csrf) == ({"error": "Balance changed. Please try again."}, 409)
        assert backend.inventory == []

    def test_debit_other_failure(self, manager, backend, csrf):
        backend.fail.add("debit")
        assert manager.open_cases(request(), csrf) == ({"error": "Failed to update balance"}, 500)
        assert backend.inventory == []


class TestRefund:
    def test_inventory_failure_refunds_once(self, manager, backend, csrf):
        backend.fail.add("inventory")
        body, status = manager.open_cases(request(), csrf)
        assert status == 500
        assert body == {"error": "Failed to add items to inventory", "refunded": True, "newBalance": 100.0}
        debit, refund = backend.ledger
        assert refund["amount"] == 500
        assert refund["reference_id"] == debit["reference_id"].replace(":debit", ":refund")
        assert backend.drops == [] and backend.chat == []

    def test_refund_failure_is_reported(self, manager, backend, csrf):
        backend.fail |= {"inventory", "refund"}
        body, status = manager.open_cases(request(), csrf)
        assert status == 500
        assert body == {"error": "Failed to add items to inventory", "refunded": False}
        assert backend.audits[-1][1] == "REFUND_FAILED"


class TestPreview:
    def test_preview(self, manager):
        body, status = manager.generate_preview({"caseId": "starter_box", "quantity": 2})
        assert status == 200
        assert len(body["previews"]) == 2
        assert len(body["previews"][0]) == 96

    def test_preview_validation(self, manager):
        assert manager.generate_preview({"caseId": "starter_box", "quantity": 7})[1] == 400
        assert manager.generate_preview({"caseId": "nope", "quantity": 1})[1] == 404


class TestPurchasePass:
    def payload(self, **overrides):
        data = {"userId": "1", "authToken": "token", "passId": "multi_2x", "cost": 50, "requiredPass": None}
        data.update(overrides)
        return data

    def test_success(self, manager, backend, csrf):
        backend.stats["diamonds"] = 60
        body, status = manager.purchase_pass(self.payload(), csrf)
        assert status == 200
        assert body == {"success": True, "passId": "multi_2x", "newDiamonds": 10, "unlockedPasses": ["multi_2x"]}

    def test_tampered_cost(self, manager, csrf):
        assert manager.purchase_pass(self.payload(cost=1), csrf) == ({"error": "Invalid pass cost"}, 400)

    def test_tampered_requirement(self, manager, csrf):
        body = self.payload(passId="multi_3x", cost=100, requiredPass=None)
        assert manager.purchase_pass(body, csrf) == ({"error": "Invalid required pass"}, 400)

    def test_unknown_pass(self, manager, csrf):
        assert manager.purchase_pass(self.payload(passId="nope"), csrf)[1] == 404

    def test_missing_fields(self, manager):
        assert manager.purchase_pass(self.payload(cost=0))[1] == 400

    def test_bad_csrf(self, manager):
        assert manager.purchase_pass(self.payload(), "bad") == ({"error": "Security validation failed"}, 403)

    @pytest.mark.parametrize(
        "result, expected",
        [
            ({"success": False, "error": "PASS_ALREADY_OWNED"}, ({"error": "PASS_ALREADY_OWNED"}, 400)),
            (
                {"success": False, "error": "INSUFFICIENT_DIAMONDS", "current": 10, "needed": 40},
                ({"error": "INSUFFICIENT_DIAMONDS", "current": 10, "needed": 40}, 400),
            ),
            (
                {"success": False, "error": "REQUIRED_PASS_NOT_OWNED", "requiredPass": "multi_2x"},
                ({"error": "REQUIRED_PASS_NOT_OWNED", "requiredPass": "multi_2x"}, 400),
            ),
            ({"success": False, "error": "USER_NOT_FOUND"}, ({"error": "User not found"}, 404)),
        ],
    )
    def test_store_outcomes(self, manager, backend, csrf, result, expected):
        backend.pass_result = result
        assert manager.purchase_pass(self.payload(), csrf) == expected


class TestDiscountUpgrade:
    def test_upgrade(self, fake_backend):
        backend = fake_backend(money=15_000)
        body, status = CaseOpeningManager(backend, GUARD).upgrade_case_discount({"userId": "1", "authToken": "token"})
        assert status == 200
        assert body["level"] == 1
        assert body["newBalance"] == 50.0
        assert body["nextCost"] == 138
        assert backend.stats["case_discount_level"] == 1

    def test_max_level(self, fake_backend):
        backend = fake_backend(discount=40)
        body, status = CaseOpeningManager(backend, GUARD).upgrade_case_discount({"userId": "1", "authToken": "token"})
        assert (body["error"], status) == ("MAX_DISCOUNT_REACHED", 400)

    def test_not_enough_money(self, fake_backend):
        backend = fake_backend(money=4_000)
        body, status = CaseOpeningManager(backend, GUARD).upgrade_case_discount({"userId": "1", "authToken": "token"})
        assert (body, status) == ({"error": "INSUFFICIENT_FUNDS", "needed": 60.0}, 400)

    def test_refund_when_level_not_saved(self, fake_backend):
        backend = fake_backend(money=15_000)
        backend.fail.add("discount")
        body, status = CaseOpeningManager(backend, GUARD).upgrade_case_discount({"userId": "1", "authToken": "token"})
        assert (body, status) == ({"error": "Failed to save discount level"}, 500)
        assert backend.stats["money"] == 15_000
        assert [e["amount"] for e in backend.ledger] == [-10_000, 10_000]


def test_dispatch_rejects_unknown_action(manager):
    assert manager.dispatch("explode", {}) == ({"error": "Invalid action"}, 400)
