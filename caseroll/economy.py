import logging
from decimal import Decimal, ROUND_HALF_UP

from caseroll.database import (
    LEDGER_APPLIED,
    LEDGER_CHANGED,
    LEDGER_DUPLICATE,
    LEDGER_INSUFFICIENT,
    applyledger,
    walletbalance,
)


logger = logging.getLogger(__name__)

SIGNUP_GRANT = Decimal("100.00")
CENT = Decimal("0.01")

TX_CASE_OPENING = "case_opening"
TX_REFUND = "refund"
TX_SALE = "item_sale"
TX_UPGRADE = "discount_upgrade"
TX_ADJUSTMENT = "adjustment"


class LedgerError(Exception):
    pass


class InsufficientFunds(LedgerError):
    def __init__(self, balance: int = 0) -> None:
        super().__init__("Insufficient funds")
        self.balance = balance


class BalanceChanged(LedgerError):
    def __init__(self, balance: int = 0) -> None:
        super().__init__("Balance changed. Please try again.")
        self.balance = balance


def q2(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def q2_exact(value: float) -> Decimal:
    """Round the exact binary value of ``value``, as a browser's ``toFixed(2)`` does."""
    return q2(Decimal(value))


def to_cents(value) -> int:
    return int(q2(value) * 100)


def from_cents(cents: int) -> float:
    return float(Decimal(int(cents)) / 100)


def adjust_balance(
    user_id: int,
    amount: int,
    tx_type: str,
    description: str,
    reference_id: str | None = None,
    expected_balance: int | None = None,
) -> int:
    """Apply ``amount`` cents to the wallet and return the new balance in cents.

    ``expected_balance`` is the balance the caller observed before deciding to
    mutate it; a mismatch raises BalanceChanged without touching the wallet.
    A ``reference_id`` that was already applied is a replay and only returns
    the current balance.
    """
    value = int(amount)
    if value == 0:
        raise ValueError("amount cannot be zero")
    status, balance = applyledger(int(user_id), value, tx_type, description, reference_id, expected_balance)
    if status == LEDGER_APPLIED:
        return balance
    if status == LEDGER_DUPLICATE:
        logger.info("ledger replay user=%s ref=%s", user_id, reference_id)
        return balance
    if status == LEDGER_INSUFFICIENT:
        raise InsufficientFunds(balance)
    if status == LEDGER_CHANGED:
        raise BalanceChanged(balance)
    raise LedgerError(f"unexpected ledger status {status}")


def get_balance(user_id: int) -> int:
    return walletbalance(int(user_id))
