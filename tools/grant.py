from __future__ import annotations

import argparse
import secrets

from caseroll.config import load
from caseroll.database import accountbyname, adjustdiamonds, configure, setup
from caseroll.economy import TX_ADJUSTMENT, InsufficientFunds, adjust_balance, from_cents, to_cents


def grant(username: str, money: str | None = None, diamonds: int | None = None, note: str = "admin grant") -> dict:
    account = accountbyname(username)
    if not account:
        raise LookupError(f"unknown account: {username}")
    userid = int(account[0])
    result: dict = {"user_id": userid, "username": account[1]}
    if money:
        cents = to_cents(money)
        if cents:
            balance = adjust_balance(userid, cents, TX_ADJUSTMENT, note, f"admin:{secrets.token_hex(10)}")
            result["balance"] = from_cents(balance)
    if diamonds:
        result["diamonds"] = adjustdiamonds(userid, int(diamonds))
    return result


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Grant money or diamonds to a player account.")
    parser.add_argument("username", help="Account username")
    parser.add_argument("--money", default=None, help="Money to add, e.g. 25.50 (negative to remove)")
    parser.add_argument("--diamonds", type=int, default=None, help="Diamonds to add (negative to remove)")
    parser.add_argument("--note", default="admin grant", help="Ledger description")
    parser.add_argument("--database-dir", default=None, help="Override DATABASE_DIR")
    args = parser.parse_args(argv)

    if not args.money and not args.diamonds:
        parser.error("nothing to grant: pass --money and/or --diamonds")

    configure(args.database_dir or load()["database_dir"])
    setup()
    try:
        result = grant(args.username, args.money, args.diamonds, args.note)
    except LookupError as exc:
        print(f"error: {exc}")
        return 1
    except InsufficientFunds as exc:
        print(f"error: {exc} (balance {from_cents(exc.balance)})")
        return 1

    print(f"user: {result['username']} ({result['user_id']})")
    if "balance" in result:
        print(f"balance: {result['balance']:.2f}")
    if "diamonds" in result:
        print(f"diamonds: {result['diamonds']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
