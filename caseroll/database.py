import json
import secrets
import sqlite3
from pathlib import Path


ROOT = Path(__file__).resolve().parent.parent
DBROOT = ROOT / "database"

DEFAULT_MAX_INVENTORY = 15

LEDGER_APPLIED = "applied"
LEDGER_DUPLICATE = "duplicate"
LEDGER_CHANGED = "changed"
LEDGER_INSUFFICIENT = "insufficient"


def configure(directory: str | Path | None) -> None:
    global DBROOT
    if directory:
        DBROOT = Path(directory)


def path(name: str) -> Path:
    DBROOT.mkdir(parents=True, exist_ok=True)
    return DBROOT / f"{name}.db"


def connect(name: str) -> sqlite3.Connection:
    db = sqlite3.connect(path(name), timeout=20)
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA busy_timeout = 20000")
    return db


def setup() -> None:
    with connect("accounts") as db:
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                passwordhash TEXT NOT NULL,
                avatar TEXT DEFAULT '',
                createdat TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                revoked INTEGER NOT NULL DEFAULT 0,
                createdat TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS player_stats (
                user_id INTEGER PRIMARY KEY,
                diamonds INTEGER NOT NULL DEFAULT 0,
                level INTEGER NOT NULL DEFAULT 1,
                max_inventory INTEGER NOT NULL DEFAULT {DEFAULT_MAX_INVENTORY},
                case_discount_level INTEGER NOT NULL DEFAULT 0,
                best_drop INTEGER NOT NULL DEFAULT 0,
                cases_opened INTEGER NOT NULL DEFAULT 0,
                unlocked_passes TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS wallets (
                user_id INTEGER PRIMARY KEY,
                balance INTEGER NOT NULL DEFAULT 0,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS ledger (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                amount INTEGER NOT NULL,
                type TEXT NOT NULL,
                description TEXT NOT NULL,
                reference_id TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_ledger_idempotent
            ON ledger(user_id, type, reference_id)
            WHERE reference_id IS NOT NULL AND reference_id <> ''
            """
        )
        db.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_ledger_no_update
            BEFORE UPDATE ON ledger
            BEGIN
                SELECT RAISE(ABORT, 'ledger is immutable');
            END;
            """
        )
        db.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_ledger_no_delete
            BEFORE DELETE ON ledger
            BEGIN
                SELECT RAISE(ABORT, 'ledger is immutable');
            END;
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                action TEXT NOT NULL,
                details TEXT NOT NULL,
                ip_address TEXT NOT NULL,
                user_agent TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

    with connect("casino") as db:
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS inventory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                item_name TEXT NOT NULL,
                rarity TEXT NOT NULL,
                color TEXT NOT NULL,
                value INTEGER NOT NULL,
                case_name TEXT NOT NULL,
                obtained_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_inventory_user ON inventory(user_id)")
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS drop_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                username TEXT NOT NULL,
                item_name TEXT NOT NULL,
                rarity TEXT NOT NULL,
                color TEXT NOT NULL,
                value INTEGER NOT NULL,
                drop_type TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS chat_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                username TEXT NOT NULL,
                message TEXT NOT NULL,
                user_level INTEGER NOT NULL DEFAULT 1,
                avatar_url TEXT,
                kind TEXT NOT NULL DEFAULT 'message',
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )


def createaccount(username: str, passwordhash: str, grant: int = 0) -> int | None:
    try:
        with connect("accounts") as db:
            db.execute("BEGIN IMMEDIATE")
            db.execute("INSERT INTO accounts (username, passwordhash) VALUES (?, ?)", (username, passwordhash))
            user_id = int(db.execute("SELECT last_insert_rowid()").fetchone()[0])
            db.execute("INSERT INTO player_stats (user_id) VALUES (?)", (user_id,))
            _ensurewallet(db, user_id)
            if int(grant) > 0:
                _applyledger(db, user_id, int(grant), "initial_grant", "signup bonus", f"signup:{user_id}:initial_grant")
            db.execute("COMMIT")
        return user_id
    except sqlite3.IntegrityError:
        return None


def accountbyname(username: str):
    with connect("accounts") as db:
        return db.execute(
            "SELECT id, username, passwordhash, avatar FROM accounts WHERE username = ?",
            (username,),
        ).fetchone()


def createsession(user_id: int) -> str:
    token = secrets.token_urlsafe(32)
    with connect("accounts") as db:
        db.execute("INSERT INTO sessions (token, user_id) VALUES (?, ?)", (token, int(user_id)))
    return token


def sessionuser(token: str) -> int | None:
    if not token:
        return None
    with connect("accounts") as db:
        row = db.execute("SELECT user_id FROM sessions WHERE token = ? AND revoked = 0", (str(token),)).fetchone()
    return int(row[0]) if row else None


def revokesession(token: str) -> None:
    with connect("accounts") as db:
        db.execute("UPDATE sessions SET revoked = 1 WHERE token = ?", (str(token),))


def _passlist(raw) -> list[str]:
    try:
        data = json.loads(raw or "[]")
    except ValueError:
        return []
    return [str(p) for p in data] if isinstance(data, list) else []


def playerstats(user_id: int) -> dict | None:
    with connect("accounts") as db:
        row = db.execute(
            """
            SELECT a.id, a.username, a.avatar, COALESCE(w.balance, 0), s.diamonds, s.level,
                   s.max_inventory, s.case_discount_level, s.best_drop, s.cases_opened, s.unlocked_passes
            FROM accounts a
            JOIN player_stats s ON s.user_id = a.id
            LEFT JOIN wallets w ON w.user_id = a.id
            WHERE a.id = ?
            """,
            (int(user_id),),
        ).fetchone()
    if not row:
        return None
    return {
        "user_id": int(row[0]),
        "username": row[1],
        "avatar_url": row[2] or None,
        "money": int(row[3]),
        "diamonds": int(row[4]),
        "level": int(row[5]),
        "max_inventory": int(row[6]),
        "case_discount_level": int(row[7]),
        "best_drop": int(row[8]),
        "cases_opened": int(row[9]),
        "unlocked_passes": _passlist(row[10]),
    }


def _ensurewallet(db: sqlite3.Connection, user_id: int) -> None:
    db.execute("INSERT OR IGNORE INTO wallets (user_id, balance) VALUES (?, 0)", (int(user_id),))


def _walletbalance(db: sqlite3.Connection, user_id: int) -> int:
    row = db.execute("SELECT balance FROM wallets WHERE user_id = ?", (int(user_id),)).fetchone()
    return int(row[0]) if row else 0


def _applyledger(
    db: sqlite3.Connection,
    user_id: int,
    amount: int,
    tx_type: str,
    description: str,
    reference_id: str | None = None,
) -> bool:
    if int(amount) == 0:
        raise ValueError("amount cannot be zero")
    _ensurewallet(db, user_id)
    try:
        db.execute(
            "INSERT INTO ledger (user_id, amount, type, description, reference_id) VALUES (?, ?, ?, ?, ?)",
            (int(user_id), int(amount), str(tx_type), str(description), reference_id),
        )
    except sqlite3.IntegrityError:
        return False
    db.execute(
        "UPDATE wallets SET balance = balance + ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
        (int(amount), int(user_id)),
    )
    return True


def applyledger(
    user_id: int,
    amount: int,
    tx_type: str,
    description: str,
    reference_id: str | None = None,
    expected_balance: int | None = None,
) -> tuple[str, int]:
    with connect("accounts") as db:
        db.execute("BEGIN IMMEDIATE")
        _ensurewallet(db, user_id)
        balance = _walletbalance(db, user_id)
        if expected_balance is not None and balance != int(expected_balance):
            db.execute("ROLLBACK")
            return LEDGER_CHANGED, balance
        if int(amount) < 0 and balance + int(amount) < 0:
            db.execute("ROLLBACK")
            return LEDGER_INSUFFICIENT, balance
        if not _applyledger(db, user_id, amount, tx_type, description, reference_id):
            db.execute("ROLLBACK")
            return LEDGER_DUPLICATE, balance
        db.execute("COMMIT")
        return LEDGER_APPLIED, balance + int(amount)


def walletbalance(user_id: int) -> int:
    with connect("accounts") as db:
        _ensurewallet(db, user_id)
        return _walletbalance(db, user_id)


def setdiscountlevel(user_id: int, level: int) -> bool:
    with connect("accounts") as db:
        cur = db.execute(
            "UPDATE player_stats SET case_discount_level = ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (int(level), int(user_id)),
        )
    return cur.rowcount > 0


def incrementcasesopened(user_id: int, count: int) -> None:
    with connect("accounts") as db:
        db.execute(
            "UPDATE player_stats SET cases_opened = cases_opened + ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (int(count), int(user_id)),
        )


def updatebestdrop(user_id: int, value: int) -> bool:
    with connect("accounts") as db:
        cur = db.execute(
            "UPDATE player_stats SET best_drop = ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ? AND best_drop < ?",
            (int(value), int(user_id), int(value)),
        )
    return cur.rowcount > 0


def adjustdiamonds(user_id: int, amount: int) -> int | None:
    with connect("accounts") as db:
        db.execute("BEGIN IMMEDIATE")
        row = db.execute("SELECT diamonds FROM player_stats WHERE user_id = ?", (int(user_id),)).fetchone()
        if not row:
            db.execute("ROLLBACK")
            return None
        diamonds = max(0, int(row[0]) + int(amount))
        db.execute(
            "UPDATE player_stats SET diamonds = ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (diamonds, int(user_id)),
        )
        db.execute("COMMIT")
    return diamonds


def purchasepass(user_id: int, pass_id: str, cost: int, required: str | None) -> dict:
    with connect("accounts") as db:
        db.execute("BEGIN IMMEDIATE")
        row = db.execute(
            "SELECT diamonds, unlocked_passes FROM player_stats WHERE user_id = ?",
            (int(user_id),),
        ).fetchone()
        if not row:
            db.execute("ROLLBACK")
            return {"success": False, "error": "USER_NOT_FOUND"}
        diamonds = int(row[0])
        passes = _passlist(row[1])
        if pass_id in passes:
            db.execute("ROLLBACK")
            return {"success": False, "error": "PASS_ALREADY_OWNED"}
        if required and required not in passes:
            db.execute("ROLLBACK")
            return {"success": False, "error": "REQUIRED_PASS_NOT_OWNED", "requiredPass": required}
        if diamonds < int(cost):
            db.execute("ROLLBACK")
            return {"success": False, "error": "INSUFFICIENT_DIAMONDS", "current": diamonds, "needed": int(cost) - diamonds}
        passes.append(pass_id)
        db.execute(
            "UPDATE player_stats SET diamonds = ?, unlocked_passes = ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (diamonds - int(cost), json.dumps(passes), int(user_id)),
        )
        db.execute("COMMIT")
    return {"success": True, "newDiamonds": diamonds - int(cost), "unlockedPasses": passes}


def logaudit(user_id: str, action: str, details: dict, ip: str = "unknown", useragent: str = "unknown") -> None:
    with connect("accounts") as db:
        db.execute(
            "INSERT INTO audit_log (user_id, action, details, ip_address, user_agent) VALUES (?, ?, ?, ?, ?)",
            (str(user_id), str(action), json.dumps(details or {}, default=str), str(ip), str(useragent)),
        )


def richest(limit: int = 10):
    with connect("accounts") as db:
        rows = db.execute(
            """
            SELECT a.username, w.balance
            FROM wallets w
            JOIN accounts a ON a.id = w.user_id
            ORDER BY w.balance DESC, a.username ASC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
    return [{"username": r[0], "amount": int(r[1])} for r in rows]


def bestdrops(limit: int = 10):
    with connect("accounts") as db:
        rows = db.execute(
            """
            SELECT a.username, s.best_drop
            FROM player_stats s
            JOIN accounts a ON a.id = s.user_id
            WHERE s.best_drop > 0
            ORDER BY s.best_drop DESC, a.username ASC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
    return [{"username": r[0], "amount": int(r[1])} for r in rows]


INVENTORY_COLUMNS = "id, user_id, item_name, rarity, color, value, case_name, obtained_at"


def _inventoryrow(r) -> dict:
    return {
        "id": int(r[0]),
        "user_id": int(r[1]),
        "item_name": r[2],
        "rarity": r[3],
        "color": r[4],
        "value": int(r[5]),
        "case_name": r[6],
        "obtained_at": r[7],
    }


def inventorycount(user_id: int) -> int:
    with connect("casino") as db:
        row = db.execute("SELECT COUNT(*) FROM inventory WHERE user_id = ?", (int(user_id),)).fetchone()
    return int(row[0]) if row else 0


def inventoryinsert(rows: list[dict]) -> list[int]:
    ids: list[int] = []
    with connect("casino") as db:
        db.execute("BEGIN IMMEDIATE")
        for row in rows:
            cur = db.execute(
                """
                INSERT INTO inventory (user_id, item_name, rarity, color, value, case_name, obtained_at)
                VALUES (?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
                """,
                (
                    int(row["user_id"]),
                    str(row["item_name"]),
                    str(row["rarity"]),
                    str(row["color"]),
                    int(row["value"]),
                    str(row["case_name"]),
                    row.get("obtained_at"),
                ),
            )
            ids.append(int(cur.lastrowid))
        db.execute("COMMIT")
    return ids


def inventoryrestore(rows: list[dict]) -> None:
    with connect("casino") as db:
        db.execute("BEGIN IMMEDIATE")
        for row in rows:
            db.execute(
                f"INSERT OR REPLACE INTO inventory ({INVENTORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    int(row["id"]),
                    int(row["user_id"]),
                    row["item_name"],
                    row["rarity"],
                    row["color"],
                    int(row["value"]),
                    row["case_name"],
                    row["obtained_at"],
                ),
            )
        db.execute("COMMIT")


def inventoryrows(user_id: int, ids: list[int] | None = None) -> list[dict]:
    with connect("casino") as db:
        if ids is None:
            rows = db.execute(
                f"SELECT {INVENTORY_COLUMNS} FROM inventory WHERE user_id = ? ORDER BY id DESC",
                (int(user_id),),
            ).fetchall()
        else:
            if not ids:
                return []
            marks = ",".join("?" for _ in ids)
            rows = db.execute(
                f"SELECT {INVENTORY_COLUMNS} FROM inventory WHERE user_id = ? AND id IN ({marks}) ORDER BY id",
                (int(user_id), *[int(i) for i in ids]),
            ).fetchall()
    return [_inventoryrow(r) for r in rows]


def inventorydelete(user_id: int, ids: list[int]) -> list[dict]:
    """Remove the owned rows among ``ids`` and return exactly the rows removed."""
    if not ids:
        return []
    marks = ",".join("?" for _ in ids)
    params = (int(user_id), *[int(i) for i in ids])
    with connect("casino") as db:
        db.execute("BEGIN IMMEDIATE")
        rows = db.execute(
            f"SELECT {INVENTORY_COLUMNS} FROM inventory WHERE user_id = ? AND id IN ({marks}) ORDER BY id",
            params,
        ).fetchall()
        db.execute(f"DELETE FROM inventory WHERE user_id = ? AND id IN ({marks})", params)
        db.execute("COMMIT")
    return [_inventoryrow(r) for r in rows]


def _dropvalues(row: dict) -> tuple:
    return (
        int(row["user_id"]),
        str(row["username"]),
        str(row["item_name"]),
        str(row["rarity"]),
        str(row["color"]),
        int(row["value"]),
        str(row.get("drop_type") or "case_opening"),
    )


def insertdrops(rows: list[dict]) -> None:
    with connect("casino") as db:
        db.executemany(
            """
            INSERT INTO drop_history (user_id, username, item_name, rarity, color, value, drop_type)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [_dropvalues(r) for r in rows],
        )


def insertdrop(row: dict) -> None:
    with connect("casino") as db:
        db.execute(
            """
            INSERT INTO drop_history (user_id, username, item_name, rarity, color, value, drop_type)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            _dropvalues(row),
        )


def recentdrops(limit: int = 20, min_value: int = 0):
    with connect("casino") as db:
        rows = db.execute(
            """
            SELECT username, item_name, rarity, color, value, drop_type, created_at
            FROM drop_history
            WHERE value >= ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (int(min_value), int(limit)),
        ).fetchall()
    return [
        {
            "username": r[0],
            "item_name": r[1],
            "rarity": r[2],
            "color": r[3],
            "value": int(r[4]),
            "drop_type": r[5],
            "created_at": r[6],
        }
        for r in rows
    ]


def insertchat(user_id: int, username: str, message: str, user_level: int = 1, avatar_url: str | None = None, kind: str = "message") -> int:
    with connect("casino") as db:
        cur = db.execute(
            """
            INSERT INTO chat_messages (user_id, username, message, user_level, avatar_url, kind)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(user_id), str(username), str(message), int(user_level or 1), avatar_url, str(kind)),
        )
    return int(cur.lastrowid)


def recentchat(limit: int = 50):
    with connect("casino") as db:
        rows = db.execute(
            """
            SELECT id, user_id, username, message, user_level, avatar_url, kind, created_at
            FROM chat_messages
            ORDER BY id DESC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
    return [
        {
            "id": int(r[0]),
            "user_id": int(r[1]),
            "username": r[2],
            "message": r[3],
            "user_level": int(r[4]),
            "avatar_url": r[5],
            "kind": r[6],
            "created_at": r[7],
        }
        for r in reversed(rows)
    ]
