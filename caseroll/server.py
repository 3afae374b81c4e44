import logging
import time

from flask import Flask, request
from werkzeug.security import check_password_hash, generate_password_hash

from caseroll.backend import Backend
from caseroll.casino.catalog import PASSES, RARITIES, constants, list_cases
from caseroll.casino.opening import CaseOpeningManager
from caseroll.config import load
from caseroll.database import (
    accountbyname,
    bestdrops,
    configure,
    createaccount,
    createsession,
    logaudit,
    recentchat,
    recentdrops,
    revokesession,
    richest,
    setup,
)
from caseroll.economy import SIGNUP_GRANT, from_cents, to_cents
from caseroll.inventory import InventoryManager
from caseroll.security import CsrfGuard, RateLimiter, request_ip


logger = logging.getLogger(__name__)

USERNAME_MIN = 3
USERNAME_MAX = 24
PASSWORD_MIN = 6
INVENTORY_RATE_LIMIT = 50

settings = load()
configure(settings["database_dir"])
setup()

app = Flask(__name__)
app.secret_key = settings["secret"]

BACKEND = Backend()
CSRF = CsrfGuard(settings["secret"], settings["csrf_max_age"])
LIMITER = RateLimiter(settings["rate_limit_max_requests"], settings["rate_limit_window_ms"])
INVENTORY_LIMITER = RateLimiter(INVENTORY_RATE_LIMIT, settings["rate_limit_window_ms"])
OPENING = CaseOpeningManager(BACKEND, CSRF)
INVENTORY = InventoryManager(BACKEND)


def clientinfo() -> dict:
    return {
        "ip": request_ip(request.headers, request.remote_addr),
        "useragent": request.headers.get("User-Agent", "unknown"),
    }


def jsonbody() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def csrftoken(payload: dict):
    return request.headers.get("X-CSRF-Token") or payload.get("csrfToken")


def ratelimited(limiter: RateLimiter, payload: dict, client: dict):
    userid = payload.get("userId")
    identifier = f"user:{userid}" if userid else f"ip:{client['ip']}"
    if limiter.allow(identifier):
        return None
    logger.warning("rate limit exceeded %s action=%s", identifier, payload.get("action"))
    BACKEND.log_audit(userid or "unknown", "RATE_LIMIT_EXCEEDED", {"action": payload.get("action")}, client["ip"], client["useragent"])
    return {"error": "Too many requests. Please wait."}, 429


def boundedint(raw, default: int, upper: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return min(max(value, 1), upper)


@app.after_request
def headers(resp):
    origin = request.headers.get("Origin")
    if origin and origin in settings["cors_origins"]:
        resp.headers["Access-Control-Allow-Origin"] = origin
        resp.headers["Vary"] = "Origin"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, X-CSRF-Token"
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["X-Frame-Options"] = "DENY"
    resp.headers["Referrer-Policy"] = "no-referrer"
    return resp


@app.errorhandler(404)
def notfound(_):
    return {"error": "Not found"}, 404


@app.errorhandler(405)
def methodnotallowed(_):
    return {"error": "Method not allowed"}, 405


@app.route("/healthz")
def healthz():
    return {"ok": True, "time": int(time.time())}


@app.route("/api/caseopening", methods=["POST"])
def caseopening():
    payload = jsonbody()
    client = clientinfo()
    limited = ratelimited(LIMITER, payload, client)
    if limited:
        return limited
    return OPENING.dispatch(payload.get("action"), payload, csrftoken(payload), client)


@app.route("/api/inventory", methods=["POST"])
def inventory():
    payload = jsonbody()
    client = clientinfo()
    limited = ratelimited(INVENTORY_LIMITER, payload, client)
    if limited:
        return limited
    return INVENTORY.dispatch(payload.get("action"), payload, client)


@app.route("/api/auth", methods=["POST"])
def auth():
    payload = jsonbody()
    client = clientinfo()
    limited = ratelimited(LIMITER, payload, client)
    if limited:
        return limited
    action = payload.get("action")
    if action == "register":
        return register(payload, client)
    if action == "login":
        return login(payload, client)
    if action == "logout":
        return logout(payload, client)
    if action == "getCsrfToken":
        return issuecsrf(payload)
    return {"error": "Invalid action"}, 400


def register(payload: dict, client: dict):
    username = str(payload.get("username") or "").strip()
    password = str(payload.get("password") or "")
    if len(username) < USERNAME_MIN or len(username) > USERNAME_MAX:
        return {"error": "Username must be 3-24 characters"}, 400
    if len(password) < PASSWORD_MIN:
        return {"error": "Password must be at least 6 characters"}, 400
    userid = createaccount(username, generate_password_hash(password), to_cents(SIGNUP_GRANT))
    if userid is None:
        return {"error": "USERNAME_TAKEN"}, 409
    token = createsession(userid)
    logaudit(str(userid), "REGISTER", {"username": username}, client["ip"], client["useragent"])
    logger.info("account created user=%s", userid)
    return {
        "success": True,
        "userId": str(userid),
        "username": username,
        "authToken": token,
        "csrfToken": CSRF.issue(userid, token),
        "balance": float(SIGNUP_GRANT),
    }, 201


def login(payload: dict, client: dict):
    username = str(payload.get("username") or "").strip()
    password = str(payload.get("password") or "")
    if not username or not password:
        return {"error": "Missing required fields"}, 400
    account = accountbyname(username)
    if not account or not check_password_hash(account[2], password):
        logaudit(username, "LOGIN_FAILED", {}, client["ip"], client["useragent"])
        return {"error": "Invalid credentials"}, 401
    token = createsession(account[0])
    logaudit(str(account[0]), "LOGIN", {}, client["ip"], client["useragent"])
    return {
        "success": True,
        "userId": str(account[0]),
        "username": account[1],
        "authToken": token,
        "csrfToken": CSRF.issue(account[0], token),
    }, 200


def logout(payload: dict, client: dict):
    token = payload.get("authToken")
    if not token or not isinstance(token, str):
        return {"error": "Missing required fields"}, 400
    revokesession(token)
    logaudit(str(payload.get("userId") or "unknown"), "LOGOUT", {}, client["ip"], client["useragent"])
    return {"success": True}, 200


def issuecsrf(payload: dict):
    userid = payload.get("userId")
    token = payload.get("authToken")
    if not userid or not token:
        return {"error": "Missing required fields"}, 400
    session = BACKEND.validate_session(token, userid)
    if not session.get("valid"):
        return {"error": session.get("error") or "Validation failed"}, 401
    return {"success": True, "csrfToken": CSRF.issue(session["user_id"], token)}, 200


@app.route("/api/cases")
def cases():
    return {
        "success": True,
        "cases": list_cases(),
        "rarities": RARITIES,
        "passes": list(PASSES.values()),
    }


@app.route("/api/cases/<caseid>")
def casedetail(caseid: str):
    data = constants(caseid)
    if not data:
        return {"error": "Case not found"}, 404
    return {"success": True, **data}


@app.route("/api/leaderboard")
def leaderboard():
    by = str(request.args.get("by", "best_drop") or "best_drop")
    limit = boundedint(request.args.get("limit"), 10, 50)
    if by == "best_drop":
        rows = bestdrops(limit)
    elif by == "money":
        rows = richest(limit)
    else:
        return {"error": "Invalid leaderboard"}, 400
    return {
        "success": True,
        "by": by,
        "entries": [{"rank": i + 1, "username": r["username"], "amount": from_cents(r["amount"])} for i, r in enumerate(rows)],
    }


@app.route("/api/drops/recent")
def dropsrecent():
    limit = boundedint(request.args.get("limit"), 20, 50)
    try:
        minimum = to_cents(request.args.get("min_value", "0") or "0")
    except ArithmeticError:
        return {"error": "Invalid min_value"}, 400
    rows = recentdrops(limit, max(minimum, 0))
    return {
        "success": True,
        "drops": [
            {
                "username": r["username"],
                "itemName": r["item_name"],
                "rarity": r["rarity"],
                "color": r["color"],
                "value": from_cents(r["value"]),
                "dropType": r["drop_type"],
                "createdAt": r["created_at"],
            }
            for r in rows
        ],
    }


@app.route("/api/chat/recent")
def chatrecent():
    limit = boundedint(request.args.get("limit"), 50, 100)
    rows = recentchat(limit)
    return {
        "success": True,
        "messages": [
            {
                "id": r["id"],
                "userId": str(r["user_id"]),
                "username": r["username"],
                "message": r["message"],
                "userLevel": r["user_level"],
                "avatarUrl": r["avatar_url"],
                "kind": r["kind"],
                "createdAt": r["created_at"],
            }
            for r in rows
        ],
    }


def run() -> None:
    logging.basicConfig(level=settings["log_level"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.run(host=settings["host"], port=settings["port"], debug=settings["debug"], threaded=True)
