import hashlib
import time
from threading import Lock

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer


CSRF_SALT = "caseroll-csrf"


def _session_fingerprint(auth_token: str) -> str:
    return hashlib.sha256(str(auth_token or "").encode()).hexdigest()[:16]


class CsrfGuard:
    """Signed CSRF tokens bound to one user id and one session token."""

    def __init__(self, secret: str, max_age: int = 86400) -> None:
        self._serializer = URLSafeTimedSerializer(secret, salt=CSRF_SALT)
        self.max_age = int(max_age)

    def issue(self, user_id, auth_token: str) -> str:
        return self._serializer.dumps({"uid": str(user_id), "sid": _session_fingerprint(auth_token)})

    def validate(self, token, user_id, auth_token: str) -> tuple[bool, str]:
        if not token or not isinstance(token, str):
            return False, "missing_token"
        try:
            data = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            return False, "expired_token"
        except BadSignature:
            return False, "invalid_token"
        if not isinstance(data, dict) or data.get("uid") != str(user_id):
            return False, "user_mismatch"
        if data.get("sid") != _session_fingerprint(auth_token):
            return False, "session_mismatch"
        return True, ""


class RateLimiter:
    def __init__(self, max_requests: int = 30, window_ms: int = 60_000, max_idle_ms: int = 15 * 60_000) -> None:
        self.max_requests = int(max_requests)
        self.window = int(window_ms) / 1000.0
        self.max_idle = int(max_idle_ms) / 1000.0
        self._lock = Lock()
        self._entries: dict[str, dict] = {}
        self._last_cleanup = 0.0

    def allow(self, identifier: str, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        with self._lock:
            self._cleanup(now)
            entry = self._entries.get(identifier)
            if not entry or now >= entry["reset_at"]:
                self._entries[identifier] = {"count": 1, "reset_at": now + self.window, "last_seen": now}
                return True
            entry["last_seen"] = now
            if entry["count"] >= self.max_requests:
                return False
            entry["count"] += 1
            return True

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < 300:
            return
        self._last_cleanup = now
        stale = [k for k, e in self._entries.items() if now - e["last_seen"] > self.max_idle]
        for key in stale[:200]:
            del self._entries[key]

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


def request_ip(headers, remote_addr: str | None) -> str:
    forwarded = headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real = headers.get("X-Real-IP", "")
    if real:
        return real
    return remote_addr or "unknown"
