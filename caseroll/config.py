import os
from dotenv import load_dotenv


def load():
    load_dotenv()
    return {
        "host": os.getenv("HOST", "127.0.0.1"),
        "port": int(os.getenv("PORT", "5000")),
        "debug": os.getenv("DEBUG", "true").lower() == "true",
        "secret": os.getenv("SECRET", "devsecret"),
        "database_dir": os.getenv("DATABASE_DIR", ""),
        "cors_origins": [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()],
        "rate_limit_max_requests": int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "0") or 0) or 30,
        "rate_limit_window_ms": int(os.getenv("RATE_LIMIT_WINDOW_MS", "0") or 0) or 60_000,
        "csrf_max_age": int(os.getenv("CSRF_MAX_AGE", "86400")),
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
    }
