import os

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # Admin console password (validated against the policy below at startup)
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

    # SQLite database file stored next to the code as votes.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "data", "votes.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Schema comes from "flask db upgrade"; set to create missing tables at startup instead
    AUTO_CREATE_TABLES = _env_bool("AUTO_CREATE_TABLES", "false")

    # Comma-separated list of allowed origins; empty means no CORS headers
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    PORT = int(os.getenv("PORT", "33000"))

    # Reverse proxies in front of the app whose X-Forwarded-For hop is trusted.
    # 0 means the socket peer address is the client.
    TRUSTED_PROXY_COUNT = int(os.getenv("TRUSTED_PROXY_COUNT", "0"))

    BCRYPT_ROUNDS = 12

    # Admin session tokens: 24 hours
    ADMIN_TOKEN_LIFETIME_SECONDS = 24 * 60 * 60

    # Vote guard
    VOTE_MIN_INTERVAL_SECONDS = 30      # one vote every 30 seconds
    VOTE_BURST_WINDOW_SECONDS = 5 * 60  # burst counting window
    VOTE_BURST_MAX_REQUESTS = 10        # more than this in the window -> ban
    VOTE_BAN_HOURS = 12

    # Admin login guard (exponential backoff 1min, 2min, 4min ... max 1h)
    LOGIN_ATTEMPT_WINDOW_SECONDS = 60
    LOGIN_MAX_ATTEMPTS = 5
    LOGIN_BASE_BLOCK_SECONDS = 60
    LOGIN_MAX_BLOCK_SECONDS = 60 * 60
    LOGIN_BLOCK_RETENTION_SECONDS = 10 * 60

    # Periodic guard cleanup
    GUARD_SWEEP_INTERVAL_SECONDS = int(os.getenv("GUARD_SWEEP_INTERVAL_SECONDS", "300"))
    GUARD_SWEEPER_ENABLED = _env_bool("GUARD_SWEEPER_ENABLED", "true")

    # Admin password policy
    PASSWORD_MIN_LEN = 8
    PASSWORD_MAX_LEN = 128
    PASSWORD_REQUIRE_UPPER = True
    PASSWORD_REQUIRE_LOWER = True
    PASSWORD_REQUIRE_DIGIT = True
    PASSWORD_REQUIRE_SYMBOL = True

    # Report payload limits
    MAX_MESSAGE_LENGTH = 1000
    LEADERBOARD_SIZE = 20

    # Basic app settings
    DEBUG = False
