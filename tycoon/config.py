import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL")

STARTING_COINS = int(os.getenv("STARTING_COINS", 100))
REFERRAL_BONUS = int(os.getenv("REFERRAL_BONUS", 100))

# Looser referral policy: an existing account that was never referred may
# still be attached to a referrer.
ALLOW_LATE_REFERRAL = _flag("ALLOW_LATE_REFERRAL")

MINE_COOLDOWN_MS = int(os.getenv("MINE_COOLDOWN_MS", 60_000))

STORE_RETRY_ATTEMPTS = max(1, int(os.getenv("STORE_RETRY_ATTEMPTS", 3)))
STORE_RETRY_BACKOFF = float(os.getenv("STORE_RETRY_BACKOFF", 0.05))

FRONTEND_ORIGIN = (os.getenv("FRONTEND_ORIGIN") or "").rstrip("/")
ALLOWED_ORIGINS = [o for o in ("http://localhost:5173", FRONTEND_ORIGIN) if o]

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_SECRET_PATH = os.getenv("TELEGRAM_SECRET_PATH", "").strip("/")
TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")
WEBAPP_URL = os.getenv("WEBAPP_URL", FRONTEND_ORIGIN or "http://localhost:5173")

LEADERBOARD_DEFAULT = int(os.getenv("LEADERBOARD_DEFAULT", 20))
LEADERBOARD_MAX = int(os.getenv("LEADERBOARD_MAX", 100))

PORT = int(os.getenv("PORT", 3000))
