import os
import logging
import math

from flask import Flask, request, jsonify
from flask_cors import CORS
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from tycoon import config
from tycoon.catalog import BUSINESSES
from tycoon.ledger import LedgerUnavailable
from tycoon.mining import mine
from tycoon.models import SessionLocal, engine, init_db
from tycoon.outcomes import ALREADY_CLAIMED, COOLDOWN, INTERNAL_ERROR
from tycoon.purchases import purchase
from tycoon.referrals import claim_referral, clean_id
from tycoon.telegram_bot import handle_update
from tycoon.users import get_user, get_or_create_user, update_profile, leaderboard

# -------------------------
# Logging
# -------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# -------------------------
# Flask app creation
# -------------------------
app = Flask(__name__)
CORS(
    app,
    origins=config.ALLOWED_ORIGINS,
    methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    supports_credentials=True,
)

# never print credentials
_db_url = str(engine.url)
app.logger.info("DB: %s", _db_url.split("@", 1)[1] if "@" in _db_url else _db_url)


@app.cli.command("init-db")
def init_db_command():
    """Create tables and seed business stats."""
    init_db()
    print("Database initialised.")


@app.errorhandler(LedgerUnavailable)
@app.errorhandler(OperationalError)
def db_unavailable(e):
    app.logger.warning("store unavailable: %s", e)
    return jsonify(ok=False, error="db_warming_up_try_again"), 503


# -------------------------
# Helpers
# -------------------------
def get_payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def as_int(value):
    """Accept JSON ints and digit strings; anything else is passed through for validation."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


# -------------------------
# Routes
# -------------------------
@app.route("/", methods=["GET"])
def home():
    return "Backend OK", 200


@app.route("/health", methods=["GET"])
def health():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "db": "up"}, 200
    except OperationalError:
        return {"ok": True, "db": "sleeping"}, 200
    finally:
        db.close()


@app.route("/api/businesses", methods=["GET"])
def businesses():
    return jsonify(ok=True, businesses=[
        {"id": b.id, "name": b.name, "cost": b.cost, "income": b.income}
        for b in BUSINESSES
    ])


@app.route("/api/user", methods=["POST"])
def api_user():
    """
    Body: { id, username? | displayName?, referredBy? | referrerId? }
    Fetch the user, or create it. A referrer is only honoured for a new account.
    """
    data = get_payload()
    user_id = clean_id(data.get("id"))
    if not user_id:
        return jsonify(ok=False, error="id_required"), 400

    referrer_id = data.get("referredBy", data.get("referrerId"))
    username = data.get("username", data.get("displayName"))
    user, outcome = get_or_create_user(user_id, username, referrer_id)

    if outcome is None or outcome.ok:
        body = {"ok": True, "user": user}
        if outcome is not None:
            body["referral"] = outcome.to_dict()
        return jsonify(body), 200

    if user is not None and outcome.status != ALREADY_CLAIMED:
        # account appeared concurrently without this referral; return it unchanged
        return jsonify(ok=True, user=user, referral=outcome.to_dict()), 200

    return jsonify(outcome.to_dict(user=user)), outcome.http_status


@app.route("/api/user/<user_id>", methods=["GET"])
def api_get_user(user_id):
    user = get_user(user_id)
    if not user:
        return jsonify(ok=False, error="not_found"), 404
    return jsonify(ok=True, user=user)


@app.route("/api/user/update", methods=["POST"])
def api_update_user():
    """Body: { id, username?, subscribed? }; balances are not writable here."""
    data = get_payload()
    user_id = clean_id(data.get("id"))
    if not user_id:
        return jsonify(ok=False, error="id_required"), 400

    forbidden = sorted(k for k in ("coins", "businesses", "lastMine", "level", "referredBy")
                       if k in data)
    if forbidden:
        return jsonify(ok=False, error="read_only_fields", fields=forbidden), 400

    try:
        updated = update_profile(user_id, data.get("username"), data.get("subscribed"))
    except ValueError as e:
        return jsonify(ok=False, error=str(e)), 400
    if not updated:
        return jsonify(ok=False, error="user_not_found"), 404
    return jsonify(ok=True)


@app.route("/api/referral/claim", methods=["POST"])
def api_claim_referral():
    """Body: { referrerId, referredId, displayName? }"""
    data = get_payload()
    outcome = claim_referral(
        data.get("referrerId"),
        data.get("referredId"),
        data.get("displayName"),
    )
    return jsonify(outcome.to_dict()), outcome.http_status


@app.route("/api/purchase", methods=["POST"])
def api_purchase():
    """Body: { userId, businessId, quantity? }; price comes from the catalog."""
    data = get_payload()
    outcome = purchase(
        data.get("userId", data.get("id")),
        data.get("businessId"),
        as_int(data.get("quantity", 1)),
    )
    return jsonify(outcome.to_dict()), outcome.http_status


@app.route("/api/mine", methods=["POST"])
def api_mine():
    data = get_payload()
    if not clean_id(data.get("id")):
        return jsonify(ok=False, error="id_required"), 400

    outcome = mine(data.get("id"))
    resp = jsonify(outcome.to_dict())
    if outcome.status == COOLDOWN:
        resp.headers["Retry-After"] = str(math.ceil(outcome.get("retryAfterMs") / 1000))
    return resp, outcome.http_status


@app.route("/api/leaderboard", methods=["GET"])
def api_leaderboard():
    return jsonify(ok=True, users=leaderboard(request.args.get("limit")))


WEBHOOK_PATH = "/telegram/webhook" + (f"/{config.TELEGRAM_SECRET_PATH}" if config.TELEGRAM_SECRET_PATH else "")


@app.route(WEBHOOK_PATH, methods=["POST"])
def telegram_webhook():
    if config.TELEGRAM_WEBHOOK_SECRET:
        if request.headers.get("X-Telegram-Bot-Api-Secret-Token") != config.TELEGRAM_WEBHOOK_SECRET:
            return jsonify(ok=False, error="forbidden"), 403

    update = request.get_json(silent=True)
    if not update:
        return "", 204

    try:
        result = handle_update(update)
    except (LedgerUnavailable, OperationalError):
        raise
    except Exception:
        # answer 200 anyway so the platform does not redeliver in a loop
        app.logger.exception("handle_update failed")
        return jsonify(ok=False, error="server_error"), 200

    if result.get("referral") == INTERNAL_ERROR:
        # store trouble: let the platform redeliver, claims are idempotent
        return jsonify(ok=False, **result), 503
    return jsonify(ok=True, **result), 200


# Entry point for local run
if __name__ == "__main__":
    logger.info("Starting tycoon.app entrypoint (pid=%s)", os.getpid())
    init_db()
    app.run(host="0.0.0.0", port=config.PORT, debug=False)
