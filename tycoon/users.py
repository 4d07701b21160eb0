import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from tycoon import config
from tycoon.ledger import run_in_transaction, record_transaction, REASON_SIGNUP
from tycoon.models import SessionLocal, User
from tycoon.outcomes import ALREADY_CLAIMED, REFERRED_ALREADY_EXISTS, INVALID_DISPLAY_NAME, failed
from tycoon.referrals import (
    claim_referral, clean_id, clean_display_name, new_user, InvalidDisplayName,
)

logger = logging.getLogger(__name__)


def get_user(user_id):
    user_id = clean_id(user_id)
    if user_id is None:
        return None
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        return user.to_dict() if user else None
    finally:
        db.close()


def _create_plain(db, user_id, username):
    user = new_user(user_id, username)
    db.add(user)
    db.flush()
    record_transaction(db, user_id, config.STARTING_COINS, REASON_SIGNUP)
    return user.to_dict()


def get_or_create_user(user_id, username=None, referrer_id=None):
    """
    Fetch an account, creating it on first contact.

    Returns ``(user, referral_outcome)``. An existing account is returned
    unchanged and no referral is attempted for it. A new account with a
    referrer is created by the referral claim itself, so the account and the
    referrer's reward land together or not at all; ``user`` is None when
    that claim was refused or the display name is malformed.
    """
    user_id = clean_id(user_id)
    if user_id is None:
        raise ValueError("invalid user id")
    try:
        username = clean_display_name(username)
    except InvalidDisplayName:
        return None, failed(INVALID_DISPLAY_NAME)

    existing = get_user(user_id)
    if existing:
        return existing, None

    if referrer_id not in (None, ""):
        outcome = claim_referral(referrer_id, user_id, username)
        if outcome.ok:
            return outcome.get("user"), outcome
        if outcome.status in (ALREADY_CLAIMED, REFERRED_ALREADY_EXISTS):
            # lost a race against another request for the same account
            return get_user(user_id), outcome
        return None, outcome

    try:
        created = run_in_transaction(lambda db: _create_plain(db, user_id, username))
    except IntegrityError:
        logger.info("user %s was created concurrently; returning stored row", user_id)
        return get_user(user_id), None
    logger.info("created user %s", user_id)
    return created, None


def update_profile(user_id, username=None, subscribed=None):
    """
    Profile fields only; coins and holdings change through the ledger.

    Raises ValueError (message is the API error code) for a malformed or
    empty update. Returns False when the user does not exist.
    """
    values = {}
    if username is not None:
        try:
            username = clean_display_name(username)
        except InvalidDisplayName:
            username = None
        if username is None:
            raise ValueError("invalid_display_name")
        values["username"] = username
    if subscribed is not None:
        if not isinstance(subscribed, bool):
            raise ValueError("invalid_subscribed")
        values["subscribed"] = subscribed
    if not values:
        raise ValueError("no_fields_to_update")

    user_id = clean_id(user_id)

    def work(db):
        result = db.execute(
            update(User)
            .where(User.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    return run_in_transaction(work) if user_id else False


def leaderboard(limit=None):
    try:
        limit = int(limit) if limit is not None else config.LEADERBOARD_DEFAULT
    except (TypeError, ValueError):
        limit = config.LEADERBOARD_DEFAULT
    limit = max(1, min(config.LEADERBOARD_MAX, limit))

    db = SessionLocal()
    try:
        users = db.scalars(
            select(User).order_by(User.coins.desc(), User.created_at.asc()).limit(limit)
        ).all()
        return [
            {
                "id": u.id,
                "username": u.username,
                "coins": int(u.coins or 0),
                "businesses": u.businesses,
                "level": u.level or 1,
            }
            for u in users
        ]
    finally:
        db.close()
