"""
Referral claims.

A claim for (referrer, referred) is decided by inserting the ``referrals``
row first. The row's primary key makes the insert succeed for exactly one
caller; every other caller, whether a webhook retry, a double tap or a
concurrent request, hits the unique constraint and gets ALREADY_CLAIMED.
The referral row, the referred account and the referrer's reward are all
written in one transaction, so either all of them exist or none do.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tycoon import config
from tycoon.ledger import (
    Rejected, run_in_transaction, credit, record_transaction,
    REASON_REFERRAL, REASON_SIGNUP,
)
from tycoon.models import SessionLocal, User, Referral
from tycoon.outcomes import (
    rewarded, failed, ALREADY_CLAIMED, SELF_REFERRAL, REFERRER_NOT_FOUND,
    REFERRED_ALREADY_EXISTS, INVALID_ID, INVALID_DISPLAY_NAME, INTERNAL_ERROR,
)

logger = logging.getLogger(__name__)

MAX_ID_LENGTH = 64
MAX_NAME_LENGTH = 128
REF_PREFIX = "ref_"


def clean_id(value):
    """Normalise an external user id to a non-empty string, or None if malformed."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or len(value) > MAX_ID_LENGTH or any(c.isspace() for c in value):
        return None
    return value


class InvalidDisplayName(ValueError):
    pass


def clean_display_name(value):
    """Stripped display name, or None when absent. Non-strings and overlong names raise."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidDisplayName(f"display name must be a string, got {type(value).__name__}")
    value = value.strip()
    if len(value) > MAX_NAME_LENGTH:
        raise InvalidDisplayName(f"display name longer than {MAX_NAME_LENGTH} characters")
    return value or None


def parse_referral_token(text):
    """
    Return the referrer id carried by ``/start ref_<id>``, else None.

    ``/start@SomeBot ref_<id>`` (group chat form) is accepted too.
    """
    parts = (text or "").split()
    if len(parts) < 2:
        return None
    command = parts[0].split("@", 1)[0].lower()
    if command != "/start" or not parts[1].startswith(REF_PREFIX):
        return None
    return clean_id(parts[1][len(REF_PREFIX):])


def new_user(user_id: str, username=None, referred_by=None) -> User:
    return User(
        id=user_id,
        username=username or f"user_{user_id}",
        coins=config.STARTING_COINS,
        level=1,
        last_mine=0,
        referrals_count=0,
        referred_by=referred_by,
        subscribed=False,
        holdings=[],
    )


def _claim(db, referrer_id, referred_id, display_name):
    if db.get(User, referrer_id) is None:
        raise Rejected(failed(REFERRER_NOT_FOUND))

    referred = db.get(User, referred_id)
    if referred is not None:
        if db.get(Referral, (referrer_id, referred_id)) is not None:
            raise Rejected(failed(ALREADY_CLAIMED))
        if not (config.ALLOW_LATE_REFERRAL and referred.referred_by is None):
            raise Rejected(failed(REFERRED_ALREADY_EXISTS))

    bonus = config.REFERRAL_BONUS

    # the gate: raises IntegrityError for everyone but the first claimant
    db.add(Referral(referrer_id=referrer_id, referred_id=referred_id, bonus=bonus))
    db.flush()

    if referred is None:
        referred = new_user(referred_id, display_name, referred_by=referrer_id)
        db.add(referred)
        db.flush()
        record_transaction(db, referred_id, config.STARTING_COINS, REASON_SIGNUP)
    else:
        attached = db.execute(
            update(User)
            .where(User.id == referred_id, User.referred_by.is_(None))
            .values(referred_by=referrer_id)
            .execution_options(synchronize_session=False)
        )
        if attached.rowcount != 1:
            raise Rejected(failed(REFERRED_ALREADY_EXISTS))
        db.refresh(referred)

    coins = credit(db, referrer_id, bonus, REASON_REFERRAL, ref=referred_id,
                   referrals_count=User.referrals_count + 1)
    if coins is None:
        raise Rejected(failed(REFERRER_NOT_FOUND))
    count = db.scalar(select(User.referrals_count).where(User.id == referrer_id))
    return rewarded(referrer_id, count, coins, user=referred.to_dict())


def _resolve_conflict(referrer_id, referred_id):
    """Tell a duplicate claim apart from a referred account created by someone else."""
    db = SessionLocal()
    try:
        if db.get(Referral, (referrer_id, referred_id)) is not None:
            return failed(ALREADY_CLAIMED)
        return failed(REFERRED_ALREADY_EXISTS)
    finally:
        db.close()


def claim_referral(referrer_id, referred_id, display_name=None):
    """
    Record that ``referrer_id`` brought in ``referred_id`` and pay the bonus.

    Safe to call any number of times with the same arguments: only the first
    call returns REWARDED.
    """
    referrer_id = clean_id(referrer_id)
    referred_id = clean_id(referred_id)
    if referrer_id is None or referred_id is None:
        return failed(INVALID_ID)
    if referrer_id == referred_id:
        logger.info("self-referral rejected for %s", referred_id)
        return failed(SELF_REFERRAL)
    try:
        display_name = clean_display_name(display_name)
    except InvalidDisplayName:
        return failed(INVALID_DISPLAY_NAME)

    try:
        outcome = run_in_transaction(lambda db: _claim(db, referrer_id, referred_id, display_name))
    except Rejected as r:
        outcome = r.outcome
    except IntegrityError:
        try:
            outcome = _resolve_conflict(referrer_id, referred_id)
        except SQLAlchemyError:
            logger.exception("claim_referral: could not resolve conflict %s -> %s",
                             referrer_id, referred_id)
            return failed(INTERNAL_ERROR)
    except Exception:
        # store outage or a bug; run_in_transaction already rolled back
        logger.exception("claim_referral failed %s -> %s", referrer_id, referred_id)
        return failed(INTERNAL_ERROR)

    if outcome.ok:
        logger.info(
            "referral rewarded: %s -> %s, referrer now has %s coins / %s referrals",
            referrer_id, referred_id,
            outcome.get("newReferrerBalance"), outcome.get("newReferralCount"),
        )
    else:
        logger.info("referral %s -> %s not rewarded: %s",
                    referrer_id, referred_id, outcome.status)
    return outcome
