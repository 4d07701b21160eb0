import logging
import random
import time

from sqlalchemy import select

from tycoon import config
from tycoon.catalog import calculate_passive_income
from tycoon.ledger import (
    Rejected, run_in_transaction, credit, REASON_MINING,
)
from tycoon.models import User, UserBusiness
from tycoon.outcomes import Outcome, failed, MINED, COOLDOWN, USER_NOT_FOUND, INTERNAL_ERROR
from tycoon.referrals import clean_id

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def roll_earned(rng=random) -> int:
    # 2 or 3 coins per tap
    return rng.randint(2, 3)


def _mine(db, user_id, now, earned):
    holdings = dict(db.execute(
        select(UserBusiness.business_id, UserBusiness.quantity)
        .where(UserBusiness.user_id == user_id)
    ).all())
    passive = calculate_passive_income(holdings)
    threshold = now - config.MINE_COOLDOWN_MS

    coins = credit(db, user_id, earned + passive, REASON_MINING,
                   where=(User.last_mine <= threshold,), last_mine=now)
    if coins is None:
        last_mine = db.scalar(select(User.last_mine).where(User.id == user_id))
        if last_mine is None:
            raise Rejected(failed(USER_NOT_FOUND))
        retry_after = max(1, config.MINE_COOLDOWN_MS - (now - int(last_mine)))
        raise Rejected(failed(COOLDOWN, retryAfterMs=retry_after))

    return Outcome(MINED, {
        "earned": earned,
        "passive": passive,
        "coins": int(coins),
        "lastMine": now,
    })


def mine(user_id, now=None, earned=None):
    """
    Pay one mining tap plus passive income, at most once per cooldown window.

    The cooldown is re-checked in the UPDATE's WHERE clause, so two taps that
    arrive together pay out once.
    """
    user_id = clean_id(user_id)
    if user_id is None:
        return failed(USER_NOT_FOUND)
    now = now_ms() if now is None else int(now)
    earned = roll_earned() if earned is None else int(earned)

    try:
        return run_in_transaction(lambda db: _mine(db, user_id, now, earned))
    except Rejected as r:
        return r.outcome
    except Exception:
        # store outage or a bug; either way nothing was committed
        logger.exception("mine failed for %s", user_id)
        return failed(INTERNAL_ERROR)
