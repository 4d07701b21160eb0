import logging

from sqlalchemy import select, update

from tycoon.catalog import get_business, UnknownBusiness
from tycoon.ledger import (
    Rejected, run_in_transaction, debit_if_sufficient,
    REASON_PURCHASE,
)
from tycoon.models import User, UserBusiness, BusinessStat
from tycoon.outcomes import (
    purchased, failed, INSUFFICIENT_FUNDS, INVALID_QUANTITY, INVALID_UNIT_COST, UNKNOWN_BUSINESS,
    USER_NOT_FOUND, INTERNAL_ERROR,
)
from tycoon.referrals import clean_id

logger = logging.getLogger(__name__)

# user_businesses.quantity is a 32-bit column
MAX_QUANTITY = 2 ** 31 - 1


def _add_units(db, user_id, business_id, quantity):
    result = db.execute(
        update(UserBusiness)
        .where(UserBusiness.user_id == user_id, UserBusiness.business_id == business_id)
        .values(quantity=UserBusiness.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # first unit of this business; the user row is already locked by the debit
        db.add(UserBusiness(user_id=user_id, business_id=business_id, quantity=quantity))
        db.flush()
    return db.scalar(
        select(UserBusiness.quantity)
        .where(UserBusiness.user_id == user_id, UserBusiness.business_id == business_id)
    )


def _fold_into_stats(db, business_id, quantity, cost):
    result = db.execute(
        update(BusinessStat)
        .where(BusinessStat.business_id == business_id)
        .values(
            units_sold=BusinessStat.units_sold + quantity,
            coins_invested=BusinessStat.coins_invested + cost,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.add(BusinessStat(business_id=business_id, units_sold=quantity, coins_invested=cost))
        db.flush()


def _purchase(db, user_id, business_id, quantity, total_cost):
    balance = debit_if_sufficient(db, user_id, total_cost, REASON_PURCHASE,
                                  ref=f"{business_id}:{quantity}")
    if balance is None:
        if db.get(User, user_id) is None:
            raise Rejected(failed(USER_NOT_FOUND))
        raise Rejected(failed(INSUFFICIENT_FUNDS, cost=total_cost))

    owned = _add_units(db, user_id, business_id, quantity)
    _fold_into_stats(db, business_id, quantity, total_cost)
    return purchased(balance, owned)


def purchase(user_id, business_id, quantity, unit_cost=None):
    """
    Buy ``quantity`` units of a catalog business.

    The debit is a conditional update, so concurrent purchases by the same
    user can never overdraw the balance. ``unit_cost`` defaults to the catalog
    price. A total beyond any storable balance is refused as insufficient
    funds.
    """
    user_id = clean_id(user_id)
    if user_id is None:
        return failed(USER_NOT_FOUND)
    try:
        business = get_business(business_id)
    except UnknownBusiness:
        return failed(UNKNOWN_BUSINESS)

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        return failed(INVALID_QUANTITY)
    if not 0 < quantity <= MAX_QUANTITY:
        return failed(INVALID_QUANTITY)
    if unit_cost is None:
        unit_cost = business.cost
    if isinstance(unit_cost, bool) or not isinstance(unit_cost, int) or unit_cost < 0:
        return failed(INVALID_UNIT_COST)

    total_cost = quantity * unit_cost
    try:
        outcome = run_in_transaction(
            lambda db: _purchase(db, user_id, business.id, quantity, total_cost)
        )
    except Rejected as r:
        outcome = r.outcome
    except Exception:
        logger.exception("purchase failed for %s (%s x%s)", user_id, business.id, quantity)
        return failed(INTERNAL_ERROR)

    if outcome.ok:
        logger.info("purchase: %s bought %s x%s for %s, balance now %s",
                    user_id, business.id, quantity, total_cost, outcome.get("newBalance"))
    else:
        logger.info("purchase by %s of %s x%s rejected: %s",
                    user_id, business.id, quantity, outcome.status)
    return outcome
