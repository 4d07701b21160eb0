from sqlalchemy import func, select

from tycoon.catalog import BUSINESSES
from tycoon.ledger import REASON_PURCHASE
from tycoon.models import User, Transaction, Referral, UserBusiness, BusinessStat


def recompute_balance(db, user_id):
    """Balance implied by the audit log for user_id."""
    total = db.scalar(
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.user_id == user_id)
    )
    return int(total or 0)


def find_balance_drift(db):
    """Return {user_id: (stored_coins, audited_coins)} for every user whose balance disagrees with the log."""
    audited = dict(db.execute(
        select(Transaction.user_id, func.sum(Transaction.amount))
        .group_by(Transaction.user_id)
    ).all())
    drift = {}
    for uid, coins in db.execute(select(User.id, User.coins)).all():
        expected = int(audited.get(uid) or 0)
        if int(coins or 0) != expected:
            drift[uid] = (int(coins or 0), expected)
    return drift


def find_referral_drift(db):
    """Return {user_id: (stored_count, referral_rows)} where referrals_count disagrees with the referrals table."""
    counted = dict(db.execute(
        select(Referral.referrer_id, func.count())
        .group_by(Referral.referrer_id)
    ).all())
    drift = {}
    for uid, stored in db.execute(select(User.id, User.referrals_count)).all():
        expected = int(counted.get(uid) or 0)
        if int(stored or 0) != expected:
            drift[uid] = (int(stored or 0), expected)
    return drift


def recompute_business_stats(db):
    """
    Rebuild business_stats from holdings and purchase audit rows and persist it.

    Units come from user_businesses; coins invested are split by the business
    id carried in each purchase row's ref ("<business>:<qty>").
    """
    units = dict(db.execute(
        select(UserBusiness.business_id, func.sum(UserBusiness.quantity))
        .group_by(UserBusiness.business_id)
    ).all())
    invested = {}
    for ref, amount in db.execute(
        select(Transaction.ref, Transaction.amount)
        .where(Transaction.reason == REASON_PURCHASE)
    ).all():
        business_id = (ref or "").split(":", 1)[0]
        invested[business_id] = invested.get(business_id, 0) + (-int(amount))

    results = {}
    for business_id in {b.id for b in BUSINESSES} | set(units) | set(invested):
        stat = db.get(BusinessStat, business_id)
        if stat is None:
            stat = BusinessStat(business_id=business_id)
            db.add(stat)
        stat.units_sold = int(units.get(business_id) or 0)
        stat.coins_invested = int(invested.get(business_id) or 0)
        results[business_id] = (stat.units_sold, stat.coins_invested)
    db.commit()
    return results
