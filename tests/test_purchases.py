"""Tests for business purchases: conditional debit and holdings bookkeeping."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from tycoon import outcomes
from tycoon.db_utils import find_balance_drift, recompute_business_stats
from tycoon.models import User, UserBusiness, BusinessStat, Transaction
from tycoon.purchases import purchase, MAX_QUANTITY


class TestPurchase:

    def test_buy_then_insufficient_funds(self, make_user, db):
        """C has exactly enough for one DAPP; the second identical call is refused."""
        make_user("C", coins=1000)

        first = purchase("C", "DAPP", 1, 1000)
        second = purchase("C", "DAPP", 1, 1000)

        assert first.status == outcomes.PURCHASED
        assert first.get("newBalance") == 0
        assert first.get("newQuantityOwned") == 1
        assert second.status == outcomes.INSUFFICIENT_FUNDS

        assert db.get(User, "C").coins == 0
        assert db.get(UserBusiness, ("C", "DAPP")).quantity == 1

    def test_unit_cost_defaults_to_catalog_price(self, make_user):
        make_user("C", coins=2500)

        outcome = purchase("C", "BITCOIN", 2)

        assert outcome.get("newBalance") == 500
        assert outcome.get("newQuantityOwned") == 2

    def test_quantity_accumulates(self, make_user):
        make_user("C", coins=5000, businesses={"APPLE": 2})

        outcome = purchase("C", "APPLE", 3)

        assert outcome.get("newQuantityOwned") == 5
        assert outcome.get("newBalance") == 2000

    @pytest.mark.parametrize("qty", [0, -1, 1.5, "2", True, None])
    def test_invalid_quantity(self, make_user, db, qty):
        make_user("C", coins=5000)

        assert purchase("C", "DAPP", qty).status == outcomes.INVALID_QUANTITY
        assert db.get(User, "C").coins == 5000

    @pytest.mark.parametrize("cost", [-5, 2.5, "10", True])
    def test_invalid_unit_cost(self, make_user, cost):
        make_user("C", coins=5000)
        assert purchase("C", "DAPP", 1, cost).status == outcomes.INVALID_UNIT_COST

    def test_quantity_beyond_column_range(self, make_user, db):
        make_user("C", coins=5000)

        assert purchase("C", "DAPP", 10 ** 19).status == outcomes.INVALID_QUANTITY
        assert purchase("C", "DAPP", MAX_QUANTITY + 1).status == outcomes.INVALID_QUANTITY
        assert db.get(User, "C").coins == 5000

    def test_total_beyond_any_balance_is_insufficient_funds(self, make_user, db):
        """quantity * cost past the 64-bit balance range never reaches the UPDATE."""
        make_user("C", coins=5000)

        outcome = purchase("C", "DAPP", 4, 2 ** 62)

        assert outcome.status == outcomes.INSUFFICIENT_FUNDS
        assert db.get(User, "C").coins == 5000
        assert purchase("nobody", "DAPP", 4, 2 ** 62).status == outcomes.USER_NOT_FOUND

    def test_unknown_business_is_rejected(self, make_user, db):
        make_user("C", coins=5000)

        assert purchase("C", "LEMONADE", 1).status == outcomes.UNKNOWN_BUSINESS
        assert db.get(User, "C").coins == 5000

    def test_unknown_user(self):
        assert purchase("nobody", "DAPP", 1).status == outcomes.USER_NOT_FOUND

    def test_stats_and_audit(self, make_user, db):
        make_user("C", coins=5000)
        make_user("D", coins=5000)
        purchase("C", "DAPP", 2)
        purchase("D", "DAPP", 1)

        stat = db.get(BusinessStat, "DAPP")
        assert (stat.units_sold, stat.coins_invested) == (3, 3000)
        assert find_balance_drift(db) == {}

    def test_recompute_business_stats_matches_live_aggregate(self, make_user, db):
        make_user("C", coins=5000)
        purchase("C", "TYPOGRAM", 2)
        purchase("C", "APPLE", 1)

        rebuilt = recompute_business_stats(db)

        assert rebuilt["TYPOGRAM"] == (2, 2000)
        assert rebuilt["APPLE"] == (1, 1000)
        assert rebuilt["DAPP"] == (0, 0)


class TestConcurrentPurchases:

    def test_no_overdraft_under_contention(self, make_user, db):
        """10 racing buys against a balance covering 5: exactly 5 succeed."""
        make_user("C", coins=5000)

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(lambda _: purchase("C", "DAPP", 1, 1000), range(10)))

        statuses = [r.status for r in results]
        assert statuses.count(outcomes.PURCHASED) == 5
        assert statuses.count(outcomes.INSUFFICIENT_FUNDS) == 5

        assert db.get(User, "C").coins == 0
        assert db.get(UserBusiness, ("C", "DAPP")).quantity == 5
        assert find_balance_drift(db) == {}


class TestPurchaseAtomicity:
    """A failure after the debit leaves the store as if nothing was attempted."""

    @pytest.mark.parametrize("step", ["_add_units", "_fold_into_stats"])
    def test_failure_after_debit_rolls_everything_back(self, make_user, db, step):
        make_user("C", coins=5000, businesses={"DAPP": 1})
        tx_before = db.scalar(select(func.count()).select_from(Transaction))

        with patch(f"tycoon.purchases.{step}", side_effect=RuntimeError("boom")):
            outcome = purchase("C", "DAPP", 2)

        assert outcome.status == outcomes.INTERNAL_ERROR
        assert db.get(User, "C").coins == 5000
        assert db.get(UserBusiness, ("C", "DAPP")).quantity == 1
        stat = db.get(BusinessStat, "DAPP")
        assert (stat.units_sold, stat.coins_invested) == (0, 0)
        assert db.scalar(select(func.count()).select_from(Transaction)) == tx_before
        assert find_balance_drift(db) == {}

        # the same purchase goes through once the fault is gone
        assert purchase("C", "DAPP", 2).get("newQuantityOwned") == 3
