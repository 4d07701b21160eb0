from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from tycoon.db_utils import recompute_balance, find_balance_drift, find_referral_drift
from tycoon.ledger import (
    run_in_transaction, credit, debit_if_sufficient, LedgerUnavailable, Rejected,
    MAX_BALANCE,
)
from tycoon.models import User


def locked():
    return OperationalError("UPDATE", {}, Exception("database is locked"))


def always_locked(session):
    raise locked()


class TestRunInTransaction:

    def test_commits_result(self, make_user, db):
        make_user("U", coins=10)

        balance = run_in_transaction(lambda s: credit(s, "U", 5, "mining"))

        assert balance == 15
        assert db.get(User, "U").coins == 15

    def test_retries_transient_errors(self):
        calls = []

        def work(session):
            calls.append(1)
            if len(calls) < 3:
                raise locked()
            return "done"

        assert run_in_transaction(work, attempts=3, backoff=0) == "done"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self):
        with patch("tycoon.ledger.time.sleep") as sleep:
            with pytest.raises(LedgerUnavailable):
                run_in_transaction(always_locked, attempts=3, backoff=0.1)
        assert [c.args[0] for c in sleep.call_args_list] == [0.1, 0.2]

    def test_rejected_rolls_back(self, make_user, db):
        make_user("U", coins=10)

        def work(session):
            credit(session, "U", 50, "mining")
            raise Rejected("nope")

        with pytest.raises(Rejected):
            run_in_transaction(work)
        assert db.get(User, "U").coins == 10


class TestCreditDebit:

    def test_debit_only_when_covered(self, make_user, db):
        make_user("U", coins=10)

        assert run_in_transaction(lambda s: debit_if_sufficient(s, "U", 11, "purchase")) is None
        assert run_in_transaction(lambda s: debit_if_sufficient(s, "U", 10, "purchase")) == 0
        assert db.get(User, "U").coins == 0

    def test_credit_guard_and_extra_columns(self, make_user, db):
        make_user("U", coins=10)

        blocked = run_in_transaction(
            lambda s: credit(s, "U", 5, "mining", where=(User.last_mine > 0,), last_mine=7))
        paid = run_in_transaction(
            lambda s: credit(s, "U", 5, "mining", where=(User.last_mine == 0,), last_mine=7))

        assert blocked is None
        assert paid == 15
        user = db.get(User, "U")
        assert (user.coins, user.last_mine) == (15, 7)
        assert find_balance_drift(db) == {}

    def test_debit_beyond_balance_range(self, make_user, db):
        make_user("U", coins=10)

        assert run_in_transaction(
            lambda s: debit_if_sufficient(s, "U", MAX_BALANCE + 1, "purchase")) is None
        assert db.get(User, "U").coins == 10

    def test_missing_user(self):
        assert run_in_transaction(lambda s: credit(s, "nobody", 5, "mining")) is None
        assert run_in_transaction(lambda s: debit_if_sufficient(s, "nobody", 5, "purchase")) is None

    def test_every_mutation_is_audited(self, make_user, db):
        make_user("U", coins=10)
        run_in_transaction(lambda s: credit(s, "U", 7, "mining"))
        run_in_transaction(lambda s: debit_if_sufficient(s, "U", 4, "purchase"))

        assert recompute_balance(db, "U") == 13
        assert find_balance_drift(db) == {}


class TestDrift:

    def test_detects_balance_drift(self, make_user, db):
        make_user("U", coins=10)
        db.get(User, "U").coins = 999
        db.commit()

        assert find_balance_drift(db) == {"U": (999, 10)}

    def test_detects_referral_drift(self, make_user, db):
        make_user("U", coins=10, referrals_count=2)

        assert find_referral_drift(db) == {"U": (2, 0)}
