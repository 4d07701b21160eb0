"""
Ledger Store access.

Every balance mutation goes through a single SQL statement that the database
applies against the latest committed row (``coins = coins + :n`` or
``coins = coins - :n WHERE coins >= :n``), and every mutation is paired with
an append-only ``transactions`` row written in the same unit of work.

``run_in_transaction`` is the only place that commits. Units of work signal a
business rejection by raising ``Rejected``, which rolls everything back.
"""
import logging
import time

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from tycoon import config
from tycoon.models import SessionLocal, User, Transaction

logger = logging.getLogger(__name__)

REASON_SIGNUP = "signup-bonus"
REASON_REFERRAL = "referral-bonus"
REASON_PURCHASE = "purchase"
REASON_MINING = "mining"

# users.coins is a signed 64-bit column
MAX_BALANCE = 2 ** 63 - 1


class LedgerUnavailable(Exception):
    """The store kept failing after the configured retries."""


class Rejected(Exception):
    """Abort the current unit of work and hand ``outcome`` back to the caller."""

    def __init__(self, outcome):
        super().__init__(outcome)
        self.outcome = outcome


def run_in_transaction(work, attempts=None, backoff=None):
    """
    Run ``work(db)`` in a fresh session and commit it.

    OperationalError (lost connection, lock timeout, sqlite "database is
    locked") is retried with exponential backoff; the session is rolled back
    before each retry so nothing from a failed attempt survives.
    """
    attempts = attempts or config.STORE_RETRY_ATTEMPTS
    backoff = config.STORE_RETRY_BACKOFF if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        db = SessionLocal()
        try:
            result = work(db)
            db.commit()
            return result
        except OperationalError as e:
            db.rollback()
            if attempt >= attempts:
                logger.error("store unavailable after %s attempts: %s", attempts, e)
                raise LedgerUnavailable(str(e)) from e
            delay = backoff * (2 ** (attempt - 1))
            logger.warning("store error on attempt %s/%s, retrying in %.3fs: %s",
                           attempt, attempts, delay, e)
            time.sleep(delay)
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()


def record_transaction(db, user_id: str, amount: int, reason: str, ref=None):
    tx = Transaction(user_id=user_id, amount=int(amount), reason=reason, ref=ref)
    db.add(tx)
    return tx


def current_balance(db, user_id: str):
    return db.scalar(select(User.coins).where(User.id == user_id))


def credit(db, user_id: str, amount: int, reason: str, ref=None, where=(), **values):
    """
    Add ``amount`` to the balance. Returns the new balance, or None if no row qualified.

    ``where`` adds conditions to the same UPDATE and ``values`` sets other
    columns alongside the balance, so a guard like a cooldown is checked
    and applied in one statement.
    """
    result = db.execute(
        update(User)
        .where(User.id == user_id, *where)
        .values(coins=User.coins + amount, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    record_transaction(db, user_id, amount, reason, ref)
    return current_balance(db, user_id)


def debit_if_sufficient(db, user_id: str, amount: int, reason: str, ref=None):
    """
    Take ``amount`` from the balance only if it is covered.

    The balance check lives in the WHERE clause, so two concurrent debits can
    never both pass against the same stale balance. Returns the new balance,
    or None when the user is missing or cannot afford it.
    """
    if amount > MAX_BALANCE:
        # no stored balance can cover it, and the driver cannot bind it
        return None
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.coins >= amount)
        .values(coins=User.coins - amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    record_transaction(db, user_id, -amount, reason, ref)
    return current_balance(db, user_id)
