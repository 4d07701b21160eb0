# audit_ledger.py: compare stored balances/counters against the audit log
import sys

from tycoon.db_utils import find_balance_drift, find_referral_drift, recompute_business_stats
from tycoon.models import SessionLocal


def main(rebuild_stats=False):
    db = SessionLocal()
    try:
        balance_drift = find_balance_drift(db)
        referral_drift = find_referral_drift(db)

        print("=== Balance drift (stored, audited) ===")
        for uid, (stored, audited) in sorted(balance_drift.items()):
            print(f"{uid}: {stored} != {audited}")
        print("none" if not balance_drift else f"{len(balance_drift)} user(s)")

        print("\n=== Referral counter drift (stored, referral rows) ===")
        for uid, (stored, rows) in sorted(referral_drift.items()):
            print(f"{uid}: {stored} != {rows}")
        print("none" if not referral_drift else f"{len(referral_drift)} user(s)")

        if rebuild_stats:
            print("\n=== Rebuilt business stats (units, coins) ===")
            for bid, (units, coins) in sorted(recompute_business_stats(db).items()):
                print(f"{bid:15} {units:>8} {coins:>12}")

        return 1 if balance_drift or referral_drift else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main(rebuild_stats="--rebuild-stats" in sys.argv[1:]))
