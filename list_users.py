# list_users.py
from sqlalchemy import select

from tycoon.models import SessionLocal, User

session = SessionLocal()
try:
    users = session.scalars(select(User).order_by(User.created_at.asc())).all()

    print("\n=== User List ===\n")
    for u in users:
        print(f"ID: {u.id}, Username: {u.username}, Coins: {u.coins}, "
              f"Referrals: {u.referrals_count}, Referred by: {u.referred_by}, "
              f"Businesses: {u.businesses}, Created: {u.created_at}")

    print("\nTotal users:", len(users))
finally:
    session.close()
