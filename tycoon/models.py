# tycoon/models.py
from datetime import datetime, timezone

from sqlalchemy import (
    create_engine, Column, Integer, String, DateTime, ForeignKey,
    BigInteger, Boolean, Index, CheckConstraint, PrimaryKeyConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from tycoon import config
from tycoon.catalog import BUSINESSES

if not config.DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set")

connect_args = {}
if config.DATABASE_URL.startswith("sqlite"):
    # sqlite serialises writers; wait on the lock instead of failing at once
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(
    config.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=300,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=True)

    coins = Column(BigInteger, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    last_mine = Column(BigInteger, nullable=False, default=0)

    referrals_count = Column(Integer, nullable=False, default=0)
    referred_by = Column(String, ForeignKey("users.id"), nullable=True)

    subscribed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    holdings = relationship(
        "UserBusiness",
        lazy="selectin",
        order_by="UserBusiness.business_id",
    )

    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_users_coins_non_negative"),
    )

    @property
    def businesses(self):
        return {h.business_id: h.quantity for h in self.holdings if h.quantity}

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "coins": int(self.coins or 0),
            "businesses": self.businesses,
            "level": self.level or 1,
            "lastMine": int(self.last_mine or 0),
            "referralsCount": int(self.referrals_count or 0),
            "referredBy": self.referred_by,
            "subscribed": bool(self.subscribed),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class UserBusiness(Base):
    __tablename__ = "user_businesses"

    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    business_id = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        PrimaryKeyConstraint("user_id", "business_id"),
        CheckConstraint("quantity >= 0", name="ck_user_businesses_quantity"),
    )


class Referral(Base):
    """One row per rewarded referral. The primary key is the idempotency gate."""

    __tablename__ = "referrals"

    referrer_id = Column(String, ForeignKey("users.id"), nullable=False)
    referred_id = Column(String, nullable=False, unique=True)
    bonus = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        PrimaryKeyConstraint("referrer_id", "referred_id"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)

    amount = Column(BigInteger, nullable=False)
    reason = Column(String, nullable=False)
    ref = Column(String)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_tx_user_created", "user_id", "created_at"),
    )


class BusinessStat(Base):
    __tablename__ = "business_stats"

    business_id = Column(String, primary_key=True)
    units_sold = Column(BigInteger, nullable=False, default=0)
    coins_invested = Column(BigInteger, nullable=False, default=0)


def init_db():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        for b in BUSINESSES:
            if db.get(BusinessStat, b.id) is None:
                db.add(BusinessStat(business_id=b.id, units_sold=0, coins_invested=0))
        db.commit()
    finally:
        db.close()
