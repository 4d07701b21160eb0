from dataclasses import dataclass, field
from typing import Optional

# referral claims
REWARDED = "rewarded"
ALREADY_CLAIMED = "already_claimed"
SELF_REFERRAL = "self_referral"
REFERRER_NOT_FOUND = "referrer_not_found"
REFERRED_ALREADY_EXISTS = "referred_already_exists"
INVALID_ID = "invalid_id"
INVALID_DISPLAY_NAME = "invalid_display_name"
INTERNAL_ERROR = "internal_error"

# purchases
PURCHASED = "purchased"
INSUFFICIENT_FUNDS = "insufficient_funds"
INVALID_QUANTITY = "invalid_quantity"
INVALID_UNIT_COST = "invalid_unit_cost"
UNKNOWN_BUSINESS = "unknown_business"
USER_NOT_FOUND = "user_not_found"

# mining
MINED = "mined"
COOLDOWN = "cooldown"

HTTP_STATUS = {
    REWARDED: 200,
    PURCHASED: 200,
    MINED: 200,
    SELF_REFERRAL: 400,
    INVALID_ID: 400,
    INVALID_DISPLAY_NAME: 400,
    INVALID_QUANTITY: 400,
    INVALID_UNIT_COST: 400,
    UNKNOWN_BUSINESS: 400,
    REFERRER_NOT_FOUND: 404,
    USER_NOT_FOUND: 404,
    ALREADY_CLAIMED: 409,
    REFERRED_ALREADY_EXISTS: 409,
    INSUFFICIENT_FUNDS: 409,
    COOLDOWN: 429,
    INTERNAL_ERROR: 503,
}


@dataclass(frozen=True)
class Outcome:
    status: str
    data: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (REWARDED, PURCHASED, MINED)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS.get(self.status, 500)

    def get(self, key, default=None):
        return self.data.get(key, default)

    def to_dict(self, **extra):
        body = {"ok": self.ok, "status": self.status}
        if not self.ok:
            body["error"] = self.status
        body.update(self.data)
        body.update(extra)
        return body


def rewarded(referrer_id: str, referral_count: int, referrer_balance: int,
             user: Optional[dict] = None) -> Outcome:
    data = {
        "referrerId": referrer_id,
        "newReferralCount": int(referral_count),
        "newReferrerBalance": int(referrer_balance),
    }
    if user is not None:
        data["user"] = user
    return Outcome(REWARDED, data)


def purchased(new_balance: int, quantity_owned: int) -> Outcome:
    return Outcome(PURCHASED, {
        "newBalance": int(new_balance),
        "newQuantityOwned": int(quantity_owned),
    })


def failed(status: str, **data) -> Outcome:
    return Outcome(status, data)
