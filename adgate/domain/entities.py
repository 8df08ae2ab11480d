from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

# --- Enums / Literals ---
AttemptState = Literal["issued", "used"]
CompletionSource = Literal["ads", "skip", "bonus_card", "coins_full_unlock", "ads_discount"]
ShortcutKind = Literal["full_unlock", "skip_ad", "ads_discount"]
ReferralStatus = Literal["pending", "valid", "rewarded"]
TransactionType = Literal[
    "welcome_bonus",
    "referral_bonus",
    "unlock_card_used",
    "full_unlock",
    "ad_skip",
    "unlock_card_purchase",
    "priority_unlock_purchase",
    "daily_reward",
    "ad_discount",
]
ContentStatus = Literal["active", "inactive"]


def utcnow() -> datetime:
    return datetime.now(UTC)


# --- Gating ---

class UnlockSession(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    visitor_id: str
    content_id: str
    ads_required: int = Field(ge=0)
    ads_watched: int = Field(default=0, ge=0)
    skip_credits: int = Field(default=0, ge=0)
    ads_discounted: int = Field(default=0, ge=0)
    completed: bool = False
    completed_via: CompletionSource | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def effective_remaining(self) -> int:
        return max(0, self.ads_required - self.ads_watched - self.skip_credits)


class AdAttempt(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    token_hash: str
    visitor_id: str
    content_id: str
    unlock_session_id: UUID
    state: AttemptState = "issued"
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def used(self) -> bool:
        return self.state == "used"


# --- Content (external catalog view) ---

class ContentInfo(BaseModel):
    id: str
    title: str = ""
    required_ads: int | None = Field(default=None, ge=0)
    status: ContentStatus = "active"


# --- Referral / Rewards ---

class ReferralLedgerEntry(BaseModel):
    visitor_id: str
    my_referral_code: str
    referred_by_code: str | None = None
    referred_by_visitor_id: str | None = None
    total_referrals: int = 0
    valid_referrals: int = 0
    coins: int = Field(default=0, ge=0)
    bonus_unlocks: int = Field(default=0, ge=0)
    ads_reduction_percent: int = 0
    priority_unlock_expires_at: datetime | None = None
    total_time_tracked_seconds: int = 0
    total_unlocks_completed: int = 0
    tracking_started_at: datetime | None = None
    daily_streak: int = 0
    daily_claims_total: int = 0
    last_daily_claim_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_priority_unlock(self, now: datetime) -> bool:
        return (
            self.priority_unlock_expires_at is not None
            and now < self.priority_unlock_expires_at
        )


class ReferralRecord(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    referrer_code: str
    referrer_visitor_id: str
    referred_visitor_id: str
    status: ReferralStatus = "pending"
    device_fingerprint: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    validated_at: datetime | None = None
    rewarded_at: datetime | None = None


class RewardTransaction(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    visitor_id: str
    type: TransactionType
    coins_change: int = 0
    unlock_cards_change: int = 0
    content_id: str | None = None
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)
