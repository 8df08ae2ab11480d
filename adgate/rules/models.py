from typing import Literal

from pydantic import BaseModel, Field


class ProjectRules(BaseModel):
    slug: str = "adgate"
    rules_version: str = "1"

class GatingRules(BaseModel):
    default_required_ads: int = Field(default=3, ge=0)
    min_watch_seconds: float = Field(default=5, ge=0)
    token_bytes: int = Field(default=32, ge=16)
    min_effective_ads: int = Field(default=1, ge=0)

class ReferralRules(BaseModel):
    min_time_for_valid_seconds: int = Field(default=60, ge=0)
    min_unlocks_for_valid: int = Field(default=1, ge=0)
    max_claims_per_device: int = Field(default=3, ge=1)
    max_tracking_interval_seconds: int = Field(default=1800, ge=1)
    max_rewards_per_day: int = Field(default=10, ge=1)
    display_prefix: str = "ADX-"
    base_url: str = "http://localhost:8000"

class RewardsRules(BaseModel):
    coins_per_referral: int = Field(default=50, ge=0)
    bonus_unlocks_per_referral: int = Field(default=1, ge=0)
    ads_reduction_per_referral: int = Field(default=10, ge=0, le=100)
    max_ads_reduction: int = Field(default=50, ge=0, le=100)
    welcome_bonus_coins: int = Field(default=25, ge=0)
    welcome_bonus_unlocks: int = Field(default=1, ge=0)
    coins_to_unlock_card: int = Field(default=100, ge=1)
    priority_unlock_coins: int = Field(default=150, ge=1)
    priority_unlock_hours: int = Field(default=24, ge=1)
    coins_per_ad_skip: int = Field(default=50, ge=1)
    coins_for_full_unlock: int = Field(default=200, ge=1)
    coins_per_ad_discount: int = Field(default=10, ge=1)
    max_ads_discount_per_session: int = Field(default=10, ge=0)

class DailyRewardRules(BaseModel):
    enabled: bool = True
    reward_type: Literal["coins", "unlock_cards", "both"] = "both"
    coins_amount: int = Field(default=10, ge=0)
    unlock_cards_amount: int = Field(default=0, ge=0)
    cooldown_hours: float = Field(default=24, gt=0)
    streak_bonus_enabled: bool = True
    streak_bonus_multiplier: float = Field(default=1.5, ge=1)
    milestone_days: int = Field(default=7, ge=1)
    milestone_bonus_coins: int = Field(default=25, ge=0)
    milestone_bonus_unlocks: int = Field(default=1, ge=0)
    max_claims_per_device: int = Field(default=3, ge=1)

class OpsRules(BaseModel):
    required_env: list[str] = Field(default_factory=list)

class Rules(BaseModel):
    project: ProjectRules = Field(default_factory=ProjectRules)
    gating: GatingRules = Field(default_factory=GatingRules)
    referral: ReferralRules = Field(default_factory=ReferralRules)
    rewards: RewardsRules = Field(default_factory=RewardsRules)
    daily: DailyRewardRules = Field(default_factory=DailyRewardRules)
    ops: OpsRules = Field(default_factory=OpsRules)
