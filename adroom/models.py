"""
AdRoom Data Models.

Pydantic models for strategy records, their typed JSON columns
(optimization log, content calendar), intelligence log entries,
interactions, leads, and ad platform configuration.

The store accessor converts Supabase rows into these models on read and
serializes them back to plain JSON on write, so the rest of the code never
handles untyped blobs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)


# ── Enums ────────────────────────────────────────────────────


class StrategyStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class StrategyVersion(str, Enum):
    """Organic strategies have no ad spend; paid ones own a campaign."""
    ORGANIC = "organic"
    PAID = "paid"


class OptimizationAction(str, Enum):
    """Actions the optimization loop can take, most severe first."""
    PAUSE_AND_ALERT = "PAUSE_AND_ALERT"
    PAUSE_AD_SET = "PAUSE_AD_SET"
    SWAP_CREATIVE = "SWAP_CREATIVE"
    REFINE_AUDIENCE = "REFINE_AUDIENCE"
    LOWER_BID = "LOWER_BID"
    SCALE_UP = "SCALE_UP"


class LeadStatus(str, Enum):
    CONTACTED = "contacted"
    FOLLOW_UP_SENT = "follow_up_sent"
    FOLLOW_UP_FAILED = "follow_up_failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Strategy ─────────────────────────────────────────────────


class OptimizationLogEntry(BaseModel):
    """One action applied by the optimization loop."""

    timestamp: datetime = Field(default_factory=utc_now)
    action: OptimizationAction
    reason: str = ""
    metrics_before: dict[str, Any] = Field(default_factory=dict)
    metrics_after: dict[str, Any] = Field(default_factory=dict)


class ScheduledPost(BaseModel):
    """A calendar entry waiting to be published (or already published)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    platform: str = "facebook"
    content: str = ""
    image_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("image_url", "imageUrl")
    )
    scheduled_time: datetime
    posted: bool = False
    posted_at: Optional[datetime] = None
    platform_post_id: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v


class ContentCalendar(BaseModel):
    posts: list[ScheduledPost] = Field(default_factory=list)


class StrategyRecord(BaseModel):
    """A row of strategy_memory: one approved marketing plan."""

    strategy_id: str
    user_id: str
    strategy_name: str = ""
    strategy_version: StrategyVersion = StrategyVersion.ORGANIC
    goal: Optional[str] = None
    duration_days: Optional[int] = None
    budget_daily: Optional[float] = None
    budget_total: Optional[float] = None
    total_spend: float = 0.0
    roas: float = 0.0
    clicks: int = 0
    impressions: int = 0
    status: StrategyStatus = StrategyStatus.ACTIVE
    platform_campaign_id: Optional[str] = None
    product_id: Optional[str] = None
    platform_data: dict[str, Any] = Field(default_factory=dict)
    expected_outcomes: dict[str, Any] = Field(default_factory=dict)
    optimizations_applied: list[OptimizationLogEntry] = Field(default_factory=list)
    content_calendar: ContentCalendar = Field(default_factory=ContentCalendar)
    brand_voice: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("total_spend", "roas", "clicks", "impressions", mode="before")
    @classmethod
    def none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator(
        "expected_outcomes", "optimizations_applied", "content_calendar",
        "platform_data",
        mode="before",
    )
    @classmethod
    def none_to_empty(cls, v: Any, info: ValidationInfo) -> Any:
        if v is not None:
            return v
        if info.field_name == "optimizations_applied":
            return []
        return {}

    @property
    def is_paid(self) -> bool:
        return self.strategy_version == StrategyVersion.PAID

    @property
    def target_roas(self) -> Optional[float]:
        value = self.expected_outcomes.get("target_roas")
        try:
            return float(value) if value else None
        except (TypeError, ValueError):
            return None


# ── Intelligence ─────────────────────────────────────────────


class IntelligenceLogEntry(BaseModel):
    """One detected signal, appended to ipe_intelligence_log."""

    intelligence_type: str
    platform: str = "system"
    summary: str
    details: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(3, ge=1, le=3)
    recommended_actions: list[str] = Field(default_factory=list)
    affected_strategies: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None


def priority_for_impact(impact_score: float) -> int:
    """Map a 1-10 impact score to an intelligence priority (1 = urgent)."""
    if impact_score >= 8:
        return 1
    if impact_score >= 5:
        return 2
    return 3


# ── Engagement ───────────────────────────────────────────────


class InteractionRecord(BaseModel):
    """An inbound comment or direct message."""

    id: str
    user_id: str
    external_id: Optional[str] = None
    conversation_id: Optional[str] = None
    sender_id: Optional[str] = None
    content: str = ""
    is_liked: bool = False
    is_replied: bool = False
    is_from_page: bool = False
    reply_content: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("is_liked", "is_replied", "is_from_page", mode="before")
    @classmethod
    def none_to_false(cls, v: Any) -> Any:
        return False if v is None else v


class LeadRecord(BaseModel):
    id: str
    user_id: Optional[str] = None
    status: str = LeadStatus.CONTACTED.value
    last_interaction: Optional[datetime] = None
    sender_id: Optional[str] = None
    notes: Optional[str] = None
    follow_up_attempts: int = 0

    @field_validator("follow_up_attempts", mode="before")
    @classmethod
    def none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class AdPlatformConfig(BaseModel):
    """Per-user Facebook credentials, owned by the configuration flow."""

    user_id: str
    access_token: Optional[str] = None
    ad_account_id: Optional[str] = None
    page_id: Optional[str] = None


# ── Context & Decisions ──────────────────────────────────────


class ContextBundle(BaseModel):
    """Everything the decision engine knows about a user before planning."""

    user: dict[str, Any] = Field(default_factory=dict)
    context_type: str = "product"
    context: Optional[dict[str, Any]] = None
    history: list[dict[str, Any]] = Field(default_factory=list)
    platform_status: list[dict[str, Any]] = Field(default_factory=list)
    global_trends: list[dict[str, Any]] = Field(default_factory=list)
    # Reads that failed, as opposed to reads that found nothing
    errors: list[str] = Field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.errors)


class StrategyBranch(BaseModel):
    model_config = ConfigDict(extra="allow")

    platforms: list[str]
    content_plan: Any
    expected_outcomes: dict[str, Any]
    engagement_plan: Optional[Any] = None
    campaign_structure: Optional[Any] = None


class PaidStrategyBranch(StrategyBranch):
    budget_recommendation: float


class StrategyComparison(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: str = ""
    recommendation: str = ""


class StrategyDecision(BaseModel):
    """The two-branch plan returned by the decision engine."""

    free_strategy: StrategyBranch
    paid_strategy: PaidStrategyBranch
    comparison: StrategyComparison


class RiskAssessment(BaseModel):
    compliant: bool
    risk_level: Literal["low", "medium", "high"]
    issues: list[str] = Field(default_factory=list)
