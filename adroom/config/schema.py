"""
Pydantic settings schema for AdRoom.

The settings file (adroom.yaml) tunes the optimization thresholds, worker
windows, intelligence sources and schedule intervals. Every field has a
default, so an absent file still yields a complete configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------

class LLMSettings(BaseModel):
    """Model parameters for the generative text client."""
    model: str = "gpt-4o"
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(4096, gt=0)


class OptimizationSettings(BaseModel):
    """Parameters of the paid-strategy optimization loop."""
    default_target_roas: float = Field(
        2.0, gt=0, description="Target ROAS when a strategy does not set one"
    )
    scale_up_factor: float = Field(1.2, gt=1.0)
    lower_bid_factor: float = Field(0.9, gt=0, lt=1.0)
    fallback_daily_budget: int = Field(
        1000, gt=0, description="Daily budget assumed when a strategy has none"
    )
    max_log_entries: int = Field(50, gt=0)


class WorkerSettings(BaseModel):
    """Parameters of the autonomous worker sweep."""
    post_window_hours: int = Field(24, gt=0)
    follow_up_after_hours: int = Field(24, gt=0)
    lead_batch_size: int = Field(10, gt=0)
    follow_up_message: str = (
        "Hi! Just checking in to see if you had any questions. "
        "We're happy to help whenever you're ready."
    )
    moderate_daily_posts: bool = False
    max_follow_up_attempts: int = Field(
        3, gt=0, description="Failed sends before a lead is marked follow_up_failed"
    )


class FeedSource(BaseModel):
    name: str
    url: str


class IntelligenceSettings(BaseModel):
    """Sources and retention for the platform intelligence cycle."""
    sources: list[FeedSource] = Field(default_factory=lambda: [
        FeedSource(name="Meta Newsroom", url="https://about.fb.com/news/feed/"),
        FeedSource(name="Instagram Blog", url="https://about.instagram.com/blog/feed"),
        FeedSource(name="TikTok Newsroom", url="https://newsroom.tiktok.com/en-us/feed"),
    ])
    snippet_chars: int = Field(5000, gt=0)
    expiry_days: int = Field(7, gt=0)


class LearningSettings(BaseModel):
    """Parameters of the learning loop over finished strategies."""
    batch_size: int = Field(10, gt=0)
    lookback_hours: int = Field(24, gt=0)
    global_confidence_threshold: float = Field(0.8, ge=0.0, le=1.0)
    global_roas_threshold: float = Field(3.0, gt=0)


class ScheduleSettings(BaseModel):
    """Interval, in minutes, between passes of each job."""
    worker_minutes: int = Field(15, gt=0)
    execution_minutes: int = Field(15, gt=0)
    intelligence_minutes: int = Field(60, gt=0)
    optimization_minutes: int = Field(360, gt=0)
    learning_minutes: int = Field(1440, gt=0)


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------

class AdRoomSettings(BaseModel):
    """Complete AdRoom settings, as loaded from adroom.yaml."""
    environment: str = "development"
    llm: LLMSettings = Field(default_factory=LLMSettings)
    optimization: OptimizationSettings = Field(default_factory=OptimizationSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    intelligence: IntelligenceSettings = Field(default_factory=IntelligenceSettings)
    learning: LearningSettings = Field(default_factory=LearningSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in {"development", "staging", "production", "test"}:
            raise ValueError(
                "environment must be one of development, staging, production, test"
            )
        return v
