"""AI 사용량/인사이트 스키마"""

from pydantic import BaseModel, Field


class AiUsageResponse(BaseModel):
    """일일 사용량 (UTC 자정 기준)"""

    plan: str
    used: int
    remaining: int
    limit: int
    reset_at: str = Field(serialization_alias="resetAt")

    class Config:
        populate_by_name = True


class ReasonCount(BaseModel):
    reason: str
    count: int


class FeedbackSummary(BaseModel):
    """기간 내 accepted/rejected 집계"""

    accepted_count: int = Field(default=0, serialization_alias="acceptedCount")
    rejected_count: int = Field(default=0, serialization_alias="rejectedCount")
    accepted_reasons: list[ReasonCount] = Field(
        default_factory=list, serialization_alias="acceptedReasons"
    )
    rejected_reasons: list[ReasonCount] = Field(
        default_factory=list, serialization_alias="rejectedReasons"
    )

    class Config:
        populate_by_name = True


class FeedbackContext(BaseModel):
    """생성 시 반영할 최근 피드백 신호"""

    rejection_signals: list[str] = Field(default_factory=list)
    acceptance_signals: list[str] = Field(default_factory=list)


class FeedbackSummaryResponse(BaseModel):
    """피드백 요약 응답"""

    days: int
    reason_limit: int = Field(serialization_alias="reasonLimit")
    since: str
    accepted_count: int = Field(serialization_alias="acceptedCount")
    rejected_count: int = Field(serialization_alias="rejectedCount")
    total_rated: int = Field(serialization_alias="totalRated")
    accepted_reasons: list[ReasonCount] = Field(serialization_alias="acceptedReasons")
    rejected_reasons: list[ReasonCount] = Field(serialization_alias="rejectedReasons")

    class Config:
        populate_by_name = True


class InsightsResponse(BaseModel):
    """AI 인사이트 응답"""

    period_days: int = Field(serialization_alias="periodDays")
    since: str
    usage_today: AiUsageResponse = Field(serialization_alias="usageToday")
    generated_count: int = Field(serialization_alias="generatedCount")
    rated_count: int = Field(serialization_alias="ratedCount")
    accepted_count: int = Field(serialization_alias="acceptedCount")
    rejected_count: int = Field(serialization_alias="rejectedCount")
    acceptance_rate: int | None = Field(serialization_alias="acceptanceRate")
    top_accepted_reasons: list[ReasonCount] = Field(serialization_alias="topAcceptedReasons")
    top_rejected_reasons: list[ReasonCount] = Field(serialization_alias="topRejectedReasons")
    recommendation: str

    class Config:
        populate_by_name = True
