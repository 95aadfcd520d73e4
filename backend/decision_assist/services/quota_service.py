"""AI 사용량(일일 한도) 서비스

사용량은 저장하지 않고 매 요청마다 계산한다.
used = 오늘(UTC 자정 이후) 생성된 제안 레코드 수
"""

import logging
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from decision_assist.core.constants import USER_PLANS
from decision_assist.repositories.interface import IAiSuggestionRepository
from decision_assist.schemas.usage import AiUsageResponse, FeedbackContext
from decision_assist.utils.datetime_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

DAY = timedelta(milliseconds=86_400_000)
FEEDBACK_CONTEXT_DAYS = 30
FEEDBACK_CONTEXT_REASON_LIMIT = 3
SPECIFICITY_SIGNALS = ("generic", "vague", "specific")


def get_current_utc_day_start(now: datetime | None = None) -> datetime:
    """현재 UTC 날짜의 00:00:00.000"""
    now = (now or utc_now()).astimezone(timezone.utc)
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


def get_next_utc_day_start(now: datetime | None = None) -> datetime:
    """다음 UTC 자정 (오늘 시작 + 정확히 86,400,000ms)"""
    return get_current_utc_day_start(now) + DAY


def needs_specificity(signals: list[str]) -> bool:
    """거절 사유에 '구체성 부족' 신호가 있는지"""
    return any(marker in signal.lower() for signal in signals for marker in SPECIFICITY_SIGNALS)


def build_insights_recommendation(
    plan: str,
    usage_remaining: int,
    usage_limit: int,
    generated_count: int,
    top_rejected_reason: str | None = None,
) -> str:
    """인사이트 추천 문구 (첫 번째로 일치하는 조건 하나만)"""
    usage_threshold = max(1, math.ceil(usage_limit * 0.1))
    if plan == "free" and usage_remaining <= usage_threshold:
        return (
            "You are near your daily AI cap. Upgrade to Pro for higher limits "
            "and uninterrupted planning."
        )
    if needs_specificity([top_rejected_reason or ""]):
        return (
            "Recent rejections suggest outputs are too generic. Add constraints like "
            "owner, metric, and due date to get stronger suggestions."
        )
    if generated_count < 3:
        return (
            "Generate a few more AI suggestions this week to improve personalization "
            "and quality tracking."
        )
    return "Keep rating suggestions after each run to continuously improve output quality."


class QuotaService:
    """일일 AI 제안 한도 서비스"""

    def __init__(
        self,
        suggestion_repo: IAiSuggestionRepository,
        limits_by_plan: dict[str, int],
        resolve_user_plan: Callable[[str], Awaitable[str | None]] | None = None,
    ):
        self.suggestion_repo = suggestion_repo
        self.limits_by_plan = limits_by_plan
        self.resolve_user_plan = resolve_user_plan

    async def get_user_plan(self, user_id: str) -> str:
        """사용자 플랜 (해석 불가 시 free)"""
        if not self.resolve_user_plan:
            return "free"
        plan = await self.resolve_user_plan(user_id)
        return plan if plan in USER_PLANS else "free"

    async def get_usage(self, user_id: str) -> AiUsageResponse:
        plan = await self.get_user_plan(user_id)
        daily_limit = self.limits_by_plan.get(plan) or self.limits_by_plan["free"]
        now = utc_now()
        used = await self.suggestion_repo.count_by_user_since(user_id, get_current_utc_day_start(now))
        return AiUsageResponse(
            plan=plan,
            used=used,
            remaining=max(daily_limit - used, 0),
            limit=daily_limit,
            reset_at=to_iso(get_next_utc_day_start(now)),
        )

    async def check_quota(self, user_id: str) -> AiUsageResponse | None:
        """한도 이내면 None, 소진됐으면 현재 사용량 스냅샷"""
        usage = await self.get_usage(user_id)
        if usage.remaining <= 0:
            logger.info(f"[Quota] daily limit reached: user={user_id}, plan={usage.plan}, used={usage.used}")
            return usage
        return None

    async def get_feedback_context(self, user_id: str) -> FeedbackContext:
        """최근 30일 상위 거절/수락 사유"""
        since = utc_now() - timedelta(days=FEEDBACK_CONTEXT_DAYS)
        summary = await self.suggestion_repo.summarize_feedback_by_user_since(
            user_id, since, FEEDBACK_CONTEXT_REASON_LIMIT
        )
        return FeedbackContext(
            rejection_signals=[item.reason for item in summary.rejected_reasons],
            acceptance_signals=[item.reason for item in summary.accepted_reasons],
        )
