"""Decision Assist 적응형 throttle

최근 제안 이력(최신순)만 보고 판단하는 순수 함수.
- reject burst: 30분 내 rejected 3건 이상 → 마지막 신호 + 20분
- quick revert burst: 60분 내 "적용 후 10분 안에 rejected" 2건 이상 → 마지막 신호 + 45분
- 둘 다 해당하면 quick revert 우선
- 마지막 부정 신호 이후 accepted 2건 이상이면 무조건 해제
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from decision_assist.core.constants import ALLOWED_SURFACES, AiSuggestionStatus
from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.utils.datetime_utils import ensure_utc, parse_iso_datetime

REJECT_WINDOW = timedelta(minutes=30)
REJECT_THRESHOLD = 3
REJECT_THROTTLE = timedelta(minutes=20)

QUICK_REVERT_WINDOW = timedelta(minutes=10)
QUICK_REVERT_LOOKBACK = timedelta(minutes=60)
QUICK_REVERT_THRESHOLD = 2
QUICK_REVERT_THROTTLE = timedelta(minutes=45)

RECOVERY_ACCEPT_THRESHOLD = 2
MAX_RECORDS = 120

ThrottleReason = Literal["reject_burst", "quick_revert_burst"]


@dataclass(frozen=True)
class ThrottleResult:
    throttled: bool
    reason: ThrottleReason | None = None
    throttle_until: datetime | None = None


NOT_THROTTLED = ThrottleResult(throttled=False)


def _signal_time(record: AiSuggestion) -> datetime:
    """피드백 시각 우선, 없으면 updated_at → created_at"""
    feedback_at = parse_iso_datetime((record.feedback or {}).get("updatedAt"))
    if feedback_at:
        return feedback_at
    return ensure_utc(record.updated_at or record.created_at)


def _is_quick_revert(record: AiSuggestion, signal_at: datetime) -> bool:
    if record.status != AiSuggestionStatus.REJECTED or record.applied_at is None:
        return False
    delta = signal_at - ensure_utc(record.applied_at)
    return timedelta(0) <= delta <= QUICK_REVERT_WINDOW


def evaluate_decision_assist_throttle(
    records: Sequence[AiSuggestion], surface: str, now: datetime
) -> ThrottleResult:
    """surface별 생성 억제 여부 판단"""
    now = ensure_utc(now)
    relevant: list[tuple[AiSuggestion, datetime]] = []
    for record in records[:MAX_RECORDS]:
        record_surface = (record.input or {}).get("surface")
        if record_surface not in ALLOWED_SURFACES or record_surface != surface:
            continue
        signal_at = _signal_time(record)
        if signal_at <= now:
            relevant.append((record, signal_at))

    recent_rejects = [
        signal_at
        for record, signal_at in relevant
        if record.status == AiSuggestionStatus.REJECTED and now - signal_at <= REJECT_WINDOW
    ]
    quick_reverts = [
        signal_at
        for record, signal_at in relevant
        if now - signal_at <= QUICK_REVERT_LOOKBACK and _is_quick_revert(record, signal_at)
    ]

    latest_reject_at = max(recent_rejects, default=None)
    latest_quick_revert_at = max(quick_reverts, default=None)
    negatives = [at for at in (latest_reject_at, latest_quick_revert_at) if at is not None]
    latest_negative_at = max(negatives, default=None)

    # 단일 타임라인 기준: 가장 최근 부정 신호 이후의 accepted만 회복으로 인정
    if latest_negative_at is not None:
        recovery_accepts = sum(
            1
            for record, signal_at in relevant
            if record.status == AiSuggestionStatus.ACCEPTED and latest_negative_at < signal_at <= now
        )
        if recovery_accepts >= RECOVERY_ACCEPT_THRESHOLD:
            return NOT_THROTTLED

    if len(quick_reverts) >= QUICK_REVERT_THRESHOLD:
        throttle_until = latest_quick_revert_at + QUICK_REVERT_THROTTLE
        return ThrottleResult(
            throttled=throttle_until > now,
            reason="quick_revert_burst",
            throttle_until=throttle_until,
        )

    if len(recent_rejects) >= REJECT_THRESHOLD:
        throttle_until = latest_reject_at + REJECT_THROTTLE
        return ThrottleResult(
            throttled=throttle_until > now,
            reason="reject_burst",
            throttle_until=throttle_until,
        )

    return NOT_THROTTLED
