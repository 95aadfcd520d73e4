"""적응형 throttle 단위 테스트"""

from datetime import datetime, timedelta, timezone

from decision_assist.core.constants import AiSuggestionStatus, AiSuggestionType
from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.services.decision_assist_throttle import evaluate_decision_assist_throttle
from decision_assist.utils.datetime_utils import to_iso

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _record(status, minutes_ago, surface="task_drawer", applied_minutes_ago=None, use_feedback=True):
    signal_at = NOW - timedelta(minutes=minutes_ago)
    return AiSuggestion(
        id=f"rec-{status}-{minutes_ago}",
        user_id="user-1",
        type=AiSuggestionType.TASK_CRITIC,
        status=status,
        input={"surface": surface, "todoId": "t1"},
        output={},
        feedback={"updatedAt": to_iso(signal_at)} if use_feedback else None,
        applied_at=NOW - timedelta(minutes=applied_minutes_ago) if applied_minutes_ago is not None else None,
        created_at=NOW - timedelta(minutes=minutes_ago + 1),
        updated_at=signal_at,
    )


def _rejected(minutes_ago, **kwargs):
    return _record(AiSuggestionStatus.REJECTED, minutes_ago, **kwargs)


def _accepted(minutes_ago, **kwargs):
    return _record(AiSuggestionStatus.ACCEPTED, minutes_ago, **kwargs)


class TestRejectBurst:
    def test_three_rejects_in_30_minutes_throttles(self):
        records = [_rejected(2), _rejected(10), _rejected(20)]

        result = evaluate_decision_assist_throttle(records, "task_drawer", NOW)

        assert result.throttled is True
        assert result.reason == "reject_burst"
        assert result.throttle_until == NOW - timedelta(minutes=2) + timedelta(minutes=20)

    def test_two_rejects_do_not_throttle(self):
        result = evaluate_decision_assist_throttle([_rejected(2), _rejected(10)], "task_drawer", NOW)

        assert result.throttled is False
        assert result.reason is None
        assert result.throttle_until is None

    def test_rejects_outside_window_ignored(self):
        records = [_rejected(2), _rejected(10), _rejected(31)]
        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).throttled is False

    def test_expired_throttle_keeps_reason(self):
        records = [_rejected(21), _rejected(25), _rejected(29)]

        result = evaluate_decision_assist_throttle(records, "task_drawer", NOW)

        assert result.throttled is False
        assert result.reason == "reject_burst"
        assert result.throttle_until < NOW

    def test_other_surface_is_independent(self):
        records = [_rejected(2, surface="on_create"), _rejected(3, surface="on_create"), _rejected(4, surface="on_create")]

        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).throttled is False
        assert evaluate_decision_assist_throttle(records, "on_create", NOW).throttled is True

    def test_future_signals_ignored(self):
        records = [_rejected(-5), _rejected(2), _rejected(3)]
        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).throttled is False

    def test_falls_back_to_updated_at_without_feedback(self):
        records = [_rejected(1, use_feedback=False), _rejected(2, use_feedback=False), _rejected(3, use_feedback=False)]
        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).reason == "reject_burst"


class TestQuickRevertBurst:
    def test_two_quick_reverts_throttle(self):
        records = [
            _rejected(5, applied_minutes_ago=8),
            _rejected(40, applied_minutes_ago=45),
        ]

        result = evaluate_decision_assist_throttle(records, "task_drawer", NOW)

        assert result.throttled is True
        assert result.reason == "quick_revert_burst"
        assert result.throttle_until == NOW - timedelta(minutes=5) + timedelta(minutes=45)

    def test_slow_revert_is_not_quick(self):
        records = [
            _rejected(5, applied_minutes_ago=8),
            _rejected(40, applied_minutes_ago=55),
        ]
        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).throttled is False

    def test_quick_revert_wins_over_reject_burst(self):
        records = [
            _rejected(1),
            _rejected(3, applied_minutes_ago=6),
            _rejected(4, applied_minutes_ago=7),
        ]

        result = evaluate_decision_assist_throttle(records, "task_drawer", NOW)

        assert result.reason == "quick_revert_burst"
        assert result.throttle_until == NOW - timedelta(minutes=3) + timedelta(minutes=45)


class TestRecovery:
    def test_two_accepts_after_latest_negative_lift_throttle(self):
        records = [_accepted(1), _accepted(2), _rejected(5), _rejected(6), _rejected(7)]

        result = evaluate_decision_assist_throttle(records, "task_drawer", NOW)

        assert result.throttled is False
        assert result.reason is None

    def test_accepts_before_latest_negative_do_not_count(self):
        records = [_rejected(1), _accepted(2), _accepted(3), _rejected(5), _rejected(7)]

        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).throttled is True

    def test_single_accept_is_not_enough(self):
        records = [_accepted(1), _rejected(5), _rejected(6), _rejected(7)]

        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).throttled is True

    def test_recovery_overrides_quick_revert(self):
        records = [
            _accepted(1),
            _accepted(2),
            _rejected(3, applied_minutes_ago=6),
            _rejected(4, applied_minutes_ago=7),
        ]

        assert evaluate_decision_assist_throttle(records, "task_drawer", NOW).throttled is False
