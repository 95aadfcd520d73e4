"""envelope 정규화 단위 테스트"""

from datetime import datetime, timezone

import pytest

from decision_assist.core.constants import AiSuggestionStatus, AiSuggestionType
from decision_assist.core.errors import ContractValidationError
from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.services.normalization_service import (
    build_safe_empty_envelope,
    build_throttle_abstain_envelope,
    find_latest_pending_today_plan,
    find_latest_pending_todo_bound,
    normalize_today_plan_envelope,
    normalize_todo_bound_envelope,
    parse_plan_tasks,
)


def _suggestion(suggestion_type, payload, **extra):
    item = {"type": suggestion_type, "confidence": 0.7, "rationale": "Helpful", "payload": payload}
    item.update(extra)
    return item


def _todo_bound_raw(surface="task_drawer"):
    return {
        "requestId": "req-1",
        "surface": surface,
        "must_abstain": False,
        "suggestions": [
            _suggestion("rewrite_title", {"title": "Draft launch email"}),
            _suggestion("propose_next_action", {"text": "Open the doc"}, suggestionId="custom-id"),
            _suggestion("split_subtasks", {"subtasks": [{"title": "One", "order": 1}]}),
            _suggestion("set_priority", {"priority": "high", "todoId": "other"}, requiresConfirmation=True),
            _suggestion("defer_task", {"strategy": "someday"}, suggestionId="   "),
        ],
    }


def _today_plan_raw():
    return {
        "requestId": "req-plan",
        "surface": "today_plan",
        "must_abstain": False,
        "planPreview": {
            "topN": 3,
            "items": [
                {"todoId": "t1", "rank": 1, "rationale": "Due today"},
                {"todoId": "t2", "rank": 2, "rationale": "High priority"},
                {"rank": 3, "rationale": "Unbound"},
            ],
        },
        "suggestions": [
            _suggestion("set_priority", {"todoId": "t1", "priority": "high"}),
            _suggestion("set_due_date", {"todoId": "t-hidden", "dueDateISO": "2026-11-01"}),
            _suggestion("rewrite_title", {"todoId": "t2", "title": "Sneaky rename"}),
            _suggestion("propose_next_action", {"todoId": " t2 ", "text": "Start small"}),
            _suggestion("split_subtasks", {"subtasks": [{"title": "One", "order": 1}]}),
        ],
    }


def _record(**overrides):
    now = datetime.now(timezone.utc)
    values = {
        "id": "rec-1",
        "user_id": "user-1",
        "type": AiSuggestionType.TASK_CRITIC,
        "status": AiSuggestionStatus.PENDING,
        "input": {"surface": "task_drawer", "todoId": "t1"},
        "output": {},
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return AiSuggestion(**values)


class TestNormalizeTodoBound:
    def test_task_drawer_keeps_full_todo_bound_set(self):
        envelope = normalize_todo_bound_envelope(_todo_bound_raw(), "t1", "task_drawer")

        assert [item.type for item in envelope.suggestions] == [
            "rewrite_title",
            "propose_next_action",
            "split_subtasks",
            "set_priority",
            "defer_task",
        ]

    def test_on_create_keeps_create_time_types_only(self):
        envelope = normalize_todo_bound_envelope(_todo_bound_raw("on_create"), "t1", "on_create")

        types = [item.type for item in envelope.suggestions]
        assert "propose_next_action" not in types
        assert "split_subtasks" not in types
        assert "defer_task" not in types
        assert types == ["rewrite_title", "set_priority"]

    def test_suggestion_ids_use_original_index(self):
        envelope = normalize_todo_bound_envelope(_todo_bound_raw("on_create"), "t1", "on_create")

        # 공백 suggestionId는 무시하고 "<surface>-<index+1>"
        assert [item.suggestion_id for item in envelope.suggestions] == [
            "on_create-1",
            "on_create-4",
        ]

    def test_blank_suggestion_id_falls_back_to_index(self):
        envelope = normalize_todo_bound_envelope(_todo_bound_raw(), "t1", "task_drawer")

        assert envelope.suggestions[-1].type == "defer_task"
        assert envelope.suggestions[-1].suggestion_id == "task_drawer-5"

    def test_caller_supplied_suggestion_id_kept(self):
        envelope = normalize_todo_bound_envelope(_todo_bound_raw(), "t1", "task_drawer")
        assert envelope.find_suggestion("custom-id").type == "propose_next_action"

    def test_todo_id_injected_unless_present(self):
        envelope = normalize_todo_bound_envelope(_todo_bound_raw(), "t1", "task_drawer")

        assert envelope.suggestions[0].payload["todoId"] == "t1"
        assert envelope.find_suggestion("task_drawer-4").payload["todoId"] == "other"

    def test_requires_confirmation_only_when_strictly_true(self):
        envelope = normalize_todo_bound_envelope(_todo_bound_raw(), "t1", "task_drawer")

        assert envelope.find_suggestion("task_drawer-4").requires_confirmation is True
        assert envelope.find_suggestion("task_drawer-1").requires_confirmation is False

    def test_surface_mismatch_is_error(self):
        with pytest.raises(ValueError, match="SURFACE_MISMATCH"):
            normalize_todo_bound_envelope(_todo_bound_raw("on_create"), "t1", "task_drawer")

    def test_today_plan_is_not_todo_bound(self):
        with pytest.raises(ValueError, match="INVALID_SURFACE"):
            normalize_todo_bound_envelope(_today_plan_raw(), "t1", "today_plan")

    def test_contract_violation_propagates(self):
        raw = _todo_bound_raw()
        raw["suggestions"].append(_suggestion("delete_task", {}))

        with pytest.raises(ContractValidationError):
            normalize_todo_bound_envelope(raw, "t1", "task_drawer")


class TestNormalizeTodayPlan:
    def test_out_of_preview_and_disallowed_types_dropped(self):
        envelope = normalize_today_plan_envelope(_today_plan_raw())

        assert [(item.type, item.todo_id) for item in envelope.suggestions] == [
            ("set_priority", "t1"),
            ("propose_next_action", "t2"),
        ]
        assert [item.suggestion_id for item in envelope.suggestions] == ["today_plan-1", "today_plan-4"]

    def test_preview_is_kept(self):
        envelope = normalize_today_plan_envelope(_today_plan_raw())

        assert envelope.plan_preview.top_n == 3
        assert envelope.plan_preview.todo_ids == {"t1", "t2"}

    def test_without_preview_everything_is_dropped(self):
        raw = _today_plan_raw()
        del raw["planPreview"]

        assert normalize_today_plan_envelope(raw).suggestions == []

    def test_surface_mismatch_is_error(self):
        with pytest.raises(ValueError, match="SURFACE_MISMATCH"):
            normalize_today_plan_envelope(_todo_bound_raw())


class TestParsePlanTasks:
    def test_parse_plan_tasks(self):
        tasks = parse_plan_tasks(
            {
                "tasks": [
                    {
                        "title": "  Define scope  ",
                        "description": " Clarify ",
                        "priority": "high",
                        "dueDate": "2026-11-01T09:00:00.000Z",
                        "projectName": "Launch",
                        "subtasks": ["List stakeholders", {"title": "Write goals"}, "  "],
                    },
                    {"title": "Review", "priority": "urgent", "dueDate": "someday"},
                    {"title": "   "},
                    "not a task",
                ]
            }
        )

        assert len(tasks) == 2
        first, second = tasks
        assert first.title == "Define scope"
        assert first.description == "Clarify"
        assert first.priority == "high"
        assert first.due_date == datetime(2026, 11, 1, 9, tzinfo=timezone.utc)
        assert first.category == "AI Plan"
        assert first.project_name == "Launch"
        assert first.subtasks == ["List stakeholders", "Write goals"]
        assert second.priority == "medium"
        assert second.due_date is None
        assert second.project_name is None

    @pytest.mark.parametrize("output", [{}, {"tasks": "none"}, {"tasks": []}])
    def test_no_tasks(self, output):
        assert parse_plan_tasks(output) == []


class TestAbstainEnvelopes:
    def test_throttle_abstain_for_today_plan(self):
        envelope = build_throttle_abstain_envelope("today_plan", 5)

        assert envelope.must_abstain is True
        assert envelope.suggestions == []
        assert envelope.plan_preview.top_n == 5
        assert envelope.plan_preview.items == []
        assert envelope.request_id.startswith("throttle-today_plan-")

    def test_throttle_abstain_for_todo_bound(self):
        envelope = build_throttle_abstain_envelope("on_create")

        assert envelope.plan_preview is None
        assert "planPreview" not in envelope.to_payload()

    def test_safe_empty_envelope(self):
        envelope = build_safe_empty_envelope("rec-9", "today_plan")

        assert envelope.request_id == "safe-empty-rec-9"
        assert envelope.must_abstain is True
        assert envelope.plan_preview.top_n == 3


class TestLatestPending:
    def test_todo_bound_lookup_matches_surface_and_todo(self):
        records = [
            _record(id="accepted", status=AiSuggestionStatus.ACCEPTED),
            _record(id="other-todo", input={"surface": "task_drawer", "todoId": "t2"}),
            _record(id="other-surface", input={"surface": "on_create", "todoId": "t1"}),
            _record(id="match"),
            _record(id="older-match"),
        ]

        assert find_latest_pending_todo_bound(records, "t1", "task_drawer").id == "match"
        assert find_latest_pending_todo_bound(records, "t3", "task_drawer") is None

    def test_today_plan_lookup(self):
        records = [
            _record(id="critic"),
            _record(id="goal-plan", type=AiSuggestionType.PLAN_FROM_GOAL, input={"goal": "Ship"}),
            _record(id="plan", type=AiSuggestionType.PLAN_FROM_GOAL, input={"surface": "today_plan"}),
        ]

        assert find_latest_pending_today_plan(records).id == "plan"
