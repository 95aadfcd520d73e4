"""결정적 제안 생성기 단위 테스트"""

from datetime import timedelta

import pytest

from decision_assist.schemas.ai_planner import CritiqueTaskRequest, PlanFromGoalRequest
from decision_assist.schemas.usage import FeedbackContext
from decision_assist.services.ai_planner_service import (
    CONCRETE_OUTCOME_HINT,
    critique_task_deterministic,
    generate_decision_assist_envelope,
    plan_from_goal_deterministic,
    starts_with_action_verb,
)
from decision_assist.services.contract_validator import validate_decision_assist_output
from decision_assist.utils.datetime_utils import utc_now

TOO_GENERIC = FeedbackContext(rejection_signals=["too generic"])


@pytest.mark.parametrize(
    "title, expected",
    [("Write the report", True), ("  draft plan", True), ("Report", False), ("", False)],
)
def test_starts_with_action_verb(title, expected):
    assert starts_with_action_verb(title) is expected


class TestCritiqueTask:
    def test_well_formed_task_scores_high(self):
        output = critique_task_deterministic(
            CritiqueTaskRequest(
                title="Write quarterly report",
                description="Summarize revenue and churn with charts for the board",
                due_date=utc_now() + timedelta(days=7),
                priority="low",
            )
        )

        assert output.quality_score == 100
        assert output.suggestions == []

    def test_vague_task_is_penalized_and_rewritten(self):
        output = critique_task_deterministic(CritiqueTaskRequest(title="email"))

        assert output.quality_score == 35
        assert output.improved_title == "Complete email"
        assert output.improved_description.startswith("Definition of done")
        assert len(output.suggestions) == 5

    def test_due_soon_without_high_priority(self):
        output = critique_task_deterministic(
            CritiqueTaskRequest(
                title="Write quarterly report",
                description="Summarize revenue and churn with charts for the board",
                due_date=utc_now() + timedelta(hours=6),
                priority="low",
            )
        )

        assert output.quality_score == 90
        assert "due soon" in output.suggestions[0]

    def test_generic_feedback_demands_concrete_outcome(self):
        output = critique_task_deterministic(CritiqueTaskRequest(title="email"), TOO_GENERIC)

        assert output.suggestions[0] == CONCRETE_OUTCOME_HINT
        assert "owner" in output.improved_description
        assert "measurable" in output.improved_description


class TestPlanFromGoal:
    def test_respects_max_tasks(self):
        output = plan_from_goal_deterministic(PlanFromGoalRequest(goal=" Launch beta ", max_tasks=3))

        assert output.goal == "Launch beta"
        assert len(output.tasks) == 3
        assert output.tasks[0].title == "Define scope for: Launch beta"
        assert all(task.due_date is None for task in output.tasks)

    def test_due_dates_spread_until_target(self):
        target = utc_now() + timedelta(days=10)

        output = plan_from_goal_deterministic(PlanFromGoalRequest(goal="Launch beta", target_date=target))

        due_dates = [task.due_date for task in output.tasks]
        assert len(due_dates) == 5
        assert due_dates == sorted(due_dates)
        assert abs((due_dates[-1] - target).total_seconds()) < 1

    def test_past_target_date_leaves_due_dates_empty(self):
        output = plan_from_goal_deterministic(
            PlanFromGoalRequest(goal="Launch beta", target_date=utc_now() - timedelta(days=1))
        )
        assert all(task.due_date is None for task in output.tasks)

    def test_generic_feedback_adds_ownership_language(self):
        output = plan_from_goal_deterministic(PlanFromGoalRequest(goal="Launch beta"), TOO_GENERIC)

        assert "specific steps" in output.summary
        assert all("owner, metric, and date" in task.description for task in output.tasks)


class TestDecisionAssistEnvelope:
    def test_task_drawer_envelope_passes_contract(self, mock_todo_repo):
        todo = mock_todo_repo.add_todo("user-1", "report", todo_id="t1")

        envelope = generate_decision_assist_envelope("task_drawer", todo=todo)
        validated = validate_decision_assist_output(envelope)

        types = [item.type for item in validated.suggestions]
        assert validated.must_abstain is False
        assert types == ["rewrite_title", "set_due_date", "propose_next_action", "split_subtasks"]
        assert envelope["suggestions"][0]["payload"]["title"] == "Complete report"

    def test_on_create_only_has_create_time_types(self, mock_todo_repo):
        todo = mock_todo_repo.add_todo("user-1", "report", todo_id="t1")

        envelope = generate_decision_assist_envelope("on_create", todo=todo)

        assert {item["type"] for item in envelope["suggestions"]} <= {"rewrite_title", "set_due_date", "set_priority"}

    def test_generic_feedback_changes_wording(self, mock_todo_repo):
        todo = mock_todo_repo.add_todo("user-1", "report", todo_id="t1")

        envelope = generate_decision_assist_envelope("task_drawer", todo=todo, context=TOO_GENERIC)
        validate_decision_assist_output(envelope)

        by_type = {item["type"]: item for item in envelope["suggestions"]}
        assert by_type["rewrite_title"]["rationale"] == CONCRETE_OUTCOME_HINT
        assert "owner" in by_type["propose_next_action"]["payload"]["text"]
        assert "ask_clarification" in by_type

    def test_without_todo_abstains(self):
        envelope = generate_decision_assist_envelope("task_drawer")

        assert envelope["must_abstain"] is True
        assert envelope["suggestions"] == []

    def test_today_plan_ranks_by_priority_then_due_date(self, mock_todo_repo):
        now = utc_now()
        candidates = [
            mock_todo_repo.add_todo("user-1", "Low one", todo_id="low", priority="low"),
            mock_todo_repo.add_todo("user-1", "High later", todo_id="h2", priority="high", due_date=now + timedelta(days=5)),
            mock_todo_repo.add_todo("user-1", "High sooner", todo_id="h1", priority="high", due_date=now + timedelta(days=2)),
            mock_todo_repo.add_todo("user-1", "Done", todo_id="done", priority="high", completed=True),
            mock_todo_repo.add_todo("user-1", "Medium", todo_id="m1"),
        ]

        envelope = generate_decision_assist_envelope("today_plan", candidates=candidates, top_n=3)
        validated = validate_decision_assist_output(envelope)

        assert [item.todo_id for item in validated.plan_preview.items] == ["h1", "h2", "m1"]
        assert [item.rank for item in validated.plan_preview.items] == [1, 2, 3]
        preview_ids = validated.plan_preview.todo_ids
        assert all(item.payload["todoId"] in preview_ids for item in validated.suggestions)

    def test_today_plan_without_candidates_abstains(self):
        envelope = generate_decision_assist_envelope("today_plan", candidates=[], top_n=5)
        validated = validate_decision_assist_output(envelope)

        assert validated.must_abstain is True
        assert validated.plan_preview.items == []
        assert validated.plan_preview.top_n == 5

    def test_confidence_override(self, mock_todo_repo):
        todo = mock_todo_repo.add_todo("user-1", "report", todo_id="t1")

        envelope = generate_decision_assist_envelope("task_drawer", todo=todo, confidence=0.3)

        assert {item["confidence"] for item in envelope["suggestions"]} == {0.3}
