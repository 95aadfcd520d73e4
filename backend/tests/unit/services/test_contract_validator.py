"""Decision Assist envelope 계약 검증 단위 테스트"""

import copy

import pytest

from decision_assist.core.errors import ContractValidationError
from decision_assist.services.contract_validator import validate_decision_assist_output


def _envelope(surface="task_drawer", suggestions=None, **extra):
    body = {
        "requestId": "req-1",
        "surface": surface,
        "must_abstain": False,
        "suggestions": suggestions if suggestions is not None else [],
    }
    body.update(extra)
    return body


def _suggestion(suggestion_type, payload, confidence=0.8, rationale="Because it helps"):
    return {
        "type": suggestion_type,
        "confidence": confidence,
        "rationale": rationale,
        "payload": payload,
    }


def _field_of(data) -> str:
    with pytest.raises(ContractValidationError) as exc_info:
        validate_decision_assist_output(data)
    return exc_info.value.field


class TestEnvelope:
    """envelope 최상위 필드"""

    def test_valid_envelope(self):
        result = validate_decision_assist_output(
            _envelope(
                suggestions=[
                    _suggestion("rewrite_title", {"title": "  Write launch email  "}),
                    _suggestion("set_priority", {"priority": "low"}),
                ],
                modelInfo={"provider": "test"},
            )
        )

        assert result.request_id == "req-1"
        assert result.surface == "task_drawer"
        assert result.must_abstain is False
        assert [item.type for item in result.suggestions] == ["rewrite_title", "set_priority"]
        assert result.model_info == {"provider": "test"}
        assert result.plan_preview is None

    def test_request_id_is_trimmed(self):
        result = validate_decision_assist_output(_envelope(requestId="  req-2  "))
        assert result.request_id == "req-2"

    @pytest.mark.parametrize(
        "body, field",
        [
            ("not an object", "body"),
            (_envelope(requestId=""), "requestId"),
            (_envelope(requestId="x" * 121), "requestId"),
            (_envelope(surface="sidebar"), "surface"),
            (_envelope(must_abstain="false"), "must_abstain"),
            (_envelope(suggestions={"type": "set_priority"}), "suggestions"),
            (_envelope(modelInfo="gpt"), "modelInfo"),
        ],
    )
    def test_top_level_violations(self, body, field):
        assert _field_of(body) == field

    def test_revalidating_output_is_noop(self):
        """검증 결과를 다시 검증해도 같은 결과"""
        raw = _envelope(
            surface="today_plan",
            suggestions=[_suggestion("set_priority", {"todoId": "t1", "priority": "high"})],
            planPreview={
                "topN": 3,
                "items": [{"todoId": "t1", "rank": 1, "timeEstimateMin": 30, "rationale": "Due today"}],
            },
        )
        first = validate_decision_assist_output(raw)
        second = validate_decision_assist_output(copy.deepcopy(first.to_payload()))

        assert second == first


class TestSuggestionTypes:
    """제안 타입/공통 필드"""

    @pytest.mark.parametrize("surface", ["on_create", "task_drawer", "today_plan"])
    @pytest.mark.parametrize("suggestion_type", ["delete_task", "bulk_update", "bulk_delete"])
    def test_destructive_types_always_rejected(self, surface, suggestion_type):
        body = _envelope(surface=surface, suggestions=[_suggestion(suggestion_type, {})])

        with pytest.raises(ContractValidationError) as exc_info:
            validate_decision_assist_output(body)

        assert exc_info.value.field == "suggestion.type"

    def test_unknown_type_rejected(self):
        assert _field_of(_envelope(suggestions=[_suggestion("make_coffee", {})])) == "suggestion.type"

    @pytest.mark.parametrize("confidence", [-0.1, 1.1, "0.5", True, None, float("nan")])
    def test_confidence_must_be_number_in_range(self, confidence):
        body = _envelope(suggestions=[_suggestion("set_priority", {"priority": "low"}, confidence=confidence)])
        assert _field_of(body) == "suggestion.confidence"

    @pytest.mark.parametrize("confidence", [0, 1, 0.5])
    def test_confidence_bounds_inclusive(self, confidence):
        body = _envelope(suggestions=[_suggestion("set_priority", {"priority": "low"}, confidence=confidence)])
        assert validate_decision_assist_output(body).suggestions[0].confidence == confidence

    @pytest.mark.parametrize("rationale", ["", "   ", "x" * 241, 42])
    def test_rationale_rules(self, rationale):
        body = _envelope(suggestions=[_suggestion("set_priority", {"priority": "low"}, rationale=rationale)])
        assert _field_of(body) == "suggestion.rationale"

    def test_payload_must_be_object(self):
        body = _envelope(suggestions=[_suggestion("set_priority", ["low"])])
        assert _field_of(body) == "suggestion.payload"

    def test_single_invalid_suggestion_rejects_whole_envelope(self):
        body = _envelope(
            suggestions=[
                _suggestion("set_priority", {"priority": "low"}),
                _suggestion("set_priority", {"priority": "urgent"}),
            ]
        )
        assert _field_of(body) == "payload.priority"


class TestPayloadValidators:
    """타입별 payload 규칙"""

    @pytest.mark.parametrize(
        "suggestion_type, payload",
        [
            ("set_due_date", {"dueDateISO": "2026-11-02T17:00:00.000Z"}),
            ("set_due_date", {"dueDateISO": "2026-11-02"}),
            ("set_priority", {"priority": "high"}),
            ("set_project", {"projectId": "p1"}),
            ("set_project", {"projectName": "Launch"}),
            ("set_project", {"category": "Work"}),
            ("set_category", {"category": "Personal"}),
            ("rewrite_title", {"title": "Draft launch email"}),
            ("propose_next_action", {"text": "Open the doc"}),
            ("propose_next_action", {"title": "Open the doc"}),
            ("split_subtasks", {"subtasks": [{"title": "One", "order": 1}]}),
            ("ask_clarification", {"question": "Who owns it?"}),
            ("ask_clarification", {"question": "Which?", "choices": ["A", "B"]}),
            ("defer_task", {"strategy": "next_week"}),
        ],
    )
    def test_valid_payloads(self, suggestion_type, payload):
        result = validate_decision_assist_output(_envelope(suggestions=[_suggestion(suggestion_type, payload)]))
        assert result.suggestions[0].type == suggestion_type

    @pytest.mark.parametrize(
        "suggestion_type, payload, field",
        [
            ("set_due_date", {"dueDateISO": "next tuesday"}, "payload.dueDateISO"),
            ("set_due_date", {}, "payload.dueDateISO"),
            ("set_priority", {"priority": "HIGH"}, "payload.priority"),
            ("set_project", {}, "payload"),
            ("set_project", {"projectName": "x" * 51}, "payload.projectName"),
            ("set_project", {"category": "x" * 51}, "payload.category"),
            ("set_category", {"category": " "}, "payload.category"),
            ("set_category", {"category": "x" * 51}, "payload.category"),
            ("rewrite_title", {"title": ""}, "payload.title"),
            ("rewrite_title", {"title": "x" * 201}, "payload.title"),
            ("propose_next_action", {}, "payload"),
            ("propose_next_action", {"text": "x" * 201}, "payload.text"),
            ("split_subtasks", {"subtasks": []}, "payload.subtasks"),
            ("split_subtasks", {"subtasks": "a,b"}, "payload.subtasks"),
            (
                "split_subtasks",
                {"subtasks": [{"title": f"S{i}", "order": i} for i in range(1, 7)]},
                "payload.subtasks",
            ),
            ("split_subtasks", {"subtasks": [{"title": "One", "order": 0}]}, "payload.subtasks[0].order"),
            ("split_subtasks", {"subtasks": [{"title": "One", "order": 1.5}]}, "payload.subtasks[0].order"),
            ("split_subtasks", {"subtasks": [{"order": 1}]}, "payload.subtasks[0].title"),
            ("ask_clarification", {"question": ""}, "payload.question"),
            ("ask_clarification", {"question": "Q?", "choices": ["only"]}, "payload.choices"),
            ("ask_clarification", {"question": "Q?", "choices": ["a", "x" * 81]}, "payload.choices[1]"),
            ("defer_task", {"strategy": "tomorrow"}, "payload.strategy"),
        ],
    )
    def test_invalid_payloads(self, suggestion_type, payload, field):
        assert _field_of(_envelope(suggestions=[_suggestion(suggestion_type, payload)])) == field

    def test_at_most_one_clarification(self):
        body = _envelope(
            suggestions=[
                _suggestion("ask_clarification", {"question": "First?"}),
                _suggestion("ask_clarification", {"question": "Second?"}),
            ]
        )
        with pytest.raises(ContractValidationError) as exc_info:
            validate_decision_assist_output(body)

        assert exc_info.value.field == "suggestions"
        assert exc_info.value.to_dict()["message"] == "At most one ask_clarification suggestion is allowed"


class TestPlanPreview:
    """planPreview 규칙"""

    def _plan(self, **overrides):
        plan = {
            "topN": 3,
            "items": [
                {"todoId": "t1", "rank": 1, "timeEstimateMin": 30, "rationale": "Due today"},
                {"todoId": " t2 ", "rank": 2, "timeEstimateMin": 0, "rationale": "Next"},
            ],
        }
        plan.update(overrides)
        return plan

    def test_valid_plan_preview(self):
        result = validate_decision_assist_output(_envelope(surface="today_plan", planPreview=self._plan()))

        assert result.plan_preview.top_n == 3
        assert result.plan_preview.todo_ids == {"t1", "t2"}
        # 0 이하 timeEstimateMin은 버림
        assert result.plan_preview.items[1].time_estimate_min is None

    @pytest.mark.parametrize("surface", ["on_create", "task_drawer"])
    def test_plan_preview_only_for_today_plan(self, surface):
        assert _field_of(_envelope(surface=surface, planPreview=self._plan())) == "planPreview"

    def test_top_n_must_be_3_or_5(self):
        assert _field_of(_envelope(surface="today_plan", planPreview=self._plan(topN=4))) == "planPreview.topN"

    def test_items_cannot_exceed_top_n(self):
        items = [{"todoId": f"t{i}", "rank": i, "rationale": "r"} for i in range(1, 5)]
        body = _envelope(surface="today_plan", planPreview=self._plan(items=items))
        assert _field_of(body) == "planPreview.items"

    def test_rank_must_be_positive_integer(self):
        items = [{"todoId": "t1", "rank": 0, "rationale": "r"}]
        body = _envelope(surface="today_plan", planPreview=self._plan(items=items))
        assert _field_of(body) == "planPreview.items[0].rank"

    def test_item_rationale_required(self):
        items = [{"todoId": "t1", "rank": 1, "rationale": ""}]
        body = _envelope(surface="today_plan", planPreview=self._plan(items=items))
        assert _field_of(body) == "planPreview.items[0].rationale"
