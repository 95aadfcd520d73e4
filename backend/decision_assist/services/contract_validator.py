"""Decision Assist 제안 envelope 계약 검증

모델/생성기에서 온 원본 dict를 닫힌 스키마로 검증한다.
위반 시 어떤 필드가 문제인지 담은 ContractValidationError를 던지며,
조용히 값을 보정하지 않는다 (부분 수용 없음).
"""

import math
from collections.abc import Callable
from typing import Any

from decision_assist.core.constants import (
    ALLOWED_DEFER_STRATEGIES,
    ALLOWED_PRIORITIES,
    ALLOWED_SUGGESTION_TYPES,
    ALLOWED_SURFACES,
    ALLOWED_TOP_N,
    MAX_CHOICE_LENGTH,
    MAX_PROJECT_OR_CATEGORY_LENGTH,
    MAX_RATIONALE_LENGTH,
    MAX_REQUEST_ID_LENGTH,
    MAX_SUBTASKS,
    MAX_TEXT_LENGTH,
    TODAY_PLAN_SURFACE,
)
from decision_assist.core.errors import ContractValidationError
from decision_assist.schemas.decision_assist import (
    DecisionAssistOutput,
    DecisionAssistSuggestion,
    PlanPreview,
    PlanPreviewItem,
)
from decision_assist.utils.datetime_utils import parse_iso_datetime

MAX_DUE_DATE_LENGTH = 64
FORBIDDEN_TYPE_MARKERS = ("delete", "bulk")


# ===========================================
# 기본 검증 헬퍼
# ===========================================


def _assert_object(value: Any, field: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ContractValidationError(field, f"{field} must be an object")
    return value


def _assert_string(value: Any, field: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    if not isinstance(value, str):
        raise ContractValidationError(field, f"{field} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ContractValidationError(field, f"{field} cannot be empty")
    if len(normalized) > max_length:
        raise ContractValidationError(field, f"{field} cannot exceed {max_length} characters")
    return normalized


def _optional_trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_positive_integer(value: Any) -> bool:
    if not _is_number(value):
        return False
    if isinstance(value, float) and not value.is_integer():
        return False
    return value >= 1


def _assert_confidence(value: Any) -> float:
    if not _is_number(value) or math.isnan(value):
        raise ContractValidationError(
            "suggestion.confidence", "suggestion.confidence must be a number"
        )
    if value < 0 or value > 1:
        raise ContractValidationError(
            "suggestion.confidence", "suggestion.confidence must be between 0 and 1"
        )
    return float(value)


# ===========================================
# 타입별 payload 검증기
# ===========================================


def _validate_set_due_date(payload: dict[str, Any]) -> None:
    due_date_iso = _assert_string(payload.get("dueDateISO"), "payload.dueDateISO", MAX_DUE_DATE_LENGTH)
    if parse_iso_datetime(due_date_iso) is None:
        raise ContractValidationError(
            "payload.dueDateISO", "payload.dueDateISO must be a valid ISO date"
        )


def _validate_set_priority(payload: dict[str, Any]) -> None:
    if payload.get("priority") not in ALLOWED_PRIORITIES:
        raise ContractValidationError(
            "payload.priority", "payload.priority must be low, medium, or high"
        )


def _validate_set_project(payload: dict[str, Any]) -> None:
    project_id = _optional_trimmed(payload.get("projectId"))
    project_name = _optional_trimmed(payload.get("projectName"))
    category = _optional_trimmed(payload.get("category"))

    if not project_id and not project_name and not category:
        raise ContractValidationError(
            "payload",
            "payload for set_project must include projectId, projectName, or category",
        )
    if len(project_name) > MAX_PROJECT_OR_CATEGORY_LENGTH:
        raise ContractValidationError(
            "payload.projectName",
            f"payload.projectName cannot exceed {MAX_PROJECT_OR_CATEGORY_LENGTH} characters",
        )
    if len(category) > MAX_PROJECT_OR_CATEGORY_LENGTH:
        raise ContractValidationError(
            "payload.category",
            f"payload.category cannot exceed {MAX_PROJECT_OR_CATEGORY_LENGTH} characters",
        )


def _validate_set_category(payload: dict[str, Any]) -> None:
    _assert_string(payload.get("category"), "payload.category", MAX_PROJECT_OR_CATEGORY_LENGTH)


def _validate_rewrite_title(payload: dict[str, Any]) -> None:
    _assert_string(payload.get("title"), "payload.title")


def _validate_propose_next_action(payload: dict[str, Any]) -> None:
    title = _optional_trimmed(payload.get("title"))
    text = _optional_trimmed(payload.get("text"))

    if not title and not text:
        raise ContractValidationError(
            "payload", "payload for propose_next_action must include title or text"
        )
    if len(title) > MAX_TEXT_LENGTH:
        raise ContractValidationError(
            "payload.title", f"payload.title cannot exceed {MAX_TEXT_LENGTH} characters"
        )
    if len(text) > MAX_TEXT_LENGTH:
        raise ContractValidationError(
            "payload.text", f"payload.text cannot exceed {MAX_TEXT_LENGTH} characters"
        )


def _validate_split_subtasks(payload: dict[str, Any]) -> None:
    subtasks = payload.get("subtasks")
    if not isinstance(subtasks, list):
        raise ContractValidationError("payload.subtasks", "payload.subtasks must be an array")
    if not 1 <= len(subtasks) <= MAX_SUBTASKS:
        raise ContractValidationError(
            "payload.subtasks",
            f"payload.subtasks must contain between 1 and {MAX_SUBTASKS} items",
        )
    for index, subtask in enumerate(subtasks):
        field = f"payload.subtasks[{index}]"
        item = _assert_object(subtask, field)
        _assert_string(item.get("title"), f"{field}.title")
        if not _is_positive_integer(item.get("order")):
            raise ContractValidationError(
                f"{field}.order", f"{field}.order must be a positive integer"
            )


def _validate_ask_clarification(payload: dict[str, Any]) -> None:
    _assert_string(payload.get("question"), "payload.question")
    if "choices" not in payload:
        return
    choices = payload["choices"]
    if not isinstance(choices, list):
        raise ContractValidationError("payload.choices", "payload.choices must be an array")
    if not 2 <= len(choices) <= 5:
        raise ContractValidationError(
            "payload.choices", "payload.choices must contain between 2 and 5 items"
        )
    for index, choice in enumerate(choices):
        _assert_string(choice, f"payload.choices[{index}]", MAX_CHOICE_LENGTH)


def _validate_defer_task(payload: dict[str, Any]) -> None:
    if payload.get("strategy") not in ALLOWED_DEFER_STRATEGIES:
        raise ContractValidationError(
            "payload.strategy",
            "payload.strategy must be someday, next_week, or next_month",
        )


PAYLOAD_VALIDATORS: dict[str, Callable[[dict[str, Any]], None]] = {
    "set_due_date": _validate_set_due_date,
    "set_priority": _validate_set_priority,
    "set_project": _validate_set_project,
    "set_category": _validate_set_category,
    "rewrite_title": _validate_rewrite_title,
    "propose_next_action": _validate_propose_next_action,
    "split_subtasks": _validate_split_subtasks,
    "ask_clarification": _validate_ask_clarification,
    "defer_task": _validate_defer_task,
}


# ===========================================
# envelope 검증
# ===========================================


class _ClarificationCounter:
    """envelope 전체에서 ask_clarification 개수 추적 (최대 1개)"""

    def __init__(self) -> None:
        self.count = 0

    def increment(self) -> None:
        self.count += 1
        if self.count > 1:
            raise ContractValidationError(
                "suggestions", "At most one ask_clarification suggestion is allowed"
            )


def _validate_suggestion(
    suggestion: Any, clarifications: _ClarificationCounter
) -> DecisionAssistSuggestion:
    item = _assert_object(suggestion, "suggestion")
    suggestion_type = item.get("type")

    if not isinstance(suggestion_type, str):
        raise ContractValidationError("suggestion.type", "suggestion.type must be a string")
    if suggestion_type not in ALLOWED_SUGGESTION_TYPES:
        raise ContractValidationError(
            "suggestion.type", f"Unsupported suggestion.type: {suggestion_type}"
        )
    # 허용 목록과 별개인 두 번째 차단선
    if any(marker in suggestion_type for marker in FORBIDDEN_TYPE_MARKERS):
        raise ContractValidationError(
            "suggestion.type", "Destructive suggestion types are not allowed"
        )

    confidence = _assert_confidence(item.get("confidence"))
    rationale = _assert_string(item.get("rationale"), "suggestion.rationale", MAX_RATIONALE_LENGTH)
    payload = _assert_object(item.get("payload"), "suggestion.payload")

    validator = PAYLOAD_VALIDATORS.get(suggestion_type)
    if validator is None:
        raise ContractValidationError(
            "suggestion.type", f"Unsupported suggestion.type: {suggestion_type}"
        )
    if suggestion_type == "ask_clarification":
        clarifications.increment()
    validator(payload)

    return DecisionAssistSuggestion(
        type=suggestion_type,
        confidence=confidence,
        rationale=rationale,
        payload=dict(payload),
    )


def _validate_plan_preview(value: Any, surface: str) -> PlanPreview | None:
    if value is None:
        return None
    if surface != TODAY_PLAN_SURFACE:
        raise ContractValidationError(
            "planPreview", "planPreview is only allowed for today_plan"
        )

    plan = _assert_object(value, "planPreview")
    top_n = plan.get("topN")
    if not _is_positive_integer(top_n) or int(top_n) not in ALLOWED_TOP_N:
        raise ContractValidationError("planPreview.topN", "planPreview.topN must be 3 or 5")
    raw_items = plan.get("items")
    if not isinstance(raw_items, list):
        raise ContractValidationError("planPreview.items", "planPreview.items must be an array")
    if len(raw_items) > int(top_n):
        raise ContractValidationError(
            "planPreview.items", "planPreview.items cannot exceed planPreview.topN"
        )

    items: list[PlanPreviewItem] = []
    for index, raw_item in enumerate(raw_items):
        field = f"planPreview.items[{index}]"
        entry = _assert_object(raw_item, field)
        rationale = _assert_string(entry.get("rationale"), f"{field}.rationale", MAX_RATIONALE_LENGTH)
        rank = entry.get("rank")
        if not _is_positive_integer(rank):
            raise ContractValidationError(f"{field}.rank", f"{field}.rank must be a positive integer")
        time_estimate = entry.get("timeEstimateMin")
        items.append(
            PlanPreviewItem(
                todo_id=_optional_trimmed(entry.get("todoId")) or None,
                rank=int(rank),
                time_estimate_min=int(time_estimate) if _is_positive_integer(time_estimate) else None,
                rationale=rationale,
            )
        )

    return PlanPreview(top_n=int(top_n), items=items)


def validate_decision_assist_output(data: Any) -> DecisionAssistOutput:
    """신뢰할 수 없는 envelope 검증

    검증 순서: requestId → surface → must_abstain → suggestions → planPreview → modelInfo.
    첫 위반에서 즉시 중단한다.

    Raises:
        ContractValidationError: 계약 위반 (field에 위반 위치)
    """
    body = _assert_object(data, "body")
    request_id = _assert_string(body.get("requestId"), "requestId", MAX_REQUEST_ID_LENGTH)

    surface = body.get("surface")
    if not isinstance(surface, str):
        raise ContractValidationError("surface", "surface must be a string")
    if surface not in ALLOWED_SURFACES:
        raise ContractValidationError(
            "surface", f"surface must be one of: {', '.join(ALLOWED_SURFACES)}"
        )

    must_abstain = body.get("must_abstain")
    if not isinstance(must_abstain, bool):
        raise ContractValidationError("must_abstain", "must_abstain must be a boolean")

    raw_suggestions = body.get("suggestions")
    if not isinstance(raw_suggestions, list):
        raise ContractValidationError("suggestions", "suggestions must be an array")

    clarifications = _ClarificationCounter()
    suggestions = [_validate_suggestion(item, clarifications) for item in raw_suggestions]

    plan_preview = _validate_plan_preview(body.get("planPreview"), surface)

    model_info = body.get("modelInfo")
    if model_info is not None:
        model_info = dict(_assert_object(model_info, "modelInfo"))

    return DecisionAssistOutput(
        request_id=request_id,
        surface=surface,
        must_abstain=must_abstain,
        model_info=model_info,
        suggestions=suggestions,
        plan_preview=plan_preview,
    )
