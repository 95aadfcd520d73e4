"""Decision Assist envelope 정규화

검증된 envelope를 요청 surface에 바인딩한다.
- on_create/task_drawer: surface별 허용 타입만 남기고 payload.todoId를 컨텍스트 todo에 고정
- today_plan: planPreview에 노출된 todo를 가리키는 제안만 남김
"""

import logging
import time
from collections.abc import Iterable
from typing import Any

from decision_assist.core.constants import (
    ALLOWED_PRIORITIES,
    MAX_PROJECT_OR_CATEGORY_LENGTH,
    MAX_SUBTASKS,
    MAX_TEXT_LENGTH,
    TODAY_PLAN_ALLOWED_TYPES,
    TODAY_PLAN_SURFACE,
    TODO_BOUND_ALLOWED_TYPES,
    TODO_BOUND_SURFACES,
    AiSuggestionStatus,
    AiSuggestionType,
)
from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.schemas.decision_assist import (
    DecisionAssistOutput,
    NormalizedEnvelope,
    NormalizedSuggestion,
    PlanPreview,
)
from decision_assist.schemas.todo import TodoCreate
from decision_assist.services.contract_validator import validate_decision_assist_output
from decision_assist.utils.datetime_utils import parse_iso_datetime

logger = logging.getLogger(__name__)

PLAN_TASK_CATEGORY = "AI Plan"
DEFAULT_TOP_N = 3


def _raw_suggestion_at(raw_output: dict[str, Any], index: int) -> dict[str, Any]:
    """검증 전 원본 항목 (suggestionId/requiresConfirmation은 원본에서 읽음)"""
    raw_items = raw_output.get("suggestions")
    if isinstance(raw_items, list) and index < len(raw_items) and isinstance(raw_items[index], dict):
        return raw_items[index]
    return {}


def _resolve_suggestion_id(raw_item: dict[str, Any], surface: str, index: int) -> str:
    raw_id = raw_item.get("suggestionId")
    if isinstance(raw_id, str) and raw_id.strip():
        return raw_id.strip()
    return f"{surface}-{index + 1}"


def normalize_todo_bound_envelope(
    raw_output: dict[str, Any], todo_id: str, surface: str
) -> NormalizedEnvelope:
    """on_create/task_drawer envelope 정규화

    Raises:
        ContractValidationError: envelope 계약 위반
        ValueError: INVALID_SURFACE, SURFACE_MISMATCH
    """
    if surface not in TODO_BOUND_SURFACES:
        raise ValueError("INVALID_SURFACE")
    validated = validate_decision_assist_output(raw_output)
    if validated.surface != surface:
        raise ValueError("SURFACE_MISMATCH")

    allowed_types = TODO_BOUND_ALLOWED_TYPES[surface]
    suggestions: list[NormalizedSuggestion] = []
    for index, item in enumerate(validated.suggestions):
        if item.type not in allowed_types:
            continue
        raw_item = _raw_suggestion_at(raw_output, index)
        payload = dict(item.payload)
        if not isinstance(payload.get("todoId"), str):
            payload["todoId"] = todo_id
        suggestions.append(
            NormalizedSuggestion(
                type=item.type,
                confidence=item.confidence,
                rationale=item.rationale,
                payload=payload,
                suggestion_id=_resolve_suggestion_id(raw_item, surface, index),
                requires_confirmation=raw_item.get("requiresConfirmation") is True,
            )
        )

    return NormalizedEnvelope(
        request_id=validated.request_id,
        surface=validated.surface,
        must_abstain=validated.must_abstain,
        model_info=validated.model_info,
        suggestions=suggestions,
        plan_preview=validated.plan_preview,
    )


def normalize_today_plan_envelope(raw_output: dict[str, Any]) -> NormalizedEnvelope:
    """today_plan envelope 정규화

    planPreview에 없는 todo를 가리키는 제안과 허용되지 않은 타입은 에러 없이 제외된다.

    Raises:
        ContractValidationError: envelope 계약 위반
        ValueError: SURFACE_MISMATCH
    """
    validated = validate_decision_assist_output(raw_output)
    if validated.surface != TODAY_PLAN_SURFACE:
        raise ValueError("SURFACE_MISMATCH")

    preview_todo_ids = validated.plan_preview.todo_ids if validated.plan_preview else set()
    suggestions: list[NormalizedSuggestion] = []
    dropped = 0
    for index, item in enumerate(validated.suggestions):
        payload = dict(item.payload)
        payload_todo_id = payload.get("todoId")
        payload_todo_id = payload_todo_id.strip() if isinstance(payload_todo_id, str) else ""
        if not payload_todo_id or payload_todo_id not in preview_todo_ids:
            dropped += 1
            continue
        if item.type not in TODAY_PLAN_ALLOWED_TYPES:
            dropped += 1
            continue
        raw_item = _raw_suggestion_at(raw_output, index)
        payload["todoId"] = payload_todo_id
        suggestions.append(
            NormalizedSuggestion(
                type=item.type,
                confidence=item.confidence,
                rationale=item.rationale,
                payload=payload,
                suggestion_id=_resolve_suggestion_id(raw_item, TODAY_PLAN_SURFACE, index),
                requires_confirmation=raw_item.get("requiresConfirmation") is True,
            )
        )

    if dropped:
        logger.debug(f"[Normalize] today_plan dropped {dropped} suggestion(s) outside preview/allow-list")

    return NormalizedEnvelope(
        request_id=validated.request_id,
        surface=validated.surface,
        must_abstain=validated.must_abstain,
        model_info=validated.model_info,
        suggestions=suggestions,
        plan_preview=validated.plan_preview,
    )


def parse_plan_tasks(output: dict[str, Any]) -> list[TodoCreate]:
    """plan_from_goal 출력에서 할 일 생성 DTO 추출

    제목이 비어 있는 항목은 버리고, 우선순위 기본값은 medium,
    파싱 불가능한 마감일은 무시한다.
    """
    raw_tasks = output.get("tasks")
    if not isinstance(raw_tasks, list):
        return []

    tasks: list[TodoCreate] = []
    for raw_task in raw_tasks:
        if not isinstance(raw_task, dict):
            continue
        title = raw_task.get("title")
        title = title.strip()[:MAX_TEXT_LENGTH] if isinstance(title, str) else ""
        if not title:
            continue

        description = raw_task.get("description")
        priority = raw_task.get("priority")
        project_name = raw_task.get("projectName")
        project_name = project_name.strip() if isinstance(project_name, str) else ""
        raw_subtasks = raw_task.get("subtasks")
        subtasks = []
        if isinstance(raw_subtasks, list):
            for raw_subtask in raw_subtasks[:MAX_SUBTASKS]:
                subtask_title = raw_subtask.get("title") if isinstance(raw_subtask, dict) else raw_subtask
                if isinstance(subtask_title, str) and subtask_title.strip():
                    subtasks.append(subtask_title.strip()[:MAX_TEXT_LENGTH])

        tasks.append(
            TodoCreate(
                title=title,
                description=description.strip() if isinstance(description, str) else None,
                priority=priority if priority in ALLOWED_PRIORITIES else "medium",
                due_date=parse_iso_datetime(raw_task.get("dueDate")),
                category=PLAN_TASK_CATEGORY,
                project_name=project_name[:MAX_PROJECT_OR_CATEGORY_LENGTH] or None,
                subtasks=subtasks,
            )
        )
    return tasks


def build_throttle_abstain_envelope(
    surface: str, preferred_top_n: int | None = None
) -> DecisionAssistOutput:
    """throttle 중 생성 대신 반환하는 must_abstain envelope"""
    plan_preview = None
    if surface == TODAY_PLAN_SURFACE:
        plan_preview = PlanPreview(top_n=preferred_top_n or DEFAULT_TOP_N, items=[])
    return DecisionAssistOutput(
        request_id=f"throttle-{surface}-{int(time.time() * 1000)}",
        surface=surface,
        must_abstain=True,
        suggestions=[],
        plan_preview=plan_preview,
    )


def build_safe_empty_envelope(record_id: str, surface: str) -> DecisionAssistOutput:
    """저장된 출력이 더 이상 계약을 통과하지 못할 때의 안전한 빈 envelope"""
    plan_preview = PlanPreview(top_n=DEFAULT_TOP_N, items=[]) if surface == TODAY_PLAN_SURFACE else None
    return DecisionAssistOutput(
        request_id=f"safe-empty-{record_id}",
        surface=surface,
        must_abstain=True,
        suggestions=[],
        plan_preview=plan_preview,
    )


def _input_str(record: AiSuggestion, key: str) -> str:
    value = (record.input or {}).get(key)
    return value if isinstance(value, str) else ""


def record_surface(record: AiSuggestion) -> str:
    return _input_str(record, "surface")


def record_todo_id(record: AiSuggestion) -> str:
    return _input_str(record, "todoId")


def find_latest_pending_todo_bound(
    records: Iterable[AiSuggestion], todo_id: str, surface: str
) -> AiSuggestion | None:
    """최신순 레코드에서 해당 todo/surface의 pending task_critic 레코드"""
    for record in records:
        if record.status != AiSuggestionStatus.PENDING:
            continue
        if record.type != AiSuggestionType.TASK_CRITIC:
            continue
        if record_surface(record) == surface and record_todo_id(record) == todo_id:
            return record
    return None


def find_latest_pending_today_plan(records: Iterable[AiSuggestion]) -> AiSuggestion | None:
    """최신순 레코드에서 pending today_plan 레코드"""
    for record in records:
        if record.status != AiSuggestionStatus.PENDING:
            continue
        if record.type != AiSuggestionType.PLAN_FROM_GOAL:
            continue
        if record_surface(record) == TODAY_PLAN_SURFACE and not record_todo_id(record):
            return record
    return None
