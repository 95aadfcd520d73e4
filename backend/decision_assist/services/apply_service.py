"""제안 적용(apply) 서비스

선택된 제안을 실제 할 일 변경으로 실행한다.
예상 가능한 검증 실패는 예외 대신 ApplyError 결과로 반환한다.

위험한 변경(과거 마감일, high 우선순위, requiresConfirmation 제안)은
confirmed=True 없이는 적용되지 않는다.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from decision_assist.core.constants import (
    ALLOWED_PRIORITIES,
    MAX_PROJECT_OR_CATEGORY_LENGTH,
    MAX_SUBTASKS,
    MAX_TEXT_LENGTH,
)
from decision_assist.models.todo import Todo
from decision_assist.repositories.interface import IProjectRepository, ITodoRepository
from decision_assist.schemas.decision_assist import NormalizedSuggestion
from decision_assist.utils.datetime_utils import parse_iso_datetime, utc_now

logger = logging.getLogger(__name__)

NEXT_ACTION_PREFIX = "Next action: "

ApplyErrorCode = Literal["CONFIRMATION_REQUIRED", "INVALID_PAYLOAD", "NOT_APPLIABLE", "TODO_NOT_FOUND"]


@dataclass
class ApplyError:
    status: int
    error: ApplyErrorCode
    message: str
    ok: Literal[False] = False


@dataclass
class TodoBoundApplyOk:
    updated_todo: Todo
    ok: Literal[True] = True


@dataclass
class TodayPlanApplyOk:
    updated_todos: list[Todo] = field(default_factory=list)
    applied_todo_ids: list[str] = field(default_factory=list)
    ok: Literal[True] = True


def _invalid(message: str) -> ApplyError:
    return ApplyError(status=400, error="INVALID_PAYLOAD", message=message)


def _confirmation_required(message: str) -> ApplyError:
    return ApplyError(status=400, error="CONFIRMATION_REQUIRED", message=message)


TODO_NOT_FOUND = ApplyError(status=404, error="TODO_NOT_FOUND", message="Todo not found")


# ===========================================
# payload 해석 (변경 전 검증 단계)
# ===========================================


def _resolve_title(payload: dict[str, Any]) -> str | ApplyError:
    title = payload.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if not title or len(title) > MAX_TEXT_LENGTH:
        return _invalid("Invalid rewrite title")
    return title


def _resolve_due_date(payload: dict[str, Any], confirmed: bool | None):
    due_date = parse_iso_datetime(payload.get("dueDateISO"))
    if due_date is None:
        return _invalid("Invalid due date")
    if due_date < utc_now() and confirmed is not True:
        return _confirmation_required("Past due dates require explicit confirmation")
    return due_date


def _resolve_priority(payload: dict[str, Any], confirmed: bool | None) -> str | ApplyError:
    priority = str(payload.get("priority") or "").lower()
    if priority not in ALLOWED_PRIORITIES:
        return _invalid("Invalid priority value")
    if priority == "high" and confirmed is not True:
        return _confirmation_required("High priority changes require explicit confirmation")
    return priority


def _resolve_subtask_titles(payload: dict[str, Any]) -> list[str] | ApplyError:
    raw_subtasks = payload.get("subtasks")
    raw_subtasks = raw_subtasks if isinstance(raw_subtasks, list) else []
    if not 1 <= len(raw_subtasks) <= MAX_SUBTASKS:
        return _invalid("split_subtasks requires 1-5 subtasks")
    titles = []
    for item in raw_subtasks:
        title = item.get("title") if isinstance(item, dict) else None
        title = title.strip() if isinstance(title, str) else ""
        if not title or len(title) > MAX_TEXT_LENGTH:
            return _invalid("Invalid subtask title")
        titles.append(title)
    return titles


def _resolve_next_action(payload: dict[str, Any]) -> str | ApplyError:
    text = payload.get("text")
    if not isinstance(text, str):
        text = payload.get("title")
    next_action = text.strip() if isinstance(text, str) else ""
    if not next_action or len(next_action) > MAX_TEXT_LENGTH:
        return _invalid("Invalid next action text")
    return next_action


def _append_next_action(notes: str | None, next_action: str) -> str:
    line = f"{NEXT_ACTION_PREFIX}{next_action}"
    return f"{notes}\n{line}" if notes else line


async def _resolve_category(
    payload: dict[str, Any],
    user_id: str,
    project_repo: IProjectRepository | None,
) -> tuple[str, str | None] | ApplyError:
    """set_category/set_project 최종 카테고리 결정

    우선순위: category > projectName. 프로젝트 저장소가 있으면
    projectId(없으면 projectName) 일치 프로젝트의 이름이 원문 문자열보다 우선한다.
    """

    def _text(key: str) -> str:
        value = payload.get(key)
        return value.strip() if isinstance(value, str) else ""

    category = _text("category")
    project_name = _text("projectName")
    project_id = _text("projectId")
    resolved_project_id = None

    if not category and project_name:
        category = project_name

    if project_repo and (project_id or project_name):
        projects = await project_repo.find_all(user_id)
        if project_id:
            match = next((project for project in projects if project.id == project_id), None)
        else:
            match = next(
                (project for project in projects if project.name.lower() == project_name.lower()),
                None,
            )
        if match:
            category = match.name
            resolved_project_id = match.id

    if not category or len(category) > MAX_PROJECT_OR_CATEGORY_LENGTH:
        return _invalid("Invalid category/project value")
    return category, resolved_project_id


# ===========================================
# 단일 할 일 적용 (on_create / task_drawer)
# ===========================================


async def apply_todo_bound_suggestion(
    selected: NormalizedSuggestion,
    todo: Todo,
    user_id: str,
    todo_repo: ITodoRepository,
    project_repo: IProjectRepository | None = None,
    confirmed: bool | None = None,
) -> TodoBoundApplyOk | ApplyError:
    """단일 할 일에 바인딩된 제안 적용"""
    if selected.requires_confirmation and confirmed is not True:
        return _confirmation_required("Confirmation is required for this suggestion")

    payload = selected.payload or {}
    fields: dict[str, Any]

    if selected.type == "rewrite_title":
        title = _resolve_title(payload)
        if isinstance(title, ApplyError):
            return title
        fields = {"title": title}

    elif selected.type == "set_due_date":
        due_date = _resolve_due_date(payload, confirmed)
        if isinstance(due_date, ApplyError):
            return due_date
        fields = {"due_date": due_date}

    elif selected.type == "set_priority":
        priority = _resolve_priority(payload, confirmed)
        if isinstance(priority, ApplyError):
            return priority
        fields = {"priority": priority}

    elif selected.type in ("set_category", "set_project"):
        resolved = await _resolve_category(payload, user_id, project_repo)
        if isinstance(resolved, ApplyError):
            return resolved
        category, project_id = resolved
        fields = {"category": category}
        if project_id:
            fields["project_id"] = project_id

    elif selected.type == "split_subtasks":
        titles = _resolve_subtask_titles(payload)
        if isinstance(titles, ApplyError):
            return titles
        # 기존 하위 작업은 건드리지 않고 추가만
        for title in titles:
            created = await todo_repo.create_subtask(user_id, todo.id, title)
            if created is None:
                return TODO_NOT_FOUND
        refreshed = await todo_repo.find_by_id(user_id, todo.id)
        return TodoBoundApplyOk(updated_todo=refreshed or todo)

    elif selected.type == "propose_next_action":
        next_action = _resolve_next_action(payload)
        if isinstance(next_action, ApplyError):
            return next_action
        fields = {"notes": _append_next_action(todo.notes, next_action)}

    else:
        # ask_clarification, defer_task: 표시 전용
        return ApplyError(
            status=400,
            error="NOT_APPLIABLE",
            message=f'Suggestion type "{selected.type}" is not supported for apply',
        )

    updated = await todo_repo.update(user_id, todo.id, fields)
    if updated is None:
        return TODO_NOT_FOUND
    logger.info(f"[Apply] {selected.type} applied to todo {todo.id}")
    return TodoBoundApplyOk(updated_todo=updated)


# ===========================================
# today_plan 일괄 적용
# ===========================================


async def apply_today_plan_suggestions(
    applicable_suggestions: list[NormalizedSuggestion],
    user_id: str,
    todo_repo: ITodoRepository,
    confirmed: bool | None = None,
) -> TodayPlanApplyOk | ApplyError:
    """today_plan 제안 일괄 적용

    모든 제안을 먼저 검증하고, 하나라도 실패하면 아무것도 변경하지 않는다.
    같은 할 일을 가리키는 제안은 순서대로 누적 적용된다.
    """
    planned: list[tuple[NormalizedSuggestion, Any]] = []
    for selected in applicable_suggestions:
        todo_id = selected.todo_id
        if not todo_id:
            continue
        if selected.requires_confirmation and confirmed is not True:
            return _confirmation_required("Confirmation is required for this suggestion")

        payload = selected.payload or {}
        if selected.type == "set_priority":
            value = _resolve_priority(payload, confirmed)
        elif selected.type == "set_due_date":
            value = _resolve_due_date(payload, confirmed)
        elif selected.type == "split_subtasks":
            value = _resolve_subtask_titles(payload)
        elif selected.type == "propose_next_action":
            value = _resolve_next_action(payload)
        else:
            continue
        if isinstance(value, ApplyError):
            return value
        planned.append((selected, value))

    updated_todos: dict[str, Todo] = {}
    for selected, value in planned:
        todo_id = selected.todo_id
        current = updated_todos.get(todo_id) or await todo_repo.find_by_id(user_id, todo_id)
        if current is None:
            continue

        if selected.type == "set_priority":
            updated = await todo_repo.update(user_id, todo_id, {"priority": value})
        elif selected.type == "set_due_date":
            updated = await todo_repo.update(user_id, todo_id, {"due_date": value})
        elif selected.type == "split_subtasks":
            for title in value:
                await todo_repo.create_subtask(user_id, todo_id, title)
            updated = await todo_repo.find_by_id(user_id, todo_id)
        else:
            updated = await todo_repo.update(
                user_id, todo_id, {"notes": _append_next_action(current.notes, value)}
            )

        if updated is not None:
            updated_todos[todo_id] = updated

    logger.info(f"[Apply] today_plan applied to {len(updated_todos)} todo(s)")
    return TodayPlanApplyOk(
        updated_todos=list(updated_todos.values()),
        applied_todo_ids=list(updated_todos.keys()),
    )
