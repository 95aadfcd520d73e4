"""Mock 저장소

테스트용 인메모리 할 일/프로젝트/AI 제안 저장소.
SQLAlchemy 구현체와 같은 상태 기계/멱등성 규칙을 따른다.
"""

import uuid
from datetime import datetime
from typing import Any

from decision_assist.core.constants import AiSuggestionStatus
from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.models.project import Project
from decision_assist.models.todo import Subtask, Todo
from decision_assist.repositories.ai_suggestion_repository import (
    ALLOWED_FROM_STATUSES,
    build_feedback_summary,
    normalize_applied_todo_ids,
)
from decision_assist.repositories.interface import PlanApplyResult
from decision_assist.repositories.todo_repository import UPDATABLE_TODO_FIELDS
from decision_assist.schemas.todo import TodoCreate
from decision_assist.schemas.usage import FeedbackSummary
from decision_assist.utils.datetime_utils import ensure_utc, to_iso, utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


class MockTodoRepository:
    """테스트용 Mock 할 일 저장소"""

    def __init__(self, todos: list[Todo] | None = None):
        self.todos: dict[str, Todo] = {todo.id: todo for todo in todos or []}

    def add_todo(
        self,
        user_id: str,
        title: str,
        todo_id: str | None = None,
        **fields: Any,
    ) -> Todo:
        """테스트 데이터 시드"""
        now = utc_now()
        todo = Todo(
            id=todo_id or _new_id(),
            user_id=user_id,
            project_id=fields.get("project_id"),
            title=title,
            description=fields.get("description"),
            notes=fields.get("notes"),
            category=fields.get("category"),
            priority=fields.get("priority", "medium"),
            due_date=fields.get("due_date"),
            completed=fields.get("completed", False),
            order_index=fields.get("order_index", len(self.todos)),
            created_at=now,
            updated_at=now,
            subtasks=[],
        )
        self.todos[todo.id] = todo
        return todo

    async def find_by_id(self, user_id: str, todo_id: str) -> Todo | None:
        todo = self.todos.get(todo_id)
        if not todo or todo.user_id != user_id:
            return None
        return todo

    async def find_all(self, user_id: str, include_completed: bool = True) -> list[Todo]:
        todos = [
            todo
            for todo in self.todos.values()
            if todo.user_id == user_id and (include_completed or not todo.completed)
        ]
        return sorted(todos, key=lambda todo: todo.order_index)

    async def update(self, user_id: str, todo_id: str, fields: dict[str, Any]) -> Todo | None:
        todo = await self.find_by_id(user_id, todo_id)
        if not todo:
            return None
        for key, value in fields.items():
            if key not in UPDATABLE_TODO_FIELDS:
                raise ValueError(f"Unsupported todo field: {key}")
            setattr(todo, key, value)
        todo.updated_at = utc_now()
        return todo

    async def next_order_index(self, user_id: str) -> int:
        indexes = [todo.order_index for todo in self.todos.values() if todo.user_id == user_id]
        return max(indexes) + 1 if indexes else 0

    async def create(
        self,
        user_id: str,
        dto: TodoCreate,
        project_id: str | None = None,
        order_index: int | None = None,
    ) -> Todo:
        if order_index is None:
            order_index = await self.next_order_index(user_id)
        return self.add_todo(
            user_id,
            dto.title,
            project_id=project_id,
            description=dto.description,
            category=dto.category,
            priority=dto.priority,
            due_date=dto.due_date,
            order_index=order_index,
        )

    async def create_subtask(self, user_id: str, todo_id: str, title: str) -> Subtask | None:
        todo = await self.find_by_id(user_id, todo_id)
        if not todo:
            return None
        subtask = Subtask(
            id=_new_id(),
            todo_id=todo.id,
            title=title,
            completed=False,
            order_index=len(todo.subtasks),
            created_at=utc_now(),
        )
        todo.subtasks.append(subtask)
        return subtask

    def delete(self, todo_id: str) -> None:
        self.todos.pop(todo_id, None)


class MockProjectRepository:
    """테스트용 Mock 프로젝트 저장소"""

    def __init__(self) -> None:
        self.projects: dict[str, Project] = {}

    def add_project(self, user_id: str, name: str, project_id: str | None = None) -> Project:
        project = Project(id=project_id or _new_id(), user_id=user_id, name=name, created_at=utc_now())
        self.projects[project.id] = project
        return project

    async def find_all(self, user_id: str) -> list[Project]:
        return sorted(
            (project for project in self.projects.values() if project.user_id == user_id),
            key=lambda project: project.name,
        )

    async def find_by_name(self, user_id: str, name: str) -> Project | None:
        target = name.strip().lower()
        for project in await self.find_all(user_id):
            if project.name.lower() == target:
                return project
        return None

    async def upsert_by_name(self, user_id: str, name: str) -> Project:
        existing = await self.find_by_name(user_id, name)
        if existing:
            return existing
        return self.add_project(user_id, name.strip())


class MockAiSuggestionRepository:
    """테스트용 Mock AI 제안 저장소 (최신 레코드가 앞)"""

    def __init__(
        self,
        todos: MockTodoRepository | None = None,
        projects: MockProjectRepository | None = None,
    ):
        self.records: list[AiSuggestion] = []
        self.todos = todos or MockTodoRepository()
        self.projects = projects or MockProjectRepository()

    def add_record(
        self,
        user_id: str,
        suggestion_type: str,
        input: dict[str, Any],
        output: dict[str, Any] | None = None,
        status: str = AiSuggestionStatus.PENDING,
        feedback: dict[str, Any] | None = None,
        applied_at: datetime | None = None,
        applied_todo_ids: list[str] | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> AiSuggestion:
        """테스트 데이터 시드 (append 순서가 곧 최신순)"""
        created_at = created_at or utc_now()
        record = AiSuggestion(
            id=_new_id(),
            user_id=user_id,
            type=suggestion_type,
            status=status,
            input=input,
            output=output or {},
            feedback=feedback,
            applied_at=applied_at,
            applied_todo_ids=applied_todo_ids,
            created_at=created_at,
            updated_at=updated_at or created_at,
        )
        self.records.insert(0, record)
        return record

    async def create(
        self,
        user_id: str,
        suggestion_type: str,
        input: dict[str, Any],
        output: dict[str, Any],
    ) -> AiSuggestion:
        return self.add_record(user_id, suggestion_type, input, output)

    async def list_by_user(self, user_id: str, limit: int) -> list[AiSuggestion]:
        return [record for record in self.records if record.user_id == user_id][:limit]

    async def get_by_id(self, user_id: str, suggestion_id: str) -> AiSuggestion | None:
        for record in self.records:
            if record.id == suggestion_id and record.user_id == user_id:
                return record
        return None

    async def count_by_user_since(self, user_id: str, since: datetime) -> int:
        since = ensure_utc(since)
        return sum(
            1
            for record in self.records
            if record.user_id == user_id and ensure_utc(record.created_at) >= since
        )

    async def summarize_feedback_by_user_since(
        self, user_id: str, since: datetime, reason_limit: int
    ) -> FeedbackSummary:
        since = ensure_utc(since)
        rows = [
            (record.status, record.feedback)
            for record in self.records
            if record.user_id == user_id and ensure_utc(record.updated_at) >= since
        ]
        return build_feedback_summary(rows, reason_limit)

    async def update_status(
        self,
        user_id: str,
        suggestion_id: str,
        status: str,
        feedback: dict[str, Any] | None = None,
    ) -> AiSuggestion | None:
        record = await self.get_by_id(user_id, suggestion_id)
        if not record:
            return None
        if record.status == AiSuggestionStatus.REJECTED:
            raise ValueError("SUGGESTION_ALREADY_HANDLED")
        if status == AiSuggestionStatus.ACCEPTED and record.status == AiSuggestionStatus.ACCEPTED and record.applied_todo_ids:
            return record
        if record.status not in ALLOWED_FROM_STATUSES[status]:
            raise ValueError("SUGGESTION_ALREADY_HANDLED")

        record.status = status
        record.feedback = feedback
        record.updated_at = utc_now()
        return record

    async def mark_applied(
        self,
        user_id: str,
        suggestion_id: str,
        applied_todo_ids: list[str],
        feedback: dict[str, Any] | None = None,
    ) -> AiSuggestion | None:
        record = await self.get_by_id(user_id, suggestion_id)
        if not record:
            return None
        if record.status != AiSuggestionStatus.PENDING:
            return record

        now = utc_now()
        record.status = AiSuggestionStatus.ACCEPTED
        record.feedback = feedback
        record.applied_at = now
        record.applied_todo_ids = normalize_applied_todo_ids(applied_todo_ids)
        record.updated_at = now
        return record

    async def _idempotent_result(self, user_id: str, record: AiSuggestion) -> PlanApplyResult:
        todos = []
        for todo_id in record.applied_todo_ids or []:
            todo = await self.todos.find_by_id(user_id, todo_id)
            if todo:
                todos.append(todo)
        return PlanApplyResult(suggestion=record, todos=todos, idempotent=True)

    async def apply_plan_suggestion_transaction(
        self,
        user_id: str,
        suggestion_id: str,
        tasks: list[TodoCreate],
        reason: str | None = None,
        fail_after: int | None = None,
    ) -> PlanApplyResult:
        record = await self.get_by_id(user_id, suggestion_id)
        if not record:
            raise ValueError("SUGGESTION_NOT_FOUND")
        if record.status == AiSuggestionStatus.REJECTED:
            raise ValueError("SUGGESTION_ALREADY_HANDLED")
        if record.status == AiSuggestionStatus.ACCEPTED:
            if record.has_applied_todos:
                return await self._idempotent_result(user_id, record)
            raise ValueError("APPLIED_HISTORY_MISSING")
        if not tasks:
            raise ValueError("NO_PLAN_TASKS")

        created: list[Todo] = []
        created_projects: list[str] = []
        try:
            order_index = await self.todos.next_order_index(user_id)
            for task in tasks:
                project_id = None
                if task.project_name:
                    existing_project = await self.projects.find_by_name(user_id, task.project_name)
                    project = existing_project or await self.projects.upsert_by_name(user_id, task.project_name)
                    if existing_project is None:
                        created_projects.append(project.id)
                    project_id = project.id
                todo = await self.todos.create(user_id, task, project_id=project_id, order_index=order_index)
                created.append(todo)
                order_index += 1
                for subtask_title in task.subtasks:
                    await self.todos.create_subtask(user_id, todo.id, subtask_title)

                if fail_after is not None and len(created) >= fail_after:
                    raise RuntimeError("Forced plan apply failure")
        except Exception:
            # 트랜잭션 롤백 흉내: 이번 호출에서 만든 것 전부 제거
            for todo in created:
                self.todos.delete(todo.id)
            for project_id in created_projects:
                self.projects.projects.pop(project_id, None)
            raise

        now = utc_now()
        record.status = AiSuggestionStatus.ACCEPTED
        record.feedback = {
            "reason": reason or "applied_via_endpoint",
            "source": "apply_endpoint",
            "updatedAt": to_iso(now),
        }
        record.applied_at = now
        record.applied_todo_ids = [todo.id for todo in created]
        record.updated_at = now
        return PlanApplyResult(suggestion=record, todos=created, idempotent=False)
