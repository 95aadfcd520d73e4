"""AI 제안 레코드 스키마"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from decision_assist.schemas.todo import TodoResponse


class AiSuggestionResponse(BaseModel):
    """AI 제안 레코드 응답"""

    id: str
    user_id: str = Field(serialization_alias="userId")
    type: str
    status: str
    input: dict[str, Any]
    output: dict[str, Any]
    feedback: dict[str, Any] | None = None
    applied_at: datetime | None = Field(default=None, serialization_alias="appliedAt")
    applied_todo_ids: list[str] | None = Field(default=None, serialization_alias="appliedTodoIds")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    class Config:
        populate_by_name = True
        from_attributes = True


class UpdateSuggestionStatusRequest(BaseModel):
    """제안 상태 변경 요청"""

    status: Literal["accepted", "rejected"]
    reason: str | None = Field(default=None, max_length=300)


class ApplySuggestionRequest(BaseModel):
    """제안 적용 요청

    - plan_from_goal: 본문 없이 호출 가능 (계획 전체 적용)
    - on_create/task_drawer: suggestionId 필수
    - today_plan: suggestionId/selectedTodoIds로 범위를 좁힐 수 있음
    """

    reason: str | None = Field(default=None, max_length=300)
    suggestion_id: str | None = Field(default=None, alias="suggestionId", max_length=120)
    confirmed: bool | None = None
    selected_todo_ids: list[str] | None = Field(
        default=None, alias="selectedTodoIds", max_length=20
    )

    class Config:
        populate_by_name = True


class DismissSuggestionRequest(BaseModel):
    """제안 닫기 요청 (어떤 카드를 닫아도 레코드 전체가 rejected)"""

    suggestion_id: str | None = Field(default=None, alias="suggestionId", max_length=120)
    reason: str | None = Field(default=None, max_length=300)

    class Config:
        populate_by_name = True


class UndoSuggestionRequest(BaseModel):
    """적용 되돌리기 요청"""

    reason: str | None = Field(default=None, max_length=300)


class PlanApplyResponse(BaseModel):
    """plan_from_goal 적용 응답"""

    created_count: int = Field(serialization_alias="createdCount")
    todos: list[TodoResponse]
    suggestion: AiSuggestionResponse
    idempotent: bool = False

    class Config:
        populate_by_name = True


class TodoBoundApplyResponse(BaseModel):
    """on_create/task_drawer 적용 응답"""

    todo: TodoResponse
    applied_suggestion_id: str = Field(serialization_alias="appliedSuggestionId")
    suggestion: AiSuggestionResponse
    idempotent: bool = False

    class Config:
        populate_by_name = True


class TodayPlanApplyResponse(BaseModel):
    """today_plan 적용 응답"""

    updated_count: int = Field(serialization_alias="updatedCount")
    todos: list[TodoResponse]
    suggestion: AiSuggestionResponse
    idempotent: bool = False

    class Config:
        populate_by_name = True
