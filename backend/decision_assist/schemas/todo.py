from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SubtaskResponse(BaseModel):
    """하위 작업 응답"""

    id: str
    title: str
    completed: bool
    order_index: int = Field(serialization_alias="order")

    class Config:
        populate_by_name = True
        from_attributes = True


class TodoResponse(BaseModel):
    """할 일 응답"""

    id: str
    title: str
    description: str | None = None
    notes: str | None = None
    category: str | None = None
    priority: str
    due_date: datetime | None = Field(default=None, serialization_alias="dueDate")
    completed: bool
    project_id: str | None = Field(default=None, serialization_alias="projectId")
    order_index: int = Field(serialization_alias="order")
    subtasks: list[SubtaskResponse] = Field(default_factory=list)
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    class Config:
        populate_by_name = True
        from_attributes = True


class TodoCreate(BaseModel):
    """할 일 생성 DTO (계획 적용 시 사용)"""

    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    priority: Literal["low", "medium", "high"] = "medium"
    due_date: datetime | None = None
    category: str | None = Field(default=None, max_length=50)
    project_name: str | None = Field(default=None, max_length=50)
    subtasks: list[str] = Field(default_factory=list)
