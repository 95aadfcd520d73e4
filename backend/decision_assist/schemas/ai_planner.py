"""결정적(fallback) 생성기 입출력 스키마"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class CritiqueTaskRequest(BaseModel):
    """할 일 비평 요청"""

    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    due_date: datetime | None = Field(default=None, alias="dueDate")
    priority: Literal["low", "medium", "high"] | None = None

    class Config:
        populate_by_name = True


class CritiqueTaskOutput(BaseModel):
    quality_score: int = Field(serialization_alias="qualityScore")
    improved_title: str = Field(serialization_alias="improvedTitle")
    improved_description: str | None = Field(default=None, serialization_alias="improvedDescription")
    suggestions: list[str]

    class Config:
        populate_by_name = True


class PlanFromGoalRequest(BaseModel):
    """목표 기반 계획 생성 요청"""

    goal: str = Field(min_length=1, max_length=300)
    target_date: datetime | None = Field(default=None, alias="targetDate")
    max_tasks: int = Field(default=5, ge=1, le=5, alias="maxTasks")

    class Config:
        populate_by_name = True


class PlanTaskSuggestion(BaseModel):
    title: str
    description: str
    priority: Literal["low", "medium", "high"]
    due_date: datetime | None = Field(default=None, serialization_alias="dueDate")

    class Config:
        populate_by_name = True


class PlanFromGoalOutput(BaseModel):
    goal: str
    summary: str
    tasks: list[PlanTaskSuggestion]


class CritiqueTaskResponse(CritiqueTaskOutput):
    suggestion_id: str = Field(serialization_alias="suggestionId")


class PlanFromGoalResponse(PlanFromGoalOutput):
    suggestion_id: str = Field(serialization_alias="suggestionId")

    class Config:
        populate_by_name = True
