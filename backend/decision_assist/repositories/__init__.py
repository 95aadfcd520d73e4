"""Repository 패키지

Repository 패턴 구현체들을 모아둔 패키지.
"""

from decision_assist.repositories.ai_suggestion_repository import AiSuggestionRepository
from decision_assist.repositories.interface import (
    IAiSuggestionRepository,
    IProjectRepository,
    ITodoRepository,
    PlanApplyResult,
)
from decision_assist.repositories.mock_repository import (
    MockAiSuggestionRepository,
    MockProjectRepository,
    MockTodoRepository,
)
from decision_assist.repositories.todo_repository import ProjectRepository, TodoRepository
from decision_assist.repositories.user_repository import UserRepository

__all__ = [
    "AiSuggestionRepository",
    "IAiSuggestionRepository",
    "IProjectRepository",
    "ITodoRepository",
    "MockAiSuggestionRepository",
    "MockProjectRepository",
    "MockTodoRepository",
    "PlanApplyResult",
    "ProjectRepository",
    "TodoRepository",
    "UserRepository",
]
