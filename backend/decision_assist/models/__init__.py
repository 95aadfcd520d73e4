from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.models.project import Project
from decision_assist.models.todo import Subtask, Todo, TodoPriority
from decision_assist.models.user import User

__all__ = [
    "AiSuggestion",
    "Project",
    "Subtask",
    "Todo",
    "TodoPriority",
    "User",
]
