"""Decision Assist 상수 정의"""

from typing import Literal

UserPlan = Literal["free", "pro", "team"]
USER_PLANS: tuple[str, ...] = ("free", "pro", "team")

DecisionAssistSurface = Literal["on_create", "task_drawer", "today_plan"]

ON_CREATE_SURFACE = "on_create"
TASK_DRAWER_SURFACE = "task_drawer"
TODAY_PLAN_SURFACE = "today_plan"

ALLOWED_SURFACES: tuple[str, ...] = (ON_CREATE_SURFACE, TASK_DRAWER_SURFACE, TODAY_PLAN_SURFACE)
TODO_BOUND_SURFACES = frozenset({TASK_DRAWER_SURFACE, ON_CREATE_SURFACE})

# 제안 타입 (닫힌 집합 - delete/bulk 계열은 표현 자체가 불가능)
ALLOWED_SUGGESTION_TYPES: tuple[str, ...] = (
    "set_due_date",
    "set_priority",
    "set_project",
    "set_category",
    "rewrite_title",
    "propose_next_action",
    "split_subtasks",
    "ask_clarification",
    "defer_task",
)

TODO_BOUND_ALLOWED_TYPES: dict[str, frozenset[str]] = {
    TASK_DRAWER_SURFACE: frozenset(ALLOWED_SUGGESTION_TYPES),
    ON_CREATE_SURFACE: frozenset(
        {
            "rewrite_title",
            "set_due_date",
            "set_priority",
            "set_project",
            "set_category",
            "ask_clarification",
        }
    ),
}

# ranked plan에서는 제목 변경/프로젝트 재할당을 제공하지 않음
TODAY_PLAN_ALLOWED_TYPES = frozenset(
    {"set_due_date", "set_priority", "split_subtasks", "propose_next_action"}
)

ALLOWED_PRIORITIES: tuple[str, ...] = ("low", "medium", "high")
ALLOWED_DEFER_STRATEGIES: tuple[str, ...] = ("someday", "next_week", "next_month")

MAX_REQUEST_ID_LENGTH = 120
MAX_RATIONALE_LENGTH = 240
MAX_TEXT_LENGTH = 200
MAX_PROJECT_OR_CATEGORY_LENGTH = 50
MAX_CHOICE_LENGTH = 80
MAX_SUBTASKS = 5
ALLOWED_TOP_N: tuple[int, ...] = (3, 5)


class AiSuggestionType:
    """저장되는 제안 레코드 타입"""

    TASK_CRITIC = "task_critic"
    PLAN_FROM_GOAL = "plan_from_goal"


class AiSuggestionStatus:
    """제안 레코드 상태 상수"""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    ALL = (PENDING, ACCEPTED, REJECTED)
