"""결정적(fallback) 제안 생성기

외부 모델 호출 없이 규칙 기반으로 비평/계획/Decision Assist envelope를 만든다.
최근 거절 사유에 generic/vague/specific 신호가 있으면
담당자·측정 가능한 결과·마감일을 요구하는 문구를 덧붙인다.

생성된 envelope는 반드시 contract_validator를 다시 통과한다.
"""

import math
import uuid
from datetime import datetime, timedelta
from typing import Any

from decision_assist.core.constants import MAX_TEXT_LENGTH, TASK_DRAWER_SURFACE, TODAY_PLAN_SURFACE
from decision_assist.models.todo import Todo
from decision_assist.schemas.ai_planner import (
    CritiqueTaskOutput,
    CritiqueTaskRequest,
    PlanFromGoalOutput,
    PlanFromGoalRequest,
    PlanTaskSuggestion,
)
from decision_assist.schemas.usage import FeedbackContext
from decision_assist.services.quota_service import needs_specificity
from decision_assist.utils.datetime_utils import ensure_utc, to_iso, utc_now

DEFAULT_CONFIDENCE = 0.75
MODEL_INFO = {"provider": "deterministic", "model": "heuristic-planner", "version": "1"}

CONCRETE_OUTCOME_HINT = "Make outcomes concrete: include owner, measurable result, and deadline"

ACTION_VERBS = frozenset(
    {
        "define",
        "draft",
        "review",
        "build",
        "write",
        "design",
        "prepare",
        "schedule",
        "ship",
        "publish",
        "launch",
        "test",
        "fix",
        "plan",
        "create",
        "update",
        "complete",
    }
)

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}
TIME_ESTIMATE_MIN = {"high": 60, "medium": 45, "low": 30}


def starts_with_action_verb(title: str) -> bool:
    words = title.strip().split()
    return bool(words) and words[0].lower() in ACTION_VERBS


def _clip(text: str, limit: int = MAX_TEXT_LENGTH) -> str:
    return text if len(text) <= limit else text[: limit - 1].rstrip() + "…"


def _days_until(target: datetime, now: datetime) -> int:
    return math.ceil((ensure_utc(target) - now).total_seconds() / 86_400)


# ===========================================
# 비평 / 목표 계획
# ===========================================


def critique_task_deterministic(
    request: CritiqueTaskRequest, context: FeedbackContext | None = None
) -> CritiqueTaskOutput:
    """할 일 품질 점수와 개선안"""
    suggestions: list[str] = []
    score = 100
    improved_title = request.title.strip()
    improved_description = request.description.strip() if request.description else None
    specific = needs_specificity(context.rejection_signals if context else [])

    if len(improved_title) < 12:
        score -= 15
        suggestions.append("Make the title more specific so it is understandable out of context")

    if not starts_with_action_verb(improved_title):
        score -= 10
        suggestions.append("Start the title with a clear action verb")
        improved_title = f"Complete {improved_title}"

    if not improved_description:
        score -= 20
        suggestions.append("Add acceptance criteria in the description to define done status")
        improved_description = (
            "Definition of done: clear output produced, reviewed, and shared with stakeholders."
        )
    elif len(improved_description) < 30:
        score -= 10
        suggestions.append("Expand the description with success criteria")

    if request.due_date is None:
        score -= 15
        suggestions.append("Set a due date to improve execution priority")
    elif _days_until(request.due_date, utc_now()) <= 1 and request.priority != "high":
        score -= 10
        suggestions.append("Task is due soon, consider raising priority to high or splitting scope")

    if request.priority in (None, "medium"):
        score -= 5
        suggestions.append("Assign explicit priority (high/medium/low) based on business impact")

    if specific:
        suggestions.insert(0, CONCRETE_OUTCOME_HINT)
        improved_description = f"{improved_description} Include owner, measurable result, and deadline."

    return CritiqueTaskOutput(
        quality_score=max(0, min(100, score)),
        improved_title=_clip(improved_title),
        improved_description=improved_description,
        suggestions=suggestions,
    )


def _task_template(goal: str) -> list[dict[str, str]]:
    return [
        {
            "title": f"Define scope for: {goal}",
            "description": "Clarify success criteria, constraints, and stakeholders for this goal.",
            "priority": "high",
        },
        {
            "title": f"Break down execution plan for: {goal}",
            "description": "Create milestones with measurable checkpoints and clear ownership.",
            "priority": "high",
        },
        {
            "title": f"Execute core work for: {goal}",
            "description": "Deliver the highest-impact implementation tasks first to reduce risk.",
            "priority": "high",
        },
        {
            "title": f"Review and QA for: {goal}",
            "description": "Validate quality, test edge cases, and confirm readiness for release.",
            "priority": "medium",
        },
        {
            "title": f"Publish update and retrospective for: {goal}",
            "description": "Communicate outcomes, capture lessons learned, and document next steps.",
            "priority": "medium",
        },
    ]


def _distribute_due_dates(start: datetime, target: datetime, count: int) -> list[datetime | None]:
    gap = ensure_utc(target) - start
    if count <= 0 or gap.total_seconds() <= 0:
        return [None] * max(count, 0)
    step = gap / count
    return [start + step * (index + 1) for index in range(count)]


def plan_from_goal_deterministic(
    request: PlanFromGoalRequest, context: FeedbackContext | None = None
) -> PlanFromGoalOutput:
    """목표를 최대 5단계 실행 계획으로 분해"""
    goal = request.goal.strip()
    specific = needs_specificity(context.rejection_signals if context else [])
    base_tasks = _task_template(goal)[: request.max_tasks]
    due_dates = (
        _distribute_due_dates(utc_now(), request.target_date, len(base_tasks))
        if request.target_date
        else [None] * len(base_tasks)
    )

    tasks = []
    for task, due_date in zip(base_tasks, due_dates):
        description = task["description"]
        if specific:
            description = f"{description} Assign owner, metric, and date for this step."
        tasks.append(
            PlanTaskSuggestion(
                title=_clip(task["title"]),
                description=description,
                priority=task["priority"],
                due_date=due_date,
            )
        )

    steps = "specific steps" if specific else "steps"
    return PlanFromGoalOutput(
        goal=goal,
        summary=f'Execution plan with {len(tasks)} {steps} generated for "{goal}".',
        tasks=tasks,
    )


# ===========================================
# Decision Assist envelope
# ===========================================


def _end_of_day(now: datetime, days_ahead: int) -> datetime:
    day = now + timedelta(days=days_ahead)
    return day.replace(hour=17, minute=0, second=0, microsecond=0)


def _todo_bound_suggestions(
    todo: Todo, surface: str, confidence: float, specific: bool, now: datetime
) -> list[dict[str, Any]]:
    suggestions: list[dict[str, Any]] = []
    title = todo.title.strip()

    if not starts_with_action_verb(title) or len(title) < 12:
        rationale = "Start the title with a clear action verb so it reads as a concrete task"
        if specific:
            rationale = CONCRETE_OUTCOME_HINT
        suggestions.append(
            {
                "type": "rewrite_title",
                "confidence": confidence,
                "rationale": rationale,
                "payload": {"title": _clip(title if starts_with_action_verb(title) else f"Complete {title}")},
            }
        )

    if todo.due_date is None:
        suggestions.append(
            {
                "type": "set_due_date",
                "confidence": confidence,
                "rationale": "Tasks with a due date are far more likely to get done",
                "payload": {"dueDateISO": to_iso(_end_of_day(now, 3))},
            }
        )
    elif _days_until(todo.due_date, now) <= 1 and todo.priority != "high":
        suggestions.append(
            {
                "type": "set_priority",
                "confidence": confidence,
                "rationale": "Task is due soon, consider raising priority",
                "payload": {"priority": "high"},
            }
        )

    if surface == TASK_DRAWER_SURFACE:
        if specific:
            suggestions.append(
                {
                    "type": "propose_next_action",
                    "confidence": confidence,
                    "rationale": CONCRETE_OUTCOME_HINT,
                    "payload": {
                        "text": _clip(f"Write down owner, measurable result, and deadline for: {title}")
                    },
                }
            )
        else:
            suggestions.append(
                {
                    "type": "propose_next_action",
                    "confidence": confidence,
                    "rationale": "A small first step makes it easier to start",
                    "payload": {"text": _clip(f"Spend 15 minutes drafting the first step of: {title}")},
                }
            )
        if not todo.subtasks:
            suggestions.append(
                {
                    "type": "split_subtasks",
                    "confidence": confidence,
                    "rationale": "Breaking the task into steps reduces the effort to start",
                    "payload": {
                        "subtasks": [
                            {"title": "Clarify the expected outcome", "order": 1},
                            {"title": "Do the core work", "order": 2},
                            {"title": "Review and share the result", "order": 3},
                        ]
                    },
                }
            )

    if specific:
        suggestions.append(
            {
                "type": "ask_clarification",
                "confidence": confidence,
                "rationale": "Previous suggestions were too generic for this kind of task",
                "payload": {
                    "question": "Who owns this, what measurable result marks it done, and by when?",
                },
            }
        )
    return suggestions


def _rank_candidates(candidates: list[Todo], now: datetime) -> list[Todo]:
    far_future = now + timedelta(days=36_500)

    def key(todo: Todo):
        due = ensure_utc(todo.due_date) if todo.due_date else far_future
        return (PRIORITY_RANK.get(todo.priority, 1), due, todo.order_index)

    return sorted((todo for todo in candidates if not todo.completed), key=key)


def _today_plan_envelope(
    candidates: list[Todo], top_n: int, confidence: float, specific: bool, now: datetime
) -> dict[str, Any]:
    ranked = _rank_candidates(candidates, now)[:top_n]
    items = []
    suggestions: list[dict[str, Any]] = []
    for rank, todo in enumerate(ranked, start=1):
        rationale = "High priority" if todo.priority == "high" else "Good next step for today"
        if todo.due_date and _days_until(todo.due_date, now) <= 1:
            rationale = "Due within a day"
        items.append(
            {
                "todoId": todo.id,
                "rank": rank,
                "timeEstimateMin": TIME_ESTIMATE_MIN.get(todo.priority, 45),
                "rationale": rationale,
            }
        )
        if todo.due_date is None:
            suggestions.append(
                {
                    "type": "set_due_date",
                    "confidence": confidence,
                    "rationale": "Planned for today, so give it today's deadline",
                    "payload": {"todoId": todo.id, "dueDateISO": to_iso(_end_of_day(now, 0 if now.hour < 17 else 1))},
                }
            )
        if rank == 1:
            text = (
                f"Name the owner and measurable result for: {todo.title.strip()}"
                if specific
                else f"Start with the smallest deliverable of: {todo.title.strip()}"
            )
            suggestions.append(
                {
                    "type": "propose_next_action",
                    "confidence": confidence,
                    "rationale": CONCRETE_OUTCOME_HINT if specific else "Top-ranked task for today",
                    "payload": {"todoId": todo.id, "text": _clip(text)},
                }
            )

    return {
        "planPreview": {"topN": top_n, "items": items},
        "suggestions": suggestions,
        "must_abstain": not items,
    }


def generate_decision_assist_envelope(
    surface: str,
    todo: Todo | None = None,
    candidates: list[Todo] | None = None,
    top_n: int | None = None,
    confidence: float | None = None,
    context: FeedbackContext | None = None,
) -> dict[str, Any]:
    """surface별 원본 envelope 생성 (검증 전 dict)"""
    now = utc_now()
    confidence = DEFAULT_CONFIDENCE if confidence is None else confidence
    specific = needs_specificity(context.rejection_signals if context else [])
    envelope: dict[str, Any] = {
        "requestId": f"{surface}-{uuid.uuid4().hex[:12]}",
        "surface": surface,
        "modelInfo": dict(MODEL_INFO),
    }

    if surface == TODAY_PLAN_SURFACE:
        envelope.update(_today_plan_envelope(candidates or [], top_n or 3, confidence, specific, now))
        return envelope

    suggestions = _todo_bound_suggestions(todo, surface, confidence, specific, now) if todo else []
    envelope["must_abstain"] = not suggestions
    envelope["suggestions"] = suggestions
    return envelope
