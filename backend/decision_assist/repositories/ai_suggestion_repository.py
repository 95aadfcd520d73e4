"""AI 제안 레코드 SQLAlchemy 저장소

상태 기계:
- pending → accepted / rejected
- accepted → rejected (되돌리기)
- rejected는 종결 상태 (상태 변경/적용 불가)

적용(apply)은 조건부 UPDATE(WHERE status = 'pending')로 한 번만 성공한다.
경쟁에서 진 요청은 에러 대신 현재 레코드를 다시 읽어 반환한다.
"""

import logging
from collections import Counter
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from decision_assist.core.constants import AiSuggestionStatus
from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.models.todo import Todo
from decision_assist.repositories.interface import PlanApplyResult
from decision_assist.repositories.todo_repository import ProjectRepository, TodoRepository
from decision_assist.schemas.todo import TodoCreate
from decision_assist.schemas.usage import FeedbackSummary, ReasonCount
from decision_assist.utils.datetime_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

# 목표 상태별로 전이를 허용하는 현재 상태
ALLOWED_FROM_STATUSES: dict[str, tuple[str, ...]] = {
    AiSuggestionStatus.ACCEPTED: (AiSuggestionStatus.PENDING, AiSuggestionStatus.ACCEPTED),
    AiSuggestionStatus.REJECTED: (AiSuggestionStatus.PENDING, AiSuggestionStatus.ACCEPTED),
    AiSuggestionStatus.PENDING: (AiSuggestionStatus.PENDING,),
}


class PlanApplyConflict(Exception):
    """다른 요청이 먼저 계획을 적용함 (savepoint 롤백용 내부 신호)"""


def normalize_applied_todo_ids(ids: Iterable[str]) -> list[str]:
    """빈 값 제거 + 순서 유지 중복 제거"""
    return list(dict.fromkeys(todo_id for todo_id in ids if isinstance(todo_id, str) and todo_id))


def _rank_reasons(counts: Counter, reason_limit: int) -> list[ReasonCount]:
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [ReasonCount(reason=reason, count=count) for reason, count in ranked[:reason_limit]]


def build_feedback_summary(
    rows: Iterable[tuple[str, dict[str, Any] | None]], reason_limit: int
) -> FeedbackSummary:
    """(status, feedback) 목록을 사유별 집계로 변환

    사유는 개수 내림차순, 같으면 사유 오름차순. 비어 있으면 "unspecified".
    """
    accepted: Counter = Counter()
    rejected: Counter = Counter()
    for status, feedback in rows:
        if status not in (AiSuggestionStatus.ACCEPTED, AiSuggestionStatus.REJECTED):
            continue
        raw_reason = (feedback or {}).get("reason") if isinstance(feedback, dict) else None
        reason = raw_reason.strip() if isinstance(raw_reason, str) and raw_reason.strip() else "unspecified"
        if status == AiSuggestionStatus.ACCEPTED:
            accepted[reason] += 1
        else:
            rejected[reason] += 1

    return FeedbackSummary(
        accepted_count=sum(accepted.values()),
        rejected_count=sum(rejected.values()),
        accepted_reasons=_rank_reasons(accepted, reason_limit),
        rejected_reasons=_rank_reasons(rejected, reason_limit),
    )


class AiSuggestionRepository:
    """AI 제안 레코드 저장소"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: str,
        suggestion_type: str,
        input: dict[str, Any],
        output: dict[str, Any],
    ) -> AiSuggestion:
        record = AiSuggestion(
            user_id=user_id,
            type=suggestion_type,
            status=AiSuggestionStatus.PENDING,
            input=input,
            output=output,
        )
        self.db.add(record)
        await self.db.flush()
        await self.db.refresh(record)
        return record

    async def list_by_user(self, user_id: str, limit: int) -> list[AiSuggestion]:
        result = await self.db.execute(
            select(AiSuggestion)
            .where(AiSuggestion.user_id == user_id)
            .order_by(AiSuggestion.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_by_id(self, user_id: str, suggestion_id: str) -> AiSuggestion | None:
        result = await self.db.execute(
            select(AiSuggestion)
            .where(AiSuggestion.id == suggestion_id, AiSuggestion.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_by_user_since(self, user_id: str, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(AiSuggestion)
            .where(AiSuggestion.user_id == user_id, AiSuggestion.created_at >= since)
        )
        return result.scalar_one()

    async def summarize_feedback_by_user_since(
        self, user_id: str, since: datetime, reason_limit: int
    ) -> FeedbackSummary:
        result = await self.db.execute(
            select(AiSuggestion.status, AiSuggestion.feedback).where(
                AiSuggestion.user_id == user_id,
                AiSuggestion.updated_at >= since,
                AiSuggestion.status.in_([AiSuggestionStatus.ACCEPTED, AiSuggestionStatus.REJECTED]),
            )
        )
        return build_feedback_summary(result.all(), reason_limit)

    async def update_status(
        self,
        user_id: str,
        suggestion_id: str,
        status: str,
        feedback: dict[str, Any] | None = None,
    ) -> AiSuggestion | None:
        existing = await self.get_by_id(user_id, suggestion_id)
        if not existing:
            return None
        if existing.status == AiSuggestionStatus.REJECTED:
            raise ValueError("SUGGESTION_ALREADY_HANDLED")
        if (
            status == AiSuggestionStatus.ACCEPTED
            and existing.status == AiSuggestionStatus.ACCEPTED
            and existing.has_applied_todos
        ):
            logger.info(f"[Suggestion] accepted no-op: {suggestion_id}")
            return existing

        result = await self.db.execute(
            update(AiSuggestion)
            .where(
                AiSuggestion.id == suggestion_id,
                AiSuggestion.user_id == user_id,
                AiSuggestion.status.in_(ALLOWED_FROM_STATUSES[status]),
            )
            .values(status=status, feedback=feedback, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        current = await self.get_by_id(user_id, suggestion_id)
        if result.rowcount != 1:
            # 그 사이 다른 요청이 rejected로 종결시킴
            if current is None:
                return None
            raise ValueError("SUGGESTION_ALREADY_HANDLED")

        logger.info(f"[Suggestion] {existing.status} -> {status}: {suggestion_id}")
        return current

    async def mark_applied(
        self,
        user_id: str,
        suggestion_id: str,
        applied_todo_ids: list[str],
        feedback: dict[str, Any] | None = None,
    ) -> AiSuggestion | None:
        existing = await self.get_by_id(user_id, suggestion_id)
        if not existing:
            return None
        if existing.status == AiSuggestionStatus.REJECTED:
            return existing
        if existing.status == AiSuggestionStatus.ACCEPTED and existing.has_applied_todos:
            logger.info(f"[Suggestion] mark_applied idempotent: {suggestion_id}")
            return existing

        now = utc_now()
        result = await self.db.execute(
            update(AiSuggestion)
            .where(
                AiSuggestion.id == suggestion_id,
                AiSuggestion.user_id == user_id,
                AiSuggestion.status == AiSuggestionStatus.PENDING,
            )
            .values(
                status=AiSuggestionStatus.ACCEPTED,
                feedback=feedback,
                applied_at=now,
                applied_todo_ids=normalize_applied_todo_ids(applied_todo_ids),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(f"[Suggestion] mark_applied lost race, returning current: {suggestion_id}")
        return await self.get_by_id(user_id, suggestion_id)

    async def _load_todos(self, user_id: str, todo_ids: list[str]) -> list[Todo]:
        todo_repo = TodoRepository(self.db)
        todos = []
        for todo_id in todo_ids:
            todo = await todo_repo.find_by_id(user_id, todo_id)
            if todo:
                todos.append(todo)
        return todos

    async def _idempotent_result(self, user_id: str, record: AiSuggestion) -> PlanApplyResult:
        todos = await self._load_todos(user_id, list(record.applied_todo_ids or []))
        return PlanApplyResult(suggestion=record, todos=todos, idempotent=True)

    async def apply_plan_suggestion_transaction(
        self,
        user_id: str,
        suggestion_id: str,
        tasks: list[TodoCreate],
        reason: str | None = None,
        fail_after: int | None = None,
    ) -> PlanApplyResult:
        existing = await self.get_by_id(user_id, suggestion_id)
        if not existing:
            raise ValueError("SUGGESTION_NOT_FOUND")
        if existing.status == AiSuggestionStatus.REJECTED:
            raise ValueError("SUGGESTION_ALREADY_HANDLED")
        if existing.status == AiSuggestionStatus.ACCEPTED:
            if existing.has_applied_todos:
                logger.info(f"[PlanApply] idempotent short-circuit: {suggestion_id}")
                return await self._idempotent_result(user_id, existing)
            raise ValueError("APPLIED_HISTORY_MISSING")
        if not tasks:
            raise ValueError("NO_PLAN_TASKS")

        todo_repo = TodoRepository(self.db)
        project_repo = ProjectRepository(self.db)
        created_ids: list[str] = []
        try:
            async with self.db.begin_nested():
                # 행 잠금 후 재확인 (동시 적용 요청 중 하나만 진행)
                locked = await self.db.execute(
                    select(AiSuggestion)
                    .where(AiSuggestion.id == suggestion_id, AiSuggestion.user_id == user_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                record = locked.scalar_one()
                if record.status != AiSuggestionStatus.PENDING:
                    raise PlanApplyConflict()

                order_index = await todo_repo.next_order_index(user_id)
                for task in tasks:
                    project_id = None
                    if task.project_name:
                        project = await project_repo.upsert_by_name(user_id, task.project_name)
                        project_id = project.id
                    todo = await todo_repo.create(
                        user_id, task, project_id=project_id, order_index=order_index
                    )
                    order_index += 1
                    for subtask_title in task.subtasks:
                        await todo_repo.create_subtask(user_id, todo.id, subtask_title)
                    created_ids.append(todo.id)

                    if fail_after is not None and len(created_ids) >= fail_after:
                        raise RuntimeError("Forced plan apply failure")

                now = utc_now()
                result = await self.db.execute(
                    update(AiSuggestion)
                    .where(
                        AiSuggestion.id == suggestion_id,
                        AiSuggestion.user_id == user_id,
                        AiSuggestion.status == AiSuggestionStatus.PENDING,
                    )
                    .values(
                        status=AiSuggestionStatus.ACCEPTED,
                        feedback={
                            "reason": reason or "applied_via_endpoint",
                            "source": "apply_endpoint",
                            "updatedAt": to_iso(now),
                        },
                        applied_at=now,
                        applied_todo_ids=created_ids,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise PlanApplyConflict()
        except PlanApplyConflict:
            current = await self.get_by_id(user_id, suggestion_id)
            if current and current.status == AiSuggestionStatus.ACCEPTED and current.has_applied_todos:
                logger.info(f"[PlanApply] concurrent apply won, returning idempotent result: {suggestion_id}")
                return await self._idempotent_result(user_id, current)
            raise ValueError("SUGGESTION_ALREADY_HANDLED")
        except Exception:
            logger.warning(
                f"[PlanApply] rolled back after creating {len(created_ids)} todo(s): {suggestion_id}"
            )
            raise

        record = await self.get_by_id(user_id, suggestion_id)
        todos = await self._load_todos(user_id, created_ids)
        logger.info(f"[PlanApply] applied {len(todos)} todo(s): {suggestion_id}")
        return PlanApplyResult(suggestion=record, todos=todos, idempotent=False)  # type: ignore[arg-type]
