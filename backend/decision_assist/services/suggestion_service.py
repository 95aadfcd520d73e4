"""AI 제안 서비스

생성 → 검증 → 저장 → 노출 → 적용/거절/닫기/되돌리기 흐름을 조율한다.
생성 전에는 일일 한도(QuotaService)와 적응형 throttle을 먼저 확인한다.
"""

import logging
import math
from datetime import timedelta
from typing import Any

from decision_assist.core.constants import (
    TODAY_PLAN_SURFACE,
    TODO_BOUND_SURFACES,
    AiSuggestionStatus,
    AiSuggestionType,
)
from decision_assist.core.errors import ApplyFailedError, ContractValidationError, QuotaExceededError
from decision_assist.core.telemetry import (
    DecisionAssistTelemetryEvent,
    emit_decision_assist_telemetry,
    get_assist_metrics,
    get_tracer,
)
from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.repositories.interface import (
    IAiSuggestionRepository,
    IProjectRepository,
    ITodoRepository,
)
from decision_assist.schemas.ai_planner import (
    CritiqueTaskRequest,
    CritiqueTaskResponse,
    PlanFromGoalRequest,
    PlanFromGoalResponse,
)
from decision_assist.schemas.decision_assist import (
    DecisionAssistEnvelopeResponse,
    DecisionAssistGenerateRequest,
    NormalizedEnvelope,
)
from decision_assist.schemas.suggestion import (
    AiSuggestionResponse,
    ApplySuggestionRequest,
    DismissSuggestionRequest,
    PlanApplyResponse,
    TodayPlanApplyResponse,
    TodoBoundApplyResponse,
    UndoSuggestionRequest,
)
from decision_assist.schemas.todo import TodoResponse
from decision_assist.schemas.usage import (
    AiUsageResponse,
    FeedbackSummaryResponse,
    InsightsResponse,
)
from decision_assist.services.ai_planner_service import (
    critique_task_deterministic,
    generate_decision_assist_envelope,
    plan_from_goal_deterministic,
)
from decision_assist.services.apply_service import (
    ApplyError,
    apply_today_plan_suggestions,
    apply_todo_bound_suggestion,
)
from decision_assist.services.contract_validator import validate_decision_assist_output
from decision_assist.services.decision_assist_throttle import (
    MAX_RECORDS,
    evaluate_decision_assist_throttle,
)
from decision_assist.services.normalization_service import (
    build_safe_empty_envelope,
    build_throttle_abstain_envelope,
    find_latest_pending_today_plan,
    find_latest_pending_todo_bound,
    normalize_today_plan_envelope,
    normalize_todo_bound_envelope,
    parse_plan_tasks,
    record_surface,
    record_todo_id,
)
from decision_assist.services.quota_service import QuotaService, build_insights_recommendation
from decision_assist.utils.datetime_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

LATEST_LOOKUP_LIMIT = 100
INSIGHTS_REASON_LIMIT = 3


def validate_dismissable(record: AiSuggestion) -> str:
    """닫기 가능한 레코드인지 확인하고 surface 반환

    task_critic(on_create/task_drawer) 또는 today_plan 레코드만 닫을 수 있다.

    Raises:
        ValueError: INVALID_SURFACE
    """
    surface = record_surface(record)
    if record.type == AiSuggestionType.TASK_CRITIC and surface in TODO_BOUND_SURFACES:
        return surface
    if record.type == AiSuggestionType.PLAN_FROM_GOAL and surface == TODAY_PLAN_SURFACE:
        return surface
    raise ValueError("INVALID_SURFACE")


def _normalize_stored(record: AiSuggestion, surface: str, todo_id: str) -> NormalizedEnvelope:
    """저장된 출력 재정규화 (계약 위반 시 STORED_OUTPUT_INVALID)"""
    try:
        if surface == TODAY_PLAN_SURFACE:
            return normalize_today_plan_envelope(record.output or {})
        return normalize_todo_bound_envelope(record.output or {}, todo_id, surface)
    except (ContractValidationError, ValueError) as e:
        logger.warning(f"[Suggestion] stored output invalid: {record.id} ({e})")
        raise ValueError("STORED_OUTPUT_INVALID") from e


def _raise_apply_error(result: ApplyError) -> None:
    logger.info(f"[Apply] refused: {result.error} {result.message}")
    raise ApplyFailedError(result.status, result.error, result.message)


class SuggestionService:
    """AI 제안 서비스"""

    def __init__(
        self,
        suggestion_repo: IAiSuggestionRepository,
        todo_repo: ITodoRepository,
        quota_service: QuotaService,
        project_repo: IProjectRepository | None = None,
        decision_assist_enabled: bool = True,
    ):
        self.suggestion_repo = suggestion_repo
        self.todo_repo = todo_repo
        self.quota_service = quota_service
        self.project_repo = project_repo
        self.decision_assist_enabled = decision_assist_enabled

    # =========================================================================
    # 공통 가드
    # =========================================================================

    def _ensure_enabled(self) -> None:
        if not self.decision_assist_enabled:
            raise ValueError("DECISION_ASSIST_DISABLED")

    async def _enforce_quota(self, user_id: str) -> None:
        exhausted = await self.quota_service.check_quota(user_id)
        if exhausted:
            assist_metrics = get_assist_metrics()
            if assist_metrics:
                assist_metrics.quota_exceeded_total.add(1, {"plan": exhausted.plan})
            raise QuotaExceededError(exhausted)

    async def _get_record(self, user_id: str, suggestion_id: str) -> AiSuggestion:
        record = await self.suggestion_repo.get_by_id(user_id, suggestion_id)
        if not record:
            raise ValueError("SUGGESTION_NOT_FOUND")
        return record

    async def _load_todos(self, user_id: str, todo_ids: list[str]) -> list[TodoResponse]:
        todos = []
        for todo_id in todo_ids:
            todo = await self.todo_repo.find_by_id(user_id, todo_id)
            if todo:
                todos.append(TodoResponse.model_validate(todo))
        return todos

    # =========================================================================
    # 생성
    # =========================================================================

    async def generate_decision_assist(
        self, user_id: str, request: DecisionAssistGenerateRequest
    ) -> DecisionAssistEnvelopeResponse:
        """Decision Assist envelope 생성

        한도 확인 → throttle 확인(억제 시 must_abstain envelope, 저장 안 함) →
        생성 → 계약 검증 → 저장 → surface 정규화.
        """
        self._ensure_enabled()
        await self._enforce_quota(user_id)

        surface = request.surface
        todo = None
        if surface in TODO_BOUND_SURFACES:
            if not request.todo_id:
                raise ValueError("TODO_ID_REQUIRED")
            todo = await self.todo_repo.find_by_id(user_id, request.todo_id)
            if not todo:
                raise ValueError("TODO_NOT_FOUND")

        history = await self.suggestion_repo.list_by_user(user_id, MAX_RECORDS)
        throttle = evaluate_decision_assist_throttle(history, surface, utc_now())
        if throttle.throttled:
            logger.info(
                f"[Throttle] generation suppressed: user={user_id}, surface={surface}, "
                f"reason={throttle.reason}, until={throttle.throttle_until}"
            )
            assist_metrics = get_assist_metrics()
            if assist_metrics:
                assist_metrics.throttled_total.add(1, {"surface": surface, "reason": throttle.reason or ""})
            envelope = build_throttle_abstain_envelope(surface, request.top_n)
            return DecisionAssistEnvelopeResponse(throttled=True, output_envelope=envelope.to_payload())

        context = await self.quota_service.get_feedback_context(user_id)
        candidates = (
            await self.todo_repo.find_all(user_id, include_completed=False)
            if surface == TODAY_PLAN_SURFACE
            else None
        )
        raw_output = generate_decision_assist_envelope(
            surface,
            todo=todo,
            candidates=candidates,
            top_n=request.top_n,
            confidence=request.confidence,
            context=context,
        )
        validated = validate_decision_assist_output(raw_output)

        record_input: dict[str, Any] = {"surface": surface}
        if request.todo_id and surface in TODO_BOUND_SURFACES:
            record_input["todoId"] = request.todo_id
        if request.title:
            record_input["title"] = request.title
        if request.top_n:
            record_input["topN"] = request.top_n

        record = await self.suggestion_repo.create(
            user_id,
            AiSuggestionType.PLAN_FROM_GOAL if surface == TODAY_PLAN_SURFACE else AiSuggestionType.TASK_CRITIC,
            record_input,
            validated.to_payload(),
        )
        envelope = _normalize_stored(record, surface, request.todo_id or "")

        emit_decision_assist_telemetry(
            DecisionAssistTelemetryEvent(
                event_name="ai_suggestion_generated",
                surface=surface,
                ai_suggestion_db_id=record.id,
                todo_id=request.todo_id,
                suggestion_count=len(envelope.suggestions),
            )
        )
        return DecisionAssistEnvelopeResponse(
            ai_suggestion_id=record.id,
            status=record.status,
            output_envelope=envelope.to_payload(),
        )

    async def critique_task(self, user_id: str, request: CritiqueTaskRequest) -> CritiqueTaskResponse:
        """할 일 비평 생성 (task_critic 레코드 저장)"""
        await self._enforce_quota(user_id)
        context = await self.quota_service.get_feedback_context(user_id)
        result = critique_task_deterministic(request, context)

        record = await self.suggestion_repo.create(
            user_id,
            AiSuggestionType.TASK_CRITIC,
            request.model_dump(mode="json", by_alias=True, exclude_none=True),
            result.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        return CritiqueTaskResponse(**result.model_dump(), suggestion_id=record.id)

    async def plan_from_goal(self, user_id: str, request: PlanFromGoalRequest) -> PlanFromGoalResponse:
        """목표 기반 계획 생성 (plan_from_goal 레코드 저장)"""
        await self._enforce_quota(user_id)
        context = await self.quota_service.get_feedback_context(user_id)
        result = plan_from_goal_deterministic(request, context)

        record = await self.suggestion_repo.create(
            user_id,
            AiSuggestionType.PLAN_FROM_GOAL,
            request.model_dump(mode="json", by_alias=True, exclude_none=True),
            result.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        return PlanFromGoalResponse(**result.model_dump(), suggestion_id=record.id)

    # =========================================================================
    # 조회
    # =========================================================================

    async def get_usage(self, user_id: str) -> AiUsageResponse:
        return await self.quota_service.get_usage(user_id)

    async def get_insights(self, user_id: str, days: int) -> InsightsResponse:
        since = utc_now() - timedelta(days=days)
        usage = await self.quota_service.get_usage(user_id)
        generated_count = await self.suggestion_repo.count_by_user_since(user_id, since)
        summary = await self.suggestion_repo.summarize_feedback_by_user_since(
            user_id, since, INSIGHTS_REASON_LIMIT
        )

        rated_count = summary.accepted_count + summary.rejected_count
        acceptance_rate = (
            math.floor(summary.accepted_count / rated_count * 100 + 0.5) if rated_count else None
        )
        top_rejected_reason = summary.rejected_reasons[0].reason if summary.rejected_reasons else None

        return InsightsResponse(
            period_days=days,
            since=to_iso(since),
            usage_today=usage,
            generated_count=generated_count,
            rated_count=rated_count,
            accepted_count=summary.accepted_count,
            rejected_count=summary.rejected_count,
            acceptance_rate=acceptance_rate,
            top_accepted_reasons=summary.accepted_reasons,
            top_rejected_reasons=summary.rejected_reasons,
            recommendation=build_insights_recommendation(
                plan=usage.plan,
                usage_remaining=usage.remaining,
                usage_limit=usage.limit,
                generated_count=generated_count,
                top_rejected_reason=top_rejected_reason,
            ),
        )

    async def get_feedback_summary(
        self, user_id: str, days: int, reason_limit: int
    ) -> FeedbackSummaryResponse:
        since = utc_now() - timedelta(days=days)
        summary = await self.suggestion_repo.summarize_feedback_by_user_since(user_id, since, reason_limit)
        return FeedbackSummaryResponse(
            days=days,
            reason_limit=reason_limit,
            since=to_iso(since),
            accepted_count=summary.accepted_count,
            rejected_count=summary.rejected_count,
            total_rated=summary.accepted_count + summary.rejected_count,
            accepted_reasons=summary.accepted_reasons,
            rejected_reasons=summary.rejected_reasons,
        )

    async def list_suggestions(self, user_id: str, limit: int) -> list[AiSuggestionResponse]:
        records = await self.suggestion_repo.list_by_user(user_id, limit)
        return [AiSuggestionResponse.model_validate(record) for record in records]

    async def get_latest(
        self, user_id: str, surface: str, todo_id: str | None = None
    ) -> DecisionAssistEnvelopeResponse | None:
        """가장 최근 pending 제안 (없으면 None)

        저장된 출력이 계약을 통과하지 못하면 빈 must_abstain envelope로 대체한다.
        """
        self._ensure_enabled()
        records = await self.suggestion_repo.list_by_user(user_id, LATEST_LOOKUP_LIMIT)
        if surface in TODO_BOUND_SURFACES:
            if not todo_id:
                raise ValueError("TODO_ID_REQUIRED")
            latest = find_latest_pending_todo_bound(records, todo_id, surface)
        elif surface == TODAY_PLAN_SURFACE:
            latest = find_latest_pending_today_plan(records)
        else:
            raise ValueError("INVALID_SURFACE")
        if not latest:
            return None

        try:
            output_envelope = _normalize_stored(latest, surface, todo_id or "").to_payload()
            suggestion_count = len(output_envelope["suggestions"])
        except ValueError:
            output_envelope = build_safe_empty_envelope(latest.id, surface).to_payload()
            suggestion_count = 0

        emit_decision_assist_telemetry(
            DecisionAssistTelemetryEvent(
                event_name="ai_suggestion_viewed",
                surface=surface,
                ai_suggestion_db_id=latest.id,
                todo_id=todo_id,
                suggestion_count=suggestion_count,
            )
        )
        return DecisionAssistEnvelopeResponse(
            ai_suggestion_id=latest.id,
            status=latest.status,
            output_envelope=output_envelope,
        )

    # =========================================================================
    # 상태 변경
    # =========================================================================

    async def update_status(
        self, user_id: str, suggestion_id: str, status: str, reason: str | None = None
    ) -> AiSuggestionResponse:
        """수동 상태 변경 (rejected 레코드는 409)"""
        updated = await self.suggestion_repo.update_status(
            user_id,
            suggestion_id,
            status,
            {
                "reason": reason,
                "source": "manual_status_update",
                "updatedAt": to_iso(utc_now()),
            },
        )
        if not updated:
            raise ValueError("SUGGESTION_NOT_FOUND")
        return AiSuggestionResponse.model_validate(updated)

    async def dismiss(
        self, user_id: str, suggestion_id: str, request: DismissSuggestionRequest
    ) -> None:
        """제안 닫기 (카드 하나를 닫아도 레코드 전체를 rejected 처리)"""
        self._ensure_enabled()
        record = await self._get_record(user_id, suggestion_id)
        surface = validate_dismissable(record)

        feedback: dict[str, Any] = {
            "source": f"{surface}_dismiss",
            "updatedAt": to_iso(utc_now()),
        }
        if request.reason:
            feedback["reason"] = request.reason
        if request.suggestion_id:
            feedback["suggestionId"] = request.suggestion_id
        await self.suggestion_repo.update_status(
            user_id, suggestion_id, AiSuggestionStatus.REJECTED, feedback
        )

        emit_decision_assist_telemetry(
            DecisionAssistTelemetryEvent(
                event_name="ai_suggestion_dismissed",
                surface=surface,
                ai_suggestion_db_id=record.id,
                suggestion_id=request.suggestion_id,
                todo_id=record_todo_id(record) or None,
            )
        )

    async def undo(
        self, user_id: str, suggestion_id: str, request: UndoSuggestionRequest
    ) -> AiSuggestionResponse:
        """적용된 단일 할 일 제안 되돌리기 (accepted → rejected)

        applied_at은 유지되므로 throttle의 quick revert 감지 대상이 된다.
        """
        self._ensure_enabled()
        record = await self._get_record(user_id, suggestion_id)
        surface = record_surface(record)
        if record.type != AiSuggestionType.TASK_CRITIC or surface not in TODO_BOUND_SURFACES:
            raise ValueError("INVALID_SURFACE")
        if record.status == AiSuggestionStatus.REJECTED:
            raise ValueError("SUGGESTION_ALREADY_HANDLED")
        if record.status != AiSuggestionStatus.ACCEPTED or not record.has_applied_todos:
            raise ValueError("SUGGESTION_NOT_APPLIED")

        applied_item_id = (record.feedback or {}).get("suggestionId")
        updated = await self.suggestion_repo.update_status(
            user_id,
            suggestion_id,
            AiSuggestionStatus.REJECTED,
            {
                "reason": request.reason or "undo",
                "source": f"{surface}_undo",
                "suggestionId": applied_item_id,
                "updatedAt": to_iso(utc_now()),
            },
        )
        if not updated:
            raise ValueError("SUGGESTION_NOT_FOUND")

        emit_decision_assist_telemetry(
            DecisionAssistTelemetryEvent(
                event_name="ai_suggestion_undo",
                surface=surface,
                ai_suggestion_db_id=record.id,
                suggestion_id=applied_item_id if isinstance(applied_item_id, str) else None,
                todo_id=record_todo_id(record) or None,
            )
        )
        return AiSuggestionResponse.model_validate(updated)

    # =========================================================================
    # 적용
    # =========================================================================

    async def apply(
        self, user_id: str, suggestion_id: str, request: ApplySuggestionRequest, fail_after: int | None = None
    ) -> PlanApplyResponse | TodoBoundApplyResponse | TodayPlanApplyResponse:
        """제안 적용 (레코드 타입/surface별 분기)"""
        record = await self._get_record(user_id, suggestion_id)
        if record.status == AiSuggestionStatus.REJECTED:
            raise ValueError("SUGGESTION_ALREADY_HANDLED")

        with get_tracer().start_as_current_span("decision_assist.apply") as span:
            span.set_attribute("ai_suggestion.id", record.id)
            span.set_attribute("ai_suggestion.type", record.type)
            span.set_attribute("ai_suggestion.surface", record_surface(record))

            if record.type == AiSuggestionType.PLAN_FROM_GOAL:
                if record_surface(record) == TODAY_PLAN_SURFACE:
                    return await self._apply_today_plan(user_id, record, request)
                return await self._apply_plan(user_id, record, request, fail_after)
            if record.type == AiSuggestionType.TASK_CRITIC:
                return await self._apply_todo_bound(user_id, record, request)
            raise ValueError("UNSUPPORTED_SUGGESTION_TYPE")

    async def _apply_plan(
        self,
        user_id: str,
        record: AiSuggestion,
        request: ApplySuggestionRequest,
        fail_after: int | None,
    ) -> PlanApplyResponse:
        tasks = parse_plan_tasks(record.output or {})
        result = await self.suggestion_repo.apply_plan_suggestion_transaction(
            user_id, record.id, tasks, reason=request.reason, fail_after=fail_after
        )
        todos = [TodoResponse.model_validate(todo) for todo in result.todos]
        return PlanApplyResponse(
            created_count=len(todos),
            todos=todos,
            suggestion=AiSuggestionResponse.model_validate(result.suggestion),
            idempotent=result.idempotent,
        )

    async def _apply_todo_bound(
        self, user_id: str, record: AiSuggestion, request: ApplySuggestionRequest
    ) -> TodoBoundApplyResponse:
        self._ensure_enabled()
        surface = record_surface(record)
        if surface not in TODO_BOUND_SURFACES:
            raise ValueError("INVALID_SURFACE")
        if not request.suggestion_id:
            raise ValueError("SUGGESTION_ID_REQUIRED")
        todo_id = record_todo_id(record)
        if not todo_id:
            raise ValueError("TODO_ID_REQUIRED")
        todo = await self.todo_repo.find_by_id(user_id, todo_id)
        if not todo:
            raise ValueError("TODO_NOT_FOUND")

        if record.status != AiSuggestionStatus.PENDING:
            # 같은 항목 재적용은 멱등 처리
            if record.has_applied_todos and (record.feedback or {}).get("suggestionId") == request.suggestion_id:
                return TodoBoundApplyResponse(
                    todo=TodoResponse.model_validate(todo),
                    applied_suggestion_id=request.suggestion_id,
                    suggestion=AiSuggestionResponse.model_validate(record),
                    idempotent=True,
                )
            raise ValueError("SUGGESTION_NOT_PENDING")

        envelope = _normalize_stored(record, surface, todo_id)
        selected = envelope.find_suggestion(request.suggestion_id)
        if not selected:
            raise ValueError("SUGGESTION_ITEM_NOT_FOUND")

        result = await apply_todo_bound_suggestion(
            selected,
            todo,
            user_id,
            self.todo_repo,
            project_repo=self.project_repo,
            confirmed=request.confirmed,
        )
        if isinstance(result, ApplyError):
            _raise_apply_error(result)

        updated = await self.suggestion_repo.mark_applied(
            user_id,
            record.id,
            [todo_id],
            {
                "reason": request.reason or f"applied:{selected.suggestion_id}",
                "source": f"{surface}_apply",
                "suggestionId": selected.suggestion_id,
                "updatedAt": to_iso(utc_now()),
            },
        )
        if not updated:
            raise ValueError("SUGGESTION_NOT_FOUND")

        emit_decision_assist_telemetry(
            DecisionAssistTelemetryEvent(
                event_name="ai_suggestion_applied",
                surface=surface,
                ai_suggestion_db_id=record.id,
                suggestion_id=selected.suggestion_id,
                todo_id=todo_id,
            )
        )
        return TodoBoundApplyResponse(
            todo=TodoResponse.model_validate(result.updated_todo),
            applied_suggestion_id=selected.suggestion_id,
            suggestion=AiSuggestionResponse.model_validate(updated),
            idempotent=False,
        )

    async def _apply_today_plan(
        self, user_id: str, record: AiSuggestion, request: ApplySuggestionRequest
    ) -> TodayPlanApplyResponse:
        self._ensure_enabled()
        if record.status != AiSuggestionStatus.PENDING:
            if record.has_applied_todos:
                todos = await self._load_todos(user_id, list(record.applied_todo_ids))
                return TodayPlanApplyResponse(
                    updated_count=len(todos),
                    todos=todos,
                    suggestion=AiSuggestionResponse.model_validate(record),
                    idempotent=True,
                )
            raise ValueError("SUGGESTION_NOT_PENDING")

        envelope = _normalize_stored(record, TODAY_PLAN_SURFACE, "")
        planned_todo_ids = envelope.plan_preview.todo_ids if envelope.plan_preview else set()
        if request.selected_todo_ids:
            selected_todo_ids = {todo_id for todo_id in request.selected_todo_ids if todo_id in planned_todo_ids}
        else:
            selected_todo_ids = planned_todo_ids

        applicable = [item for item in envelope.suggestions if item.todo_id in selected_todo_ids]
        if request.suggestion_id:
            applicable = [item for item in applicable if item.suggestion_id == request.suggestion_id]
            if not applicable:
                raise ValueError("SUGGESTION_ITEM_NOT_FOUND")
        if not applicable:
            raise ValueError("NO_APPLICABLE_SUGGESTIONS")

        result = await apply_today_plan_suggestions(
            applicable, user_id, self.todo_repo, confirmed=request.confirmed
        )
        if isinstance(result, ApplyError):
            _raise_apply_error(result)

        updated = await self.suggestion_repo.mark_applied(
            user_id,
            record.id,
            result.applied_todo_ids,
            {
                "reason": request.reason or "today_plan_apply",
                "source": "today_plan_apply",
                "suggestionId": request.suggestion_id,
                "selectedTodoIds": sorted(selected_todo_ids),
                "updatedAt": to_iso(utc_now()),
            },
        )
        if not updated:
            raise ValueError("SUGGESTION_NOT_FOUND")

        emit_decision_assist_telemetry(
            DecisionAssistTelemetryEvent(
                event_name="ai_suggestion_applied",
                surface=TODAY_PLAN_SURFACE,
                ai_suggestion_db_id=record.id,
                suggestion_id=request.suggestion_id,
                suggestion_count=len(applicable),
                selected_todo_ids_count=len(selected_todo_ids),
            )
        )
        return TodayPlanApplyResponse(
            updated_count=len(result.updated_todos),
            todos=[TodoResponse.model_validate(todo) for todo in result.updated_todos],
            suggestion=AiSuggestionResponse.model_validate(updated),
            idempotent=False,
        )
