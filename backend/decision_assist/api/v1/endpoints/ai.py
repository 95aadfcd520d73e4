"""AI 제안 API 엔드포인트

Decision Assist 생성/조회와 제안 레코드의 상태 변경·적용·닫기·되돌리기.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Response, status

from decision_assist.api.dependencies import (
    get_current_user_id,
    get_suggestion_service,
    handle_service_error,
)
from decision_assist.core.constants import DecisionAssistSurface
from decision_assist.core.errors import QuotaExceededError
from decision_assist.schemas import ErrorResponse
from decision_assist.schemas.ai_planner import (
    CritiqueTaskRequest,
    CritiqueTaskResponse,
    PlanFromGoalRequest,
    PlanFromGoalResponse,
)
from decision_assist.schemas.decision_assist import (
    DecisionAssistEnvelopeResponse,
    DecisionAssistGenerateRequest,
)
from decision_assist.schemas.suggestion import (
    AiSuggestionResponse,
    ApplySuggestionRequest,
    DismissSuggestionRequest,
    PlanApplyResponse,
    TodayPlanApplyResponse,
    TodoBoundApplyResponse,
    UndoSuggestionRequest,
    UpdateSuggestionStatusRequest,
)
from decision_assist.schemas.usage import AiUsageResponse, FeedbackSummaryResponse, InsightsResponse
from decision_assist.services.suggestion_service import SuggestionService

router = APIRouter(prefix="/ai", tags=["AI"])

UserId = Annotated[str, Depends(get_current_user_id)]
Service = Annotated[SuggestionService, Depends(get_suggestion_service)]


# ===== 생성 =====


@router.post(
    "/decision-assist/generate",
    response_model=DecisionAssistEnvelopeResponse,
    summary="Decision Assist 제안 생성",
    description="surface별 제안 envelope를 생성합니다. throttle 중이면 must_abstain envelope를 반환합니다.",
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
async def generate_decision_assist(
    request: DecisionAssistGenerateRequest,
    user_id: UserId,
    service: Service,
) -> DecisionAssistEnvelopeResponse:
    try:
        return await service.generate_decision_assist(user_id, request)
    except (ValueError, QuotaExceededError) as e:
        handle_service_error(e)


@router.post(
    "/task-critic",
    response_model=CritiqueTaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="할 일 비평",
    responses={429: {"model": ErrorResponse}},
)
async def critique_task(
    request: CritiqueTaskRequest,
    user_id: UserId,
    service: Service,
) -> CritiqueTaskResponse:
    try:
        return await service.critique_task(user_id, request)
    except (ValueError, QuotaExceededError) as e:
        handle_service_error(e)


@router.post(
    "/plan-from-goal",
    response_model=PlanFromGoalResponse,
    status_code=status.HTTP_201_CREATED,
    summary="목표 기반 계획 생성",
    responses={429: {"model": ErrorResponse}},
)
async def plan_from_goal(
    request: PlanFromGoalRequest,
    user_id: UserId,
    service: Service,
) -> PlanFromGoalResponse:
    try:
        return await service.plan_from_goal(user_id, request)
    except (ValueError, QuotaExceededError) as e:
        handle_service_error(e)


# ===== 사용량/인사이트 =====


@router.get("/usage", response_model=AiUsageResponse, summary="일일 사용량 조회")
async def get_usage(user_id: UserId, service: Service) -> AiUsageResponse:
    return await service.get_usage(user_id)


@router.get("/insights", response_model=InsightsResponse, summary="AI 인사이트 조회")
async def get_insights(
    user_id: UserId,
    service: Service,
    days: Annotated[int, Query(ge=1, le=90)] = 7,
) -> InsightsResponse:
    return await service.get_insights(user_id, days)


@router.get("/feedback-summary", response_model=FeedbackSummaryResponse, summary="피드백 요약 조회")
async def get_feedback_summary(
    user_id: UserId,
    service: Service,
    days: Annotated[int, Query(ge=1, le=90)] = 30,
    reason_limit: Annotated[int, Query(ge=1, le=20, alias="reasonLimit")] = 5,
) -> FeedbackSummaryResponse:
    return await service.get_feedback_summary(user_id, days, reason_limit)


# ===== 제안 레코드 =====


@router.get("/suggestions", response_model=list[AiSuggestionResponse], summary="제안 목록 조회")
async def list_suggestions(
    user_id: UserId,
    service: Service,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[AiSuggestionResponse]:
    return await service.list_suggestions(user_id, limit)


@router.get(
    "/suggestions/latest",
    response_model=DecisionAssistEnvelopeResponse,
    summary="최근 pending 제안 조회",
    description="없으면 204를 반환합니다.",
    responses={204: {"description": "No pending suggestion"}, 400: {"model": ErrorResponse}},
)
async def get_latest_suggestion(
    user_id: UserId,
    service: Service,
    surface: DecisionAssistSurface,
    todo_id: Annotated[str | None, Query(alias="todoId")] = None,
):
    try:
        latest = await service.get_latest(user_id, surface, todo_id)
    except ValueError as e:
        handle_service_error(e)
    if latest is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return latest


@router.put(
    "/suggestions/{suggestion_id}/status",
    response_model=AiSuggestionResponse,
    summary="제안 상태 변경",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_suggestion_status(
    suggestion_id: str,
    request: UpdateSuggestionStatusRequest,
    user_id: UserId,
    service: Service,
) -> AiSuggestionResponse:
    try:
        return await service.update_status(user_id, suggestion_id, request.status, request.reason)
    except ValueError as e:
        handle_service_error(e)


@router.post(
    "/suggestions/{suggestion_id}/apply",
    response_model=PlanApplyResponse | TodoBoundApplyResponse | TodayPlanApplyResponse,
    summary="제안 적용",
    description="plan 제안은 할 일을 일괄 생성하고, 그 외 제안은 기존 할 일을 변경합니다. 재시도는 멱등입니다.",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def apply_suggestion(
    suggestion_id: str,
    user_id: UserId,
    service: Service,
    request: Annotated[ApplySuggestionRequest | None, Body()] = None,
) -> PlanApplyResponse | TodoBoundApplyResponse | TodayPlanApplyResponse:
    try:
        return await service.apply(user_id, suggestion_id, request or ApplySuggestionRequest())
    except ValueError as e:
        handle_service_error(e)


@router.post(
    "/suggestions/{suggestion_id}/dismiss",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="제안 닫기",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def dismiss_suggestion(
    suggestion_id: str,
    user_id: UserId,
    service: Service,
    request: Annotated[DismissSuggestionRequest | None, Body()] = None,
) -> Response:
    try:
        await service.dismiss(user_id, suggestion_id, request or DismissSuggestionRequest())
    except ValueError as e:
        handle_service_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/suggestions/{suggestion_id}/undo",
    response_model=AiSuggestionResponse,
    summary="적용 되돌리기",
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def undo_suggestion(
    suggestion_id: str,
    user_id: UserId,
    service: Service,
    request: Annotated[UndoSuggestionRequest | None, Body()] = None,
) -> AiSuggestionResponse:
    try:
        return await service.undo(user_id, suggestion_id, request or UndoSuggestionRequest())
    except ValueError as e:
        handle_service_error(e)
