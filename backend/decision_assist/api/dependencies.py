"""공유 API dependencies - 엔드포인트 간 중복 제거"""

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from decision_assist.core.config import Settings, build_limits_by_plan, get_settings
from decision_assist.core.database import get_db
from decision_assist.core.errors import ApplyFailedError, ContractValidationError, QuotaExceededError
from decision_assist.repositories import (
    AiSuggestionRepository,
    ProjectRepository,
    TodoRepository,
    UserRepository,
)
from decision_assist.services.quota_service import QuotaService
from decision_assist.services.suggestion_service import SuggestionService

logger = logging.getLogger(__name__)


# ===== Auth Dependencies =====


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """현재 사용자 ID (X-User-Id 헤더)"""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "UNAUTHORIZED", "message": "Missing X-User-Id header"},
        )
    return user_id


# ===== Service Dependencies =====


def get_quota_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> QuotaService:
    """QuotaService 의존성"""
    return QuotaService(
        AiSuggestionRepository(db),
        build_limits_by_plan(settings),
        resolve_user_plan=UserRepository(db).get_plan,
    )


def get_suggestion_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    quota_service: Annotated[QuotaService, Depends(get_quota_service)],
) -> SuggestionService:
    """SuggestionService 의존성"""
    return SuggestionService(
        suggestion_repo=AiSuggestionRepository(db),
        todo_repo=TodoRepository(db),
        quota_service=quota_service,
        project_repo=ProjectRepository(db),
        decision_assist_enabled=settings.decision_assist_enabled,
    )


# ===== Service Error Handling =====

# 서비스 레이어에서 발생하는 에러 코드와 HTTP 응답 매핑
# (status_code, error_code, message)
SERVICE_ERROR_MAPPING: dict[str, tuple[int, str, str]] = {
    # 공통
    "DECISION_ASSIST_DISABLED": (403, "FORBIDDEN", "Decision assist is disabled"),
    "TODO_NOT_FOUND": (404, "NOT_FOUND", "Todo not found"),
    "TODO_ID_REQUIRED": (400, "BAD_REQUEST", "todoId is required for this surface"),
    "INVALID_SURFACE": (400, "BAD_REQUEST", "Unsupported surface for this suggestion"),
    "SURFACE_MISMATCH": (400, "BAD_REQUEST", "Suggestion surface does not match request surface"),
    # 제안 레코드
    "SUGGESTION_NOT_FOUND": (404, "NOT_FOUND", "Suggestion not found"),
    "SUGGESTION_ITEM_NOT_FOUND": (404, "NOT_FOUND", "Suggestion item not found"),
    "SUGGESTION_ALREADY_HANDLED": (409, "CONFLICT", "Suggestion already handled"),
    "SUGGESTION_NOT_PENDING": (409, "CONFLICT", "Suggestion is no longer pending"),
    "SUGGESTION_NOT_APPLIED": (409, "CONFLICT", "Suggestion has not been applied"),
    "APPLIED_HISTORY_MISSING": (409, "CONFLICT", "Accepted suggestion has no applied history"),
    "UNSUPPORTED_SUGGESTION_TYPE": (400, "BAD_REQUEST", "Unsupported suggestion type"),
    # 적용
    "SUGGESTION_ID_REQUIRED": (400, "BAD_REQUEST", "suggestionId is required"),
    "STORED_OUTPUT_INVALID": (400, "BAD_REQUEST", "Stored suggestion output is invalid"),
    "NO_PLAN_TASKS": (400, "BAD_REQUEST", "No plan tasks to apply"),
    "NO_APPLICABLE_SUGGESTIONS": (400, "BAD_REQUEST", "No applicable today plan suggestions"),
}


def handle_service_error(error: Exception, default_message: str = "Validation error") -> None:
    """서비스 레이어 에러를 HTTPException으로 변환

    Args:
        error: 서비스에서 발생한 에러 (ValueError는 에러 코드가 str로 전달됨)
        default_message: 매핑되지 않은 에러의 기본 메시지

    Raises:
        HTTPException: 매핑된 HTTP 에러 응답
    """
    if isinstance(error, QuotaExceededError):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "DAILY_LIMIT_REACHED",
                "message": "Daily AI suggestion limit reached",
                "usage": error.usage.model_dump(by_alias=True),
            },
        )

    if isinstance(error, ApplyFailedError):
        raise HTTPException(
            status_code=error.status_code,
            detail={"error": error.error, "message": error.message},
        )

    if isinstance(error, ContractValidationError):
        logger.warning(f"[Contract] rejected envelope: {error.field} {error.message}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "CONTRACT_VIOLATION", "message": error.message, "field": error.field},
        )

    error_code = str(error)

    if error_code in SERVICE_ERROR_MAPPING:
        status_code, code, message = SERVICE_ERROR_MAPPING[error_code]
        raise HTTPException(
            status_code=status_code,
            detail={"error": code, "message": message},
        )

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "VALIDATION_ERROR", "message": default_message},
    )
