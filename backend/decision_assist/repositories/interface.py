"""Repository 인터페이스 정의

Protocol 기반 인터페이스로 구조적 서브타이핑 지원.
SQLAlchemy 구현체와 Mock 구현체가 같은 계약을 따른다.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from decision_assist.models.ai_suggestion import AiSuggestion
from decision_assist.models.project import Project
from decision_assist.models.todo import Subtask, Todo
from decision_assist.schemas.todo import TodoCreate
from decision_assist.schemas.usage import FeedbackSummary


@dataclass
class PlanApplyResult:
    """계획 적용 트랜잭션 결과"""

    suggestion: AiSuggestion
    todos: list[Todo] = field(default_factory=list)
    idempotent: bool = False


class ITodoRepository(Protocol):
    """할 일 저장소 인터페이스"""

    async def find_by_id(self, user_id: str, todo_id: str) -> Todo | None:
        """할 일 조회 (소유자 범위, 하위 작업 포함)"""
        ...

    async def find_all(self, user_id: str, include_completed: bool = True) -> list[Todo]:
        """할 일 목록 (order_index 오름차순)"""
        ...

    async def update(self, user_id: str, todo_id: str, fields: dict[str, Any]) -> Todo | None:
        """일부 필드 수정, 대상이 없으면 None"""
        ...

    async def create(
        self,
        user_id: str,
        dto: TodoCreate,
        project_id: str | None = None,
        order_index: int | None = None,
    ) -> Todo:
        """할 일 생성 (order_index 미지정 시 다음 순번)"""
        ...

    async def create_subtask(self, user_id: str, todo_id: str, title: str) -> Subtask | None:
        """하위 작업 추가, 상위 할 일이 없으면 None"""
        ...


class IProjectRepository(Protocol):
    """프로젝트 저장소 인터페이스"""

    async def find_all(self, user_id: str) -> list[Project]:
        ...

    async def find_by_name(self, user_id: str, name: str) -> Project | None:
        """이름으로 조회 (대소문자 무시)"""
        ...

    async def upsert_by_name(self, user_id: str, name: str) -> Project:
        ...


class IAiSuggestionRepository(Protocol):
    """AI 제안 레코드 저장소 인터페이스"""

    async def create(
        self,
        user_id: str,
        suggestion_type: str,
        input: dict[str, Any],
        output: dict[str, Any],
    ) -> AiSuggestion:
        """pending 레코드 생성"""
        ...

    async def list_by_user(self, user_id: str, limit: int) -> list[AiSuggestion]:
        """최신순 목록"""
        ...

    async def get_by_id(self, user_id: str, suggestion_id: str) -> AiSuggestion | None:
        ...

    async def count_by_user_since(self, user_id: str, since: datetime) -> int:
        """since 이후 생성된 레코드 수"""
        ...

    async def summarize_feedback_by_user_since(
        self, user_id: str, since: datetime, reason_limit: int
    ) -> FeedbackSummary:
        """since 이후 갱신된 accepted/rejected 레코드 집계"""
        ...

    async def update_status(
        self,
        user_id: str,
        suggestion_id: str,
        status: str,
        feedback: dict[str, Any] | None = None,
    ) -> AiSuggestion | None:
        """상태 변경

        Raises:
            ValueError: SUGGESTION_ALREADY_HANDLED (rejected 레코드)
        """
        ...

    async def mark_applied(
        self,
        user_id: str,
        suggestion_id: str,
        applied_todo_ids: list[str],
        feedback: dict[str, Any] | None = None,
    ) -> AiSuggestion | None:
        """pending → accepted (멱등, 종결 상태면 기존 레코드 그대로 반환)"""
        ...

    async def apply_plan_suggestion_transaction(
        self,
        user_id: str,
        suggestion_id: str,
        tasks: list[TodoCreate],
        reason: str | None = None,
        fail_after: int | None = None,
    ) -> PlanApplyResult:
        """계획 일괄 적용 (할 일/하위 작업 생성 + accepted 전환을 하나의 트랜잭션으로)

        Args:
            fail_after: 테스트용 강제 실패 지점 (생성한 할 일 수)

        Raises:
            ValueError: SUGGESTION_NOT_FOUND, SUGGESTION_ALREADY_HANDLED,
                APPLIED_HISTORY_MISSING, NO_PLAN_TASKS
        """
        ...
