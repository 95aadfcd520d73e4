import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from decision_assist.core.constants import AiSuggestionStatus
from decision_assist.core.database import Base, JSONType


class AiSuggestion(Base):
    """AI 제안 레코드 모델 (생성 호출 1회당 1건)

    상태 전이:
    - pending → accepted (상태 변경 또는 apply, apply 시 applied_at/applied_todo_ids 기록)
    - pending → rejected
    - accepted → rejected (적용 후 되돌리기)
    - rejected는 종결 상태 (이후 상태 변경/적용 불가)
    """

    __tablename__ = "ai_suggestions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )  # task_critic, plan_from_goal
    status: Mapped[str] = mapped_column(
        String(16),
        default=AiSuggestionStatus.PENDING,
        nullable=False,
        index=True,
    )
    input: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )
    output: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )
    feedback: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )  # reason, source, updatedAt 등
    applied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    applied_todo_ids: Mapped[list[str] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def has_applied_todos(self) -> bool:
        return bool(self.applied_todo_ids)

    def __repr__(self) -> str:
        return f"<AiSuggestion {self.type} {self.status}>"
