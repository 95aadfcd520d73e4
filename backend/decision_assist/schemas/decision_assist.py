"""Decision Assist 제안 envelope 스키마

외부(모델/결정적 생성기)에서 들어오는 원본 dict는 신뢰하지 않는다.
contract_validator를 통과한 값만 아래 모델로 표현되며,
응답/저장 시에는 to_payload()로 camelCase dict로 되돌린다.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from decision_assist.core.constants import DecisionAssistSurface

DecisionAssistSuggestionType = Literal[
    "set_due_date",
    "set_priority",
    "set_project",
    "set_category",
    "rewrite_title",
    "propose_next_action",
    "split_subtasks",
    "ask_clarification",
    "defer_task",
]


class PlanPreviewItem(BaseModel):
    """today_plan 순위 항목"""

    todo_id: str | None = Field(default=None, alias="todoId")
    rank: int
    time_estimate_min: int | None = Field(default=None, alias="timeEstimateMin")
    rationale: str

    class Config:
        populate_by_name = True


class PlanPreview(BaseModel):
    """today_plan 미리보기 (topN 3 또는 5)"""

    top_n: int = Field(alias="topN")
    items: list[PlanPreviewItem] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    @property
    def todo_ids(self) -> set[str]:
        return {item.todo_id for item in self.items if item.todo_id}


class DecisionAssistSuggestion(BaseModel):
    """검증된 단일 제안"""

    type: DecisionAssistSuggestionType
    confidence: float
    rationale: str
    payload: dict[str, Any] = Field(default_factory=dict)


class NormalizedSuggestion(DecisionAssistSuggestion):
    """surface에 바인딩된 제안 (suggestionId/requiresConfirmation 부여)"""

    suggestion_id: str = Field(alias="suggestionId")
    requires_confirmation: bool = Field(default=False, alias="requiresConfirmation")

    class Config:
        populate_by_name = True

    @property
    def todo_id(self) -> str:
        value = self.payload.get("todoId")
        return value if isinstance(value, str) else ""


class DecisionAssistOutput(BaseModel):
    """검증된 제안 envelope"""

    request_id: str = Field(alias="requestId")
    surface: DecisionAssistSurface
    must_abstain: bool
    model_info: dict[str, Any] | None = Field(default=None, alias="modelInfo")
    suggestions: list[DecisionAssistSuggestion] = Field(default_factory=list)
    plan_preview: PlanPreview | None = Field(default=None, alias="planPreview")

    class Config:
        populate_by_name = True

    def to_payload(self) -> dict[str, Any]:
        """저장/응답용 camelCase dict"""
        return self.model_dump(by_alias=True, exclude_none=True)


class NormalizedEnvelope(DecisionAssistOutput):
    """정규화된 envelope (surface 허용 타입만 남음)"""

    suggestions: list[NormalizedSuggestion] = Field(default_factory=list)

    def find_suggestion(self, suggestion_id: str) -> NormalizedSuggestion | None:
        return next(
            (item for item in self.suggestions if item.suggestion_id == suggestion_id),
            None,
        )


class DecisionAssistGenerateRequest(BaseModel):
    """Decision Assist 생성 요청"""

    surface: DecisionAssistSurface
    todo_id: str | None = Field(default=None, alias="todoId", max_length=64)
    title: str | None = Field(default=None, max_length=200)
    top_n: Literal[3, 5] | None = Field(default=None, alias="topN")
    confidence: float | None = Field(default=None, ge=0, le=1)

    class Config:
        populate_by_name = True


class DecisionAssistEnvelopeResponse(BaseModel):
    """생성/최신 조회 응답 (제안 레코드 ID + 정규화 envelope)"""

    ai_suggestion_id: str | None = Field(default=None, serialization_alias="aiSuggestionId")
    status: str | None = None
    throttled: bool = False
    output_envelope: dict[str, Any] = Field(serialization_alias="outputEnvelope")

    class Config:
        populate_by_name = True
