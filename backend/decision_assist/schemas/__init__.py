from decision_assist.schemas.common import ErrorResponse
from decision_assist.schemas.decision_assist import (
    DecisionAssistOutput,
    DecisionAssistSuggestion,
    NormalizedEnvelope,
    NormalizedSuggestion,
    PlanPreview,
    PlanPreviewItem,
)
from decision_assist.schemas.suggestion import AiSuggestionResponse
from decision_assist.schemas.todo import TodoCreate, TodoResponse
from decision_assist.schemas.usage import AiUsageResponse, FeedbackContext, FeedbackSummary

__all__ = [
    "AiSuggestionResponse",
    "AiUsageResponse",
    "DecisionAssistOutput",
    "DecisionAssistSuggestion",
    "ErrorResponse",
    "FeedbackContext",
    "FeedbackSummary",
    "NormalizedEnvelope",
    "NormalizedSuggestion",
    "PlanPreview",
    "PlanPreviewItem",
    "TodoCreate",
    "TodoResponse",
]
