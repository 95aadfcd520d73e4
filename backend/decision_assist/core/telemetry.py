"""OpenTelemetry 계측 설정 및 Decision Assist 텔레메트리 싱크

OTel 초기화 로직과, generate/view/apply/dismiss/undo 이벤트를
구조화된 로그 레코드로 내보내는 단방향 싱크를 제공합니다.
"""

from __future__ import annotations

import json
import logging
import math
import os
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.semconv.resource import ResourceAttributes
from pydantic import BaseModel

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

DecisionAssistTelemetryEventName = Literal[
    "ai_suggestion_generated",
    "ai_suggestion_viewed",
    "ai_suggestion_applied",
    "ai_suggestion_dismissed",
    "ai_suggestion_undo",
]


def init_telemetry(
    service_name: str,
    service_version: str = "0.1.0",
    otlp_endpoint: str | None = None,
) -> tuple[trace.Tracer, metrics.Meter]:
    """OpenTelemetry 초기화

    Args:
        service_name: 서비스 이름 (예: "decision-assist-backend")
        service_version: 서비스 버전
        otlp_endpoint: OTLP 수신 엔드포인트 (기본값: OTEL_EXPORTER_OTLP_ENDPOINT 환경변수)

    Returns:
        (Tracer, Meter) 튜플
    """
    endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")

    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: service_name,
            ResourceAttributes.SERVICE_VERSION: service_version,
            ResourceAttributes.DEPLOYMENT_ENVIRONMENT: os.getenv("APP_ENV", "development"),
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint, insecure=True),
        export_interval_millis=10000,  # 10초마다 export
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)

    tracer = trace.get_tracer(service_name, service_version)
    meter = metrics.get_meter(service_name, service_version)

    logger.info(
        "Telemetry initialized: service=%s, endpoint=%s",
        service_name,
        endpoint,
    )

    return tracer, meter


def instrument_fastapi(app: FastAPI) -> None:
    """FastAPI 자동 계측"""
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI instrumentation enabled")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


# ===========================================
# Decision Assist 전용 메트릭
# ===========================================


class DecisionAssistMetrics:
    """Decision Assist 커스텀 메트릭"""

    def __init__(self, meter: metrics.Meter):
        self.meter = meter
        self.events_total = self.meter.create_counter(
            name="decision_assist_events_total",
            description="Decision Assist 텔레메트리 이벤트 수",
        )
        self.throttled_total = self.meter.create_counter(
            name="decision_assist_throttled_total",
            description="throttle로 인해 생성이 생략된 횟수",
        )
        self.quota_exceeded_total = self.meter.create_counter(
            name="decision_assist_quota_exceeded_total",
            description="일일 한도 초과로 거부된 생성 요청 수",
        )


# ===========================================
# 싱글톤 인스턴스 및 접근자
# ===========================================

_tracer: trace.Tracer | None = None
_meter: metrics.Meter | None = None
_assist_metrics: DecisionAssistMetrics | None = None
_initialized: bool = False


def is_telemetry_initialized() -> bool:
    """Telemetry 초기화 여부 확인"""
    return _initialized


def get_tracer() -> trace.Tracer:
    """Tracer 인스턴스 반환 (초기화 안 된 경우 noop tracer 반환)"""
    if _tracer is None:
        return trace.get_tracer("decision-assist-noop")
    return _tracer


def get_assist_metrics() -> DecisionAssistMetrics | None:
    """메트릭 인스턴스 반환 (초기화 안 된 경우 None)"""
    return _assist_metrics


def setup_telemetry(service_name: str, service_version: str = "0.1.0") -> None:
    """전역 telemetry 설정 (애플리케이션 시작 시 호출)"""
    global _tracer, _meter, _assist_metrics, _initialized

    if is_telemetry_initialized():
        logger.warning("Telemetry already initialized, skipping")
        return

    _tracer, _meter = init_telemetry(service_name, service_version)
    _assist_metrics = DecisionAssistMetrics(_meter)
    _initialized = True


# ===========================================
# 텔레메트리 이벤트 싱크
# ===========================================


class DecisionAssistTelemetryEvent(BaseModel):
    """Decision Assist 텔레메트리 이벤트"""

    event_name: DecisionAssistTelemetryEventName
    surface: str
    ai_suggestion_db_id: str | None = None
    suggestion_id: str | None = None
    todo_id: str | None = None
    suggestion_count: Any = None
    selected_todo_ids_count: Any = None
    ts: str | None = None


def _normalize_count(value: Any) -> int | None:
    """유한한 0 이상의 숫자만 정수로 내림, 나머지는 버림"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return math.floor(value)


def build_telemetry_record(event: DecisionAssistTelemetryEvent) -> dict[str, Any]:
    """이벤트를 로그 싱크용 레코드로 정규화"""
    return {
        "type": "ai_decision_assist_telemetry",
        "eventName": event.event_name,
        "surface": event.surface,
        "aiSuggestionDbId": event.ai_suggestion_db_id,
        "suggestionId": event.suggestion_id,
        "todoId": event.todo_id,
        "suggestionCount": _normalize_count(event.suggestion_count),
        "selectedTodoIdsCount": _normalize_count(event.selected_todo_ids_count),
        "ts": event.ts or datetime.now(timezone.utc).isoformat(),
    }


def emit_decision_assist_telemetry(event: DecisionAssistTelemetryEvent) -> dict[str, Any]:
    """텔레메트리 이벤트 발행 (단방향, 코어 로직은 결과를 소비하지 않음)"""
    record = build_telemetry_record(event)
    logger.info(json.dumps({k: v for k, v in record.items() if v is not None}))

    assist_metrics = get_assist_metrics()
    if assist_metrics:
        assist_metrics.events_total.add(
            1, {"event_name": event.event_name, "surface": event.surface}
        )
    return record
