"""Decision Assist 에러 정의

서비스 레이어의 일반 에러는 ValueError("<CODE>")로 전달하고
api.dependencies.handle_service_error()에서 HTTP 응답으로 변환한다.
아래 클래스는 코드 외에 추가 정보를 실어야 하는 경우에만 사용한다.
"""

from typing import Any


class ContractValidationError(ValueError):
    """신뢰할 수 없는 제안 envelope의 계약 위반

    어떤 필드가 문제인지 field로 전달한다. 부분 수용 없이 요청 전체가 거부된다.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "message": self.message}


class ApplyFailedError(ValueError):
    """적용(apply) 결과가 실패일 때 서비스 레이어에서 던지는 에러"""

    def __init__(self, status_code: int, error: str, message: str):
        self.status_code = status_code
        self.error = error
        self.message = message
        super().__init__(error)


class QuotaExceededError(Exception):
    """일일 AI 제안 한도 소진 (429 + usage 첨부)"""

    def __init__(self, usage: Any):
        self.usage = usage
        super().__init__("DAILY_LIMIT_REACHED")
