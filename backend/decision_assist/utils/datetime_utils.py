"""시간 관련 유틸리티

JSON으로 들어오는 ISO 8601 문자열과 DB에서 읽은 datetime을
모두 tz-aware UTC 기준으로 맞춰 비교하기 위한 헬퍼.
"""

from datetime import date, datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """naive datetime(SQLite 등)은 UTC로 간주"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Any) -> datetime | None:
    """ISO 8601 문자열을 UTC datetime으로 파싱, 실패 시 None

    "Z" 접미사와 날짜만 있는 형식("2026-03-01")도 허용한다.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed_date = date.fromisoformat(text)
        except ValueError:
            return None
        parsed = datetime(parsed_date.year, parsed_date.month, parsed_date.day)
    return ensure_utc(parsed)


def to_iso(value: datetime) -> str:
    """UTC ISO 문자열 (밀리초, Z 접미사)"""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")
