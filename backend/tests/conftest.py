"""pytest 설정 및 공유 fixture

테스트 인프라:
- 테스트 DB 엔진/세션 (기본 sqlite+aiosqlite, TEST_DATABASE_URL로 교체 가능)
- FastAPI AsyncClient
- Mock 저장소 / 서비스
- 테스트 데이터 fixture
"""

import os
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from decision_assist.core.config import Settings, build_limits_by_plan, get_settings
from decision_assist.core.database import Base, get_db
from decision_assist.main import app
from decision_assist.models import User
from decision_assist.repositories import (
    MockAiSuggestionRepository,
    MockProjectRepository,
    MockTodoRepository,
)
from decision_assist.services.quota_service import QuotaService
from decision_assist.services.suggestion_service import SuggestionService

TEST_USER_ID = "user-1"
OTHER_USER_ID = "user-2"


# ===== 테스트 설정 =====


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """테스트용 설정"""
    return Settings(
        app_env="test",
        debug=True,
        database_url="sqlite+aiosqlite://",
        telemetry_enabled=False,
        decision_assist_enabled=True,
        ai_daily_suggestion_limit_free=20,
        ai_daily_suggestion_limit_pro=100,
        ai_daily_suggestion_limit_team=300,
    )


# ===== 데이터베이스 Fixture =====


@pytest.fixture
async def test_engine(tmp_path):
    """테스트용 비동기 엔진

    각 테스트마다 새 DB 파일 (더 나은 테스트 격리)
    """
    database_url = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    engine = create_async_engine(database_url, echo=False, poolclass=NullPool)

    if engine.dialect.name == "sqlite":
        # SAVEPOINT(begin_nested) 사용을 위해 드라이버의 암묵적 BEGIN 비활성화
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """테스트용 DB 세션 (function scope)"""
    async with session_maker() as session:
        yield session


@pytest.fixture
def override_get_db(session_maker):
    """FastAPI 의존성 오버라이드용 DB fixture (요청마다 새 세션, 성공 시 commit)"""

    async def _override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _override_get_db


# ===== FastAPI Client Fixture =====


@pytest.fixture
async def async_client(override_get_db, test_settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """비동기 FastAPI TestClient"""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===== 테스트 데이터 Fixture =====


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """테스트용 사용자 (free 플랜)"""
    user = User(id=TEST_USER_ID, email="test@example.com", name="테스트 사용자", plan="free")
    db_session.add(user)
    # refresh 하지 않음: 열린 읽기 트랜잭션이 다른 세션의 commit을 막는다 (SQLite)
    await db_session.commit()
    return user


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """테스트용 인증 헤더"""
    return {"X-User-Id": test_user.id}


# ===== Mock 저장소 / 서비스 =====


@pytest.fixture
def mock_todo_repo() -> MockTodoRepository:
    return MockTodoRepository()


@pytest.fixture
def mock_project_repo() -> MockProjectRepository:
    return MockProjectRepository()


@pytest.fixture
def mock_suggestion_repo(mock_todo_repo, mock_project_repo) -> MockAiSuggestionRepository:
    return MockAiSuggestionRepository(todos=mock_todo_repo, projects=mock_project_repo)


@pytest.fixture
def quota_service(mock_suggestion_repo, test_settings: Settings) -> QuotaService:
    return QuotaService(mock_suggestion_repo, build_limits_by_plan(test_settings))


@pytest.fixture
def suggestion_service(
    mock_suggestion_repo, mock_todo_repo, mock_project_repo, quota_service
) -> SuggestionService:
    """SuggestionService 인스턴스 (mock repo 주입)"""
    return SuggestionService(
        suggestion_repo=mock_suggestion_repo,
        todo_repo=mock_todo_repo,
        quota_service=quota_service,
        project_repo=mock_project_repo,
    )
