"""사용자 저장소 (플랜 조회 전용)"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decision_assist.models.user import User


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_plan(self, user_id: str) -> str | None:
        result = await self.db.execute(select(User.plan).where(User.id == user_id))
        return result.scalar_one_or_none()
