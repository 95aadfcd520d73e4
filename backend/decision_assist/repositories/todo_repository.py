"""할 일/프로젝트 SQLAlchemy 저장소"""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from decision_assist.models.project import Project
from decision_assist.models.todo import Subtask, Todo
from decision_assist.schemas.todo import TodoCreate

UPDATABLE_TODO_FIELDS = frozenset(
    {"title", "description", "notes", "category", "priority", "due_date", "completed", "project_id"}
)


class TodoRepository:
    """할 일 저장소 (소유자 범위로만 접근)"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _select(self):
        return select(Todo).options(selectinload(Todo.subtasks)).execution_options(populate_existing=True)

    async def find_by_id(self, user_id: str, todo_id: str) -> Todo | None:
        result = await self.db.execute(
            self._select().where(Todo.id == todo_id, Todo.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def find_all(self, user_id: str, include_completed: bool = True) -> list[Todo]:
        query = self._select().where(Todo.user_id == user_id)
        if not include_completed:
            query = query.where(Todo.completed.is_(False))
        result = await self.db.execute(query.order_by(Todo.order_index, Todo.created_at))
        return list(result.scalars().all())

    async def update(self, user_id: str, todo_id: str, fields: dict[str, Any]) -> Todo | None:
        todo = await self.find_by_id(user_id, todo_id)
        if not todo:
            return None

        for key, value in fields.items():
            if key not in UPDATABLE_TODO_FIELDS:
                raise ValueError(f"Unsupported todo field: {key}")
            setattr(todo, key, value)

        await self.db.flush()
        return await self.find_by_id(user_id, todo_id)

    async def next_order_index(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.max(Todo.order_index)).where(Todo.user_id == user_id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def create(
        self,
        user_id: str,
        dto: TodoCreate,
        project_id: str | None = None,
        order_index: int | None = None,
    ) -> Todo:
        if order_index is None:
            order_index = await self.next_order_index(user_id)

        todo = Todo(
            user_id=user_id,
            project_id=project_id,
            title=dto.title,
            description=dto.description,
            priority=dto.priority,
            due_date=dto.due_date,
            category=dto.category,
            order_index=order_index,
        )
        self.db.add(todo)
        await self.db.flush()
        return await self.find_by_id(user_id, todo.id)  # type: ignore[return-value]

    async def create_subtask(self, user_id: str, todo_id: str, title: str) -> Subtask | None:
        todo = await self.find_by_id(user_id, todo_id)
        if not todo:
            return None

        subtask = Subtask(
            todo_id=todo.id,
            title=title,
            order_index=len(todo.subtasks),
        )
        self.db.add(subtask)
        await self.db.flush()
        return subtask


class ProjectRepository:
    """프로젝트 저장소"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_all(self, user_id: str) -> list[Project]:
        result = await self.db.execute(
            select(Project).where(Project.user_id == user_id).order_by(Project.name)
        )
        return list(result.scalars().all())

    async def find_by_name(self, user_id: str, name: str) -> Project | None:
        result = await self.db.execute(
            select(Project).where(
                Project.user_id == user_id,
                func.lower(Project.name) == name.strip().lower(),
            )
        )
        return result.scalars().first()

    async def upsert_by_name(self, user_id: str, name: str) -> Project:
        existing = await self.find_by_name(user_id, name)
        if existing:
            return existing

        project = Project(user_id=user_id, name=name.strip())
        self.db.add(project)
        await self.db.flush()
        return project
