"""
Base Repository

Base class for all repositories.
Provides common database operations on one model.
"""

from typing import Generic, TypeVar, Type, Optional, List, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from learnhub_notify.db.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository class with common CRUD operations.

    The session is injected by the caller; repositories never open
    or close sessions themselves.
    """
    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    # -----------------------------
    # Get Element By id
    # -----------------------------
    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """Get a record by ID."""
        result = await self.db.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalar_one_or_none()

    # -----------------------------
    # Get all Records
    # -----------------------------
    async def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        order_by=None
    ) -> List[ModelType]:
        """Get all records with pagination."""
        query = select(self.model)

        if order_by is not None:
            query = query.order_by(order_by)

        query = query.offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # -----------------------------
    # Add Single Record
    # -----------------------------
    async def add(self, instance: ModelType, commit: bool = True) -> ModelType:
        """Persist a new instance; flushes only when commit is False."""
        self.db.add(instance)
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        return instance

    # -----------------------------
    # Save pending changes
    # -----------------------------
    async def save(self, instance: ModelType) -> ModelType:
        """Commit changes made to an already persisted instance."""
        self.db.add(instance)
        await self.db.commit()
        return instance

    # This used to Delete
    async def delete(self, instance: ModelType) -> None:
        """Delete a loaded instance."""
        await self.db.delete(instance)
        await self.db.commit()

    # this used to count records
    async def count(self) -> int:
        """Count total records."""
        result = await self.db.execute(
            select(func.count(self.model.id))
        )
        return result.scalar() or 0
