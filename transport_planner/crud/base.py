from typing import Generic, TypeVar, Type, Optional, List, Any, Dict
from sqlalchemy.orm import Session
from sqlalchemy import select
from pydantic import BaseModel
from transport_planner.database import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    """
    Generic CRUD class with owner isolation via explicit owner_id.

    Every planning aggregate belongs to one owner (the company whose drivers
    and locations are planned). The owner ID is always passed explicitly from
    the service layer.

    Type Parameters:
        ModelType: SQLAlchemy model class
        CreateSchemaType: Pydantic schema for creating records
        UpdateSchemaType: Pydantic schema for updating records
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    def get(self, db: Session, id: int, owner_id: int) -> Optional[ModelType]:
        """
        Retrieve a single record by ID with owner filtering.

        Args:
            db: Database session
            id: Record ID
            owner_id: Owner ID for isolation

        Returns:
            Model instance or None if not found or owned by someone else
        """
        stmt = select(self.model).where(
            self.model.id == id,
            self.model.owner_id == owner_id
        )
        return db.execute(stmt).scalar_one_or_none()

    def get_multi(
        self,
        db: Session,
        *,
        skip: int = 0,
        limit: int = 100,
        owner_id: int
    ) -> List[ModelType]:
        stmt = select(self.model).where(
            self.model.owner_id == owner_id
        ).order_by(self.model.id).offset(skip).limit(limit)
        return list(db.execute(stmt).scalars().all())

    def create(
        self,
        db: Session,
        *,
        obj_in: CreateSchemaType | Dict[str, Any],
        owner_id: int
    ) -> ModelType:
        obj_data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump()
        db_obj = self.model(owner_id=owner_id, **obj_data)
        db.add(db_obj)
        db.commit()
        db.refresh(db_obj)
        return db_obj

    def update(
        self,
        db: Session,
        *,
        db_obj: ModelType,
        obj_in: UpdateSchemaType | Dict[str, Any]
    ) -> ModelType:
        """
        Update an existing record.

        Note: This method assumes the db_obj was already retrieved using
        get() or similar method, which ensures owner isolation.

        Args:
            db: Database session
            db_obj: Existing model instance to update
            obj_in: Pydantic schema or dict with update data

        Returns:
            Updated model instance
        """
        if isinstance(obj_in, dict):
            update_data = obj_in
        else:
            update_data = obj_in.model_dump(exclude_unset=True)

        for field, value in update_data.items():
            setattr(db_obj, field, value)

        db.add(db_obj)
        db.commit()
        db.refresh(db_obj)
        return db_obj
