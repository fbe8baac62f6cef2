from typing import Any, Callable, Generic, Type, TypeVar

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import Select, Update

from tierkeeper.core.exceptions.types import (
    ConflictException,
    StoreUnavailableException,
)

T = TypeVar("T")


class BaseDB(Generic[T]):
    def __init__(self, model: Type[T]):
        self.model = model

    async def get_by_id(self, session: AsyncSession, id: Any) -> T | None:
        """
        Asynchronously retrieves an instance of the model by its primary key.

        Args:
            session (AsyncSession): The asynchronous database session to use for the query.
            id (Any): The primary key value of the model instance to retrieve.

        Returns:
            T | None: The model instance if found, otherwise None.

        Raises:
            StoreUnavailableException: If an error occurs while querying the database.
        """
        try:
            stmt: Select = select(self.model).where(getattr(self.model, "id") == id)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreUnavailableException(
                f"Error retrieving {self.model.__name__} with ID {id}: {str(e)}"
            ) from e

    async def get_one_by_filters(
        self, session: AsyncSession, filters: dict
    ) -> T | None:
        """
        Asynchronously retrieves a single record of the model that matches the given filters.

        Args:
            session (AsyncSession): The asynchronous database session to use for the query.
            filters (dict): A dictionary of filter conditions to apply to the query.

        Returns:
            T | None: The first matching instance, or None if nothing matches.

        Raises:
            StoreUnavailableException: If an error occurs while querying the database.
        """
        try:
            stmt: Select = select(self.model).filter_by(**filters).limit(1)
            result = await session.execute(stmt)
            return result.scalars().first()
        except (SQLAlchemyError, ValueError) as e:
            raise StoreUnavailableException(
                f"Error retrieving {self.model.__name__} with filters {filters}: {str(e)}"
            ) from e

    async def create(
        self,
        session: AsyncSession,
        data: dict,
        validate: Callable[[dict], dict] | None = None,
        commit_self: bool = True,
    ) -> T:
        """
        Asynchronously creates and persists a new instance of the model.

        Args:
            session (AsyncSession): The SQLAlchemy asynchronous session to use.
            data (dict): Fields and values to initialize the model instance.
            validate (Callable[[dict], dict] | None, optional): Validates or transforms the data before instantiation.
            commit_self (bool, optional): If True, commits the transaction. If False, only flushes the session.

        Returns:
            T: The newly created model instance.

        Raises:
            ConflictException: If a unique constraint is violated.
            StoreUnavailableException: On any other database error.
        """
        try:
            if validate:
                data = validate(data)

            obj = self.model(**data)
            session.add(obj)

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            await session.refresh(obj)
            return obj
        except IntegrityError as e:
            raise ConflictException(
                f"Conflict creating {self.model.__name__}: {str(e.orig)}"
            ) from e
        except SQLAlchemyError as e:
            raise StoreUnavailableException(
                f"Error creating {self.model.__name__}: {str(e)}"
            ) from e

    async def update(
        self, session: AsyncSession, id: Any, updates: dict, commit_self: bool = True
    ) -> T | None:
        """
        Asynchronously updates the given fields of the record with the given ID.

        Only the columns named in ``updates`` are written.

        Args:
            session (AsyncSession): The SQLAlchemy asynchronous session to use.
            id (Any): The primary key of the record to update.
            updates (dict): The fields and their new values.
            commit_self (bool, optional): If True, commits the transaction; otherwise, flushes the session.

        Returns:
            T | None: The updated record, or None if no record has the given ID.

        Raises:
            ConflictException: If a unique constraint is violated.
            StoreUnavailableException: On any other database error.
        """
        try:
            stmt: Update = (
                sa_update(self.model)
                .where(getattr(self.model, "id") == id)
                .values(**updates)
                .returning(self.model)
            )
            result = await session.execute(stmt)
            obj = result.scalar_one_or_none()

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            return obj
        except IntegrityError as e:
            raise ConflictException(
                f"Conflict updating {self.model.__name__} with ID {id}: {str(e.orig)}"
            ) from e
        except SQLAlchemyError as e:
            raise StoreUnavailableException(
                f"Error updating {self.model.__name__} with ID {id}: {str(e)}"
            ) from e
