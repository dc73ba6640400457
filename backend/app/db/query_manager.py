"""Lightweight query manager exposed as ``Model.objects`` on table models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlmodel import SQLModel, col, select

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT", bound=SQLModel)


class QuerySet(Generic[ModelT]):
    """Immutable, chainable wrapper around a ``select`` statement."""

    def __init__(self, model: type[ModelT], statement: SelectOfScalar[ModelT]) -> None:
        self.model = model
        self.statement = statement

    def _clone(self, statement: SelectOfScalar[ModelT]) -> QuerySet[ModelT]:
        return QuerySet(self.model, statement)

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return self._clone(self.statement.where(*criteria))

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return self._clone(self.statement.filter_by(**kwargs))

    def order_by(self, *ordering: Any) -> QuerySet[ModelT]:
        return self._clone(self.statement.order_by(*ordering))

    def limit(self, count: int) -> QuerySet[ModelT]:
        return self._clone(self.statement.limit(count))

    def offset(self, count: int) -> QuerySet[ModelT]:
        return self._clone(self.statement.offset(count))

    def for_update(self) -> QuerySet[ModelT]:
        """Lock matching rows and refresh any identity-mapped instances."""
        return self._clone(
            self.statement.with_for_update().execution_options(populate_existing=True),
        )

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list(await session.exec(self.statement))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement)).first()


class ModelManager(Generic[ModelT]):
    """Entry point for building query sets for one model."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> QuerySet[ModelT]:
        return QuerySet(self.model, select(self.model))

    def by_id(self, obj_id: object) -> QuerySet[ModelT]:
        return self.filter_by(id=obj_id)

    def by_ids(self, obj_ids: Iterable[object]) -> QuerySet[ModelT]:
        return self.by_field_in("id", obj_ids)

    def by_field_in(self, field: str, values: Iterable[object]) -> QuerySet[ModelT]:
        column = col(getattr(self.model, field))
        return self.all().filter(column.in_(list(values)))

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return self.all().filter(*criteria)

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return self.all().filter_by(**kwargs)


class ManagerDescriptor(Generic[ModelT]):
    """Class-level descriptor returning a manager bound to the owner model."""

    def __get__(self, instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)
