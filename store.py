from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import ServiceRecord
from schemas import ServiceCreate, ServiceOut


logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"include_in_total", "admin_override"})


class StoreError(RuntimeError):
    pass


class RecordNotFound(StoreError):
    pass


@dataclass(frozen=True)
class ServiceFilter:
    user_id: Optional[str] = None
    include_in_total: Optional[bool] = None
    title: Optional[str] = None


class ServiceStore(Protocol):
    def list(self, filters: ServiceFilter = ...) -> list[ServiceOut]: ...

    def insert(self, data: ServiceCreate) -> ServiceOut: ...

    def update(self, service_id: str, **fields: object) -> None: ...

    def delete(self, service_id: str) -> None: ...


class SQLAlchemyServiceStore:
    """Record store over the ``services`` table.

    Every mutation commits on its own; nothing here spans more than one row.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, filters: ServiceFilter = ServiceFilter()) -> list[ServiceOut]:
        stmt = select(ServiceRecord)
        if filters.user_id is not None:
            stmt = stmt.where(ServiceRecord.user_id == filters.user_id)
        if filters.include_in_total is not None:
            stmt = stmt.where(
                ServiceRecord.include_in_total == filters.include_in_total
            )
        if filters.title is not None:
            stmt = stmt.where(ServiceRecord.title == filters.title)
        stmt = stmt.order_by(ServiceRecord.created_at.desc(), ServiceRecord.id)
        try:
            rows = self.session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            logger.exception(f"store_list_failed: filters={filters}")
            raise StoreError(str(exc)) from exc
        return [ServiceOut.model_validate(row) for row in rows]

    def insert(self, data: ServiceCreate) -> ServiceOut:
        record = ServiceRecord(**data.model_dump())
        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"store_insert_failed: title={data.title}")
            raise StoreError(str(exc)) from exc
        return ServiceOut.model_validate(record)

    def update(self, service_id: str, **fields: object) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields are not updatable: {sorted(unknown)}")
        try:
            result = self.session.execute(
                update(ServiceRecord)
                .where(ServiceRecord.id == service_id)
                .values(**fields)
            )
            if result.rowcount == 0:
                self.session.rollback()
                raise RecordNotFound(f"Service {service_id} not found")
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"store_update_failed: id={service_id}")
            raise StoreError(str(exc)) from exc

    def delete(self, service_id: str) -> None:
        try:
            result = self.session.execute(
                delete(ServiceRecord).where(ServiceRecord.id == service_id)
            )
            if result.rowcount == 0:
                self.session.rollback()
                raise RecordNotFound(f"Service {service_id} not found")
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"store_delete_failed: id={service_id}")
            raise StoreError(str(exc)) from exc
