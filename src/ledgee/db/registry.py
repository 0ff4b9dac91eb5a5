"""Merchant, store and agent registry tables backed by SQLite."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledgee.models.registry import Agent, Merchant, RegistryEntity, Store

from .models import AgentORM, MerchantORM, StoreORM
from .repository import session_scope

EntityT = TypeVar("EntityT", bound=RegistryEntity)


def generate_record_id(prefix: str) -> str:
    """Return an id such as ``merchant_1718000000000_3f9a1c2b7``."""

    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class _NameKeyedTable(Generic[EntityT]):
    """Registry table exposing ``list``/``create``/``find_by_name``."""

    orm: Type[MerchantORM] | Type[StoreORM] | Type[AgentORM]
    model: Type[EntityT]
    prefix: str

    @property
    def table_name(self) -> str:
        return self.orm.__tablename__

    def _to_model(self, row) -> EntityT:
        return self.model.model_validate(row)

    def list(self) -> List[EntityT]:
        """Return all rows sorted by name."""

        with session_scope() as session:
            rows = session.execute(select(self.orm).order_by(self.orm.name)).scalars().all()
            return [self._to_model(row) for row in rows]

    def find_by_name(self, name: str) -> Optional[EntityT]:
        """Case-insensitive exact match on the trimmed name."""

        needle = name.strip().lower()
        if not needle:
            return None
        with session_scope() as session:
            row = (
                session.execute(
                    select(self.orm)
                    .where(func.lower(self.orm.name) == needle)
                    .order_by(self.orm.created_at)
                    .limit(1)
                )
                .scalars()
                .first()
            )
            return self._to_model(row) if row is not None else None

    def create(self, name: str, address: Optional[str] = None) -> EntityT:
        trimmed = name.strip()
        if not trimmed:
            raise ValueError("Name is required")
        with session_scope() as session:
            row = self._new_row(session, trimmed, (address or "").strip() or None)
            session.add(row)
            session.flush()
            session.refresh(row)
            return self._to_model(row)

    def _new_row(self, session: Session, name: str, address: Optional[str]):
        return self.orm(id=generate_record_id(self.prefix), name=name, address=address)


class MerchantTable(_NameKeyedTable[Merchant]):
    orm = MerchantORM
    model = Merchant
    prefix = "merchant"


class AgentTable(_NameKeyedTable[Agent]):
    orm = AgentORM
    model = Agent
    prefix = "agent"

    def _new_row(self, session: Session, name: str, address: Optional[str]):
        return AgentORM(id=generate_record_id(self.prefix), name=name, address=None)


class StoreTable(_NameKeyedTable[Store]):
    orm = StoreORM
    model = Store
    prefix = "store"

    def _new_row(self, session: Session, name: str, address: Optional[str]):
        # The very first store becomes the default; later stores never change it.
        has_stores = session.execute(select(StoreORM.id).limit(1)).first() is not None
        return StoreORM(
            id=generate_record_id(self.prefix),
            name=name,
            address=address,
            is_default=not has_stores,
        )

    def get_default(self) -> Optional[Store]:
        with session_scope() as session:
            row = (
                session.execute(
                    select(StoreORM)
                    .where(StoreORM.is_default.is_(True))
                    .order_by(StoreORM.created_at)
                    .limit(1)
                )
                .scalars()
                .first()
            )
            return Store.model_validate(row) if row is not None else None


@dataclass(frozen=True)
class Registry:
    """The three registry tables consulted during extraction."""

    merchants: MerchantTable
    stores: StoreTable
    agents: AgentTable


def sqlite_registry() -> Registry:
    return Registry(merchants=MerchantTable(), stores=StoreTable(), agents=AgentTable())


__all__ = [
    "AgentTable",
    "MerchantTable",
    "Registry",
    "StoreTable",
    "generate_record_id",
    "sqlite_registry",
]
