from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.engine import Connection, RowMapping

from moneyflow.errors import NotFound


class OwnerScope:
    """Owner-filtered access to the ledger tables.

    Every statement built here carries ``table.c.user_id == user_id``; service
    code goes through a scope instead of filtering by owner at each call site.
    """

    def __init__(self, conn: Connection, user_id: int) -> None:
        self.conn = conn
        self.user_id = user_id

    def _owned(self, table: Table, record_id: int):
        return (table.c.id == record_id, table.c.user_id == self.user_id)

    def get(self, table: Table, record_id: int) -> RowMapping | None:
        return self.conn.execute(
            select(table).where(*self._owned(table, record_id))
        ).mappings().first()

    def get_for_update(self, table: Table, record_id: int) -> RowMapping | None:
        # SQLite ignores FOR UPDATE; its database-level write lock covers it.
        return self.conn.execute(
            select(table).where(*self._owned(table, record_id)).with_for_update()
        ).mappings().first()

    def require(self, table: Table, record_id: int, label: str, for_update: bool = False) -> RowMapping:
        row = self.get_for_update(table, record_id) if for_update else self.get(table, record_id)
        if row is None:
            raise NotFound(f"{label} not found.")
        return row

    def exists(self, table: Table, record_id: int, *criteria: Any) -> bool:
        return (
            self.conn.execute(
                select(table.c.id).where(*self._owned(table, record_id), *criteria)
            ).first()
            is not None
        )

    def find(
        self,
        table: Table,
        *criteria: Any,
        order_by: Iterable[Any] = (),
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[RowMapping]:
        stmt = select(table).where(table.c.user_id == self.user_id, *criteria)
        order = list(order_by)
        if order:
            stmt = stmt.order_by(*order)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return list(self.conn.execute(stmt).mappings().all())

    def insert(self, table: Table, **values: Any) -> RowMapping:
        values["user_id"] = self.user_id
        row = self.conn.execute(
            insert(table).values(**values).returning(*table.c)
        ).mappings().first()
        if row is None:
            raise RuntimeError(f"Insert into {table.name} returned no row.")
        return row

    def update(self, table: Table, record_id: int, *criteria: Any, **values: Any) -> RowMapping | None:
        return self.conn.execute(
            update(table)
            .where(*self._owned(table, record_id), *criteria)
            .values(**values)
            .returning(*table.c)
        ).mappings().first()

    def update_where(self, table: Table, *criteria: Any, **values: Any) -> int:
        result = self.conn.execute(
            update(table)
            .where(table.c.user_id == self.user_id, *criteria)
            .values(**values)
        )
        return result.rowcount

    def delete(self, table: Table, record_id: int) -> bool:
        result = self.conn.execute(delete(table).where(*self._owned(table, record_id)))
        return result.rowcount > 0

    def delete_where(self, table: Table, *criteria: Any) -> int:
        result = self.conn.execute(
            delete(table).where(table.c.user_id == self.user_id, *criteria)
        )
        return result.rowcount
