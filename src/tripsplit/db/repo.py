from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

import asyncpg

from tripsplit.db.models import (
    Expense,
    ExpenseParticipant,
    ExternalParticipant,
    ExternalRef,
    GroupMember,
    LineItem,
    MemberRef,
    TripInfo,
)
from tripsplit.logging import get_logger, sql_logger


class Connection:
    """Logs every statement before running it on a pool or a single connection."""

    def __init__(self, target: Any) -> None:
        self._target = target

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        sql_logger.info("sql.fetch", query=query, args=args)
        return await self._target.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await self._target.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        sql_logger.info("sql.fetchval", query=query, args=args)
        return await self._target.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        sql_logger.info("sql.execute", query=query, args=args)
        return await self._target.execute(query, *args)

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        sql_logger.info("sql.executemany", query=command)
        await self._target.executemany(command, args)


class Database:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql:// scheme
            dsn = self._dsn.replace("+asyncpg", "")
            self._pool = await asyncpg.create_pool(dsn)
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        return await (await self._conn()).fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        return await (await self._conn()).fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await (await self._conn()).fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        return await (await self._conn()).execute(query, *args)

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        await (await self._conn()).executemany(command, args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        await self._ensure_pool()
        assert self._pool
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield Connection(conn)

    async def _conn(self) -> Connection:
        await self._ensure_pool()
        assert self._pool
        return Connection(self._pool)

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


_EXPENSE_COLUMNS = """
    e.id, e.group_id, e.trip_id, e.day_id, e.event_id, e.owner_id,
    e.description, e.amount, e.category, e.created_at
"""

_INSERT_EXPENSE_PARTICIPANT = """
    INSERT INTO expense_participants
        (expense_id, participant_id, external_name, external_participant_id, split_percentage, amount_owed)
    VALUES (
        $1::uuid, $2::uuid, $3, (SELECT id FROM external_participants WHERE group_id = $4::uuid AND name = $3),
        $5, $6
    )
"""

_INSERT_LINE_ITEM_PARTICIPANT = """
    INSERT INTO line_item_participants
        (line_item_id, participant_id, external_name, external_participant_id, split_percentage, amount_owed)
    VALUES (
        $1::uuid, $2::uuid, $3, (SELECT id FROM external_participants WHERE group_id = $4::uuid AND name = $3),
        $5, $6
    )
"""


class TripSplitRepository:
    """
    PostgreSQL-backed expense store, membership directory and external
    participant registry.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # membership directory

    async def list_members(self, group_id: str) -> list[GroupMember]:
        rows = await self.db.fetch(
            """
            SELECT id, group_id, display_name
            FROM group_members
            WHERE group_id = $1::uuid
            ORDER BY joined_at, display_name
            """,
            group_id,
        )
        return [
            GroupMember(id=str(row["id"]), group_id=str(row["group_id"]), display_name=row["display_name"])
            for row in rows
        ]

    # external participant registry

    async def list_recent(self, group_id: str, limit: int = 50) -> list[ExternalParticipant]:
        rows = await self.db.fetch(
            """
            SELECT id, group_id, name, last_used_at
            FROM external_participants
            WHERE group_id = $1::uuid
            ORDER BY last_used_at DESC, name ASC
            LIMIT $2
            """,
            group_id,
            limit,
        )
        return [_external_from_row(row) for row in rows]

    async def touch(self, group_id: str, name: str) -> ExternalParticipant:
        row = await self.db.fetchrow(
            """
            INSERT INTO external_participants (group_id, name)
            VALUES ($1::uuid, $2)
            ON CONFLICT (group_id, name) DO UPDATE
                SET last_used_at = now()
            RETURNING id, group_id, name, last_used_at
            """,
            group_id,
            name,
        )
        assert row is not None
        return _external_from_row(row)

    # expense store

    async def get_trip(self, group_id: str, trip_id: str) -> TripInfo | None:
        row = await self.db.fetchrow(
            """
            SELECT id, name, destination, start_date, end_date
            FROM trips
            WHERE id = $1::uuid AND group_id = $2::uuid
            """,
            trip_id,
            group_id,
        )
        return _trip_from_row(row) if row else None

    async def list_trips(self, group_id: str) -> list[TripInfo]:
        rows = await self.db.fetch(
            """
            SELECT id, name, destination, start_date, end_date
            FROM trips
            WHERE group_id = $1::uuid
            ORDER BY start_date DESC
            """,
            group_id,
        )
        return [_trip_from_row(row) for row in rows]

    async def create_expense(self, group_id: str, expense: Expense) -> Expense:
        async with self.db.transaction() as conn:
            expense_id = await conn.fetchval(
                """
                INSERT INTO expenses
                    (group_id, trip_id, day_id, event_id, owner_id, description, amount, category)
                VALUES ($1::uuid, $2::uuid, $3::uuid, $4::uuid, $5::uuid, $6, $7, $8)
                RETURNING id
                """,
                group_id,
                expense.trip_id,
                expense.day_id,
                expense.event_id,
                expense.owner_id,
                expense.description,
                expense.amount,
                expense.category,
            )
            await self._insert_children(conn, group_id, str(expense_id), expense)

        stored = await self.get_expense(str(expense_id))
        assert stored is not None
        return stored

    async def replace_expense(self, expense_id: str, expense: Expense) -> Expense | None:
        async with self.db.transaction() as conn:
            group_id = await conn.fetchval(
                "SELECT group_id FROM expenses WHERE id = $1::uuid FOR UPDATE",
                expense_id,
            )
            if group_id is None:
                return None
            await conn.execute(
                """
                UPDATE expenses
                SET day_id = $2::uuid, event_id = $3::uuid, owner_id = $4::uuid,
                    description = $5, amount = $6, category = $7, trip_id = $8::uuid, updated_at = now()
                WHERE id = $1::uuid
                """,
                expense_id,
                expense.day_id,
                expense.event_id,
                expense.owner_id,
                expense.description,
                expense.amount,
                expense.category,
                expense.trip_id,
            )
            await conn.execute("DELETE FROM expense_participants WHERE expense_id = $1::uuid", expense_id)
            await conn.execute("DELETE FROM expense_line_items WHERE expense_id = $1::uuid", expense_id)
            await self._insert_children(conn, str(group_id), expense_id, expense)

        return await self.get_expense(expense_id)

    async def delete_expense(self, expense_id: str) -> bool:
        status = await self.db.execute("DELETE FROM expenses WHERE id = $1::uuid", expense_id)
        return status.endswith(" 1")

    async def get_expense(self, expense_id: str) -> Expense | None:
        row = await self.db.fetchrow(
            f"SELECT {_EXPENSE_COLUMNS} FROM expenses e WHERE e.id = $1::uuid",
            expense_id,
        )
        if row is None:
            return None
        expenses = await self._hydrate([row])
        return expenses[0]

    async def list_expenses(self, group_id: str, trip_id: Optional[str] = None) -> list[Expense]:
        rows = await self.db.fetch(
            f"""
            SELECT {_EXPENSE_COLUMNS}
            FROM expenses e
            WHERE e.group_id = $1::uuid
              AND ($2::uuid IS NULL OR e.trip_id = $2::uuid)
            ORDER BY e.created_at
            """,
            group_id,
            trip_id,
        )
        return await self._hydrate(rows)

    async def _insert_children(self, conn: Connection, group_id: str, expense_id: str, expense: Expense) -> None:
        if expense.participants:
            await conn.executemany(
                _INSERT_EXPENSE_PARTICIPANT,
                (_participant_args(expense_id, group_id, p) for p in expense.participants),
            )
        for item in expense.line_items:
            item_id = await conn.fetchval(
                """
                INSERT INTO expense_line_items (expense_id, description, amount, quantity, category)
                VALUES ($1::uuid, $2, $3, $4, $5)
                RETURNING id
                """,
                expense_id,
                item.description,
                item.amount,
                item.quantity,
                item.category,
            )
            await conn.executemany(
                _INSERT_LINE_ITEM_PARTICIPANT,
                (_participant_args(str(item_id), group_id, p) for p in item.participants),
            )

    async def _hydrate(self, rows: Sequence[asyncpg.Record]) -> list[Expense]:
        if not rows:
            return []
        ids = [row["id"] for row in rows]

        participant_rows = await self.db.fetch(
            """
            SELECT expense_id, participant_id, external_name, split_percentage, amount_owed
            FROM expense_participants
            WHERE expense_id = ANY($1::uuid[])
            ORDER BY created_at, id
            """,
            ids,
        )
        item_rows = await self.db.fetch(
            """
            SELECT id, expense_id, description, amount, quantity, category
            FROM expense_line_items
            WHERE expense_id = ANY($1::uuid[])
            ORDER BY created_at, id
            """,
            ids,
        )
        item_participant_rows = await self.db.fetch(
            """
            SELECT lip.line_item_id, lip.participant_id, lip.external_name, lip.split_percentage, lip.amount_owed
            FROM line_item_participants lip
            JOIN expense_line_items li ON li.id = lip.line_item_id
            WHERE li.expense_id = ANY($1::uuid[])
            ORDER BY lip.created_at, lip.id
            """,
            ids,
        )

        expenses: dict[str, Expense] = {}
        for row in rows:
            expenses[str(row["id"])] = Expense(
                id=str(row["id"]),
                group_id=str(row["group_id"]),
                trip_id=str(row["trip_id"]),
                day_id=_optional_id(row["day_id"]),
                event_id=_optional_id(row["event_id"]),
                owner_id=str(row["owner_id"]),
                description=row["description"],
                amount=row["amount"],
                category=row["category"],
                created_at=row["created_at"],
            )

        for row in participant_rows:
            expenses[str(row["expense_id"])].participants.append(_participant_from_row(row))

        items: dict[str, LineItem] = {}
        for row in item_rows:
            item = LineItem(
                id=str(row["id"]),
                description=row["description"],
                amount=row["amount"],
                quantity=row["quantity"],
                category=row["category"],
                participants=[],
            )
            items[item.id] = item
            expenses[str(row["expense_id"])].line_items.append(item)

        for row in item_participant_rows:
            items[str(row["line_item_id"])].participants.append(_participant_from_row(row))

        return list(expenses.values())


def _participant_args(owner_id: str, group_id: str, participant: ExpenseParticipant) -> tuple[Any, ...]:
    member_id = participant.ref.member_id if isinstance(participant.ref, MemberRef) else None
    external_name = participant.ref.name if isinstance(participant.ref, ExternalRef) else None
    return (owner_id, member_id, external_name, group_id, participant.split_percentage, participant.amount_owed)


def _participant_from_row(row: asyncpg.Record) -> ExpenseParticipant:
    if row["participant_id"] is not None:
        ref: MemberRef | ExternalRef = MemberRef(str(row["participant_id"]))
    else:
        ref = ExternalRef(row["external_name"])
    return ExpenseParticipant(ref=ref, split_percentage=row["split_percentage"], amount_owed=row["amount_owed"])


def _external_from_row(row: asyncpg.Record) -> ExternalParticipant:
    return ExternalParticipant(
        id=str(row["id"]),
        group_id=str(row["group_id"]),
        name=row["name"],
        last_used_at=row["last_used_at"],
    )


def _trip_from_row(row: asyncpg.Record) -> TripInfo:
    return TripInfo(
        id=str(row["id"]),
        name=row["name"],
        destination=row["destination"],
        start_date=row["start_date"],
        end_date=row["end_date"],
    )


def _optional_id(value: Any) -> Optional[str]:
    return str(value) if value is not None else None
