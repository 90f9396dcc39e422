"""Capped audit trail of successful and rejected operations."""
from __future__ import annotations

import csv
import enum
from collections.abc import Iterable, Sequence
from decimal import Decimal
from io import StringIO
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import Actor
from .ledger import as_utc
from .models import AuditLogEntry

DEFAULT_CAPACITY = 50
CSV_COLUMNS = ["ID", "Time", "Type", "Action", "Target", "User", "Role", "Level", "Amount"]


class LogType(str, enum.Enum):
    TRANSACTION = "Transaction"
    ACTIVITY = "Activity"
    AUTH = "Auth"
    INVENTORY = "Inventory"
    SECURITY = "Security"


class LogLevel(str, enum.Enum):
    INFO = "Info"
    WARNING = "Warning"
    CRITICAL = "Critical"
    SUCCESS = "Success"


async def append_entry(
    session: AsyncSession,
    *,
    type: LogType,
    action: str,
    target: str,
    actor: Actor,
    level: LogLevel,
    amount: Optional[Decimal] = None,
    path: Optional[str] = None,
    capacity: int = DEFAULT_CAPACITY,
) -> AuditLogEntry:
    """Stage an entry in the caller's transaction and evict the overflow."""

    entry = AuditLogEntry(
        type=LogType(type).value,
        action=action,
        target=target,
        actor=actor.username,
        role=actor.role,
        level=LogLevel(level).value,
        amount=amount,
        path=path,
    )
    session.add(entry)
    await session.flush()
    await _evict_overflow(session, capacity)
    return entry


async def _evict_overflow(session: AsyncSession, capacity: int) -> None:
    stale = (
        select(AuditLogEntry.id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .offset(capacity)
    )
    result = await session.execute(stale)
    stale_ids = list(result.scalars().all())
    if stale_ids:
        await session.execute(delete(AuditLogEntry).where(AuditLogEntry.id.in_(stale_ids)))


async def list_entries(session: AsyncSession) -> Sequence[AuditLogEntry]:
    stmt = select(AuditLogEntry).order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
    result = await session.execute(stmt)
    return result.scalars().all()


def entries_to_csv(entries: Iterable[AuditLogEntry]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for entry in entries:
        writer.writerow(
            [
                entry.id,
                as_utc(entry.created_at).isoformat(),
                entry.type,
                entry.action,
                entry.target,
                entry.actor,
                entry.role,
                entry.level,
                "" if entry.amount is None else str(entry.amount),
            ]
        )
    return buffer.getvalue()


__all__ = [
    "CSV_COLUMNS",
    "LogLevel",
    "LogType",
    "append_entry",
    "entries_to_csv",
    "list_entries",
]
