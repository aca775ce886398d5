"""Generation state shared by payroll and invoice weeks.

A week is generated at most once. ``claim_week`` is the single place where the
``generated`` flag flips, and it does so as a check-and-set on the meta row so
two concurrent generators for the same week cannot both win. Additional-hours
review locks the same row, which ``ensure_week_row`` creates on demand.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import col

from tutorpay.exceptions import PreconditionError
from tutorpay.models.invoice import InvoiceWeek
from tutorpay.models.payroll import PayrollWeek

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from tutorpay.services.week import WeekRange

logger = logging.getLogger(__name__)

MetaT = TypeVar("MetaT", PayrollWeek, InvoiceWeek)


def _label(meta_cls: type[PayrollWeek] | type[InvoiceWeek]) -> str:
    return "Payroll" if meta_cls is PayrollWeek else "Invoices"


def ensure_week_open(
    meta: PayrollWeek | InvoiceWeek | None,
    meta_cls: type[PayrollWeek] | type[InvoiceWeek],
    week: WeekRange,
    today: date,
) -> None:
    """Raise PreconditionError unless the week can be generated now."""
    label = _label(meta_cls)
    if meta is not None and meta.locked:
        raise PreconditionError(f"{label} for week {week.key} is locked and cannot be regenerated")
    if meta is not None and meta.generated:
        raise PreconditionError(f"{label} for week {week.key} has already been generated")
    if today < week.end:
        raise PreconditionError(f"Week {week.key} has not finished yet (ends {week.end.isoformat()})")


async def ensure_week_row(
    session: AsyncSession,
    meta_cls: type[MetaT],
    week: WeekRange,
) -> None:
    """Insert an ungenerated meta row for the week unless one already exists.

    Generation and additional-hours review both lock this row, so it has to
    exist before either of them reads the data it guards. On PostgreSQL a
    concurrent insert of the same week waits for the other transaction instead
    of failing.
    """
    dialect = session.get_bind().dialect.name
    insert = sqlite_insert if dialect == "sqlite" else pg_insert
    await session.execute(
        insert(meta_cls)
        .values(week_start=week.start, week_end=week.end, generated=False, locked=False, has_export_errors=False)
        .on_conflict_do_nothing(index_elements=["week_start"])
    )


async def claim_week(
    session: AsyncSession,
    meta_cls: type[MetaT],
    week: WeekRange,
    *,
    actor_id: str,
    today: date,
) -> MetaT:
    """Atomically mark the week as generated, or fail with PreconditionError.

    The conditional update holds the meta row lock until the caller commits.
    The claim is flushed but not committed; the caller writes its items and
    commits in the same transaction, so a failure leaves nothing behind.
    """
    ensure_week_open(await session.get(meta_cls, week.start), meta_cls, week, today)
    await ensure_week_row(session, meta_cls, week)

    result = await session.execute(
        update(meta_cls)
        .where(
            col(meta_cls.week_start) == week.start,
            col(meta_cls.generated).is_(False),
            col(meta_cls.locked).is_(False),
        )
        .values(generated=True, last_generated=datetime.now(UTC), generated_by=actor_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:  # ty: ignore[unresolved-attribute]
        await session.rollback()
        logger.warning("Lost generation race for %s week %s", _label(meta_cls).lower(), week.key)
        raise PreconditionError(f"{_label(meta_cls)} for week {week.key} has already been generated")

    meta = await session.get(meta_cls, week.start, populate_existing=True)
    if meta is None:
        msg = f"{_label(meta_cls)} for week {week.key} disappeared while generating"
        raise PreconditionError(msg)
    return meta
