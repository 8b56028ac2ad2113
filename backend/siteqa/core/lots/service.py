import uuid
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from siteqa.core.lots.models import Lot
from siteqa.core.nonconformance.models import Ncr, NcrLot


async def get_project_lots(db: AsyncSession, project_id: uuid.UUID, lot_ids: list[uuid.UUID]) -> list[Lot]:
    if not lot_ids:
        return []
    result = await db.execute(
        select(Lot).where(
            Lot.id.in_(lot_ids),
            Lot.project_id == project_id,
            Lot.is_deleted == False,
        )
    )
    return list(result.scalars().all())


async def mark_ncr_raised(db: AsyncSession, lot_ids: list[uuid.UUID]) -> None:
    if not lot_ids:
        return
    await db.execute(
        update(Lot).where(Lot.id.in_(lot_ids)).values(status="ncr_raised")
        .execution_options(synchronize_session=False)
    )


async def release_lots_after_close(db: AsyncSession, ncr_id: uuid.UUID) -> list[uuid.UUID]:
    """Return lots of a closed NCR to in_progress unless another NCR still holds them open."""
    result = await db.execute(select(NcrLot.lot_id).where(NcrLot.ncr_id == ncr_id))
    lot_ids = list(result.scalars().all())
    if not lot_ids:
        return []

    still_open = await db.execute(
        select(NcrLot.lot_id)
        .join(Ncr, Ncr.id == NcrLot.ncr_id)
        .where(
            NcrLot.lot_id.in_(lot_ids),
            NcrLot.ncr_id != ncr_id,
            Ncr.status != "closed",
            Ncr.is_deleted == False,
        )
    )
    blocked = set(still_open.scalars().all())
    released = [lot_id for lot_id in lot_ids if lot_id not in blocked]
    if released:
        await db.execute(
            update(Lot)
            .where(Lot.id.in_(released), Lot.status == "ncr_raised")
            .values(status="in_progress")
            .execution_options(synchronize_session=False)
        )
    return released
