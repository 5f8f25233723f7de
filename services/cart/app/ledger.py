"""
Cart Service — 在庫台帳 (Inventory Ledger)

在庫カウンタを変更するたびに 1 行追記する。
カウンタ更新と同じトランザクションで書き込むため、台帳と在庫は常に一致する。
version はアイテムごとの連番 (item_id, version は一意)。
"""

from datetime import datetime, timezone

from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .tables import inventory_ledger


async def append_entry(
    session: AsyncSession,
    item_id: str,
    cart_line_id: str,
    owner_id: str,
    entry_type: str,
    delta: int,
    available_after: int,
) -> int:
    """アイテム行をロックした状態で呼ぶこと。新しい version を返す。"""
    result = await session.execute(
        select(func.coalesce(func.max(inventory_ledger.c.version), 0)).where(
            inventory_ledger.c.item_id == item_id
        )
    )
    new_version = result.scalar_one() + 1
    await session.execute(
        insert(inventory_ledger).values(
            item_id=item_id,
            cart_line_id=cart_line_id,
            owner_id=owner_id,
            entry_type=entry_type,
            delta=delta,
            available_after=available_after,
            version=new_version,
            created_at=datetime.now(timezone.utc),
        )
    )
    return new_version


def _entry_to_dict(row) -> dict:
    return {
        "item_id": row.item_id,
        "cart_line_id": row.cart_line_id,
        "owner_id": row.owner_id,
        "entry_type": row.entry_type,
        "delta": row.delta,
        "available_after": row.available_after,
        "version": row.version,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def load_entries(session: AsyncSession, item_id: str) -> list[dict]:
    result = await session.execute(
        select(inventory_ledger)
        .where(inventory_ledger.c.item_id == item_id)
        .order_by(inventory_ledger.c.version.asc())
    )
    return [_entry_to_dict(row) for row in result.fetchall()]


async def load_all_entries(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        select(inventory_ledger).order_by(
            inventory_ledger.c.created_at.asc(), inventory_ledger.c.id.asc()
        )
    )
    return [_entry_to_dict(row) for row in result.fetchall()]
