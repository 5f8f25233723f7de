"""
Cart Service — クエリハンドラ (CQRS Read 側)
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import ledger
from .aggregate import InventoryAggregate
from .tables import cart_lines, inventory_items


def _item_to_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "available": row.available,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def _cart_line_to_dict(row) -> dict:
    return {
        "id": row.id,
        "owner_id": row.owner_id,
        "item_id": row.item_id,
        "quantity": row.quantity,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def get_item(session: AsyncSession, item_id: str) -> dict | None:
    result = await session.execute(
        select(inventory_items).where(inventory_items.c.id == item_id)
    )
    row = result.fetchone()
    if not row:
        return None
    return _item_to_dict(row)


async def list_items(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        select(inventory_items).order_by(inventory_items.c.name)
    )
    return [_item_to_dict(row) for row in result.fetchall()]


async def get_cart_line(session: AsyncSession, cart_line_id: str) -> dict | None:
    result = await session.execute(
        select(cart_lines).where(cart_lines.c.id == cart_line_id)
    )
    row = result.fetchone()
    if not row:
        return None
    return _cart_line_to_dict(row)


async def list_cart_lines(session: AsyncSession, owner_id: str) -> list[dict]:
    result = await session.execute(
        select(cart_lines)
        .where(cart_lines.c.owner_id == owner_id)
        .order_by(cart_lines.c.created_at)
    )
    return [_cart_line_to_dict(row) for row in result.fetchall()]


async def audit_item(session: AsyncSession, item_id: str) -> dict | None:
    """
    保存則の検査

    カート明細の数量合計と、台帳をリプレイした引き当て数が一致するか、
    台帳の最終 available が現在値と一致するかを返す。
    """
    item = await get_item(session, item_id)
    if item is None:
        return None

    result = await session.execute(
        select(func.coalesce(func.sum(cart_lines.c.quantity), 0)).where(
            cart_lines.c.item_id == item_id
        )
    )
    reserved_in_carts = result.scalar_one()

    agg = InventoryAggregate.from_entries(await ledger.load_entries(session, item_id))
    return {
        "item_id": item_id,
        "available": item["available"],
        "reserved_in_carts": reserved_in_carts,
        "reserved_by_ledger": agg.reserved,
        "ledger_version": agg.version,
        "consistent": reserved_in_carts == agg.reserved
        and agg.available in (None, item["available"]),
    }
