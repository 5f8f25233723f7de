"""
Cart Service — ストレージ層トランザクションラッパー

カート操作はすべて 1 つのトランザクション内で実行する。
在庫アイテム行を排他ロックし、同じアイテムへの操作を直列化する。

  - PostgreSQL: SELECT ... FOR UPDATE による行ロック
  - SQLite    : FOR UPDATE が無いため、アイテム ID をキーにした
                プロセス内ロック表 (ItemLockTable) で行ロックを再現する。
                ロックはコミット/ロールバックの後に解放する。

ロック順序は常に「在庫アイテム → カート明細」。
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator
from uuid import uuid4

from sqlalchemy import Row, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from .errors import InsufficientQuantity, LockTimeout, NotFound
from .tables import cart_lines, inventory_items


class ItemLockTable:
    """アイテム ID ごとのロック表。誰も参照しなくなったロックは自動的に消える。"""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def get(self, item_id: str) -> asyncio.Lock:
        lock = self._locks.get(item_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[item_id] = lock
        return lock


class CartTransaction:
    """1 回のカート操作に対応するトランザクション内の行操作"""

    def __init__(
        self,
        session: AsyncSession,
        locks: ItemLockTable | None,
        lock_timeout: float,
    ) -> None:
        self.session = session
        self._locks = locks
        self._lock_timeout = lock_timeout
        self._held: dict[str, asyncio.Lock] = {}

    async def _acquire_local_lock(self, item_id: str) -> None:
        if self._locks is None or item_id in self._held:
            return
        lock = self._locks.get(item_id)
        try:
            await asyncio.wait_for(lock.acquire(), self._lock_timeout)
        except asyncio.TimeoutError:
            raise LockTimeout(
                f"Timed out waiting for lock on inventory item {item_id}"
            ) from None
        self._held[item_id] = lock

    def release_local_locks(self) -> None:
        while self._held:
            _, lock = self._held.popitem()
            lock.release()

    # ── 行ロック ─────────────────────────────────

    async def lock_item(self, item_id: str) -> Row | None:
        await self._acquire_local_lock(item_id)
        result = await self.session.execute(
            select(inventory_items)
            .where(inventory_items.c.id == item_id)
            .with_for_update()
        )
        return result.fetchone()

    async def lock_cart_line(self, cart_line_id: str) -> Row | None:
        """
        カート明細をロックして読む。

        先に参照先アイテムをロックしてから明細を読み直す。
        待っている間に他の操作で削除された場合は None を返す。
        """
        result = await self.session.execute(
            select(cart_lines.c.item_id).where(cart_lines.c.id == cart_line_id)
        )
        row = result.fetchone()
        if row is None:
            return None

        await self.lock_item(row.item_id)
        result = await self.session.execute(
            select(cart_lines)
            .where(cart_lines.c.id == cart_line_id)
            .with_for_update()
        )
        return result.fetchone()

    # ── カート明細 ───────────────────────────────

    async def find_cart_line(self, owner_id: str, item_id: str) -> Row | None:
        result = await self.session.execute(
            select(cart_lines)
            .where(cart_lines.c.owner_id == owner_id, cart_lines.c.item_id == item_id)
            .with_for_update()
        )
        return result.fetchone()

    async def insert_cart_line(self, owner_id: str, item_id: str, quantity: int) -> str:
        cart_line_id = str(uuid4())
        now = datetime.now(timezone.utc)
        await self.session.execute(
            insert(cart_lines).values(
                id=cart_line_id,
                owner_id=owner_id,
                item_id=item_id,
                quantity=quantity,
                created_at=now,
                updated_at=now,
            )
        )
        return cart_line_id

    async def set_cart_line_quantity(self, cart_line_id: str, quantity: int) -> None:
        await self.session.execute(
            update(cart_lines)
            .where(cart_lines.c.id == cart_line_id)
            .values(quantity=quantity, updated_at=datetime.now(timezone.utc))
        )

    async def delete_cart_line(self, cart_line_id: str) -> None:
        await self.session.execute(
            delete(cart_lines).where(cart_lines.c.id == cart_line_id)
        )

    # ── 在庫カウンタ ─────────────────────────────

    async def adjust_available(self, item_id: str, delta: int) -> int:
        """
        在庫カウンタを delta だけ増減する（全操作共通のプリミティブ）。

        available + delta が負になる場合は InsufficientQuantity を送出する。
        非負条件はここでのみ検査・更新される。更新後の available を返す。
        """
        item = await self.lock_item(item_id)
        if item is None:
            raise NotFound(f"Inventory item {item_id} not found")

        candidate = item.available + delta
        if candidate < 0:
            raise InsufficientQuantity(item.available, -delta)

        await self.session.execute(
            update(inventory_items)
            .where(inventory_items.c.id == item_id)
            .values(available=candidate, updated_at=datetime.now(timezone.utc))
        )
        return candidate


class CartStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        local_row_locks: bool = False,
        lock_timeout: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self.locks = ItemLockTable() if local_row_locks else None
        self.lock_timeout = lock_timeout

    @classmethod
    def for_engine(cls, engine: AsyncEngine, lock_timeout: float = 5.0) -> "CartStore":
        """SQLite のように行ロックを持たないバックエンドではロック表を使う。"""
        return cls(
            sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
            local_row_locks=engine.dialect.name == "sqlite",
            lock_timeout=lock_timeout,
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[CartTransaction]:
        """
        正常終了でコミット、例外でロールバックする。
        ロック表のロックはコミット/ロールバックが終わってから解放する。
        """
        async with self._session_factory() as session:
            tx = CartTransaction(session, self.locks, self.lock_timeout)
            try:
                async with session.begin():
                    yield tx
            finally:
                tx.release_local_locks()
