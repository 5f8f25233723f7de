"""
Cart Service — コマンドハンドラ (CQRS Write 側)

カート明細と在庫カウンタを同時に更新する 3 つの操作。

  reserve : カートに追加し、在庫を減らす
  release : カート明細を削除し、在庫を戻す
  resync  : カート明細の数量を変更し、差分だけ在庫を増減する

各操作は 1 トランザクションで実行され、全て反映されるか何も変わらないかのどちらか。
在庫アイテム行のロックで同一アイテムへの操作は直列化される。
失敗は例外ではなく {"success": False, "error": ...} で返す。
コーディネーター内ではリトライしない。
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import Row
from sqlalchemy.exc import SQLAlchemyError

from . import ledger
from .errors import CartError, ErrorKind, InsufficientQuantity, InvalidQuantity, NotFound
from .events import CartItemReleased, CartItemReserved, CartItemResynced
from .publisher import ChangePublisher
from .store import CartStore, CartTransaction

logger = logging.getLogger(__name__)

Work = Callable[[CartTransaction], Awaitable[tuple[dict, BaseModel]]]


def _failure(kind: ErrorKind, reason: str) -> dict:
    return {"success": False, "error": kind.value, "reason": reason}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class CartInventoryCoordinator:
    """カート明細と在庫カウンタの関係を変更する唯一の窓口"""

    def __init__(
        self,
        store: CartStore,
        publisher: ChangePublisher | None = None,
    ) -> None:
        self.store = store
        self.publisher = publisher

    async def reserve(
        self,
        owner_id: UUID | str,
        item_id: UUID | str,
        amount: int = 1,
    ) -> dict:
        """
        カート追加コマンド

        1. 在庫アイテムをロックして読む（無ければ NotFound）
        2. available < amount なら InsufficientQuantity
        3. (owner_id, item_id) の明細があれば数量を加算、無ければ作成
        4. available を amount だけ減らす
        """
        if not _is_int(amount) or amount <= 0:
            return self._rejected(
                "reserve",
                InvalidQuantity(f"amount must be a positive integer, got {amount!r}"),
            )
        owner_id, item_id = str(owner_id), str(item_id)

        async def work(tx: CartTransaction) -> tuple[dict, BaseModel]:
            item = await tx.lock_item(item_id)
            if item is None:
                raise NotFound(f"Inventory item {item_id} not found")
            # チェックと減算は同じロック内で行う
            if item.available < amount:
                raise InsufficientQuantity(item.available, amount)

            line = await tx.find_cart_line(owner_id, item_id)
            if line is not None:
                action = "updated"
                cart_line_id = line.id
                cart_quantity = line.quantity + amount
                await tx.set_cart_line_quantity(cart_line_id, cart_quantity)
            else:
                action = "inserted"
                cart_quantity = amount
                cart_line_id = await tx.insert_cart_line(owner_id, item_id, amount)

            available = await tx.adjust_available(item_id, -amount)
            await ledger.append_entry(
                tx.session,
                item_id,
                cart_line_id,
                owner_id,
                "CartItemReserved",
                -amount,
                available,
            )

            event = CartItemReserved(
                item_id=item_id,
                cart_line_id=cart_line_id,
                owner_id=owner_id,
                quantity=amount,
                cart_quantity=cart_quantity,
                available=available,
                timestamp=datetime.now(timezone.utc),
            )
            result = {
                "success": True,
                "action": action,
                "cart_line_id": cart_line_id,
                "available": available,
            }
            return result, event

        return await self._execute("reserve", work)

    async def release(self, cart_line_id: UUID | str) -> dict:
        """
        カート削除コマンド

        引き当てていた数量をそのまま在庫に戻し、明細を削除する。
        """
        cart_line_id = str(cart_line_id)

        async def work(tx: CartTransaction) -> tuple[dict, BaseModel]:
            line = await tx.lock_cart_line(cart_line_id)
            if line is None:
                raise NotFound(f"Cart line {cart_line_id} not found")
            return await self._release_line(tx, line)

        return await self._execute("release", work)

    async def resync(self, cart_line_id: UUID | str, new_quantity: int) -> dict:
        """
        カート数量変更コマンド

        new_quantity <= 0 の場合は release と同じ処理・同じ結果形式になる。
        増やす場合のみ在庫不足で失敗しうる。減らす場合は必ず成功する。
        """
        if not _is_int(new_quantity):
            return self._rejected(
                "resync",
                InvalidQuantity(f"new_quantity must be an integer, got {new_quantity!r}"),
            )
        cart_line_id = str(cart_line_id)

        async def work(tx: CartTransaction) -> tuple[dict, BaseModel]:
            line = await tx.lock_cart_line(cart_line_id)
            if line is None:
                raise NotFound(f"Cart line {cart_line_id} not found")

            if new_quantity <= 0:
                return await self._release_line(tx, line)

            delta = new_quantity - line.quantity
            if delta > 0:
                item = await tx.lock_item(line.item_id)
                if item is None:
                    raise NotFound(f"Inventory item {line.item_id} not found")
                if item.available < delta:
                    raise InsufficientQuantity(item.available, delta)

            # delta が負なら available は増える
            available = await tx.adjust_available(line.item_id, -delta)
            await tx.set_cart_line_quantity(line.id, new_quantity)
            await ledger.append_entry(
                tx.session,
                line.item_id,
                line.id,
                line.owner_id,
                "CartItemResynced",
                -delta,
                available,
            )

            event = CartItemResynced(
                item_id=line.item_id,
                cart_line_id=line.id,
                owner_id=line.owner_id,
                new_quantity=new_quantity,
                delta=delta,
                available=available,
                timestamp=datetime.now(timezone.utc),
            )
            result = {
                "success": True,
                "action": "updated",
                "cart_line_id": line.id,
                "new_quantity": new_quantity,
                "delta": delta,
                "available": available,
            }
            return result, event

        return await self._execute("resync", work)

    # ── 内部処理 ─────────────────────────────────

    async def _release_line(
        self, tx: CartTransaction, line: Row
    ) -> tuple[dict, BaseModel]:
        available = await tx.adjust_available(line.item_id, line.quantity)
        await tx.delete_cart_line(line.id)
        await ledger.append_entry(
            tx.session,
            line.item_id,
            line.id,
            line.owner_id,
            "CartItemReleased",
            line.quantity,
            available,
        )

        event = CartItemReleased(
            item_id=line.item_id,
            cart_line_id=line.id,
            owner_id=line.owner_id,
            restored_quantity=line.quantity,
            available=available,
            timestamp=datetime.now(timezone.utc),
        )
        result = {
            "success": True,
            "action": "removed",
            "cart_line_id": line.id,
            "restored_amount": line.quantity,
            "available": available,
        }
        return result, event

    async def _execute(self, operation: str, work: Work) -> dict:
        """
        work を 1 トランザクションで実行し、失敗を結果 dict に変換する。
        通知はコミットが成功した後にだけ発行する。
        """
        try:
            async with self.store.transaction() as tx:
                result, event = await work(tx)
        except CartError as e:
            return self._rejected(operation, e)
        except SQLAlchemyError:
            logger.exception("%s failed with a storage error", operation)
            return _failure(ErrorKind.INTERNAL, f"Storage failure during {operation}")
        except (OSError, asyncio.TimeoutError):
            # 接続拒否・接続タイムアウトはドライバの例外がそのまま届く
            logger.exception("%s failed: database unreachable", operation)
            return _failure(ErrorKind.INTERNAL, f"Database unreachable during {operation}")

        if self.publisher is not None:
            await self.publisher.publish(event)
        return result

    def _rejected(self, operation: str, error: CartError) -> dict:
        if error.kind is ErrorKind.INTERNAL:
            logger.warning("%s failed: %s", operation, error.reason)
        else:
            logger.info("%s rejected (%s): %s", operation, error.kind.value, error.reason)
        return _failure(error.kind, error.reason)
