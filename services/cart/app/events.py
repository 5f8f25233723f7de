"""
Cart Service — イベント定義

コミット後に Redis Pub/Sub (inventory_events) へ発行する変更通知。
購読側は available を見て在庫表示を更新する。
"""

from datetime import datetime

from pydantic import BaseModel


class CartItemReserved(BaseModel):
    """カートに追加され、在庫が引き当てられた"""
    item_id: str
    cart_line_id: str
    owner_id: str
    quantity: int
    cart_quantity: int
    available: int
    timestamp: datetime


class CartItemReleased(BaseModel):
    """カート明細が削除され、在庫が戻された"""
    item_id: str
    cart_line_id: str
    owner_id: str
    restored_quantity: int
    available: int
    timestamp: datetime


class CartItemResynced(BaseModel):
    """カート明細の数量が変更され、差分だけ在庫が増減した"""
    item_id: str
    cart_line_id: str
    owner_id: str
    new_quantity: int
    delta: int
    available: int
    timestamp: datetime
