"""
Cart Service — FastAPI エントリーポイント

カート明細と在庫カウンタを整合させるサービス。CQRS パターン。
認証・認可は上流 (BFF) で済んでいる前提で、owner_id はリクエストで受け取る。

┌──────┐  commands  ┌──────────────┐  FOR UPDATE  ┌────────────┐
│ BFF  │ ─────────▶ │ Cart Service │ ───────────▶ │  Cart DB   │
└──────┘            └──────┬───────┘              └────────────┘
                           │ inventory_events (Redis Pub/Sub)
                           ▼
                     在庫表示の購読者
"""

import os
from contextlib import asynccontextmanager
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import ledger, queries
from .commands import CartInventoryCoordinator
from .publisher import ChangePublisher
from .store import CartStore
from .tables import metadata

DATABASE_URL = os.environ["DATABASE_URL"]
# 未設定なら変更通知を発行しない
REDIS_URL = os.environ.get("REDIS_URL")
LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None
coordinator: CartInventoryCoordinator | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool, coordinator
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    publisher = None
    if REDIS_URL:
        redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
        publisher = ChangePublisher(redis_pool)

    store = CartStore.for_engine(engine, lock_timeout=LOCK_TIMEOUT_SECONDS)
    coordinator = CartInventoryCoordinator(store, publisher)
    yield
    if redis_pool is not None:
        await redis_pool.aclose()
        redis_pool = None
    await engine.dispose()


app = FastAPI(title="Cart Service", lifespan=lifespan)

STATUS_BY_ERROR = {
    "NotFound": 404,
    "InsufficientQuantity": 409,
    "InvalidQuantity": 422,
    "Internal": 503,
}


def _ok_or_raise(result: dict) -> dict:
    if not result["success"]:
        raise HTTPException(status_code=STATUS_BY_ERROR[result["error"]], detail=result)
    return result


# ── Request Models ───────────────────────────────


class ReserveRequest(BaseModel):
    owner_id: UUID
    item_id: UUID
    quantity: int = 1


class ResyncRequest(BaseModel):
    quantity: int


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/commands/cart/lines")
async def cmd_reserve(req: ReserveRequest):
    """カート追加コマンド（在庫を引き当てる）"""
    return _ok_or_raise(
        await coordinator.reserve(req.owner_id, req.item_id, req.quantity)
    )


@app.post("/commands/cart/lines/{cart_line_id}/release")
async def cmd_release(cart_line_id: UUID):
    """カート削除コマンド（在庫を戻す）"""
    return _ok_or_raise(await coordinator.release(cart_line_id))


@app.post("/commands/cart/lines/{cart_line_id}/resync")
async def cmd_resync(cart_line_id: UUID, req: ResyncRequest):
    """カート数量変更コマンド（0 以下なら削除）"""
    return _ok_or_raise(await coordinator.resync(cart_line_id, req.quantity))


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/items")
async def query_list_items():
    async with async_session() as session:
        return await queries.list_items(session)


@app.get("/queries/items/{item_id}")
async def query_get_item(item_id: UUID):
    async with async_session() as session:
        item = await queries.get_item(session, str(item_id))
        if not item:
            raise HTTPException(404, "Inventory item not found")
        return item


@app.get("/queries/items/{item_id}/audit")
async def query_audit_item(item_id: UUID):
    """在庫とカート明細・台帳の保存則チェック"""
    async with async_session() as session:
        report = await queries.audit_item(session, str(item_id))
        if not report:
            raise HTTPException(404, "Inventory item not found")
        return report


@app.get("/queries/carts/{owner_id}")
async def query_list_cart_lines(owner_id: UUID):
    async with async_session() as session:
        return await queries.list_cart_lines(session, str(owner_id))


# ── Ledger (デバッグ用) ──────────────────────────


@app.get("/ledger")
async def get_all_ledger_entries():
    async with async_session() as session:
        return await ledger.load_all_entries(session)


@app.get("/ledger/{item_id}")
async def get_item_ledger_entries(item_id: UUID):
    async with async_session() as session:
        return await ledger.load_entries(session, str(item_id))


@app.get("/health")
async def health():
    return {"status": "ok", "service": "cart-service"}
