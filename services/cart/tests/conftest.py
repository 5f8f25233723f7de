"""
Cart Service テスト共通フィクスチャ

実際の SQLite ファイル DB (aiosqlite) を使い、行ロックはロック表で再現する。
"""

import os
import sqlite3
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import create_async_engine

# app.main は import 時に DATABASE_URL を読むため、先に設定しておく
API_DB_PATH = Path(tempfile.mkdtemp()) / "cart-api.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{API_DB_PATH}"
os.environ.pop("REDIS_URL", None)

from app.commands import CartInventoryCoordinator  # noqa: E402
from app.store import CartStore  # noqa: E402
from app.tables import cart_lines, inventory_items, metadata  # noqa: E402


class RecordingPublisher:
    """発行されたイベントを記録するだけのパブリッシャー"""

    def __init__(self) -> None:
        self.events: list = []

    async def publish(self, event) -> None:
        self.events.append(event)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cart.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine) -> CartStore:
    return CartStore.for_engine(engine, lock_timeout=2.0)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def coordinator(store, publisher) -> CartInventoryCoordinator:
    return CartInventoryCoordinator(store, publisher)


@pytest.fixture
def seed_item(engine):
    """在庫アイテムを作成して ID を返す（カタログ管理の代わり）"""

    async def _seed(available: int, name: str = "Matcha Latte") -> str:
        item_id = str(uuid4())
        async with engine.begin() as conn:
            await conn.execute(
                insert(inventory_items).values(
                    id=item_id, name=name, available=available
                )
            )
        return item_id

    return _seed


@pytest.fixture
def snapshot(engine):
    """アイテム行と、そのアイテムを参照するカート明細をそのまま取得する"""

    async def _snapshot(item_id: str) -> dict:
        async with engine.connect() as conn:
            item = (
                await conn.execute(
                    select(inventory_items).where(inventory_items.c.id == item_id)
                )
            ).mappings().one()
            lines = (
                await conn.execute(
                    select(cart_lines)
                    .where(cart_lines.c.item_id == item_id)
                    .order_by(cart_lines.c.id)
                )
            ).mappings().all()
        return {"item": dict(item), "lines": [dict(line) for line in lines]}

    return _snapshot


# ── HTTP API 用 ──────────────────────────────────


@pytest.fixture
def api_seed_item():
    """API テスト用 DB に在庫アイテムを直接作成する"""

    def _seed(available: int, name: str = "Hojicha") -> str:
        item_id = str(uuid4())
        conn = sqlite3.connect(API_DB_PATH)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO inventory_items (id, name, available) VALUES (?, ?, ?)",
                    (item_id, name, available),
                )
        finally:
            conn.close()
        return item_id

    return _seed


@pytest.fixture
def api_client():
    from fastapi.testclient import TestClient

    from app.main import app

    with TestClient(app) as client:
        yield client

    conn = sqlite3.connect(API_DB_PATH)
    try:
        with conn:
            for table in ("inventory_ledger", "cart_lines", "inventory_items"):
                conn.execute(f"DELETE FROM {table}")
    finally:
        conn.close()
