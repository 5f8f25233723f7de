"""
Cart Service — テーブル定義

inventory_items : 在庫アイテム（available は常に 0 以上）
cart_lines      : ユーザーごと・アイテムごとのカート明細
inventory_ledger: 在庫カウンタ変更の追記専用台帳（イベントストア相当）
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)

metadata = MetaData()

inventory_items = Table(
    "inventory_items",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False, default=""),
    Column("available", Integer, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True)),
    CheckConstraint("available >= 0", name="inventory_items_available_check"),
)

cart_lines = Table(
    "cart_lines",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("owner_id", String(36), nullable=False),
    Column(
        "item_id",
        String(36),
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("quantity", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    CheckConstraint("quantity > 0", name="cart_lines_quantity_check"),
    # (owner_id, item_id) ごとに明細は 1 行まで
    UniqueConstraint("owner_id", "item_id", name="cart_lines_owner_item_key"),
)

inventory_ledger = Table(
    "inventory_ledger",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("item_id", String(36), nullable=False, index=True),
    Column("cart_line_id", String(36), nullable=False),
    Column("owner_id", String(36), nullable=False),
    Column("entry_type", String(50), nullable=False),
    Column("delta", Integer, nullable=False),
    Column("available_after", Integer, nullable=False),
    Column("version", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True)),
    UniqueConstraint("item_id", "version", name="inventory_ledger_item_version_key"),
)
