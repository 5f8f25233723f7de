"""
Cart Service — 在庫集約 (Inventory Aggregate)

台帳エントリをリプレイして、カートに引き当て済みの数量を再構築する。
reserved = -Σ delta（台帳の delta は available に対する増減）
"""


class InventoryAggregate:
    def __init__(self) -> None:
        self.item_id: str | None = None
        self.available: int | None = None
        self.reserved: int = 0
        self.version: int = 0

    def apply_delta(self, data: dict) -> None:
        self.reserved -= data["delta"]
        self.available = data["available_after"]

    def apply_entry(self, entry: dict) -> None:
        handler = {
            "CartItemReserved": self.apply_delta,
            "CartItemReleased": self.apply_delta,
            "CartItemResynced": self.apply_delta,
        }.get(entry["entry_type"])
        if handler:
            handler(entry)

    @classmethod
    def from_entries(cls, entries: list[dict]) -> "InventoryAggregate":
        agg = cls()
        for e in entries:
            agg.item_id = e["item_id"]
            agg.apply_entry(e)
            agg.version = e["version"]
        return agg
