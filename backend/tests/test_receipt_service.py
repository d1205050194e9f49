"""
Tests for the receipt service against the SQLite snapshot store — ingest,
edit, delete, and the ledger updates each one triggers.
"""
import pytest
from conftest import raw_item, raw_receipt
from db.database import SqliteSnapshotStore
from models.schemas import Snapshot
from services import receipt_service


async def product(store, raw_name, store_name="X"):
    for p in await receipt_service.list_products(store):
        if p.raw_name == raw_name and p.store == store_name:
            return p
    return None


# ── Store ─────────────────────────────────────────────────────────────────────

class TestSnapshotStore:

    async def test_empty_store_reads_empty_snapshot(self, store):
        snapshot = await store.read()
        assert snapshot.receipts == []
        assert snapshot.products == []

    async def test_write_then_read(self, store):
        await receipt_service.add_receipt(store, raw_receipt())
        again = await SqliteSnapshotStore(store.db).read()
        assert len(again.receipts) == 1
        assert len(again.products) == 1

    async def test_corrupt_body_reads_empty(self, db, store):
        await db.execute("INSERT INTO snapshots (key, body) VALUES ('default', '{not json')")
        await db.commit()
        assert await store.read() == Snapshot()

    async def test_keys_are_independent(self, db):
        a = SqliteSnapshotStore(db, key="a")
        b = SqliteSnapshotStore(db, key="b")
        await receipt_service.add_receipt(a, raw_receipt())
        assert (await b.read()).receipts == []


# ── Ingest ────────────────────────────────────────────────────────────────────

class TestAddReceipt:

    async def test_assigns_identity_and_normalizes(self, store):
        receipt = await receipt_service.add_receipt(store, raw_receipt(
            [raw_item("MILK 1L", unit_price=25), {"raw_name": "VISA **** 1234", "total_price": 25}],
            store="Albert",
        ))
        assert receipt.id
        assert receipt.created_at.endswith("Z")
        assert receipt.store == "Albert"
        assert [i.raw_name for i in receipt.items] == ["MILK 1L"]

    async def test_newest_first(self, store):
        first = await receipt_service.add_receipt(store, raw_receipt())
        second = await receipt_service.add_receipt(store, raw_receipt())
        assert [r.id for r in await receipt_service.list_receipts(store)] == [second.id, first.id]

    async def test_repeated_price_does_not_grow_history(self, store):
        await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=25)]))
        await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=25)],
                                                             purchased_at="2026-03-05"))
        milk = await product(store, "MILK 1L")
        assert len(milk.price_history) == 1

    async def test_price_sequence(self, store):
        for price, day in ((25, "01"), (27, "05"), (25, "09")):
            await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=price)],
                                                                 purchased_at=f"2026-03-{day}"))
        milk = await product(store, "MILK 1L")
        assert [p.price for p in milk.price_history] == [25, 27, 25]

    async def test_garbage_payload_still_stored(self, store):
        receipt = await receipt_service.add_receipt(store, "not a receipt")
        assert receipt.store == "Unknown store"
        assert receipt.items == []
        assert await receipt_service.list_products(store) == []


# ── Edit / delete ─────────────────────────────────────────────────────────────

class TestUpdateReceipt:

    async def test_replaces_contents_keeps_identity(self, store):
        original = await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=25)]))
        updated = await receipt_service.update_receipt(
            store, original.id, raw_receipt([raw_item(unit_price=30)], store="X"))

        assert updated.id == original.id
        assert updated.created_at == original.created_at
        assert updated.items[0].unit_price == 30
        assert (await receipt_service.get_receipt(store, original.id)).items[0].unit_price == 30

    async def test_rebuild_rewrites_history_and_keeps_product_id(self, store):
        r1 = await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=25)],
                                                                  purchased_at="2026-03-01"))
        await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=27)],
                                                             purchased_at="2026-03-05"))
        before = await product(store, "MILK 1L")

        await receipt_service.update_receipt(store, r1.id, raw_receipt([raw_item(unit_price=27)],
                                                                        purchased_at="2026-03-01"))
        after = await product(store, "MILK 1L")

        assert after.id == before.id
        assert [p.price for p in after.price_history] == [27]

    async def test_store_rename_moves_product(self, store):
        r1 = await receipt_service.add_receipt(store, raw_receipt(store="X"))
        await receipt_service.update_receipt(store, r1.id, raw_receipt(store="Y"))
        assert await product(store, "MILK 1L", "X") is None
        assert await product(store, "MILK 1L", "Y") is not None

    async def test_unknown_id_returns_none(self, store):
        assert await receipt_service.update_receipt(store, "missing", raw_receipt()) is None


class TestDeleteReceipt:

    async def test_removes_receipt_and_its_points(self, store):
        await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=25)],
                                                             purchased_at="2026-03-01"))
        r2 = await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=27)],
                                                                  purchased_at="2026-03-05"))
        before = await product(store, "MILK 1L")

        assert await receipt_service.delete_receipt(store, r2.id) is True

        after = await product(store, "MILK 1L")
        assert after.id == before.id
        assert after.price_history
        assert all(p.receipt_id != r2.id for p in after.price_history)
        assert await receipt_service.get_receipt(store, r2.id) is None

    async def test_same_day_history_survives_unrelated_delete(self, store):
        await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=25)],
                                                             purchased_at="2026-03-01"))
        await receipt_service.add_receipt(store, raw_receipt([raw_item(unit_price=27)],
                                                             purchased_at="2026-03-01"))
        unrelated = await receipt_service.add_receipt(
            store, raw_receipt([raw_item("BREAD", unit_price=40)], purchased_at="2026-03-02"))
        before = await product(store, "MILK 1L")
        assert [p.price for p in before.price_history] == [25, 27]

        await receipt_service.delete_receipt(store, unrelated.id)

        after = await product(store, "MILK 1L")
        assert [p.price for p in after.price_history] == [25, 27]
        assert after.last_price == 27

    async def test_last_receipt_removes_products(self, store):
        r1 = await receipt_service.add_receipt(store, raw_receipt())
        await receipt_service.delete_receipt(store, r1.id)
        assert await receipt_service.list_products(store) == []

    async def test_unknown_id_returns_false(self, store):
        await receipt_service.add_receipt(store, raw_receipt())
        assert await receipt_service.delete_receipt(store, "missing") is False
        assert len(await receipt_service.list_receipts(store)) == 1


# ── Reads ─────────────────────────────────────────────────────────────────────

class TestReads:

    async def test_get_product(self, store):
        await receipt_service.add_receipt(store, raw_receipt())
        milk = await product(store, "MILK 1L")
        assert (await receipt_service.get_product(store, milk.id)).raw_name == "MILK 1L"
        assert await receipt_service.get_product(store, "missing") is None

    async def test_list_stores_sorted_unique(self, store):
        for name in ("Lidl", "Albert", "Lidl"):
            await receipt_service.add_receipt(store, raw_receipt(store=name))
        assert await receipt_service.list_stores(store) == ["Albert", "Lidl"]
