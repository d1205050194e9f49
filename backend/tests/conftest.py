"""
Shared fixtures for backend tests.

Every test gets a fresh in-memory SQLite database with the production
snapshot schema, a store over it, and builders for raw extraction payloads.
"""
import pytest
import aiosqlite

from db.database import SCHEMA, SqliteSnapshotStore
from models.schemas import Receipt


@pytest.fixture
async def db():
    """Yield a fresh in-memory SQLite connection with the full schema."""
    async with aiosqlite.connect(":memory:") as conn:
        conn.row_factory = aiosqlite.Row
        await conn.executescript(SCHEMA)
        yield conn


@pytest.fixture
def store(db):
    return SqliteSnapshotStore(db)


# ── Payload / record builders ────────────────────────────────────────────────

def raw_item(raw_name="MILK 1L", *, name=None, unit_price=25.0, quantity=1,
             total_price=None, discount=0, category="grocery", unit="pcs"):
    return {
        "raw_name": raw_name,
        "name": name or raw_name.title(),
        "category": category,
        "quantity": quantity,
        "unit": unit,
        "unit_price": unit_price,
        "total_price": unit_price * quantity - discount if total_price is None else total_price,
        "discount": discount,
    }


def raw_receipt(items=None, *, store="X", purchased_at="2026-03-01", currency="CZK",
                totals=None):
    return {
        "store": {"name": store, "address": None},
        "purchased_at": purchased_at,
        "currency": currency,
        "items": items if items is not None else [raw_item()],
        "totals": totals or {},
    }


def make_receipt(receipt_id, items, *, store="X", purchased_at="2026-03-01T00:00:00.000Z",
                 created_at="2026-03-01T12:00:00.000Z"):
    """A stored Receipt built directly, bypassing normalization."""
    return Receipt.model_validate({
        "id": receipt_id,
        "created_at": created_at,
        "purchased_at": purchased_at,
        "store": store,
        "currency": "CZK",
        "totals": {},
        "items": [
            {"id": f"{receipt_id}-{i}", "raw_name": raw_name, "name": raw_name.title(),
             "category": "grocery", "quantity": 1, "unit": "pcs",
             "unit_price": price, "total_price": price, "discount": 0}
            for i, (raw_name, price) in enumerate(items)
        ],
    })
