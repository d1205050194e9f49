"""
Receipt Service — the ingest / edit / delete pipeline over a SnapshotStore.

Every mutation is one unit: read the full snapshot, compute the new receipts
and products, write the full snapshot back.  Callers must not run two
mutations against the same store concurrently (the HTTP layer holds
db.database.snapshot_lock).

Not-found is a return value (None / False), not an exception.
"""
import logging
from typing import Any, Optional

from db.database import SnapshotStore
from models.schemas import Product, Receipt
from services.coerce import create_id, utc_now_iso
from services.ledger_service import append_products, rebuild_products
from services.normalize_service import DEFAULT_CONFIG, NormalizerConfig, normalize_receipt

logger = logging.getLogger("pricebook.receipts")


# ── Mutations ─────────────────────────────────────────────────────────────────

async def add_receipt(
    store: SnapshotStore,
    raw: Any,
    config: NormalizerConfig = DEFAULT_CONFIG,
) -> Receipt:
    now = utc_now_iso()
    normalized = normalize_receipt(raw, config, now=now)
    receipt = Receipt(id=create_id(), created_at=now, **normalized.model_dump())

    snapshot = await store.read()
    snapshot.receipts.insert(0, receipt)   # newest first
    snapshot.products = append_products(snapshot.products, receipt)
    await store.write(snapshot)

    logger.info("Added receipt %s (%s, %d items, total %.2f %s)",
                receipt.id, receipt.store, len(receipt.items),
                receipt.totals.total, receipt.currency)
    return receipt


async def update_receipt(
    store: SnapshotStore,
    receipt_id: str,
    raw: Any,
    config: NormalizerConfig = DEFAULT_CONFIG,
) -> Optional[Receipt]:
    """
    Replace a receipt's contents (store, currency, date, totals, items) and
    rebuild the product ledger.  Identity and created_at are kept.
    """
    snapshot = await store.read()
    index = next((i for i, r in enumerate(snapshot.receipts) if r.id == receipt_id), None)
    if index is None:
        return None

    existing = snapshot.receipts[index]
    normalized = normalize_receipt(raw, config)
    updated = Receipt(id=existing.id, created_at=existing.created_at, **normalized.model_dump())

    snapshot.receipts[index] = updated
    snapshot.products = rebuild_products(snapshot.receipts, snapshot.products)
    await store.write(snapshot)

    logger.info("Updated receipt %s, ledger rebuilt (%d products)",
                receipt_id, len(snapshot.products))
    return updated


async def delete_receipt(store: SnapshotStore, receipt_id: str) -> bool:
    snapshot = await store.read()
    remaining = [r for r in snapshot.receipts if r.id != receipt_id]
    if len(remaining) == len(snapshot.receipts):
        return False

    snapshot.receipts = remaining
    snapshot.products = rebuild_products(snapshot.receipts, snapshot.products)
    await store.write(snapshot)

    logger.info("Deleted receipt %s, ledger rebuilt (%d products)",
                receipt_id, len(snapshot.products))
    return True


# ── Reads ─────────────────────────────────────────────────────────────────────

async def list_receipts(store: SnapshotStore) -> list[Receipt]:
    return (await store.read()).receipts


async def get_receipt(store: SnapshotStore, receipt_id: str) -> Optional[Receipt]:
    snapshot = await store.read()
    return next((r for r in snapshot.receipts if r.id == receipt_id), None)


async def list_products(store: SnapshotStore) -> list[Product]:
    return (await store.read()).products


async def get_product(store: SnapshotStore, product_id: str) -> Optional[Product]:
    snapshot = await store.read()
    return next((p for p in snapshot.products if p.id == product_id), None)


async def list_stores(store: SnapshotStore) -> list[str]:
    """Every store name seen on a receipt or a product, sorted."""
    snapshot = await store.read()
    names = {r.store for r in snapshot.receipts if r.store}
    names.update(p.store for p in snapshot.products if p.store)
    return sorted(names)
