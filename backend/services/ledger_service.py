"""
Product Ledger — the deduplicated product table derived from receipt history.

Products are keyed by the exact (store, raw_name) pair.  The table is never
the system of record: it is a fold over receipts, so any edit or delete of a
receipt is handled by replaying the whole history in purchase order.

  append_products   — fast path for a newly ingested receipt
  rebuild_products  — full deterministic replay, reusing known product ids

Known limitation: raw_name is matched verbatim (after the trimming done by the
normalizer).  Two OCR transcriptions of the same shelf item that differ by a
character become two products.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from models.schemas import PricePoint, Product, Receipt, ReceiptItem
from services.coerce import create_id, parse_instant

logger = logging.getLogger("pricebook.ledger")

ProductKey = tuple[str, str]

# Receipts with unreadable dates replay first
_EPOCH_FLOOR = datetime.min.replace(tzinfo=timezone.utc)


def product_key(store: str, raw_name: str) -> ProductKey:
    return (store, raw_name)


def receipt_date(receipt: Receipt) -> str:
    """Business date of a receipt, falling back to ingestion time."""
    return receipt.purchased_at or receipt.created_at


def _apply_item(
    product: Optional[Product],
    receipt: Receipt,
    item: ReceiptItem,
    new_id: Callable[[], str],
) -> Product:
    """
    One ledger step: fold a receipt line into the product for its key.
    Returns a fresh Product; `product` is not mutated.

    A new product is seeded with the line's price as last_price, but the
    price only becomes a history point when it is positive.  A zero-priced
    first sighting therefore starts with an empty history, and append and
    rebuild agree on that.
    """
    point = PricePoint(date=receipt_date(receipt), price=item.unit_price, receipt_id=receipt.id)

    if product is None:
        return Product(
            id=new_id(),
            store=receipt.store,
            raw_name=item.raw_name,
            name=item.name,
            category=item.category,
            unit=item.unit,
            last_price=item.unit_price,
            price_history=[point] if item.unit_price > 0 else [],
        )

    history = list(product.price_history)
    last_price = product.last_price
    # A price only enters the history when it moves; a stable price is not a new point.
    if item.unit_price > 0 and (not history or item.unit_price != last_price):
        history.append(point)
        last_price = item.unit_price

    return product.model_copy(update={
        "name": product.name or item.name,
        "category": item.category if product.category == "other" else product.category,
        "unit": product.unit or item.unit,
        "last_price": last_price,
        "price_history": history,
    })


def append_products(
    products: Iterable[Product],
    receipt: Receipt,
    id_factory: Callable[[], str] = create_id,
) -> list[Product]:
    """Fold one new receipt into the product table (new list, inputs untouched)."""
    updated = list(products)
    index = {product_key(p.store, p.raw_name): i for i, p in enumerate(updated)}
    created = 0

    for item in receipt.items:
        key = product_key(receipt.store, item.raw_name)
        pos = index.get(key)
        if pos is None:
            updated.append(_apply_item(None, receipt, item, id_factory))
            index[key] = len(updated) - 1
            created += 1
        else:
            updated[pos] = _apply_item(updated[pos], receipt, item, id_factory)

    logger.debug("Appended receipt %s: %d items, %d new products",
                 receipt.id, len(receipt.items), created)
    return updated


def sort_chronologically(receipts: Iterable[Receipt]) -> list[Receipt]:
    """
    Ascending by purchase date (creation date when absent), then by ingestion
    time.  Purchase dates carry no time of day, so same-day receipts replay in
    the order they were added.  `receipts` is taken in stored order, newest
    first; receipts tied on both keys replay oldest-stored first.
    """
    def key(receipt: Receipt) -> tuple[datetime, datetime]:
        return (
            parse_instant(receipt_date(receipt)) or _EPOCH_FLOOR,
            parse_instant(receipt.created_at) or _EPOCH_FLOOR,
        )
    return sorted(reversed(list(receipts)), key=key)


def rebuild_products(
    receipts: Iterable[Receipt],
    existing_products: Iterable[Product] = (),
    id_factory: Callable[[], str] = create_id,
) -> list[Product]:
    """
    Recompute the product table from scratch by replaying every receipt in
    chronological order.  Ids are carried over from `existing_products` by
    (store, raw_name) key so product identity survives the rebuild; keys no
    longer present in any receipt disappear.
    """
    known_ids = {product_key(p.store, p.raw_name): p.id for p in existing_products}
    table: dict[ProductKey, Product] = {}

    for receipt in sort_chronologically(receipts):
        for item in receipt.items:
            key = product_key(receipt.store, item.raw_name)
            reuse = known_ids.get(key)
            new_id = (lambda known=reuse: known) if reuse else id_factory
            table[key] = _apply_item(table.get(key), receipt, item, new_id)

    dropped = set(known_ids) - set(table)
    if dropped:
        logger.info("Rebuild dropped %d products no longer on any receipt", len(dropped))
    logger.debug("Rebuilt %d products", len(table))
    return list(table.values())
