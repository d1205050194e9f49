"""
Items Router — the product ledger (deduplicated purchases with price history)

GET /api/items        — list all products
GET /api/items/{id}   — one product with its price history
"""
from fastapi import APIRouter, Depends, HTTPException

from db.database import SqliteSnapshotStore, get_store
from models.schemas import Product
from services import receipt_service

router = APIRouter()


@router.get("", response_model=list[Product])
async def list_products(
    store_name: str = "",
    category: str = "",
    store: SqliteSnapshotStore = Depends(get_store),
):
    products = await receipt_service.list_products(store)
    if store_name:
        products = [p for p in products if p.store == store_name]
    if category:
        products = [p for p in products if p.category == category]
    return products


@router.get("/{product_id}", response_model=Product)
async def get_product(
    product_id: str,
    store: SqliteSnapshotStore = Depends(get_store),
):
    product = await receipt_service.get_product(store, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product
