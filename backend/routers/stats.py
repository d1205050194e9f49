"""
Stats Router

GET /api/stats    — spending, savings and category totals across all receipts
GET /api/stores   — every store name seen (mounted separately in main.py)
"""
from fastapi import APIRouter, Depends

from db.database import SqliteSnapshotStore, get_store
from models.schemas import Stats
from services import receipt_service
from services.stats_service import compute_stats

router = APIRouter()
stores_router = APIRouter()


@router.get("", response_model=Stats)
async def get_stats(store: SqliteSnapshotStore = Depends(get_store)):
    receipts = await receipt_service.list_receipts(store)
    return compute_stats(receipts)


@stores_router.get("", response_model=list[str])
async def list_stores(store: SqliteSnapshotStore = Depends(get_store)):
    return await receipt_service.list_stores(store)
