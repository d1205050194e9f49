"""
Receipts Router

GET    /api/receipts        — list all receipts, newest first
POST   /api/receipts        — ingest a raw receipt payload (OCR draft or manual)
GET    /api/receipts/{id}   — get one receipt
PUT    /api/receipts/{id}   — replace a receipt's contents, rebuild the product ledger
DELETE /api/receipts/{id}   — remove a receipt, rebuild the product ledger
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from db.database import SqliteSnapshotStore, get_store, snapshot_lock
from models.schemas import Receipt, ReceiptPayload
from services import receipt_service

logger = logging.getLogger("pricebook.receipts")
router = APIRouter()


@router.get("", response_model=list[Receipt])
async def list_receipts(store: SqliteSnapshotStore = Depends(get_store)):
    receipts = await receipt_service.list_receipts(store)
    logger.debug("list_receipts returning %d receipts", len(receipts))
    return receipts


@router.post("", response_model=Receipt)
async def create_receipt(
    body: ReceiptPayload,
    store: SqliteSnapshotStore = Depends(get_store),
):
    if body.receipt is None:
        raise HTTPException(status_code=400, detail="Missing receipt")
    async with snapshot_lock:
        return await receipt_service.add_receipt(store, body.receipt)


@router.get("/{receipt_id}", response_model=Receipt)
async def get_receipt(
    receipt_id: str,
    store: SqliteSnapshotStore = Depends(get_store),
):
    receipt = await receipt_service.get_receipt(store, receipt_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return receipt


@router.put("/{receipt_id}", response_model=Receipt)
async def update_receipt(
    receipt_id: str,
    body: ReceiptPayload,
    store: SqliteSnapshotStore = Depends(get_store),
):
    if body.receipt is None:
        raise HTTPException(status_code=400, detail="Missing receipt")
    async with snapshot_lock:
        updated = await receipt_service.update_receipt(store, receipt_id, body.receipt)
    if not updated:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return updated


@router.delete("/{receipt_id}")
async def delete_receipt(
    receipt_id: str,
    store: SqliteSnapshotStore = Depends(get_store),
):
    async with snapshot_lock:
        deleted = await receipt_service.delete_receipt(store, receipt_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return {"status": "deleted"}
