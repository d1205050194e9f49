"""
OCR Router

POST /api/ocr   — extract a receipt draft from a base64 image (nothing is saved)

The draft is the model's raw JSON; the client reviews it and POSTs it to
/api/receipts, where it is normalized.
"""
import logging

from fastapi import APIRouter, HTTPException

from models.schemas import OcrDraft, OcrRequest
from services.ocr_service import OcrError, analyze_receipt

logger = logging.getLogger("pricebook.ocr")
router = APIRouter()


@router.post("", response_model=OcrDraft)
async def extract_receipt(body: OcrRequest):
    if not body.image_base64:
        raise HTTPException(status_code=400, detail="Missing image")
    try:
        draft = await analyze_receipt(
            body.image_base64,
            mime_type=body.mime_type,
            model=body.model,
            flow=body.flow,
        )
    except OcrError as e:
        logger.warning("Extraction failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    return OcrDraft(draft=draft)
