"""
OCR Service — asks Claude to read a receipt image and return JSON that
approximates the extraction schema below.

Two flows:
  two-step (default)  transcribe the image to text, then parse the text into
                      JSON with a second, text-only call.  If the transcription
                      already is JSON it is used as-is.
  vision              one call: image in, schema JSON out.

Nothing returned here is trusted; normalize_service coerces whatever shape
comes back.  Failures surface as OcrError.
"""
import json
import logging
import os
import re
from typing import Any, Optional

import anthropic

logger = logging.getLogger("pricebook.ocr")

ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
DEFAULT_OCR_MODEL = os.environ.get("OCR_MODEL", "claude-sonnet-4-5")
DEFAULT_OCR_FLOW = os.environ.get("OCR_FLOW", "two-step").lower()
OCR_MAX_TOKENS = int(os.environ.get("OCR_MAX_TOKENS", "1800"))

VISION_FLOWS = {"vision", "image", "vlm", "direct"}


class OcrError(Exception):
    """Raised when extraction fails (no key, API error, or no JSON in the reply)."""
    pass


# ── Prompts ───────────────────────────────────────────────────────────────────

_EXTRACTION_RULES = """Rules:
- Only include purchased products/services in "items".
- Do NOT include: headers/footers, store address/phone, barcodes, QR codes, loyalty cards/bonuses,
  payment lines, card numbers, authorization codes, VAT/tax lines, cash change, marketing lines,
  websites, cashier info. Totals/discount lines must be reflected in "totals", not as items.
- If a line is not clearly a purchased item with a price, omit it from "items".
- Always output numbers as decimals using a dot (".") without currency symbols.
- Keep raw_name exactly as in the receipt line for items you keep.
- name should be a human-readable description of the product in English.
- For weighted goods, quantity is the weight value (e.g. 1.710) and unit is "kg".
- For pieces, quantity is a number and unit is "pcs" or "pack".
- unit_price is the price before line discount; if only line total is present, use total_price / quantity.
- total_price is the line total after line discount.
- discount is the line discount amount (0 if none): discount = (unit_price * quantity) - total_price.
- totals.subtotal is the pre-discount subtotal from the receipt, or compute as sum(unit_price * quantity).
- totals.discount_items is the sum of all item discounts.
- totals.discount_receipt is the overall receipt-level discount (club card, promo, etc.).
- totals.discount is the total discount (discount_items + discount_receipt).
- totals.total must satisfy: total = subtotal - discount_items - discount_receipt.
- If receipt totals disagree with the formula, adjust discount_receipt to make the formula hold.
- Round all monetary values to 2 decimals.
- purchased_at format: "YYYY-MM-DD" (date only).
- If store name/address, currency, purchased_at, or payment_method is unknown, use null.
- For numeric fields that are unknown, use 0.
"""

_SCHEMA_SKETCH = """{
  "store": { "name": "string or null", "address": "string or null" },
  "purchased_at": "YYYY-MM-DD or null",
  "currency": "string or null",
  "items": [
    {
      "raw_name": "string",
      "name": "string",
      "category": "grocery|household|electronics|entertainment|transport|other",
      "quantity": number,
      "unit": "pcs|pack|kg|g|l|m",
      "unit_price": number,
      "total_price": number,
      "discount": number
    }
  ],
  "totals": {
    "subtotal": number,
    "discount_items": number,
    "discount_receipt": number,
    "discount": number,
    "total": number,
    "payment_method": "string or null"
  }
}"""

OCR_TEXT_PROMPT = """You are an OCR engine. Transcribe the receipt image into plain text.
Return ONLY the raw receipt text. No JSON, no markdown, no extra commentary."""

OCR_PARSE_PROMPT = f"""You are a receipt parser. You will receive OCR text from a receipt.
Return ONLY valid JSON matching this shape:
{_SCHEMA_SKETCH}

{_EXTRACTION_RULES}"""

OCR_IMAGE_PROMPT = f"""You are a receipt parser. Analyze the receipt image and return ONLY valid JSON.
Schema:
{_SCHEMA_SKETCH}

{_EXTRACTION_RULES}"""


# ── Response handling ─────────────────────────────────────────────────────────

def resolve_mime_type(mime_type: Optional[str]) -> str:
    if not isinstance(mime_type, str) or not mime_type.strip():
        return "image/jpeg"
    normalized = mime_type.strip().lower()
    if normalized.startswith("image/") or normalized == "application/pdf":
        return normalized
    return "image/jpeg"


def content_to_text(content: Any) -> Optional[str]:
    """Flatten a Messages API content list (or a plain string) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
            elif isinstance(getattr(block, "text", None), str):
                parts.append(block.text)
        return "\n".join(p for p in parts if p)
    return None


def parse_json_response(content: Any) -> Any:
    """
    Pull a JSON value out of a model reply.  Markdown fences are stripped; if
    the remainder still isn't JSON, the outermost {...} span is tried.
    """
    if isinstance(content, dict):
        return content
    text = content_to_text(content)
    if text is None:
        raise OcrError("OCR response is not valid JSON")

    cleaned = re.sub(r"```(?:json)?", "", text.strip(), flags=re.IGNORECASE).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    m = re.search(r"\{.*\}", cleaned, re.DOTALL)
    if m:
        try:
            return json.loads(m.group(0))
        except json.JSONDecodeError:
            pass
    raise OcrError("OCR response is not valid JSON")


def _media_block(image_base64: str, mime_type: str) -> dict:
    source = {"type": "base64", "media_type": mime_type, "data": image_base64}
    if mime_type == "application/pdf":
        return {"type": "document", "source": source}
    return {"type": "image", "source": source}


# ── Claude calls ──────────────────────────────────────────────────────────────

def _client() -> anthropic.AsyncAnthropic:
    if not ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY not set — receipt extraction unavailable")
        raise OcrError("ANTHROPIC_API_KEY not set")
    return anthropic.AsyncAnthropic(api_key=ANTHROPIC_API_KEY)


async def _ask(system: str, content: list[dict], model: str) -> str:
    client = _client()
    try:
        message = await client.messages.create(
            model=model,
            max_tokens=OCR_MAX_TOKENS,
            temperature=0,
            system=system,
            messages=[{"role": "user", "content": content}],
        )
    except anthropic.APIError as e:
        logger.error("Claude API error: %s", e)
        raise OcrError(f"OCR service error: {e}") from e
    return content_to_text(message.content) or ""


async def extract_text(image_base64: str, mime_type: Optional[str], model: str) -> str:
    return await _ask(
        OCR_TEXT_PROMPT,
        [_media_block(image_base64, resolve_mime_type(mime_type)),
         {"type": "text", "text": "Transcribe this receipt image."}],
        model,
    )


async def parse_text(text: str, model: str) -> Any:
    reply = await _ask(
        OCR_PARSE_PROMPT,
        [{"type": "text", "text": f"Receipt text:\n{text}\n\nReturn JSON only."}],
        model,
    )
    return parse_json_response(reply)


async def analyze_image(image_base64: str, mime_type: Optional[str], model: str) -> Any:
    reply = await _ask(
        OCR_IMAGE_PROMPT,
        [_media_block(image_base64, resolve_mime_type(mime_type)),
         {"type": "text", "text": "Analyze this receipt image and return JSON only."}],
        model,
    )
    return parse_json_response(reply)


async def analyze_receipt(
    image_base64: str,
    mime_type: Optional[str] = None,
    model: Optional[str] = None,
    flow: Optional[str] = None,
) -> Any:
    """Return the model's best-effort receipt JSON for a base64 image."""
    model = model or DEFAULT_OCR_MODEL
    flow = (flow or DEFAULT_OCR_FLOW).lower()
    logger.info("Extracting receipt: %d KB b64, flow=%s, model=%s",
                len(image_base64) // 1024, flow, model)

    if flow in VISION_FLOWS:
        return await analyze_image(image_base64, mime_type, model)

    text = await extract_text(image_base64, mime_type, model)
    try:
        return parse_json_response(text)
    except OcrError:
        logger.debug("Transcription is plain text, running parse pass")
    return await parse_text(text, model)
