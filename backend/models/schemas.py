from pydantic import BaseModel, Field
from typing import Any, Optional, List, Literal


CATEGORIES = (
    "grocery",
    "household",
    "electronics",
    "entertainment",
    "transport",
    "other",
)

Category = Literal[
    "grocery", "household", "electronics", "entertainment", "transport", "other"
]


# ── Receipt ────────────────────────────────────────────
class ReceiptItem(BaseModel):
    id: str
    raw_name: str                 # verbatim extracted text, half of the product key
    name: str                     # human-readable
    category: Category = "other"
    quantity: float = 1.0
    unit: str = "pcs"             # pcs | pack | kg | g | l | m, or literal OCR text
    unit_price: float = 0.0
    total_price: float = 0.0      # after line discount
    discount: float = 0.0         # line-level

class ReceiptTotals(BaseModel):
    subtotal: float = 0.0
    discount: float = 0.0         # discount_items + discount_receipt
    discount_items: float = 0.0
    discount_receipt: float = 0.0
    total: float = 0.0            # subtotal - discount
    payment_method: Optional[str] = None

class NormalizedReceipt(BaseModel):
    store: str
    currency: str
    purchased_at: str
    totals: ReceiptTotals
    items: List[ReceiptItem] = []

class Receipt(NormalizedReceipt):
    id: str
    created_at: str


# ── Product ledger ─────────────────────────────────────
class PricePoint(BaseModel):
    date: str
    price: float
    receipt_id: str

class Product(BaseModel):
    id: str
    store: str
    raw_name: str
    name: str
    category: Category = "other"
    unit: str = "pcs"
    last_price: float = 0.0
    price_history: List[PricePoint] = []


# ── Snapshot (the whole persisted state) ───────────────
class Snapshot(BaseModel):
    receipts: List[Receipt] = Field(default_factory=list)
    products: List[Product] = Field(default_factory=list)


# ── Stats ──────────────────────────────────────────────
class MonthTotal(BaseModel):
    month: str                    # YYYY-MM
    total: float

class MonthSavings(BaseModel):
    month: str
    saved: float

class CategoryTotal(BaseModel):
    category: Category
    total: float

class Stats(BaseModel):
    total_this_month: float
    saved_this_month: float
    saved_total: float
    savings_rate: float
    average_receipt: float
    largest_receipt: float
    monthly: List[MonthTotal]
    monthly_savings: List[MonthSavings]
    categories: List[CategoryTotal]
    receipts_count: int
    items_count: int


# ── Request bodies ─────────────────────────────────────
class ReceiptPayload(BaseModel):
    """Raw extraction output or a user-edited draft; coerced, never validated."""
    receipt: Optional[Any] = None

class OcrRequest(BaseModel):
    image_base64: Optional[str] = None
    mime_type: Optional[str] = None
    model: Optional[str] = None
    flow: Optional[str] = None   # "two-step" | "vision"

class OcrDraft(BaseModel):
    draft: Any
