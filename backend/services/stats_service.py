"""
Stats Service — read-only spending / savings projection over all receipts.
"""
from datetime import datetime
from typing import Iterable, Optional

from models.schemas import (
    CATEGORIES,
    CategoryTotal,
    MonthSavings,
    MonthTotal,
    Receipt,
    Stats,
)
from services.coerce import parse_instant

UNKNOWN_MONTH = "unknown"


def month_key(value: Optional[str]) -> str:
    """YYYY-MM of the instant in local time, or 'unknown'."""
    parsed = parse_instant(value)
    if parsed is None:
        return UNKNOWN_MONTH
    local = parsed.astimezone()
    return f"{local.year}-{local.month:02d}"


def compute_stats(receipts: Iterable[Receipt], now: Optional[datetime] = None) -> Stats:
    receipts = list(receipts)
    monthly: dict[str, float] = {}
    monthly_savings: dict[str, float] = {}
    by_category: dict[str, float] = {category: 0.0 for category in CATEGORIES}

    saved_total = 0.0
    total_spent = 0.0
    largest_receipt = 0.0
    items_count = 0

    for receipt in receipts:
        key = month_key(receipt.purchased_at or receipt.created_at)
        receipt_total = receipt.totals.total or 0.0
        receipt_saved = receipt.totals.discount or 0.0

        # 'unknown' still counts toward the running totals below
        monthly[key] = monthly.get(key, 0.0) + receipt_total
        monthly_savings[key] = monthly_savings.get(key, 0.0) + receipt_saved

        total_spent += receipt_total
        saved_total += receipt_saved
        largest_receipt = max(largest_receipt, receipt_total)
        items_count += len(receipt.items)

        for item in receipt.items:
            by_category[item.category] = by_category.get(item.category, 0.0) + (item.total_price or 0.0)

    months = sorted(k for k in set(monthly) | set(monthly_savings) if k != UNKNOWN_MONTH)

    now = now or datetime.now()
    if now.tzinfo is not None:
        now = now.astimezone()
    current = f"{now.year}-{now.month:02d}"
    total_this_month = monthly.get(current, 0.0)
    saved_this_month = monthly_savings.get(current, 0.0)
    denominator = total_this_month + saved_this_month

    return Stats(
        total_this_month=total_this_month,
        saved_this_month=saved_this_month,
        saved_total=saved_total,
        savings_rate=saved_this_month / denominator if denominator > 0 else 0.0,
        average_receipt=total_spent / len(receipts) if receipts else 0.0,
        largest_receipt=largest_receipt,
        monthly=[MonthTotal(month=m, total=monthly.get(m, 0.0)) for m in months],
        monthly_savings=[MonthSavings(month=m, saved=monthly_savings.get(m, 0.0)) for m in months],
        categories=[CategoryTotal(category=c, total=by_category[c]) for c in CATEGORIES],
        receipts_count=len(receipts),
        items_count=items_count,
    )
