"""
Normalization Service — turns an untrusted extraction payload into a
NormalizedReceipt.

Two stages:
  1. Item admission: drop non-product lines (payment, tax, totals, footer
     noise…), lines without a price, then fill in unit / category / numbers.
  2. Totals reconciliation: derive subtotal, discounts and total so that
     total = subtotal − discount and discount = discount_items + discount_receipt
     hold within TOTAL_TOLERANCE, preferring receipt-level figures over
     item-derived sums.

The keyword heuristics live in NormalizerConfig as ordered rule lists so a
locale can be added with a JSON rules file (NORMALIZER_RULES_PATH) instead of
editing this module.
"""
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from models.schemas import CATEGORIES, NormalizedReceipt, ReceiptItem, ReceiptTotals
from services.coerce import (
    create_id,
    is_category,
    parse_date,
    safe_string,
    to_number,
    utc_now_iso,
)

logger = logging.getLogger("pricebook.normalize")

FALLBACK_STORE = "Unknown store"
FALLBACK_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "CZK")
FALLBACK_ITEM_NAME = "Unknown item"
TOTAL_TOLERANCE = 0.05


# ── Rules ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClassificationRule:
    label: str
    pattern: str              # regex, searched case-insensitively
    priority: int = 100       # lower runs first; ties keep declaration order


def keyword_rule(label: str, keywords: Iterable[str], priority: int = 100) -> ClassificationRule:
    """Build a rule matching any of `keywords` as a plain substring."""
    keywords = list(keywords)
    if not keywords or not all(isinstance(k, str) and k.strip() for k in keywords):
        raise ValueError(f"Rule {label!r} needs non-empty keywords")
    return ClassificationRule(
        label=label,
        pattern="|".join(re.escape(k) for k in keywords),
        priority=priority,
    )


class RuleSet:
    """Ordered first-match classifier over ClassificationRules."""

    def __init__(self, rules: Iterable[ClassificationRule] = ()):
        self.rules: list[ClassificationRule] = sorted(rules, key=lambda r: r.priority)
        self._compiled = [
            (rule.label, re.compile(rule.pattern, re.IGNORECASE)) for rule in self.rules
        ]

    def match(self, text: str) -> Optional[str]:
        lowered = text.lower()
        for label, regex in self._compiled:
            if regex.search(lowered):
                return label
        return None

    def extend(self, rules: Iterable[ClassificationRule]) -> "RuleSet":
        return RuleSet([*self.rules, *rules])


# Lines whose text contains any of these are receipt furniture, not purchases.
# English, Ukrainian and Russian variants.
DEFAULT_NON_PRODUCT_RULES = [
    keyword_rule("barcode",     ["штрих код", "barcode", "qr", "qr code"], 10),
    keyword_rule("transaction", ["код транз", "код авт", "epz", "pos",
                                 "terminal", "термінал"], 20),
    keyword_rule("payment",     ["картка", "карта", "card", "оплата", "payment",
                                 "cash", "безгот", "visa", "mastercard"], 30),
    keyword_rule("loyalty",     ["bonus", "бонус", "зниж", "скид",
                                 "приватбанк", "privatbank", "monobank"], 40),
    keyword_rule("tax",         ["пдв", "ндс", "vat", "tax"], 50),
    keyword_rule("total",       ["сума", "итого", "итог", "subtotal", "total"], 60),
    keyword_rule("change",      ["залишок", "на початок", "здача", "решта", "решт"], 70),
    keyword_rule("footer",      ["дяку", "thanks", "welcome", "online", "www", "http",
                                 "тел", "phone", "касир", "касса"], 80),
]

# First match wins, so the order here is the tie-break between families.
DEFAULT_CATEGORY_RULES = [
    ClassificationRule("entertainment", r"ticket|museum|cinema|concert|театр|кіно|кино", 10),
    ClassificationRule("transport",     r"taxi|uber|bolt|bus|metro|tram|train|проїзд", 20),
    ClassificationRule("electronics",   r"tv|laptop|phone|headphone|adapter|cable|usb|charger", 30),
    ClassificationRule("household",     r"soap|detergent|clean|jar|shampoo|paper|towel|napkin", 40),
    ClassificationRule("grocery",
                       r"milk|bread|cheese|tomato|apple|banana|egg|juice|coke|cola"
                       r"|meat|fish|potato|onion", 50),
]

DEFAULT_UNIT_RULES = [
    ClassificationRule("kg",   r"kg|кг", 10),
    ClassificationRule("g",    r"g|г", 20),
    ClassificationRule("l",    r"l|л", 30),
    ClassificationRule("pcs",  r"pcs|шт|ks|pc", 40),
    ClassificationRule("pack", r"pack|уп", 50),
    ClassificationRule("m",    r"m|м", 60),
]


@dataclass
class NormalizerConfig:
    non_product: RuleSet = field(default_factory=lambda: RuleSet(DEFAULT_NON_PRODUCT_RULES))
    categories: RuleSet = field(default_factory=lambda: RuleSet(DEFAULT_CATEGORY_RULES))
    units: RuleSet = field(default_factory=lambda: RuleSet(DEFAULT_UNIT_RULES))
    fallback_store: str = FALLBACK_STORE
    fallback_currency: str = FALLBACK_CURRENCY


def _rules_from_json(entries: Any, section: str) -> list[ClassificationRule]:
    if not isinstance(entries, list):
        raise ValueError(f"Rules section {section!r} must be a list")
    rules = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("label"):
            raise ValueError(f"Rule in {section!r} needs a label: {entry!r}")
        priority = int(entry.get("priority", 100))
        if "keywords" in entry:
            if not isinstance(entry["keywords"], list):
                raise ValueError(f"Rule {entry['label']!r}: 'keywords' must be a list")
            rule = keyword_rule(entry["label"], entry["keywords"], priority)
        elif "pattern" in entry:
            rule = ClassificationRule(entry["label"], entry["pattern"], priority)
        else:
            raise ValueError(f"Rule {entry['label']!r} needs 'keywords' or 'pattern'")
        if section == "categories" and rule.label not in CATEGORIES:
            raise ValueError(f"Unknown category in rules file: {rule.label!r}")
        if not isinstance(rule.pattern, str):
            raise ValueError(f"Rule {rule.label!r}: 'pattern' must be a string")
        try:
            compiled = re.compile(rule.pattern)
        except re.error as e:
            raise ValueError(f"Rule {rule.label!r} has a bad pattern: {e}") from e
        if compiled.search(""):
            raise ValueError(f"Rule {rule.label!r} would match every line")
        rules.append(rule)
    return rules


def load_config(rules_path: Optional[str] = None) -> NormalizerConfig:
    """
    Build the normalizer config, merging an optional JSON rules file after
    the defaults:

        {"non_product": [{"label": "payment", "keywords": ["karta"], "priority": 30}],
         "categories":  [{"label": "grocery", "pattern": "mléko|chléb"}],
         "units":       [...]}
    """
    config = NormalizerConfig()
    if not rules_path:
        return config

    data = json.loads(Path(rules_path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Rules file {rules_path} must contain a JSON object")
    if "non_product" in data:
        config.non_product = config.non_product.extend(_rules_from_json(data["non_product"], "non_product"))
    if "categories" in data:
        config.categories = config.categories.extend(_rules_from_json(data["categories"], "categories"))
    if "units" in data:
        config.units = config.units.extend(_rules_from_json(data["units"], "units"))
    logger.info("Loaded normalizer rules from %s", rules_path)
    return config


DEFAULT_CONFIG = load_config(os.environ.get("NORMALIZER_RULES_PATH"))


# ── Item admission ────────────────────────────────────────────────────────────

def normalize_unit(value: str, config: NormalizerConfig = DEFAULT_CONFIG) -> str:
    return config.units.match(value) or value or "pcs"


def infer_category(name: str, config: NormalizerConfig = DEFAULT_CONFIG) -> str:
    return config.categories.match(name) or "other"


def classify_non_product(text: str, config: NormalizerConfig = DEFAULT_CONFIG) -> Optional[str]:
    """Return the label of the non-product rule `text` trips, or None."""
    return config.non_product.match(text)


def _cents(value: float) -> float:
    return round(value, 2)


def normalize_item(
    item: Any,
    config: NormalizerConfig = DEFAULT_CONFIG,
    id_factory: Callable[[], str] = create_id,
) -> Optional[ReceiptItem]:
    """
    Admit one extracted line as a ReceiptItem, or return None to drop it.
    """
    if not isinstance(item, dict):
        return None

    extracted_raw = safe_string(item.get("raw_name"))
    extracted_name = safe_string(item.get("name"))
    if not extracted_raw and not extracted_name:
        return None
    raw_name = extracted_raw or extracted_name
    name = extracted_name or raw_name or FALLBACK_ITEM_NAME

    label = classify_non_product(f"{raw_name} {name}".strip(), config)
    if label:
        logger.debug("Dropped %r: matched non-product rule %s", raw_name, label)
        return None

    quantity = to_number(item.get("quantity"), 1.0)
    if quantity <= 0:
        quantity = 1.0
    unit_price = max(0.0, to_number(item.get("unit_price"), 0.0))
    discount = max(0.0, to_number(item.get("discount"), 0.0))
    total_price = to_number(item.get("total_price"), 0.0)
    if total_price <= 0:
        total_price = max(0.0, _cents(unit_price * quantity - discount))

    if unit_price <= 0 and total_price <= 0:
        logger.debug("Dropped %r: no usable price", raw_name)
        return None

    supplied_category = item.get("category")
    category = supplied_category if is_category(supplied_category) else infer_category(name, config)

    return ReceiptItem(
        id=id_factory(),
        raw_name=raw_name,
        name=name,
        category=category,
        quantity=quantity,
        unit=normalize_unit(safe_string(item.get("unit")), config),
        unit_price=unit_price,
        total_price=total_price,
        discount=discount,
    )


# ── Totals reconciliation ─────────────────────────────────────────────────────

def reconcile_totals(items: list[ReceiptItem], raw_totals: Any) -> ReceiptTotals:
    """
    Derive receipt totals from the supplied figures and the admitted items.

    Evidence order: explicit receipt-level figures > item-derived sums > 0.
    A supplied total is kept only when it agrees with subtotal − discount
    within TOTAL_TOLERANCE.
    """
    totals = raw_totals if isinstance(raw_totals, dict) else {}

    items_total = _cents(sum(i.total_price for i in items))
    gross_total = _cents(sum(i.unit_price * i.quantity for i in items))
    item_discount_sum = _cents(sum(i.discount for i in items))

    discount_items_raw = to_number(totals.get("discount_items"), 0.0)
    discount_receipt_raw = to_number(totals.get("discount_receipt"), 0.0)
    discount_total_raw = to_number(totals.get("discount"), 0.0)
    subtotal_raw = to_number(totals.get("subtotal"), 0.0)
    total_raw = to_number(totals.get("total"), 0.0)

    discount_items = discount_items_raw if discount_items_raw > 0 else item_discount_sum
    computed_subtotal = gross_total if gross_total > 0 else items_total
    # Residual needed to close the formula from item data alone
    computed_receipt_discount = max(0.0, _cents(computed_subtotal - discount_items - items_total))

    if discount_receipt_raw > 0:
        discount_receipt = discount_receipt_raw
    elif discount_total_raw - discount_items > 0:
        discount_receipt = _cents(discount_total_raw - discount_items)
    else:
        discount_receipt = computed_receipt_discount

    discount = discount_total_raw if discount_total_raw > 0 else _cents(discount_items + discount_receipt)
    subtotal = subtotal_raw or computed_subtotal or items_total

    computed_total = _cents(subtotal - discount)
    if total_raw > 0 and abs(total_raw - computed_total) <= TOTAL_TOLERANCE:
        total = total_raw
    elif computed_total > 0:
        total = computed_total
    else:
        total = items_total

    return ReceiptTotals(
        subtotal=subtotal,
        discount=discount,
        discount_items=discount_items,
        discount_receipt=discount_receipt,
        total=total,
        payment_method=safe_string(totals.get("payment_method")) or None,
    )


# ── Receipt ───────────────────────────────────────────────────────────────────

def normalize_receipt(
    raw: Any,
    config: NormalizerConfig = DEFAULT_CONFIG,
    id_factory: Callable[[], str] = create_id,
    now: Optional[str] = None,
) -> NormalizedReceipt:
    """
    Coerce an arbitrarily-shaped extraction payload into a NormalizedReceipt.
    Never raises on missing or malformed fields.
    """
    receipt = raw if isinstance(raw, dict) else {}

    store_block = receipt.get("store")
    if isinstance(store_block, dict):
        store = safe_string(store_block.get("name"))
    else:
        store = safe_string(store_block)
    store = store or config.fallback_store
    currency = safe_string(receipt.get("currency")) or config.fallback_currency
    purchased_at = parse_date(receipt.get("purchased_at")) or now or utc_now_iso()

    items_raw = receipt.get("items")
    if not isinstance(items_raw, list):
        items_raw = []
    items = []
    for entry in items_raw:
        item = normalize_item(entry, config, id_factory)
        if item is not None:
            items.append(item)

    totals = reconcile_totals(items, receipt.get("totals"))
    logger.info(
        "Normalized receipt store=%r items=%d/%d total=%.2f",
        store, len(items), len(items_raw), totals.total,
    )
    return NormalizedReceipt(
        store=store,
        currency=currency,
        purchased_at=purchased_at,
        totals=totals,
        items=items,
    )
