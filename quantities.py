"""
Shared keys, quantity coercion and status codes for the reconcilers.

Indent lines are identified by (indentNumber, itemCode). RFQ, PO, CS and
selection items all carry the same pair, so one key type serves every
collection.
"""

import math
from typing import Any, Dict, Iterable, List, NamedTuple, Union

PURCHASE_ORDER_REF = "purchase_order"

ITEM_WISE = "item_wise"
OVER_ALL = "over_all"

# Quotation.status
QUOTATION_DRAFT = 0
QUOTATION_SUBMITTED = 1
QUOTATION_PENDING_PO = 1.5
QUOTATION_WON = 2
QUOTATION_REJECTED = 3

# RFQ.status
RFQ_DRAFT = 0
RFQ_OPEN = 1
RFQ_CLOSED = 2

# ComparativeStatement.status
CS_INITIAL = 0
CS_AUTHORIZED = 1
CS_COMPLETED = 2

# ComparativeStatement.items[].poStatus
PO_OPEN = 0
PO_FULFILLED = 1

Number = Union[int, float]


class IndentKey(NamedTuple):
    indent_number: Any
    item_code: Any

    def __str__(self) -> str:
        return f"{self.indent_number}:{self.item_code}"

    def as_filter(self) -> Dict[str, Any]:
        return {"indentNumber": self.indent_number, "itemCode": self.item_code}


def indent_key(doc: Dict[str, Any]) -> IndentKey:
    return IndentKey(doc.get("indentNumber"), doc.get("itemCode"))


def to_qty(value: Any) -> Number:
    """Coerce a stored quantity to a number; anything unusable counts as 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        qty = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(qty) or math.isinf(qty):
        return 0
    return int(qty) if qty.is_integer() else qty


def unique_keys(keys: Iterable[IndentKey]) -> List[IndentKey]:
    return list(dict.fromkeys(keys))


def items_match_filter(keys: Iterable[IndentKey]) -> Dict[str, Any]:
    """Documents embedding at least one item with any of the given keys."""
    return {"$or": [{"items": {"$elemMatch": key.as_filter()}} for key in keys]}


def qty_equal(a: Number, b: Number) -> bool:
    """Quantities match when they agree up to float rounding (0.1 + 0.2 == 0.3)."""
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9)
