"""
Indent balance reconciliation.

balanceQty must track the live RFQ and PO collections, so it is recomputed:
1. when indents are imported (complete preview, written by the importer)
2. when an RFQ is created, updated or deleted (the keys it touches)
3. when a PO is created, updated or deleted (the keys it touches)

Recomputation reads the current state and is idempotent. There is no locking:
two overlapping calls may each write a result from a stale read, and the next
trigger (or POST /indents/sync) converges the values again.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from database import INDENT, PURCHASE_ORDER, RFQ
from quantities import (
    PURCHASE_ORDER_REF,
    IndentKey,
    indent_key,
    items_match_filter,
    to_qty,
    unique_keys,
)

logger = logging.getLogger(__name__)


def keys_from_items(*item_lists: Optional[Iterable[Dict[str, Any]]]) -> List[IndentKey]:
    keys = []
    for items in item_lists:
        for item in items or []:
            keys.append(indent_key(item))
    return unique_keys(keys)


def _load_indents(db, indents: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    if indents is None:
        return list(db[INDENT].find({}))

    keys = unique_keys(k if isinstance(k, IndentKey) else indent_key(k) for k in indents)
    if not keys:
        return []
    return list(db[INDENT].find({"$or": [k.as_filter() for k in keys]}))


def _sum_quantities(db, keys: List[IndentKey]) -> Dict[IndentKey, Dict[str, Any]]:
    qty_map: Dict[IndentKey, Dict[str, Any]] = defaultdict(lambda: {"rfqQty": 0, "poQty": 0})
    if not keys:
        return qty_map

    match = items_match_filter(keys)
    rfq_docs = db[RFQ].find(match, {"items": 1})
    po_docs = db[PURCHASE_ORDER].find({"refDocumentType": PURCHASE_ORDER_REF, **match}, {"items": 1})

    for rfq in rfq_docs:
        for item in rfq.get("items") or []:
            qty_map[indent_key(item)]["rfqQty"] += to_qty(item.get("rfqQty"))

    for po in po_docs:
        for item in po.get("items") or []:
            qty_map[indent_key(item)]["poQty"] += to_qty(item.get("qty"))

    return qty_map


def _write_back(db, indent: Dict[str, Any]) -> None:
    if indent.get("_id") is not None:
        match = {"_id": indent["_id"]}
    else:
        match = indent_key(indent).as_filter()

    db[INDENT].update_one(
        match,
        {
            "$set": {
                "indentQty": indent["indentQty"],
                "preRFQQty": indent["preRFQQty"],
                "prePOQty": indent["prePOQty"],
                "balanceQty": indent["balanceQty"],
            }
        },
    )


def reconcile_indents(
    db,
    indents: Optional[Iterable[Any]] = None,
    data: Optional[List[Dict[str, Any]]] = None,
    should_update: bool = False,
) -> Dict[str, Any]:
    """
    Recompute preRFQQty, prePOQty and balanceQty for a working set of indents.

    The working set is `data` when given (records are updated in place),
    otherwise the indents matching `indents` (keys or dicts with
    indentNumber/itemCode), otherwise every indent.

    Returns {"data": records} or, if anything fails, {"error": exc}. Nothing is
    raised so the calling route can decide whether to continue.
    """
    try:
        records = data if data is not None else _load_indents(db, indents)
        qty_map = _sum_quantities(db, unique_keys(indent_key(r) for r in records))

        for record in records:
            totals = qty_map.get(indent_key(record), {})
            record["indentQty"] = to_qty(record.get("indentQty"))
            record["preRFQQty"] = totals.get("rfqQty", 0)
            record["prePOQty"] = totals.get("poQty", 0)
            record["balanceQty"] = max(0, record["indentQty"] - record["preRFQQty"] - record["prePOQty"])

        if should_update:
            for record in records:
                _write_back(db, record)

        logger.debug("Reconciled %d indent(s) (persisted=%s)", len(records), should_update)
        return {"data": records}
    except Exception as e:
        logger.exception("Indent reconciliation failed")
        return {"error": e}
