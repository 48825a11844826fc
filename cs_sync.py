"""
Comparative statement reconciliation.

A CS is completed when every item has been ordered in full across its vendors.
Completion is pushed down to the vendors' quotations and to the RFQ the CS was
raised against. Each CS is written independently; a failure part way through
leaves the CS documents already processed in place, and re-running with the
same inputs yields the same result.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Tuple

from database import CS, PURCHASE_ORDER, QUOTATION, RFQ
from quantities import (
    CS_AUTHORIZED,
    CS_COMPLETED,
    ITEM_WISE,
    OVER_ALL,
    PO_FULFILLED,
    PO_OPEN,
    QUOTATION_PENDING_PO,
    QUOTATION_REJECTED,
    QUOTATION_SUBMITTED,
    QUOTATION_WON,
    RFQ_CLOSED,
    RFQ_OPEN,
    IndentKey,
    indent_key,
    qty_equal,
    to_qty,
)

logger = logging.getLogger(__name__)

CS_PROJECTION = {"csNumber": 1, "items": 1, "selection": 1, "csType": 1, "rfqNumber": 1, "vendors": 1}

# cs number -> vendor code -> indent key -> ordered qty
POQtyMap = Dict[str, Dict[str, Dict[IndentKey, Any]]]


def cs_numbers_for_po(po: Dict[str, Any]) -> List[str]:
    numbers = [po.get("refCSNumber")] + [item.get("csNumber") for item in po.get("items") or []]
    return list(dict.fromkeys(n for n in numbers if n))


def _po_quantities(po_docs: Iterable[Dict[str, Any]]) -> POQtyMap:
    qty_map: POQtyMap = defaultdict(lambda: defaultdict(lambda: defaultdict(int)))
    for po in po_docs:
        for item in po.get("items") or []:
            # line-level reference wins over the PO-wide one
            cs_number = item.get("csNumber") or po.get("refCSNumber")
            if not cs_number:
                continue
            qty_map[cs_number][po.get("vendorCode")][indent_key(item)] += to_qty(item.get("qty"))
    return qty_map


def _selected_qty(cs: Dict[str, Any], item: Dict[str, Any]) -> Any:
    if cs.get("csType") == ITEM_WISE:
        key = indent_key(item)
        for entry in cs.get("selection") or []:
            if entry and entry.get("itemCode") and indent_key(entry) == key:
                return to_qty(entry.get("qty"))
        return 0
    return to_qty(item.get("qty"))


def _reconcile_items(cs: Dict[str, Any], ordered: Dict[str, Dict[IndentKey, Any]]) -> List[Tuple[Dict[str, Any], Any]]:
    """Return (updated item, selected qty) pairs in document order."""
    results = []
    for item in cs.get("items") or []:
        key = indent_key(item)
        selected = _selected_qty(cs, item)
        vendors = [
            {**vendor, "poQty": ordered.get(vendor.get("vendorCode"), {}).get(key, 0)}
            for vendor in item.get("vendors") or []
        ]
        total = sum(v["poQty"] for v in vendors)
        updated = {**item, "vendors": vendors, "poStatus": PO_FULFILLED if qty_equal(selected, total) else PO_OPEN}
        results.append((updated, selected))
    return results


def _vendor_fulfilment(results: List[Tuple[Dict[str, Any], Any]]) -> Dict[str, bool]:
    """item_wise: a vendor is fulfilled only if its poQty matches on every item it quoted."""
    matches: Dict[str, List[bool]] = defaultdict(list)
    for item, selected in results:
        for vendor in item["vendors"]:
            matches[vendor.get("vendorCode")].append(qty_equal(vendor["poQty"], selected))
    return {code: all(checks) for code, checks in matches.items()}


def quotation_status(cs: Dict[str, Any], vendor_code: str, completed: bool, fulfilment: Dict[str, bool]) -> Any:
    selected = [s for s in cs.get("selection") or [] if s and s.get("vendorCode") == vendor_code]
    if not selected:
        return QUOTATION_REJECTED
    if cs.get("csType") == OVER_ALL and completed:
        return QUOTATION_WON
    if cs.get("csType") == ITEM_WISE:
        return QUOTATION_WON if fulfilment.get(vendor_code, False) else QUOTATION_PENDING_PO
    return QUOTATION_PENDING_PO


def _reconcile_one(db, cs: Dict[str, Any], qty_map: POQtyMap) -> None:
    results = _reconcile_items(cs, qty_map.get(cs.get("csNumber"), {}))
    items = [item for item, _ in results]
    completed = all(item["poStatus"] == PO_FULFILLED for item in items)
    fulfilment = _vendor_fulfilment(results) if cs.get("csType") == ITEM_WISE else {}

    for vendor in cs.get("vendors") or []:
        status = quotation_status(cs, vendor.get("vendorCode"), completed, fulfilment)
        db[QUOTATION].update_one({"quotationNumber": vendor.get("quotationNumber")}, {"$set": {"status": status}})

    db[RFQ].update_one({"rfqNumber": cs.get("rfqNumber")}, {"$set": {"status": RFQ_CLOSED if completed else RFQ_OPEN}})
    db[CS].update_one(
        {"_id": cs["_id"]},
        {"$set": {"status": CS_COMPLETED if completed else CS_AUTHORIZED, "items": items}},
    )
    logger.debug("CS %s reconciled (completed=%s)", cs.get("csNumber"), completed)


def reconcile_cs_status(db, cs_numbers: List[str]) -> None:
    """
    Recompute per-item PO status for the given comparative statements and
    cascade the outcome to their quotations and RFQs.

    Store errors propagate to the caller.
    """
    if not cs_numbers:
        return

    cs_docs = list(db[CS].find({"csNumber": {"$in": cs_numbers}}, CS_PROJECTION))
    po_docs = db[PURCHASE_ORDER].find(
        {"$or": [{"refCSNumber": {"$in": cs_numbers}}, {"items.csNumber": {"$in": cs_numbers}}]},
        {"refCSNumber": 1, "items": 1, "vendorCode": 1},
    )
    qty_map = _po_quantities(po_docs)

    for cs in cs_docs:
        _reconcile_one(db, cs, qty_map)


def apply_cs_selection(db, cs: Dict[str, Any]) -> None:
    """On authorization: selected quotations await their PO, the rest are rejected."""
    selected = list({s.get("quotationNumber") for s in cs.get("selection") or [] if s and s.get("quotationNumber")})
    rejected = [
        v.get("quotationNumber")
        for v in cs.get("vendors") or []
        if v.get("quotationNumber") and v.get("quotationNumber") not in selected
    ]
    if selected:
        db[QUOTATION].update_many({"quotationNumber": {"$in": selected}}, {"$set": {"status": QUOTATION_PENDING_PO}})
    if rejected:
        db[QUOTATION].update_many({"quotationNumber": {"$in": rejected}}, {"$set": {"status": QUOTATION_REJECTED}})


def release_cs_quotations(db, cs: Dict[str, Any]) -> None:
    numbers = [v.get("quotationNumber") for v in cs.get("vendors") or [] if v.get("quotationNumber")]
    if numbers:
        db[QUOTATION].update_many({"quotationNumber": {"$in": numbers}}, {"$set": {"status": QUOTATION_SUBMITTED}})
