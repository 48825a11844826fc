"""
Document-backed sequence counters.

Each counter is a document {_id: <name>, seq: <int>} in the `counter`
collection, incremented atomically on the server so codes stay unique across
restarts and across several running instances.
"""

import re

from pymongo import DESCENDING, ReturnDocument

from database import COUNTER, VENDOR

VENDOR_COUNTER = "vendorCode"
VENDOR_PREFIX = "VND"

DOCUMENT_PREFIXES = {
    "rfqNumber": "RFQ",
    "quotationNumber": "QTN",
    "csNumber": "CS",
    "poNumber": "PO",
}


def next_sequence(db, name: str) -> int:
    counter = db[COUNTER].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def ensure_counter_at_least(db, name: str, value: int) -> None:
    # $setOnInsert and $max on the same path in one update conflict, so two updates
    db[COUNTER].update_one({"_id": name}, {"$setOnInsert": {"seq": 0}}, upsert=True)
    if value > 0:
        db[COUNTER].update_one({"_id": name}, {"$max": {"seq": value}})


def next_code(db, name: str, prefix: str, width: int = 4) -> str:
    return f"{prefix}{next_sequence(db, name):0{width}d}"


def parse_code_seq(code, prefix: str = VENDOR_PREFIX) -> int:
    match = re.match(rf"^{re.escape(prefix)}(\d+)$", str(code or "").strip(), re.IGNORECASE)
    return int(match.group(1)) if match else 0


def generate_vendor_code(db) -> str:
    """Next VND#### code, never below the highest code already in the vendor collection."""
    latest = db[VENDOR].find_one(
        {"vendorCode": {"$regex": f"^{VENDOR_PREFIX}\\d+$", "$options": "i"}},
        {"vendorCode": 1},
        sort=[("vendorCode", DESCENDING)],
    )
    ensure_counter_at_least(db, VENDOR_COUNTER, parse_code_seq(latest["vendorCode"]) if latest else 0)
    return next_code(db, VENDOR_COUNTER, VENDOR_PREFIX)


def next_document_number(db, field: str) -> str:
    return next_code(db, field, DOCUMENT_PREFIXES[field])
