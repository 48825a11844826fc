"""
Indent import from the ERP purchase requisition feed (SAP OData).

Raw records use SAP field names and "/Date(<ms>)/" timestamps; they are mapped
to indent documents, previewed through the balance reconciler and then replace
the indent collection.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx

from database import INDENT
from indent_sync import reconcile_indents
from quantities import indent_key

logger = logging.getLogger(__name__)

INDENT_FIELD_MAP = {
    "Banfn": "indentNumber",
    "Matnr": "itemCode",
    "Bnfpo": "lineNumber",
    "Loekz": "deletionIndicator",
    "Estkz": "creationIndicator",
    "Bsakz": "controlIndicator",
    "Bsart": "documentType",
    "Bstyp": "documentCategory",
    "Ernam": "createdBy",
    "Bedat": "lastChangedOn",
    "Afnam": "requestedBy",
    "Txz01": "itemDescription",
    "Ebelp": "materialNumber",
    "Werks": "company",
    "Lgort": "storageLocation",
    "Bednr": "trackingNumber",
    "Menge": "indentQty",
    "Meins": "unitOfMeasure",
    "Ebeln": "documentNumber",
    "Erdat": "documentDate",
    "Packno": "packageNumber",
    "Creationdate": "creationDate",
    "Creationtime": "creationTime",
    "Lastchangedatetime": "utcTimestamp",
    "ITEMNOTE": "techSpec",
    "MAKEMODEL": "make",
    "ITEMTEXT": "remark",
    "KOSTL": "costCenter",
}

_DATE_RE = re.compile(r"^/Date\((-?\d+)\)/$")
_TIME_RE = re.compile(r"^PT(\d{2})H(\d{2})M(\d{2})S$")


class ERPImportError(Exception):
    """Raised when indents cannot be fetched from or imported into the ERP feed."""


class NoIndentRecordsError(ERPImportError):
    """Raised when a batch holds no record with both an indent number and an item code."""


def parse_erp_value(value: Any) -> Any:
    if isinstance(value, str):
        match = _DATE_RE.match(value)
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)
    return value


def _created_on(creation_date: Any, creation_time: Any) -> Optional[datetime]:
    if not isinstance(creation_date, datetime):
        return None
    match = _TIME_RE.match(creation_time or "")
    if not match:
        return creation_date
    hours, minutes, seconds = (int(g) for g in match.groups())
    midnight = creation_date.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(hours=hours, minutes=minutes, seconds=seconds)


def map_indent(record: Dict[str, Any]) -> Dict[str, Any]:
    indent = {INDENT_FIELD_MAP[k]: parse_erp_value(v) for k, v in record.items() if k in INDENT_FIELD_MAP}

    creation_date = indent.pop("creationDate", None)
    creation_time = indent.pop("creationTime", None)
    indent["createdOn"] = _created_on(creation_date, creation_time)

    if isinstance(indent.get("itemDescription"), str):
        indent["itemDescription"] = indent["itemDescription"].replace("_", " ")
    return indent


def map_indents(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [map_indent(r) for r in records]


def fetch_erp_indents(settings) -> List[Dict[str, Any]]:
    if not settings.erp_indents_url:
        raise ERPImportError("ERP_INDENTS_URL is not configured")

    params = {
        "sap-client": settings.erp_client,
        "$filter": f"Creationdate ge datetime'{settings.erp_since}T00:00:00'",
    }
    try:
        response = httpx.get(
            settings.erp_indents_url,
            params=params,
            auth=(settings.erp_username, settings.erp_password),
            headers={"Accept": "application/json"},
            timeout=60.0,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise ERPImportError(f"ERP indent fetch failed: {e}") from e

    results = (response.json().get("d") or {}).get("results") or []
    logger.info("Fetched %d indent record(s) from ERP", len(results))
    return results


def import_indents(db, records: Iterable[Dict[str, Any]]) -> int:
    """Replace the indent collection with the mapped records, balances included."""
    mapped = [i for i in map_indents(records) if i.get("indentNumber") and i.get("itemCode")]
    if not mapped:
        raise NoIndentRecordsError("No indent records with an indent number and item code to import")

    result = reconcile_indents(db, data=mapped)
    if "error" in result:
        raise ERPImportError(f"Indent balance computation failed: {result['error']}")

    by_key = {}
    for indent in result["data"]:
        by_key[indent_key(indent)] = indent

    now = datetime.now(timezone.utc)
    docs = [{**indent, "created_at": now, "updated_at": now} for indent in by_key.values()]

    db[INDENT].delete_many({})
    db[INDENT].insert_many(docs)

    logger.info("Imported %d indent(s)", len(docs))
    return len(docs)
