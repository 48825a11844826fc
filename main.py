import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError
from bson import ObjectId

from config import configure_logging, settings
from counters import generate_vendor_code, next_document_number
from cs_sync import apply_cs_selection, cs_numbers_for_po, reconcile_cs_status, release_cs_quotations
from database import (
    CS,
    INDENT,
    PURCHASE_ORDER,
    QUOTATION,
    RFQ,
    VENDOR,
    create_document,
    db,
    ensure_indexes,
)
from erp import ERPImportError, NoIndentRecordsError, fetch_erp_indents, import_indents
from indent_sync import keys_from_items, reconcile_indents
from quantities import CS_AUTHORIZED, RFQ_OPEN, IndentKey
from schemas import (
    ComparativeStatement,
    CSItem,
    CSSelection,
    CSVendor,
    Indent,
    POItem,
    PurchaseOrder,
    Quotation,
    QuotationItem,
    RFQ as RFQSchema,
    RFQItem,
    RFQVendor,
    Vendor,
)

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    yield


app = FastAPI(title="Procurement Workflow API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
def database_error_handler(request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Database unavailable"})


@app.exception_handler(NoIndentRecordsError)
def empty_import_handler(request, exc: NoIndentRecordsError):
    logger.warning("Indent import rejected: %s", exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ERPImportError)
def erp_error_handler(request, exc: ERPImportError):
    logger.error("ERP import failed: %s", exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# ---------- Utilities ----------

def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def with_id(doc):
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id"))
    return doc


def require_db():
    if db is None:
        raise HTTPException(503, detail="Database not configured")
    return db


def sync_indents(items_before, items_after=None):
    """Reconcile every indent touched by either item list; failures heal on the next trigger."""
    keys = keys_from_items(items_before, items_after)
    if not keys:
        return
    result = reconcile_indents(db, indents=keys, should_update=True)
    if "error" in result:
        logger.warning("Indent balances not refreshed for %d key(s): %s", len(keys), result["error"])


def sync_cs(*pos):
    numbers = []
    for po in pos:
        if po:
            numbers.extend(cs_numbers_for_po(po))
    reconcile_cs_status(db, list(dict.fromkeys(numbers)))


def touch(update: dict) -> dict:
    return {**update, "updated_at": datetime.now(timezone.utc)}


# ---------- Models for requests ----------

class IndentIn(BaseModel):
    indentNumber: str
    itemCode: str
    indentQty: float = Field(..., ge=0)
    itemDescription: Optional[str] = None
    unitOfMeasure: Optional[str] = None
    company: Optional[str] = None
    costCenter: Optional[str] = None
    requestedBy: Optional[str] = None


class IndentKeyIn(BaseModel):
    indentNumber: str
    itemCode: str


class IndentImport(BaseModel):
    records: Optional[List[dict]] = None


class IndentSync(BaseModel):
    indents: Optional[List[IndentKeyIn]] = None


class VendorIn(BaseModel):
    name: str
    contactEmail: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None


class RFQIn(BaseModel):
    rfqNumber: Optional[str] = None
    rfqDate: Optional[datetime] = None
    dueDate: Optional[datetime] = None
    status: Literal[0, 1] = 0
    remarks: Optional[str] = None
    items: List[RFQItem] = Field(default_factory=list)
    vendors: List[RFQVendor] = Field(default_factory=list)


class QuotationIn(BaseModel):
    quotationNumber: Optional[str] = None
    rfqNumber: str
    vendorCode: str
    validityDate: Optional[datetime] = None
    status: Literal[0, 1] = 0
    remarks: Optional[str] = None
    items: List[QuotationItem] = Field(default_factory=list)


class CSIn(BaseModel):
    csNumber: Optional[str] = None
    csDate: Optional[datetime] = None
    csType: Literal["item_wise", "over_all"] = "item_wise"
    rfqNumber: str
    status: Literal[0, 1] = 0
    csRemarks: Optional[str] = None
    items: List[CSItem] = Field(default_factory=list)
    vendors: List[CSVendor] = Field(default_factory=list)
    selection: List[CSSelection] = Field(default_factory=list)


class CSSync(BaseModel):
    csNumbers: List[str]


class POIn(BaseModel):
    poNumber: Optional[str] = None
    poDate: Optional[datetime] = None
    refDocumentType: str = "purchase_order"
    refDocumentNumber: Optional[str] = None
    refCSNumber: Optional[str] = None
    vendorCode: str
    vendorName: Optional[str] = None
    readyForAuthorization: bool = False
    remarks: Optional[str] = None
    items: List[POItem] = Field(default_factory=list)


# ---------- Health ----------

@app.get("/")
def read_root():
    return {"message": "Procurement Workflow Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": None,
        "collections": [],
    }
    if db is None:
        return response
    response["database_name"] = db.name
    try:
        response["collections"] = db.list_collection_names()
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# ---------- Indents ----------

@app.get("/indents")
def list_indents(
    indent_number: Optional[str] = Query(default=None),
    item_code: Optional[str] = Query(default=None),
    open_only: bool = Query(default=False),
):
    q = {}
    if indent_number:
        q["indentNumber"] = indent_number
    if item_code:
        q["itemCode"] = item_code
    if open_only:
        q["balanceQty"] = {"$gt": 0}
    cursor = require_db()[INDENT].find(q).sort([("indentNumber", 1), ("itemCode", 1)]).limit(500)
    return [with_id(i) for i in cursor]


@app.post("/indents")
def create_indent(indent: IndentIn):
    if require_db()[INDENT].find_one({"indentNumber": indent.indentNumber, "itemCode": indent.itemCode}):
        raise HTTPException(400, detail="Indent line already exists")
    doc = Indent(**indent.model_dump(), balanceQty=indent.indentQty)
    indent_id = create_document(INDENT, doc)
    sync_indents([indent.model_dump()])
    return {"id": indent_id}


@app.post("/indents/import")
def import_indent_records(payload: Optional[IndentImport] = None):
    records = payload.records if payload else None
    if records is None:
        if not settings.erp_indents_url:
            raise HTTPException(400, detail="No records supplied and ERP_INDENTS_URL is not configured")
        records = fetch_erp_indents(settings)
    imported = import_indents(require_db(), records)
    return {"imported": imported}


@app.post("/indents/sync")
def sync_indent_balances(payload: Optional[IndentSync] = None):
    keys = None
    if payload and payload.indents is not None:
        keys = [IndentKey(k.indentNumber, k.itemCode) for k in payload.indents]
    result = reconcile_indents(require_db(), indents=keys, should_update=True)
    if "error" in result:
        raise HTTPException(500, detail=f"Indent sync failed: {result['error']}")
    logger.info("Indent balances synced for %d record(s)", len(result["data"]))
    return {"synced": len(result["data"])}


# ---------- Vendors ----------

@app.post("/vendors")
def create_vendor(v: VendorIn):
    code = generate_vendor_code(require_db())
    vendor_id = create_document(VENDOR, Vendor(vendorCode=code, **v.model_dump()))
    return {"id": vendor_id, "vendorCode": code}


@app.get("/vendors")
def list_vendors():
    return [with_id(v) for v in require_db()[VENDOR].find({}).sort("vendorCode", 1).limit(200)]


# ---------- Requests for Quotation (RFQ) ----------

def validate_rfq(data: RFQIn):
    if data.status == RFQ_OPEN:
        if not data.vendors:
            raise HTTPException(400, detail="At least one vendor is required")
        if not data.items:
            raise HTTPException(400, detail="At least one item is required")


@app.post("/rfqs")
def create_rfq(data: RFQIn):
    validate_rfq(data)
    rfq_number = data.rfqNumber or next_document_number(require_db(), "rfqNumber")
    if db[RFQ].find_one({"rfqNumber": rfq_number}):
        raise HTTPException(400, detail="RFQ number already used")
    doc = RFQSchema(**{**data.model_dump(), "rfqNumber": rfq_number})
    rfq_id = create_document(RFQ, doc)
    sync_indents(doc.model_dump()["items"])
    return {"id": rfq_id, "rfqNumber": rfq_number}


@app.get("/rfqs")
def list_rfqs(status: Optional[int] = None):
    q = {}
    if status is not None:
        q["status"] = status
    return [with_id(r) for r in require_db()[RFQ].find(q).sort("created_at", -1)]


@app.get("/rfqs/{rfq_id}")
def get_rfq(rfq_id: str):
    rfq = require_db()[RFQ].find_one({"_id": oid(rfq_id)})
    if not rfq:
        raise HTTPException(404, detail="RFQ not found")
    return with_id(rfq)


@app.put("/rfqs/{rfq_id}")
def update_rfq(rfq_id: str, data: RFQIn):
    validate_rfq(data)
    existing = require_db()[RFQ].find_one({"_id": oid(rfq_id)})
    if not existing:
        raise HTTPException(404, detail="RFQ not found")
    update = data.model_dump(exclude={"rfqNumber"})
    db[RFQ].update_one({"_id": existing["_id"]}, {"$set": touch(update)})
    sync_indents(existing.get("items"), update["items"])
    return {"ok": True}


@app.delete("/rfqs/{rfq_id}")
def delete_rfq(rfq_id: str):
    rfq = require_db()[RFQ].find_one({"_id": oid(rfq_id)}, {"rfqNumber": 1, "items": 1})
    if not rfq:
        raise HTTPException(404, detail="RFQ not found")
    quotations = db[QUOTATION].count_documents({"rfqNumber": rfq["rfqNumber"]})
    if quotations:
        raise HTTPException(400, detail=f"{quotations} quotations have been submitted for this RFQ.")
    db[RFQ].delete_one({"_id": rfq["_id"]})
    sync_indents(rfq.get("items"))
    return {"ok": True}


# ---------- Quotations ----------

@app.post("/quotations")
def create_quotation(data: QuotationIn):
    quotation_number = data.quotationNumber or next_document_number(require_db(), "quotationNumber")
    if db[QUOTATION].find_one({"quotationNumber": quotation_number}):
        raise HTTPException(400, detail="Quotation number already used.")
    if not db[RFQ].find_one({"rfqNumber": data.rfqNumber}, {"_id": 1}):
        raise HTTPException(404, detail="RFQ not found")
    doc = Quotation(
        **{**data.model_dump(), "quotationNumber": quotation_number},
        quotationDate=datetime.now(timezone.utc),
    )
    quotation_id = create_document(QUOTATION, doc)
    return {"id": quotation_id, "quotationNumber": quotation_number}


@app.get("/quotations")
def list_quotations(rfq_number: Optional[str] = None):
    q = {}
    if rfq_number:
        q["rfqNumber"] = rfq_number
    return [with_id(d) for d in require_db()[QUOTATION].find(q).sort("created_at", -1)]


@app.get("/quotations/{quotation_number}")
def get_quotation(quotation_number: str):
    quotation = require_db()[QUOTATION].find_one({"quotationNumber": quotation_number})
    if not quotation:
        raise HTTPException(404, detail="Quotation not found")
    return with_id(quotation)


# ---------- Comparative Statements (CS) ----------

def cs_po_count(cs_number: str) -> int:
    return db[PURCHASE_ORDER].count_documents({"$or": [{"refCSNumber": cs_number}, {"items.csNumber": cs_number}]})


@app.post("/cs")
def create_cs(data: CSIn):
    cs_number = data.csNumber or next_document_number(require_db(), "csNumber")
    taken = db[CS].find_one({"csNumber": cs_number}, {"rfqNumber": 1})
    if taken and taken.get("rfqNumber") != data.rfqNumber:
        raise HTTPException(400, detail="CS number already used.")

    # one CS per RFQ
    previous = db[CS].find_one({"rfqNumber": data.rfqNumber}, {"csNumber": 1})
    if previous and cs_po_count(previous["csNumber"]):
        raise HTTPException(403, detail="CS can not be replaced as a PO has been generated for this CS.")

    doc = ComparativeStatement(**{**data.model_dump(), "csNumber": cs_number}).model_dump()
    if data.status == CS_AUTHORIZED:
        doc["authorizedAt"] = datetime.now(timezone.utc)

    if previous:
        db[CS].delete_one({"_id": previous["_id"]})
    if data.status == CS_AUTHORIZED:
        apply_cs_selection(db, doc)
    db[RFQ].update_one({"rfqNumber": data.rfqNumber}, {"$set": {"status": RFQ_OPEN}})

    cs_id = create_document(CS, doc)
    if cs_po_count(cs_number):
        reconcile_cs_status(db, [cs_number])
    return {"id": cs_id, "csNumber": cs_number}


@app.get("/cs/{cs_number}")
def get_cs(cs_number: str):
    cs = require_db()[CS].find_one({"csNumber": cs_number})
    if not cs:
        raise HTTPException(404, detail="CS not found")
    rfq = db[RFQ].find_one({"rfqNumber": cs.get("rfqNumber")}, {"dueDate": 1})
    return {**with_id(cs), "rfqDueDate": rfq.get("dueDate") if rfq else None}


@app.put("/cs/{cs_number}")
def update_cs(cs_number: str, data: CSIn):
    update = data.model_dump(exclude={"csNumber", "rfqNumber"})
    if data.status == CS_AUTHORIZED:
        update["authorizedAt"] = datetime.now(timezone.utc)
    result = require_db()[CS].update_one({"csNumber": cs_number}, {"$set": touch(update)})
    if not result.matched_count:
        raise HTTPException(404, detail="CS not found")
    if data.status == CS_AUTHORIZED:
        apply_cs_selection(db, update)
    # client items carry no order state; rebuild it from the POs already raised
    if cs_po_count(cs_number):
        reconcile_cs_status(db, [cs_number])
    return {"ok": True}


@app.delete("/cs/{cs_number}")
def delete_cs(cs_number: str):
    cs = require_db()[CS].find_one({"csNumber": cs_number})
    if not cs:
        raise HTTPException(404, detail="CS not found")
    if cs_po_count(cs_number):
        raise HTTPException(403, detail="CS can not be deleted as a PO has been generated for this CS.")
    db[CS].delete_one({"_id": cs["_id"]})
    release_cs_quotations(db, cs)
    return {"ok": True}


@app.post("/cs/sync")
def sync_cs_status(payload: CSSync):
    reconcile_cs_status(require_db(), payload.csNumbers)
    return {"synced": len(payload.csNumbers)}


# ---------- Purchase Orders (PO) ----------

def validate_po(data: POIn):
    if data.readyForAuthorization and not data.items:
        raise HTTPException(400, detail="At least one item is required.")


@app.post("/pos")
def create_po(data: POIn):
    validate_po(data)
    po_number = data.poNumber or next_document_number(require_db(), "poNumber")
    doc = PurchaseOrder(**{**data.model_dump(), "poNumber": po_number}).model_dump()
    po_id = create_document(PURCHASE_ORDER, doc)
    sync_indents(doc["items"])
    sync_cs(doc)
    return {"id": po_id, "poNumber": po_number}


@app.get("/pos")
def list_pos(vendor_code: Optional[str] = None, cs_number: Optional[str] = None):
    q = {}
    if vendor_code:
        q["vendorCode"] = vendor_code
    if cs_number:
        q["$or"] = [{"refCSNumber": cs_number}, {"items.csNumber": cs_number}]
    return [with_id(p) for p in require_db()[PURCHASE_ORDER].find(q).sort("created_at", -1)]


@app.get("/pos/{po_id}")
def get_po(po_id: str):
    po = require_db()[PURCHASE_ORDER].find_one({"_id": oid(po_id)})
    if not po:
        raise HTTPException(404, detail="PO not found")
    return with_id(po)


@app.put("/pos/{po_id}")
def update_po(po_id: str, data: POIn):
    validate_po(data)
    existing = require_db()[PURCHASE_ORDER].find_one({"_id": oid(po_id)})
    if not existing:
        raise HTTPException(404, detail="PO not found")
    update = data.model_dump(exclude={"poNumber"})
    db[PURCHASE_ORDER].update_one({"_id": existing["_id"]}, {"$set": touch(update)})
    sync_indents(existing.get("items"), update["items"])
    sync_cs(existing, update)
    return {"ok": True}


@app.delete("/pos/{po_id}")
def delete_po(po_id: str):
    po = require_db()[PURCHASE_ORDER].find_one({"_id": oid(po_id)})
    if not po:
        raise HTTPException(404, detail="PO not found")
    db[PURCHASE_ORDER].delete_one({"_id": po["_id"]})
    sync_indents(po.get("items"))
    sync_cs(po)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
