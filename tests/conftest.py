"""
Pytest fixtures for the procurement backend.

MongoDB is replaced by mongomock, an in-memory client with the pymongo API,
so no server is needed. The API client patches the module-level `db` handles
that the routes and create_document() read.
"""

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from database import CS, INDENT, PURCHASE_ORDER, QUOTATION, RFQ


@pytest.fixture
def mongo():
    return mongomock.MongoClient()["procurement_test"]


@pytest.fixture
def client(mongo, monkeypatch):
    monkeypatch.setattr(database, "db", mongo)
    monkeypatch.setattr(main, "db", mongo)
    return TestClient(main.app)


@pytest.fixture
def add_indent(mongo):
    def _add(indent_number="IN001", item_code="IC001", indent_qty=100, **extra):
        doc = {"indentNumber": indent_number, "itemCode": item_code, "indentQty": indent_qty, **extra}
        mongo[INDENT].insert_one(doc)
        return doc

    return _add


@pytest.fixture
def add_rfq(mongo):
    def _add(rfq_number="RFQ001", items=(), status=1):
        doc = {"rfqNumber": rfq_number, "status": status, "items": list(items), "vendors": []}
        mongo[RFQ].insert_one(doc)
        return doc

    return _add


@pytest.fixture
def add_po(mongo):
    def _add(items, vendor_code="V1", ref_cs_number=None, ref_document_type="purchase_order"):
        doc = {
            "vendorCode": vendor_code,
            "refCSNumber": ref_cs_number,
            "refDocumentType": ref_document_type,
            "items": list(items),
        }
        mongo[PURCHASE_ORDER].insert_one(doc)
        return doc

    return _add


@pytest.fixture
def add_cs(mongo):
    def _add(cs_number, cs_type, items, vendors, selection, rfq_number="RFQ001", status=1):
        doc = {
            "csNumber": cs_number,
            "csType": cs_type,
            "rfqNumber": rfq_number,
            "status": status,
            "items": items,
            "vendors": vendors,
            "selection": selection,
        }
        mongo[CS].insert_one(doc)
        return doc

    return _add


@pytest.fixture
def add_quotation(mongo):
    def _add(quotation_number, vendor_code, rfq_number="RFQ001", status=1):
        doc = {
            "quotationNumber": quotation_number,
            "vendorCode": vendor_code,
            "rfqNumber": rfq_number,
            "status": status,
        }
        mongo[QUOTATION].insert_one(doc)
        return doc

    return _add
