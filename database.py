"""
MongoDB access for the procurement backend.

`db` is None until DATABASE_URL and DATABASE_NAME are set. MongoClient connects
lazily, so importing this module never touches the network.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import settings

logger = logging.getLogger(__name__)

INDENT = "indent"
RFQ = "rfq"
QUOTATION = "quotation"
CS = "comparative_statement"
PURCHASE_ORDER = "purchase_order"
VENDOR = "vendor"
COUNTER = "counter"

client = None
db = None

if settings.database_url and settings.database_name:
    client = MongoClient(settings.database_url)
    db = client[settings.database_name]


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a single document with timestamps and return its id as a string."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now

    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database) -> None:
    database[INDENT].create_index([("indentNumber", ASCENDING), ("itemCode", ASCENDING)], unique=True)
    database[RFQ].create_index("rfqNumber", unique=True)
    database[QUOTATION].create_index("quotationNumber", unique=True)
    database[CS].create_index("csNumber", unique=True)
    database[VENDOR].create_index("vendorCode", unique=True)
    database[PURCHASE_ORDER].create_index("refCSNumber")
    database[PURCHASE_ORDER].create_index("items.csNumber")
    logger.info("Indexes ensured on %s", database.name)
