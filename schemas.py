"""
Database Schemas for the Procurement Workflow Backend

Each Pydantic model describes one MongoDB collection (or an embedded item of one).

Collections:
- indent: line-item demand records, keyed by (indentNumber, itemCode)
- rfq: requests for quotation with embedded items and invited vendors
- quotation: one vendor's bid against an RFQ
- comparative_statement: vendor bid comparison for one RFQ
- purchase_order: purchase orders with embedded items
- vendor: vendor master
"""

from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import datetime

class Indent(BaseModel):
    indentNumber: str = Field(..., description="ERP purchase requisition number")
    itemCode: str = Field(..., description="Material code")
    itemDescription: Optional[str] = Field(None, description="Item description")
    unitOfMeasure: Optional[str] = Field(None, description="Unit of measure")
    company: Optional[str] = Field(None, description="Plant / company code")
    costCenter: Optional[str] = Field(None, description="Cost center")
    requestedBy: Optional[str] = Field(None, description="Requester")
    techSpec: Optional[str] = Field(None, description="Technical specification")
    make: Optional[str] = Field(None, description="Preferred make / model")
    remark: Optional[str] = Field(None, description="Remark")
    createdOn: Optional[datetime] = Field(None, description="Creation timestamp in the ERP")
    indentQty: float = Field(0, ge=0, description="Requested quantity")
    preRFQQty: float = Field(0, description="Quantity committed to RFQs")
    prePOQty: float = Field(0, description="Quantity committed to purchase orders")
    balanceQty: float = Field(0, ge=0, description="Quantity still available to commit")

class RFQItem(BaseModel):
    indentNumber: Optional[str] = None
    itemCode: Optional[str] = None
    itemDescription: Optional[str] = None
    rfqQty: float = Field(0, ge=0, description="Quantity requested from vendors")
    unit: Optional[str] = None
    rfqMake: Optional[str] = None
    rfqRemarks: Optional[str] = None

class RFQVendor(BaseModel):
    vendorCode: str
    name: Optional[str] = None
    status: int = Field(0, description="0 invited | 1 quoted | 2 regretted")

class RFQ(BaseModel):
    rfqNumber: str = Field(..., description="Unique RFQ number")
    rfqDate: Optional[datetime] = None
    dueDate: Optional[datetime] = None
    status: int = Field(0, description="0 draft | 1 open | 2 closed")
    remarks: Optional[str] = None
    items: List[RFQItem] = Field(default_factory=list)
    vendors: List[RFQVendor] = Field(default_factory=list)

class QuotationItem(BaseModel):
    indentNumber: Optional[str] = None
    itemCode: Optional[str] = None
    qty: float = Field(0, ge=0)
    rate: Optional[float] = None
    make: Optional[str] = None
    remarks: Optional[str] = None

class Quotation(BaseModel):
    quotationNumber: str = Field(..., description="Unique quotation number")
    rfqNumber: str = Field(..., description="RFQ this quotation answers")
    vendorCode: str = Field(..., description="Quoting vendor")
    quotationDate: Optional[datetime] = None
    validityDate: Optional[datetime] = None
    status: float = Field(0, description="0 draft | 1 submitted | 1.5 pending PO | 2 won | 3 rejected")
    remarks: Optional[str] = None
    items: List[QuotationItem] = Field(default_factory=list)

class CSItemVendor(BaseModel):
    vendorCode: str
    poQty: float = Field(0, description="Quantity ordered from this vendor for the item")
    rate: Optional[float] = None
    make: Optional[str] = None

class CSItem(BaseModel):
    indentNumber: Optional[str] = None
    itemCode: Optional[str] = None
    itemDescription: Optional[str] = None
    qty: float = Field(0, ge=0, description="Requested quantity")
    unit: Optional[str] = None
    poStatus: int = Field(0, description="0 open | 1 fully ordered")
    vendors: List[CSItemVendor] = Field(default_factory=list)

class CSVendor(BaseModel):
    vendorCode: str
    quotationNumber: Optional[str] = None
    name: Optional[str] = None

class CSSelection(BaseModel):
    indentNumber: Optional[str] = None
    itemCode: Optional[str] = None
    vendorCode: str
    quotationNumber: Optional[str] = None
    qty: float = Field(0, ge=0)

class ComparativeStatement(BaseModel):
    csNumber: str = Field(..., description="Unique CS number")
    csDate: Optional[datetime] = None
    csType: Literal["item_wise", "over_all"] = Field("item_wise", description="How selected quantity is determined")
    rfqNumber: str = Field(..., description="RFQ compared by this statement")
    status: int = Field(0, description="0 initial | 1 authorized | 2 completed")
    csRemarks: Optional[str] = None
    items: List[CSItem] = Field(default_factory=list)
    vendors: List[CSVendor] = Field(default_factory=list)
    selection: List[CSSelection] = Field(default_factory=list)

class POItem(BaseModel):
    indentNumber: Optional[str] = None
    itemCode: Optional[str] = None
    itemDescription: Optional[str] = None
    qty: float = Field(0, ge=0, description="Ordered quantity")
    unit: Optional[str] = None
    rate: Optional[float] = None
    csNumber: Optional[str] = Field(None, description="Line-level CS reference")

class PurchaseOrder(BaseModel):
    poNumber: str = Field(..., description="PO number")
    poDate: Optional[datetime] = None
    refDocumentType: str = Field("purchase_order", description="Only purchase_order counts against indents")
    refDocumentNumber: Optional[str] = None
    refCSNumber: Optional[str] = Field(None, description="PO-wide CS reference")
    vendorCode: str = Field(..., description="Supplying vendor")
    vendorName: Optional[str] = None
    readyForAuthorization: bool = False
    remarks: Optional[str] = None
    items: List[POItem] = Field(default_factory=list)

class Vendor(BaseModel):
    vendorCode: str = Field(..., description="VND#### code")
    name: str = Field(..., description="Vendor name")
    contactEmail: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
