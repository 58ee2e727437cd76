"""
Database Schemas

MongoDB collection schemas for the garage back-office, as Pydantic models.
These schemas validate request payloads before they are written.

Each Pydantic model represents a collection in the database.
Model name is converted to lowercase for the collection name:
- Complaint -> "complaint" collection
- InventoryPart -> "inventorypart" collection
- StockAdjustment -> "stockadjustment" collection
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


# ---------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------

class Role(str, Enum):
    admin = "admin"
    technician = "technician"
    customer = "customer"


class ComplaintStatus(str, Enum):
    open = "Open"
    technician_assigned = "Technician Assigned"
    estimate_shared = "Estimate Shared"
    estimate_approved = "Estimate Approved"
    in_progress = "In Progress"
    resolved = "Resolved"
    closed = "Closed"


class Priority(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"
    critical = "Critical"


class ItemKind(str, Enum):
    part = "part"
    service = "service"


class PartCategory(str, Enum):
    electrical = "Electrical"
    mechanical = "Mechanical"
    battery = "Battery"
    chassis = "Chassis"
    body = "Body"


class AdjustmentMode(str, Enum):
    set = "set"
    add = "add"
    remove = "remove"


class InvoiceStatus(str, Enum):
    paid = "Paid"
    unpaid = "Unpaid"


class TransactionType(str, Enum):
    revenue = "Revenue"
    expense = "Expense"
    invoice_created = "Invoice Created"


class ExpenseCategory(str, Enum):
    parts_purchase = "Parts Purchase"
    rent = "Rent"
    utilities = "Utilities"
    salaries = "Salaries"
    marketing = "Marketing"
    other = "Other"


class AmcStatus(str, Enum):
    active = "Active"
    expired = "Expired"
    cancelled = "Cancelled"


class QuoteStatus(str, Enum):
    draft = "Draft"
    sent = "Sent"
    accepted = "Accepted"
    rejected = "Rejected"
    converted = "Converted"


class SalesOrderStatus(str, Enum):
    draft = "Draft"
    confirmed = "Confirmed"
    invoiced = "Invoiced"
    fulfilled = "Fulfilled"
    cancelled = "Cancelled"


class VendorStatus(str, Enum):
    active = "Active"
    inactive = "Inactive"
    pending_approval = "Pending Approval"


# ---------------------------------------------------------------------
# Service tickets
# ---------------------------------------------------------------------

class LineItem(BaseModel):
    """A part or service attached to a ticket's estimate or actual work."""
    id: Optional[str] = Field(None, description="Inventory part / service id")
    name: str
    price: float = Field(..., ge=0, description="Pre-tax price")
    gst_rate: float = Field(0, ge=0, le=100, description="GST percent, e.g. 5, 12, 18, 28")
    hsn_sac_code: Optional[str] = None
    part_number: Optional[str] = None


class Complaint(BaseModel):
    """
    Service ticket / job card raised for a vehicle.
    Collection name: "complaint"
    """
    customer_id: Optional[str] = None
    customer_name: str
    contact_number: str = Field(..., description="Customer phone")
    vehicle_number: str = Field(..., description="Registration number")
    vehicle_model: Optional[str] = None
    issue: str = Field(..., description="Short title of the problem")
    detailed_issue: Optional[str] = None
    priority: Priority = Priority.medium
    attachment_urls: List[str] = Field(default_factory=list)


class Notification(BaseModel):
    """
    Lightweight notification for users about ticket and stock events.
    Collection name: "notification"
    """
    user_id: str = Field(..., description="User id, or 'admin' for the back-office")
    title: str
    message: str
    type: str = Field("info", description="info, success, warning, error")
    is_read: bool = False
    related_complaint_id: Optional[str] = None


# ---------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------

class InventoryPart(BaseModel):
    """
    Stocked part.
    Collection name: "inventorypart"
    """
    part_number: str = Field(..., description="SKU")
    name: str
    brand: Optional[str] = None
    description: Optional[str] = None
    category: PartCategory
    stock: int = Field(0, ge=0)
    min_stock_level: int = Field(0, ge=0)
    price: float = Field(..., ge=0, description="Selling price, pre-tax")
    gst_rate: float = Field(0, ge=0, le=100)
    hsn_sac_code: Optional[str] = None
    supplier: Optional[str] = None
    purchase_price: Optional[float] = Field(None, ge=0)


class ServiceItem(BaseModel):
    """
    Billable labour / service.
    Collection name: "serviceitem"
    """
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    gst_rate: float = Field(0, ge=0, le=100)
    hsn_sac_code: Optional[str] = None


class StockAdjustment(BaseModel):
    """
    Audit log entry for manual stock changes.
    Collection name: "stockadjustment"
    """
    part_id: str
    part_name: str
    part_number: str
    adjusted_by: str
    adjusted_by_user_id: Optional[str] = None
    adjustment_mode: AdjustmentMode
    adjustment_type: str = Field(..., description="IN or OUT")
    quantity_change: int
    old_quantity: int
    new_quantity: int
    reason: str
    timestamp: str


# ---------------------------------------------------------------------
# Accounting
# ---------------------------------------------------------------------

class Invoice(BaseModel):
    """
    Invoice raised when a ticket is closed.
    Collection name: "invoice"
    """
    ticket_id: str
    customer_id: Optional[str] = None
    customer_name: str
    contact_number: Optional[str] = None
    vehicle_number: str
    date: str
    parts: List[LineItem] = Field(default_factory=list)
    services: List[LineItem] = Field(default_factory=list)
    subtotal: float
    total_tax: float
    total: float
    status: InvoiceStatus = InvoiceStatus.unpaid
    paid_at: Optional[str] = None


class Transaction(BaseModel):
    """
    Ledger line. Append-only apart from the Invoice Created -> Revenue conversion.
    Collection name: "transaction"
    """
    date: str
    type: TransactionType
    description: str
    amount: float
    related_invoice_id: Optional[str] = None
    related_expense_id: Optional[str] = None
    related_ticket_id: Optional[str] = None


class Expense(BaseModel):
    """
    Collection name: "expense"
    """
    date: str = Field(..., description="ISO date")
    category: ExpenseCategory
    description: str
    amount: float = Field(..., gt=0)


# ---------------------------------------------------------------------
# People
# ---------------------------------------------------------------------

class Customer(BaseModel):
    """
    Collection name: "customer"
    """
    name: str = Field(..., description="Company or full name")
    display_name: Optional[str] = Field(None, description="Primary contact name")
    type: str = Field("B2C", description="B2B or B2C")
    email: Optional[EmailStr] = None
    mobile: str
    work_phone: Optional[str] = None
    address: Optional[str] = None
    gst_number: Optional[str] = None
    pan: Optional[str] = None
    vehicles: List[str] = Field(default_factory=list, description="Registration numbers")
    role: Role = Role.customer
    portal_status: str = Field("Enabled", description="Enabled or Disabled")
    remarks: Optional[str] = None


class SalaryComponent(BaseModel):
    name: str
    amount: float


class SalaryStructure(BaseModel):
    basic: float = 0
    hra: float = 0
    allowances: List[SalaryComponent] = Field(default_factory=list)
    deductions: List[SalaryComponent] = Field(default_factory=list)


class Employee(BaseModel):
    """
    Staff and portal users; ``role`` tells technicians from admins.
    Collection name: "user"
    """
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Role = Role.technician
    employee_id: Optional[str] = None
    title: Optional[str] = None
    department: Optional[str] = None
    specialization: Optional[str] = None
    location: Optional[str] = None
    date_of_joining: Optional[str] = None
    salary_structure: SalaryStructure = Field(default_factory=SalaryStructure)


class VendorContact(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class Vendor(BaseModel):
    """
    Collection name: "vendor"
    """
    name: str
    category: str = Field(..., description="Parts Supplier, Service Provider, Logistics ...")
    tier: str = Field("Transactional", description="Strategic Partner, Preferred Supplier, Transactional")
    status: VendorStatus = VendorStatus.pending_approval
    contact: VendorContact
    address: Optional[str] = None
    gst_number: Optional[str] = None


# ---------------------------------------------------------------------
# AMC, sales, attendance, payments
# ---------------------------------------------------------------------

class Amc(BaseModel):
    """
    Annual maintenance contract.
    Collection name: "amc"
    """
    customer_id: str
    customer_name: str
    vehicle_number: str
    vehicle_category: str = Field(..., description="2 Wheeler, 3 Wheeler, 4 Wheeler, Commercial")
    plan_name: str
    start_date: str
    end_date: str
    status: AmcStatus = AmcStatus.active


class QuoteItem(BaseModel):
    item_id: str
    item_type: ItemKind
    item_name: str
    hsn_sac_code: Optional[str] = None
    quantity: float = Field(1, ge=0)
    rate: float = Field(0, ge=0)
    discount: float = Field(0, ge=0, le=100, description="Percent")
    tax: float = Field(0, ge=0, le=100, description="Percent")


class Quote(BaseModel):
    """
    Collection name: "quote"
    """
    customer_id: str
    customer_name: str
    quote_number: str = Field(..., description="e.g. QT-000123")
    quote_date: str
    expiry_date: Optional[str] = None
    items: List[QuoteItem]
    adjustment: float = 0


class AttendanceRecord(BaseModel):
    """
    Collection name: "attendance"
    """
    technician_id: str
    technician_name: str
    clock_in_time: str
    clock_out_time: Optional[str] = None
    date: str = Field(..., description="YYYY-MM-DD")


class Payment(BaseModel):
    """
    Gateway payment outcome.
    Collection name: "payment"
    """
    complaint_id: Optional[str] = None
    invoice_id: Optional[str] = None
    customer_id: Optional[str] = None
    amount: float
    currency: str
    status: str = Field(..., description="created, captured, failed")
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    created_at_gateway: Optional[str] = None


AMC_PLANS: List[Dict] = [
    {
        "id": "plan_basic",
        "name": "Basic Care",
        "description": "For light-use vehicles, covering essential checks and services.",
        "price": 29999,
        "features": [
            "1 General Service per year",
            "Basic Diagnostics",
            "Tire Pressure Check",
            "Fluid Top-ups",
            "5% Discount on Parts",
        ],
        "recommended": False,
    },
    {
        "id": "plan_standard",
        "name": "Standard Service",
        "description": "Our most popular plan for regular commuters and family vehicles.",
        "price": 49999,
        "features": [
            "2 General Services per year",
            "Comprehensive Diagnostics",
            "Tire Rotation & Balancing",
            "Brake Inspection",
            "Battery Health Check",
            "10% Discount on Parts",
            "Roadside Assistance",
        ],
        "recommended": True,
    },
    {
        "id": "plan_premium",
        "name": "Premium Plus",
        "description": "The ultimate care package for high-mileage and performance EVs.",
        "price": 79999,
        "features": [
            "4 General Services per year",
            "Advanced Diagnostics & Software Updates",
            "Wheel Alignment, Rotation & Balancing",
            "Full Brake Service",
            "Detailed Battery & Powertrain Analysis",
            "15% Discount on Parts",
            "Priority Roadside Assistance",
            "Annual Interior & Exterior Detailing",
        ],
        "recommended": False,
    },
]
