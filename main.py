import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from jose import JWTError
from pydantic import BaseModel, Field

import accounting
import amc
import attendance
import database
import inventory
import notifications
import payments
import people
import reports
import sales
import tickets
from auth import CurrentUser, admin_user, get_current_user, require_role, staff_user
from config import get_settings
from errors import GarageError, NotFoundError
from schemas import (
    AMC_PLANS,
    AdjustmentMode,
    Amc,
    AmcStatus,
    ComplaintStatus,
    Complaint,
    Customer,
    Employee,
    Expense,
    InventoryPart,
    InvoiceStatus,
    ItemKind,
    LineItem,
    Quote,
    QuoteStatus,
    Role,
    ServiceItem,
    Vendor,
    VendorStatus,
)
from stores import StoreRegistry

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s"
)
logger = logging.getLogger("garage-api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.REALTIME_ENABLED:
        store_registry.start_all()
    yield
    store_registry.stop_all()


store_registry = StoreRegistry()

app = FastAPI(title="Garage Back-Office API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GarageError)
async def garage_error_handler(request, exc: GarageError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# -----------------------------
# Health & test
# -----------------------------

@app.get("/")
def read_root():
    return {"message": "Garage Back-Office API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if settings.DATABASE_URL else "❌ Not Set"
            response["database_name"] = getattr(database.db, 'name', None) or "❌ Unknown"
            response["connection_status"] = "Connected"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# -----------------------------
# Pydantic DTOs for requests
# -----------------------------

class StatusUpdateRequest(BaseModel):
    status: ComplaintStatus


class AssignTechnicianRequest(BaseModel):
    technician_id: str


class ItemRequest(BaseModel):
    kind: ItemKind
    item: LineItem


class MarkReadRequest(BaseModel):
    is_read: bool = True


class PartUpdate(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    min_stock_level: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    gst_rate: Optional[float] = Field(None, ge=0, le=100)
    supplier: Optional[str] = None
    purchase_price: Optional[float] = Field(None, ge=0)


class PartsBatchRequest(BaseModel):
    to_add: List[InventoryPart] = Field(default_factory=list)
    to_update: List[dict] = Field(default_factory=list)


class ServicesBatchRequest(BaseModel):
    to_add: List[ServiceItem] = Field(default_factory=list)
    to_update: List[dict] = Field(default_factory=list)


class StockAdjustRequest(BaseModel):
    quantity: int = Field(..., ge=0)
    reason: str
    mode: AdjustmentMode = AdjustmentMode.set


class QuoteStatusRequest(BaseModel):
    status: QuoteStatus


class AmcStatusRequest(BaseModel):
    status: AmcStatus


class ClockInRequest(BaseModel):
    technician_id: Optional[str] = Field(None, description="Admins may clock in someone else")


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    work_phone: Optional[str] = None
    address: Optional[str] = None
    gst_number: Optional[str] = None
    vehicles: Optional[List[str]] = None
    portal_status: Optional[str] = None
    remarks: Optional[str] = None


class EmployeeUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None
    department: Optional[str] = None
    specialization: Optional[str] = None
    location: Optional[str] = None


class VendorStatusRequest(BaseModel):
    status: VendorStatus


class PaymentOrderRequest(BaseModel):
    invoice_id: str


class PaymentVerifyRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str


class PaymentFailureRequest(BaseModel):
    order_id: str
    payment_id: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None


# -----------------------------
# Complaints / service tickets
# -----------------------------

@app.post("/api/complaints", status_code=201)
def create_complaint(payload: Complaint, user: CurrentUser = Depends(get_current_user)):
    return {"id": tickets.create_complaint(payload, user)}


@app.get("/api/complaints")
def list_complaints(status: Optional[ComplaintStatus] = None, user: CurrentUser = Depends(get_current_user)):
    return tickets.list_complaints(user, status)


@app.get("/api/complaints/{complaint_id}")
def get_complaint(complaint_id: str, user: CurrentUser = Depends(get_current_user)):
    complaint = tickets.get_complaint(complaint_id, user)
    current = ComplaintStatus(complaint["status"])
    complaint["estimate_totals"] = tickets.job_card_totals(complaint.get("estimated_items"))
    complaint["actual_totals"] = tickets.job_card_totals(complaint.get("actual_items"))
    complaint["next_statuses"] = [s.value for s in tickets.allowed_targets(current, user.role)]
    return complaint


@app.post("/api/complaints/{complaint_id}/status")
def update_complaint_status(complaint_id: str, req: StatusUpdateRequest,
                            user: CurrentUser = Depends(get_current_user)):
    tickets.update_status(complaint_id, req.status, user)
    return {"updated": True}


@app.post("/api/complaints/{complaint_id}/assign")
def assign_technician(complaint_id: str, req: AssignTechnicianRequest,
                      user: CurrentUser = Depends(admin_user)):
    technician = people.get_employee(req.technician_id)
    tickets.assign_technician(complaint_id, technician, user)
    return {"assigned": True}


@app.post("/api/complaints/{complaint_id}/estimate-items", status_code=201)
def add_estimated_item(complaint_id: str, req: ItemRequest, user: CurrentUser = Depends(get_current_user)):
    tickets.add_estimated_item(complaint_id, req.item, req.kind, user)
    return {"added": True}


@app.delete("/api/complaints/{complaint_id}/estimate-items/{kind}/{item_id}")
def remove_estimated_item(complaint_id: str, kind: ItemKind, item_id: str,
                          user: CurrentUser = Depends(get_current_user)):
    tickets.remove_estimated_item(complaint_id, item_id, kind, user)
    return {"removed": True}


@app.post("/api/complaints/{complaint_id}/actual-items", status_code=201)
def add_actual_item(complaint_id: str, req: ItemRequest, user: CurrentUser = Depends(get_current_user)):
    tickets.add_actual_item(complaint_id, req.item, req.kind, user)
    return {"added": True}


@app.delete("/api/complaints/{complaint_id}/actual-items/{kind}/{item_id}")
def remove_actual_item(complaint_id: str, kind: ItemKind, item_id: str,
                       user: CurrentUser = Depends(get_current_user)):
    tickets.remove_actual_item(complaint_id, item_id, kind, user)
    return {"removed": True}


@app.post("/api/complaints/{complaint_id}/approve-estimate")
def approve_estimate(complaint_id: str, user: CurrentUser = Depends(get_current_user)):
    tickets.approve_estimate(complaint_id, user)
    return {"approved": True}


@app.post("/api/complaints/{complaint_id}/close")
def close_and_invoice(complaint_id: str, user: CurrentUser = Depends(get_current_user)):
    return tickets.close_and_invoice(complaint_id, user)


# -----------------------------
# Notifications
# -----------------------------

@app.get("/api/notifications")
def list_notifications(unread_only: bool = False, user: CurrentUser = Depends(get_current_user)):
    inbox = notifications.ADMIN_INBOX if user.role == Role.admin else user.id
    return notifications.list_notifications(inbox, unread_only)


@app.patch("/api/notifications/{notification_id}")
def mark_notification(notification_id: str, req: MarkReadRequest, user: CurrentUser = Depends(get_current_user)):
    notifications.mark_notification(notification_id, req.is_read)
    return {"updated": True}


# -----------------------------
# Inventory
# -----------------------------

@app.get("/api/inventory/parts")
def list_parts(category: Optional[str] = None, user: CurrentUser = Depends(staff_user)):
    return inventory.list_parts(category)


@app.post("/api/inventory/parts", status_code=201)
def add_part(payload: InventoryPart, user: CurrentUser = Depends(admin_user)):
    return {"id": inventory.add_part(payload)}


@app.get("/api/inventory/parts/sku/{sku}")
def find_part_by_sku(sku: str, user: CurrentUser = Depends(staff_user)):
    part = inventory.find_part_by_sku(sku)
    if part is None:
        raise HTTPException(status_code=404, detail="Part not found")
    return part


@app.patch("/api/inventory/parts/{part_id}")
def update_part(part_id: str, payload: PartUpdate, user: CurrentUser = Depends(admin_user)):
    inventory.update_part(part_id, payload.model_dump())
    return {"updated": True}


@app.post("/api/inventory/parts/batch")
def batch_parts(payload: PartsBatchRequest, user: CurrentUser = Depends(admin_user)):
    return {"written": inventory.batch_upsert_parts(payload.to_add, payload.to_update)}


@app.post("/api/inventory/parts/{part_id}/adjust")
def adjust_stock(part_id: str, req: StockAdjustRequest, user: CurrentUser = Depends(admin_user)):
    return inventory.adjust_stock(part_id, req.quantity, req.reason, req.mode, user)


@app.get("/api/inventory/adjustments")
def list_adjustments(part_id: Optional[str] = None, user: CurrentUser = Depends(admin_user)):
    return inventory.list_adjustments(part_id)


@app.get("/api/inventory/low-stock")
def low_stock(user: CurrentUser = Depends(staff_user)):
    return inventory.low_stock_parts()


@app.get("/api/inventory/purchase-indent")
def purchase_indent(user: CurrentUser = Depends(admin_user)):
    return inventory.purchase_indent()


@app.get("/api/inventory/services")
def list_services(user: CurrentUser = Depends(staff_user)):
    return inventory.list_services()


@app.post("/api/inventory/services", status_code=201)
def add_service(payload: ServiceItem, user: CurrentUser = Depends(admin_user)):
    return {"id": inventory.add_service(payload)}


@app.post("/api/inventory/services/batch")
def batch_services(payload: ServicesBatchRequest, user: CurrentUser = Depends(admin_user)):
    return {"written": inventory.batch_upsert_services(payload.to_add, payload.to_update)}


# -----------------------------
# Accounting
# -----------------------------

@app.get("/api/invoices")
def list_invoices(status: Optional[InvoiceStatus] = None, user: CurrentUser = Depends(get_current_user)):
    require_role(user, Role.admin, Role.customer)
    return accounting.list_invoices(user, status)


@app.get("/api/invoices/{invoice_id}")
def get_invoice(invoice_id: str, user: CurrentUser = Depends(get_current_user)):
    invoice = accounting.get_invoice(invoice_id)
    if not accounting.can_view_invoice(invoice, user):
        raise NotFoundError("Invoice not found")
    return invoice


@app.post("/api/invoices/{invoice_id}/mark-paid")
def mark_invoice_paid(invoice_id: str, user: CurrentUser = Depends(admin_user)):
    accounting.mark_invoice_paid(invoice_id)
    return {"updated": True}


@app.get("/api/expenses")
def list_expenses(user: CurrentUser = Depends(admin_user)):
    return accounting.list_expenses()


@app.post("/api/expenses", status_code=201)
def add_expense(payload: Expense, user: CurrentUser = Depends(admin_user)):
    return {"id": accounting.add_expense(payload)}


@app.get("/api/transactions")
def list_transactions(user: CurrentUser = Depends(admin_user)):
    return accounting.list_transactions()


# -----------------------------
# Reports
# -----------------------------

@app.get("/api/reports/profit-and-loss")
def profit_and_loss(user: CurrentUser = Depends(admin_user)):
    return accounting.profit_and_loss(accounting.list_transactions(), accounting.list_expenses())


@app.get("/api/reports/receivables")
def receivables(user: CurrentUser = Depends(admin_user)):
    return accounting.receivables(accounting.list_invoices(user))


@app.get("/api/reports/dashboard")
def dashboard(user: CurrentUser = Depends(admin_user)):
    return reports.dashboard_stats(tickets.list_complaints(user), people.list_technicians())


@app.get("/api/reports/productivity")
def productivity(user: CurrentUser = Depends(admin_user)):
    return reports.technician_productivity(tickets.list_complaints(user), people.list_technicians())


@app.get("/api/reports/attendance")
def attendance_report(user: CurrentUser = Depends(admin_user)):
    return attendance.daily_report(people.list_employees(), attendance.todays_records(user))


# -----------------------------
# Sales
# -----------------------------

@app.get("/api/quotes")
def list_quotes(user: CurrentUser = Depends(admin_user)):
    return sales.list_quotes()


@app.post("/api/quotes", status_code=201)
def add_quote(payload: Quote, user: CurrentUser = Depends(admin_user)):
    return {"id": sales.add_quote(payload)}


@app.patch("/api/quotes/{quote_id}/status")
def update_quote_status(quote_id: str, req: QuoteStatusRequest, user: CurrentUser = Depends(admin_user)):
    sales.update_quote_status(quote_id, req.status)
    return {"updated": True}


@app.post("/api/quotes/{quote_id}/convert", status_code=201)
def convert_quote(quote_id: str, user: CurrentUser = Depends(admin_user)):
    return {"id": sales.convert_to_sales_order(quote_id)}


@app.get("/api/sales-orders")
def list_sales_orders(user: CurrentUser = Depends(admin_user)):
    return sales.list_sales_orders()


# -----------------------------
# AMC
# -----------------------------

@app.get("/api/amc/plans")
def amc_plans():
    return AMC_PLANS


@app.get("/api/amcs")
def list_amcs(user: CurrentUser = Depends(get_current_user)):
    return amc.list_amcs(user)


@app.post("/api/amcs", status_code=201)
def add_amc(payload: Amc, user: CurrentUser = Depends(admin_user)):
    return {"id": amc.add_amc(payload)}


@app.patch("/api/amcs/{amc_id}/status")
def update_amc_status(amc_id: str, req: AmcStatusRequest, user: CurrentUser = Depends(admin_user)):
    amc.update_amc_status(amc_id, req.status)
    return {"updated": True}


@app.post("/api/amcs/expire")
def expire_amcs(user: CurrentUser = Depends(admin_user)):
    return {"expired": amc.expire_lapsed()}


# -----------------------------
# Attendance
# -----------------------------

@app.post("/api/attendance/clock-in", status_code=201)
def clock_in(req: ClockInRequest, user: CurrentUser = Depends(staff_user)):
    if req.technician_id and req.technician_id != user.id:
        require_role(user, Role.admin)
        employee = people.get_employee(req.technician_id)
        return {"id": attendance.clock_in(employee["id"], employee["name"])}
    return {"id": attendance.clock_in(user.id, user.name)}


@app.post("/api/attendance/{record_id}/clock-out")
def clock_out(record_id: str, user: CurrentUser = Depends(staff_user)):
    attendance.clock_out(record_id, user)
    return {"updated": True}


@app.get("/api/attendance")
def attendance_for_month(year: int = Query(..., ge=2000), month: int = Query(..., ge=1, le=12),
                         user: CurrentUser = Depends(staff_user)):
    return attendance.records_for_month(year, month, user)


@app.get("/api/attendance/today")
def attendance_today(user: CurrentUser = Depends(staff_user)):
    return attendance.todays_records(user)


# -----------------------------
# Customers, employees, vendors
# -----------------------------

@app.get("/api/customers")
def list_customers(user: CurrentUser = Depends(admin_user)):
    return people.list_customers()


@app.post("/api/customers", status_code=201)
def add_customer(payload: Customer, user: CurrentUser = Depends(admin_user)):
    return {"id": people.add_customer(payload)}


@app.get("/api/customers/{customer_id}")
def get_customer(customer_id: str, user: CurrentUser = Depends(admin_user)):
    return people.get_customer(customer_id)


@app.patch("/api/customers/{customer_id}")
def update_customer(customer_id: str, payload: CustomerUpdate, user: CurrentUser = Depends(admin_user)):
    people.update_customer(customer_id, payload.model_dump())
    return {"updated": True}


@app.delete("/api/customers/{customer_id}")
def delete_customer(customer_id: str, user: CurrentUser = Depends(admin_user)):
    people.delete_customer(customer_id)
    return {"deleted": True}


@app.get("/api/customers/{customer_id}/service-history")
def service_history(customer_id: str, vehicle_number: Optional[str] = None,
                    user: CurrentUser = Depends(get_current_user)):
    if user.role != Role.admin and user.id != customer_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your service history")
    return people.service_history(customer_id, vehicle_number)


@app.get("/api/employees")
def list_employees(role: Optional[Role] = None, user: CurrentUser = Depends(admin_user)):
    return people.list_employees(role)


@app.post("/api/employees", status_code=201)
def add_employee(payload: Employee, user: CurrentUser = Depends(admin_user)):
    return {"id": people.add_employee(payload)}


@app.post("/api/employees/batch", status_code=201)
def batch_add_employees(payload: List[Employee], user: CurrentUser = Depends(admin_user)):
    return {"ids": people.batch_add_employees(payload)}


@app.patch("/api/employees/{employee_id}")
def update_employee(employee_id: str, payload: EmployeeUpdate, user: CurrentUser = Depends(admin_user)):
    people.update_employee(employee_id, payload.model_dump())
    return {"updated": True}


@app.get("/api/technicians")
def list_technicians(user: CurrentUser = Depends(admin_user)):
    return people.list_technicians()


@app.get("/api/vendors")
def list_vendors(user: CurrentUser = Depends(admin_user)):
    return people.list_vendors()


@app.post("/api/vendors", status_code=201)
def add_vendor(payload: Vendor, user: CurrentUser = Depends(admin_user)):
    return {"id": people.add_vendor(payload)}


@app.patch("/api/vendors/{vendor_id}/status")
def update_vendor_status(vendor_id: str, req: VendorStatusRequest, user: CurrentUser = Depends(admin_user)):
    people.update_vendor_status(vendor_id, req.status)
    return {"updated": True}


# -----------------------------
# Payments
# -----------------------------

@app.post("/api/payments/orders", status_code=201)
def create_payment_order(req: PaymentOrderRequest, user: CurrentUser = Depends(get_current_user)):
    return payments.start_payment(req.invoice_id, user)


@app.post("/api/payments/verify")
def verify_payment(req: PaymentVerifyRequest, user: CurrentUser = Depends(get_current_user)):
    return {"id": payments.confirm_payment(req.order_id, req.payment_id, req.signature, user), "verified": True}


@app.post("/api/payments/failed", status_code=201)
def payment_failed(req: PaymentFailureRequest, user: CurrentUser = Depends(get_current_user)):
    return {"id": payments.record_failure(req.order_id, req.payment_id, req.error_code,
                                          req.error_description, user)}


# -----------------------------
# Realtime snapshots
# -----------------------------

@app.websocket("/ws/{store_name}")
async def store_feed(websocket: WebSocket, store_name: str, token: str = ""):
    try:
        user = get_current_user(token)
        require_role(user, Role.admin)
    except (HTTPException, JWTError, GarageError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    store = store_registry.get(store_name)
    if store is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    async def pump():
        while True:
            snapshot = await queue.get()
            await websocket.send_json(jsonable_encoder(snapshot))

    if not settings.REALTIME_ENABLED or not store.loaded:
        await asyncio.to_thread(store.load)
    unsubscribe = store.subscribe(lambda snap: loop.call_soon_threadsafe(queue.put_nowait, snap))
    sender = asyncio.create_task(pump())
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("text") == "refresh":
                await asyncio.to_thread(store.load)
    finally:
        sender.cancel()
        unsubscribe()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(app, host="0.0.0.0", port=port)
