"""Customers, staff and vendors: plain CRUD over their collections."""

import logging
from typing import List, Optional

from database import (
    WriteBatch,
    create_document,
    delete_document,
    get_document,
    get_documents,
    update_document,
)
from errors import NotFoundError, ValidationError
from schemas import ComplaintStatus, Customer, Employee, Role, Vendor, VendorStatus

logger = logging.getLogger(__name__)


def _update(collection_name: str, doc_id: str, fields: dict, label: str) -> None:
    fields = {k: v for k, v in fields.items() if v is not None}
    if not fields:
        raise ValidationError("Nothing to update")
    if update_document(collection_name, doc_id, fields) == 0:
        raise NotFoundError(f"{label} not found")


# -----------------------------
# Customers
# -----------------------------

def list_customers() -> List[dict]:
    return get_documents("customer", sort=[("name", 1)])


def get_customer(customer_id: str) -> dict:
    customer = get_document("customer", customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    return customer


def add_customer(customer: Customer) -> str:
    customer_id = create_document("customer", customer)
    logger.info("Customer %s added (%s)", customer.name, customer_id)
    return customer_id


def update_customer(customer_id: str, fields: dict) -> None:
    _update("customer", customer_id, fields, "Customer")


def delete_customer(customer_id: str) -> None:
    if delete_document("customer", customer_id) == 0:
        raise NotFoundError("Customer not found")
    logger.info("Customer %s deleted", customer_id)


def service_history(customer_id: str, vehicle_number: Optional[str] = None) -> List[dict]:
    """Completed work for a customer's vehicles, newest first."""
    customer = get_customer(customer_id)
    vehicles = [vehicle_number] if vehicle_number else customer.get("vehicles", [])
    complaints = get_documents("complaint", {
        "status": {"$in": [ComplaintStatus.resolved.value, ComplaintStatus.closed.value]},
        "$or": [{"customer_id": customer_id}, {"vehicle_number": {"$in": vehicles}}],
    }, sort=[("created_at", -1)])
    history = []
    for c in complaints:
        items = c.get("actual_items") or {}
        services = [s["name"] for s in items.get("services") or []]
        history.append({
            "complaint_id": c["id"],
            "vehicle_number": c["vehicle_number"],
            "date": c.get("resolved_at") or c.get("closed_at"),
            "service_performed": ", ".join(services) or c.get("issue"),
            "technician": c.get("assigned_to"),
            "cost": sum(line.get("price", 0) for line in (items.get("parts") or []) + (items.get("services") or [])),
        })
    return history


# -----------------------------
# Employees / technicians
# -----------------------------

def list_employees(role: Optional[Role] = None) -> List[dict]:
    filt = {"role": role.value} if role else {}
    return get_documents("user", filt, sort=[("name", 1)])


def list_technicians() -> List[dict]:
    return list_employees(Role.technician)


def get_employee(employee_id: str) -> dict:
    employee = get_document("user", employee_id)
    if employee is None:
        raise NotFoundError("Employee not found")
    return employee


def add_employee(employee: Employee) -> str:
    employee_id = create_document("user", employee)
    logger.info("%s %s added (%s)", employee.role.value.title(), employee.name, employee_id)
    return employee_id


def update_employee(employee_id: str, fields: dict) -> None:
    _update("user", employee_id, fields, "Employee")


def batch_add_employees(employees: List[Employee]) -> List[str]:
    batch = WriteBatch()
    ids = [batch.set("user", emp) for emp in employees]
    batch.commit()
    logger.info("Batch added %d employees", len(ids))
    return ids


# -----------------------------
# Vendors
# -----------------------------

def list_vendors() -> List[dict]:
    return get_documents("vendor", sort=[("created_at", -1)])


def add_vendor(vendor: Vendor) -> str:
    return create_document("vendor", vendor)


def update_vendor_status(vendor_id: str, status: VendorStatus) -> None:
    _update("vendor", vendor_id, {"status": status.value}, "Vendor")
