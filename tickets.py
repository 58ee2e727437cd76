"""
Service-ticket lifecycle.

    Open -> Technician Assigned -> Estimate Shared -> Estimate Approved
         -> In Progress -> Resolved -> Closed

Every transition is checked against TRANSITIONS (source state, target state,
the mutation that performs it and the roles allowed to call it) before
anything is written. Status writes are conditional on the status the ticket
had when it was read, so two racing callers cannot both move it.
"""

import logging
from collections import Counter
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple

from bson import ObjectId

from auth import CurrentUser, require_role
from database import WriteBatch, create_document, get_document, get_documents, now_iso
from errors import InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from notifications import ADMIN_INBOX, notify
from schemas import (
    Complaint,
    ComplaintStatus,
    Invoice,
    InvoiceStatus,
    ItemKind,
    LineItem,
    Role,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

S = ComplaintStatus
UNASSIGNED = "Unassigned"


class Transition(NamedTuple):
    via: str
    roles: FrozenSet[Role]


_STAFF = frozenset({Role.admin, Role.technician})
_ANYONE = frozenset({Role.admin, Role.technician, Role.customer})

TRANSITIONS: Dict[Tuple[ComplaintStatus, ComplaintStatus], Transition] = {
    (S.open, S.technician_assigned): Transition("assign_technician", frozenset({Role.admin})),
    (S.technician_assigned, S.estimate_shared): Transition("update_status", _STAFF),
    (S.estimate_shared, S.estimate_approved): Transition("approve_estimate", _ANYONE),
    (S.estimate_approved, S.in_progress): Transition("update_status", _STAFF),
    (S.in_progress, S.resolved): Transition("update_status", _STAFF),
    (S.resolved, S.closed): Transition("close_and_invoice", _ANYONE),
}

ESTIMATE_STAGE = frozenset({S.technician_assigned, S.estimate_shared})
WORK_STAGE = frozenset({S.estimate_approved, S.in_progress, S.resolved})


def allowed_targets(current: ComplaintStatus, role: Optional[Role] = None) -> List[ComplaintStatus]:
    """States reachable from ``current`` in one step, optionally for one role."""
    return [
        target for (source, target), rule in TRANSITIONS.items()
        if source == current and (role is None or role in rule.roles)
    ]


def check_transition(current: ComplaintStatus, target: ComplaintStatus, role: Role, via: str) -> None:
    rule = TRANSITIONS.get((current, target))
    if rule is None:
        raise InvalidTransitionError(f"Cannot move a ticket from '{current.value}' to '{target.value}'")
    if rule.via != via:
        raise InvalidTransitionError(f"'{target.value}' is set by {rule.via}, not {via}")
    if role not in rule.roles:
        raise PermissionDeniedError(f"Role '{role.value}' cannot move a ticket to '{target.value}'")


def job_card_totals(items: Optional[dict]) -> Dict[str, float]:
    """Subtotal, GST and grand total of a ``{parts, services}`` item set."""
    items = items or {}
    lines = list(items.get("parts") or []) + list(items.get("services") or [])
    subtotal = sum(line.get("price", 0) for line in lines)
    total_tax = sum(line.get("price", 0) * (line.get("gst_rate") or 0) / 100 for line in lines)
    return {
        "subtotal": round(subtotal, 2),
        "total_tax": round(total_tax, 2),
        "total": round(subtotal + total_tax, 2),
    }


def short_ref(doc_id: str) -> str:
    # ObjectIds share their leading timestamp bytes, the tail is what tells them apart
    return doc_id[-6:]


# -----------------------------
# Reads
# -----------------------------

def _status_of(complaint: dict) -> ComplaintStatus:
    return ComplaintStatus(complaint["status"])


def can_access(complaint: dict, user: CurrentUser) -> bool:
    if user.role == Role.admin:
        return True
    if user.role == Role.technician:
        return complaint.get("assigned_technician_id") == user.id
    return complaint.get("created_by") == user.id or (
        user.phone is not None and complaint.get("contact_number") == user.phone
    )


def get_complaint(complaint_id: str, user: Optional[CurrentUser] = None) -> dict:
    complaint = get_document("complaint", complaint_id)
    if complaint is None:
        raise NotFoundError("Complaint not found")
    if user is not None and not can_access(complaint, user):
        raise PermissionDeniedError("You do not have access to this ticket")
    return complaint


def complaint_filter(user: CurrentUser) -> dict:
    """Query selecting the tickets a user may see."""
    if user.role == Role.admin:
        return {}
    if user.role == Role.technician:
        return {"assigned_technician_id": user.id}
    clauses = [{"created_by": user.id}]
    if user.phone:
        clauses.append({"contact_number": user.phone})
    return {"$or": clauses}


def list_complaints(user: CurrentUser, status: Optional[ComplaintStatus] = None) -> List[dict]:
    filt = complaint_filter(user)
    if status is not None:
        filt = {"$and": [filt, {"status": status.value}]} if filt else {"status": status.value}
    return get_documents("complaint", filt, sort=[("created_at", -1)])


# -----------------------------
# Mutations
# -----------------------------

def create_complaint(payload: Complaint, user: CurrentUser) -> str:
    data = payload.model_dump(mode="json")
    if user.role == Role.customer:
        data["customer_id"] = user.id
    timestamp = now_iso()
    data.update({
        "status": S.open.value,
        "status_history": [{"status": S.open.value, "timestamp": timestamp}],
        "assigned_to": UNASSIGNED,
        "assigned_technician_id": None,
        "estimated_items": {"parts": [], "services": []},
        "actual_items": {"parts": [], "services": []},
        "created_by": user.id,
        "creator_role": user.role.value,
        "resolved_at": None,
        "closed_at": None,
        "invoice_id": None,
    })
    complaint_id = create_document("complaint", data)
    logger.info("Complaint %s opened for %s by %s", complaint_id, payload.vehicle_number, user.id)
    notify(
        ADMIN_INBOX,
        "New complaint submitted",
        f"{payload.customer_name} reported: {payload.issue}",
        related_complaint_id=complaint_id,
    )
    return complaint_id


def _write_status(complaint: dict, target: ComplaintStatus, extra: Optional[dict] = None,
                  batch: Optional[WriteBatch] = None) -> None:
    timestamp = now_iso()
    fields = {"status": target.value}
    if target == S.resolved:
        fields["resolved_at"] = timestamp
    if extra:
        fields.update(extra)
    update = {"$set": fields, "$push": {"status_history": {"status": target.value, "timestamp": timestamp}}}
    own_batch = batch is None
    if own_batch:
        batch = WriteBatch()
    batch.update("complaint", complaint["id"], update, where={"status": complaint["status"]})
    if own_batch:
        batch.commit()


def update_status(complaint_id: str, status: ComplaintStatus, user: CurrentUser) -> None:
    complaint = get_complaint(complaint_id, user)
    current = _status_of(complaint)
    check_transition(current, status, user.role, "update_status")
    if status == S.estimate_shared and not _has_items(complaint.get("estimated_items")):
        raise ValidationError("Add at least one part or service to the estimate before sharing it")
    _write_status(complaint, status)
    logger.info("Complaint %s: %s -> %s by %s", complaint_id, current.value, status.value, user.id)
    _notify_status(complaint, status)


def assign_technician(complaint_id: str, technician: dict, user: CurrentUser) -> None:
    complaint = get_complaint(complaint_id, user)
    check_transition(_status_of(complaint), S.technician_assigned, user.role, "assign_technician")
    if technician.get("role") != Role.technician.value:
        raise ValidationError(f"{technician.get('name', 'User')} is not a technician")
    _write_status(complaint, S.technician_assigned, {
        "assigned_to": technician["name"],
        "assigned_technician_id": technician["id"],
    })
    logger.info("Complaint %s assigned to technician %s", complaint_id, technician["id"])
    notify(
        technician["id"],
        "New assignment",
        f"You have been assigned complaint {short_ref(complaint_id)} ({complaint['vehicle_number']})",
        type="warning",
        related_complaint_id=complaint_id,
    )


def approve_estimate(complaint_id: str, user: CurrentUser) -> None:
    complaint = get_complaint(complaint_id, user)
    check_transition(_status_of(complaint), S.estimate_approved, user.role, "approve_estimate")
    _write_status(complaint, S.estimate_approved)
    logger.info("Complaint %s estimate approved by %s (%s)", complaint_id, user.id, user.role.value)
    _notify_status(complaint, S.estimate_approved)


def _has_items(items: Optional[dict]) -> bool:
    return bool(items and (items.get("parts") or items.get("services")))


def _items_field(stage: str, kind: ItemKind) -> str:
    return f"{stage}.{'parts' if kind == ItemKind.part else 'services'}"


def _change_items(complaint_id: str, stage: str, allowed: FrozenSet[ComplaintStatus], update: dict,
                  user: CurrentUser) -> None:
    require_role(user, Role.admin, Role.technician)
    complaint = get_complaint(complaint_id, user)
    current = _status_of(complaint)
    if current not in allowed:
        label = "Estimate" if stage == "estimated_items" else "Actual work"
        raise InvalidTransitionError(f"{label} items cannot be changed while the ticket is '{current.value}'")
    batch = WriteBatch()
    batch.update("complaint", complaint_id, update, where={"status": current.value})
    batch.commit()


def add_estimated_item(complaint_id: str, item: LineItem, kind: ItemKind, user: CurrentUser) -> None:
    field = _items_field("estimated_items", kind)
    _change_items(complaint_id, "estimated_items", ESTIMATE_STAGE,
                  {"$addToSet": {field: item.model_dump(mode="json")}}, user)


def remove_estimated_item(complaint_id: str, item_id: str, kind: ItemKind, user: CurrentUser) -> None:
    field = _items_field("estimated_items", kind)
    _change_items(complaint_id, "estimated_items", ESTIMATE_STAGE,
                  {"$pull": {field: {"id": item_id}}}, user)


def add_actual_item(complaint_id: str, item: LineItem, kind: ItemKind, user: CurrentUser) -> None:
    field = _items_field("actual_items", kind)
    _change_items(complaint_id, "actual_items", WORK_STAGE,
                  {"$addToSet": {field: item.model_dump(mode="json")}}, user)


def remove_actual_item(complaint_id: str, item_id: str, kind: ItemKind, user: CurrentUser) -> None:
    field = _items_field("actual_items", kind)
    _change_items(complaint_id, "actual_items", WORK_STAGE,
                  {"$pull": {field: {"id": item_id}}}, user)


def close_and_invoice(complaint_id: str, user: CurrentUser) -> dict:
    """Close a resolved ticket, raise its invoice and take the parts out of stock.

    The ticket update, invoice, ledger entry and stock decrements are one batch.
    Each actual part line that references an inventory part consumes one unit.
    """
    complaint = get_complaint(complaint_id, user)
    check_transition(_status_of(complaint), S.closed, user.role, "close_and_invoice")

    items = complaint.get("actual_items") or {}
    parts = list(items.get("parts") or [])
    services = list(items.get("services") or [])
    totals = job_card_totals(items)
    timestamp = now_iso()

    invoice_oid = ObjectId()
    invoice_id = str(invoice_oid)
    batch = WriteBatch()
    _write_status(complaint, S.closed, {"closed_at": timestamp, "invoice_id": invoice_id}, batch=batch)
    batch.set("invoice", Invoice(
        ticket_id=complaint_id,
        customer_id=complaint.get("customer_id") or (user.id if user.role == Role.customer else None),
        contact_number=complaint.get("contact_number"),
        customer_name=complaint["customer_name"],
        vehicle_number=complaint["vehicle_number"],
        date=timestamp,
        parts=parts,
        services=services,
        status=InvoiceStatus.unpaid,
        **totals,
    ), doc_id=invoice_oid)
    batch.set("transaction", Transaction(
        date=timestamp,
        type=TransactionType.invoice_created,
        description=f"Invoice for Ticket #{short_ref(complaint_id)} - {complaint['vehicle_number']}",
        amount=totals["total"],
        related_invoice_id=invoice_id,
        related_ticket_id=complaint_id,
    ))
    # Only lines picked from the inventory carry a stock document id
    used = Counter(part["id"] for part in parts if part.get("id") and ObjectId.is_valid(part["id"]))
    for part_id, quantity in used.items():
        batch.update("inventorypart", ObjectId(part_id), {"$inc": {"stock": -quantity}})
    batch.commit()

    logger.info("Complaint %s closed, invoice %s for %.2f", complaint_id, invoice_id, totals["total"])
    _notify_status(complaint, S.closed)
    return {"invoice_id": invoice_id, **totals}


def _notify_status(complaint: dict, status: ComplaintStatus) -> None:
    done = status in (S.resolved, S.closed)
    message = f"Complaint {short_ref(complaint['id'])} ({complaint['vehicle_number']}) status: {status.value}"
    notify(ADMIN_INBOX, "Complaint status updated", message,
           type="success" if done else "info", related_complaint_id=complaint["id"])
    if complaint.get("created_by") and complaint.get("creator_role") == Role.customer.value:
        notify(complaint["created_by"], "Your service ticket was updated", message,
               type="success" if done else "info", related_complaint_id=complaint["id"])
