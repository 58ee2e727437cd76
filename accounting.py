"""
Ledger operations and the finance reports built on them.

The ledger is append-only: expenses add a negative transaction, closing a
ticket adds an "Invoice Created" line, and payment converts that line into
Revenue.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from auth import CurrentUser
from config import get_settings
from database import WriteBatch, get_document, get_documents, now_iso, oid
from errors import ConflictError, NotFoundError
from schemas import (
    ComplaintStatus,
    Expense,
    ExpenseCategory,
    InvoiceStatus,
    Role,
    Transaction,
    TransactionType,
)
from tickets import short_ref

logger = logging.getLogger(__name__)


def parse_ts(value) -> Optional[datetime]:
    """ISO string or datetime -> aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, date):
        ts = datetime(value.year, value.month, value.day)
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# -----------------------------
# Reads
# -----------------------------

def _owner_clauses(user: CurrentUser) -> List[dict]:
    clauses = [{"customer_id": user.id}]
    if user.phone:
        clauses.append({"contact_number": user.phone})
    return clauses


def can_view_invoice(invoice: dict, user: CurrentUser) -> bool:
    """Admins see every invoice; a customer sees those billed to their id or phone."""
    if user.role == Role.admin:
        return True
    if user.role != Role.customer:
        return False
    return any(all(invoice.get(k) == v for k, v in clause.items()) for clause in _owner_clauses(user))


def list_invoices(user: CurrentUser, status: Optional[InvoiceStatus] = None) -> List[dict]:
    filt = {}
    if user.role == Role.customer:
        filt["$or"] = _owner_clauses(user)
    if status is not None:
        filt["status"] = status.value
    return get_documents("invoice", filt, sort=[("date", -1)])


def get_invoice(invoice_id: str) -> dict:
    invoice = get_document("invoice", invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def list_expenses() -> List[dict]:
    return get_documents("expense", sort=[("date", -1)])


def list_transactions() -> List[dict]:
    return get_documents("transaction", sort=[("date", -1)])


# -----------------------------
# Mutations
# -----------------------------

def add_expense(expense: Expense) -> str:
    batch = WriteBatch()
    expense_id = batch.set("expense", expense)
    batch.set("transaction", Transaction(
        date=expense.date,
        type=TransactionType.expense,
        description=f"{expense.category.value}: {expense.description}",
        amount=-expense.amount,
        related_expense_id=expense_id,
    ))
    batch.commit()
    logger.info("Expense %s recorded: %s %.2f", expense_id, expense.category.value, expense.amount)
    return expense_id


def mark_invoice_paid(invoice_id: str, batch: Optional[WriteBatch] = None) -> None:
    """Mark an invoice paid, close its ticket and book the revenue.

    With ``batch`` the writes join the caller's batch and are committed by it.
    """
    invoice = get_invoice(invoice_id)
    if invoice["status"] == InvoiceStatus.paid.value:
        raise ConflictError("Invoice is already paid")
    timestamp = now_iso()
    description = f"Payment for Invoice #{short_ref(invoice_id)}"

    own_batch = batch is None
    if own_batch:
        batch = WriteBatch()
    batch.update("invoice", invoice_id, {"status": InvoiceStatus.paid.value, "paid_at": timestamp},
                 where={"status": InvoiceStatus.unpaid.value})

    complaint = get_document("complaint", invoice["ticket_id"]) if invoice.get("ticket_id") else None
    if complaint is not None and complaint["status"] != ComplaintStatus.closed.value:
        batch.update("complaint", complaint["id"], {
            "$set": {"status": ComplaintStatus.closed.value, "closed_at": timestamp},
            "$push": {"status_history": {"status": ComplaintStatus.closed.value, "timestamp": timestamp}},
        })

    original = get_documents("transaction", {
        "related_invoice_id": invoice_id,
        "type": TransactionType.invoice_created.value,
    }, limit=1)
    if original:
        batch.update("transaction", oid(original[0]["id"]), {
            "type": TransactionType.revenue.value,
            "date": timestamp,
            "description": description,
        })
    else:
        batch.set("transaction", Transaction(
            date=timestamp,
            type=TransactionType.revenue,
            description=f"{description} - {invoice['vehicle_number']}",
            amount=invoice["total"],
            related_invoice_id=invoice_id,
            related_ticket_id=invoice.get("ticket_id"),
        ))
    if own_batch:
        batch.commit()
        logger.info("Invoice %s marked paid (%.2f)", invoice_id, invoice["total"])


# -----------------------------
# Reports
# -----------------------------

def profit_and_loss(transactions: List[dict], expenses: List[dict]) -> Dict:
    """Accrual P&L: revenue less parts purchases (COGS) less operating expenses."""
    operating_income = sum(t["amount"] for t in transactions if t.get("type") == TransactionType.revenue.value)
    cogs = sum(e["amount"] for e in expenses if e.get("category") == ExpenseCategory.parts_purchase.value)
    gross_profit = operating_income - cogs

    grouped: Dict[str, float] = defaultdict(float)
    for expense in expenses:
        if expense.get("category") != ExpenseCategory.parts_purchase.value:
            grouped[expense["category"]] += expense["amount"]
    operating_expense_total = sum(grouped.values())
    operating_profit = gross_profit - operating_expense_total

    return {
        "operating_income": round(operating_income, 2),
        "cogs": round(cogs, 2),
        "gross_profit": round(gross_profit, 2),
        "operating_expenses": {k: round(v, 2) for k, v in grouped.items()},
        "operating_expense_total": round(operating_expense_total, 2),
        "operating_profit": round(operating_profit, 2),
        "net_profit_loss": round(operating_profit, 2),
    }


def receivables(invoices: List[dict], today: Optional[date] = None, due_days: Optional[int] = None) -> Dict:
    """Outstanding, overdue and upcoming amounts for unpaid invoices.

    An invoice falls due ``due_days`` after its date. Average payment time is
    measured from invoice date to ``paid_at``.
    """
    today = today or datetime.now(timezone.utc).date()
    due_days = get_settings().INVOICE_DUE_DAYS if due_days is None else due_days
    horizon = today + timedelta(days=30)

    unpaid = [inv for inv in invoices if inv.get("status") == InvoiceStatus.unpaid.value]
    paid = [inv for inv in invoices if inv.get("status") == InvoiceStatus.paid.value]

    total_outstanding = due_today = due_within_30 = total_overdue = 0.0
    for inv in unpaid:
        due = parse_ts(inv["date"]).date() + timedelta(days=due_days)
        total_outstanding += inv["total"]
        if due < today:
            total_overdue += inv["total"]
        elif due == today:
            due_today += inv["total"]
        elif due <= horizon:
            due_within_30 += inv["total"]

    payment_days = [
        (parse_ts(inv["paid_at"]).date() - parse_ts(inv["date"]).date()).days
        for inv in paid if inv.get("paid_at")
    ]
    average_payment_time = round(sum(payment_days) / len(payment_days)) if payment_days else 0

    return {
        "total_outstanding": round(total_outstanding, 2),
        "due_today": round(due_today, 2),
        "due_within_30_days": round(due_within_30, 2),
        "total_overdue": round(total_overdue, 2),
        "average_payment_time": average_payment_time,
    }
