import logging
from typing import Dict, List

from database import WriteBatch, create_document, get_document, get_documents, now_iso, update_document
from errors import InvalidTransitionError, NotFoundError
from schemas import Quote, QuoteItem, QuoteStatus, SalesOrderStatus

logger = logging.getLogger(__name__)


def quote_totals(items: List[QuoteItem], adjustment: float = 0) -> Dict[str, float]:
    sub_total = total_tax = 0.0
    for item in items:
        line = (item.quantity or 0) * (item.rate or 0)
        taxable = line - line * (item.discount or 0) / 100
        sub_total += taxable
        total_tax += taxable * (item.tax or 0) / 100
    return {
        "sub_total": round(sub_total, 2),
        "total_tax": round(total_tax, 2),
        "total": round(sub_total + total_tax + (adjustment or 0), 2),
    }


def list_quotes() -> List[dict]:
    return get_documents("quote", sort=[("created_at", -1)])


def list_sales_orders() -> List[dict]:
    return get_documents("salesorder", sort=[("created_at", -1)])


def get_quote(quote_id: str) -> dict:
    quote = get_document("quote", quote_id)
    if quote is None:
        raise NotFoundError("Quote not found")
    return quote


def add_quote(quote: Quote) -> str:
    data = quote.model_dump(mode="json")
    data.update(quote_totals(quote.items, quote.adjustment))
    data["status"] = QuoteStatus.draft.value
    quote_id = create_document("quote", data)
    logger.info("Quote %s (%s) drafted for %s", quote.quote_number, quote_id, quote.customer_name)
    return quote_id


def update_quote_status(quote_id: str, status: QuoteStatus) -> None:
    if status == QuoteStatus.converted:
        raise InvalidTransitionError("Quotes are converted through the sales-order endpoint")
    quote = get_quote(quote_id)
    if quote["status"] == QuoteStatus.converted.value:
        raise InvalidTransitionError("Quote has already been converted")
    update_document("quote", quote_id, {"status": status.value})


def sales_order_number(quote_number: str) -> str:
    # QT-000123 -> SO-000123
    _, _, suffix = quote_number.partition("-")
    return f"SO-{suffix or quote_number}"


def convert_to_sales_order(quote_id: str) -> str:
    quote = get_quote(quote_id)
    if quote["status"] != QuoteStatus.accepted.value:
        raise InvalidTransitionError("Only accepted quotes can be converted to a sales order")
    timestamp = now_iso()
    batch = WriteBatch()
    batch.update("quote", quote_id, {"status": QuoteStatus.converted.value},
                 where={"status": QuoteStatus.accepted.value})
    order_id = batch.set("salesorder", {
        "quote_id": quote_id,
        "customer_id": quote["customer_id"],
        "customer_name": quote["customer_name"],
        "sales_order_number": sales_order_number(quote["quote_number"]),
        "order_date": timestamp,
        "items": quote["items"],
        "total": quote["total"],
        "status": SalesOrderStatus.confirmed.value,
    })
    batch.commit()
    logger.info("Quote %s converted to sales order %s", quote_id, order_id)
    return order_id
