"""
Online payment of invoices through a Razorpay-compatible gateway.

Flow: ``start_payment`` creates a gateway order for the invoice total and
stores it; the client completes checkout and posts the gateway's
``(order_id, payment_id, signature)`` back to ``confirm_payment``, which
verifies the HMAC signature and marks the invoice paid. ``record_failure``
stores a failed attempt.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from accounting import can_view_invoice, get_invoice, mark_invoice_paid
from auth import CurrentUser
from config import get_settings
from database import WriteBatch, create_document, get_documents
from errors import ConflictError, NotFoundError, PaymentGatewayError, PermissionDeniedError, ValidationError
from schemas import InvoiceStatus, Payment

logger = logging.getLogger(__name__)


class PaymentGateway:
    def __init__(self, key_id: Optional[str], key_secret: Optional[str], base_url: str,
                 currency: str = "INR", transport: Optional[httpx.BaseTransport] = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self._transport = transport

    def _require_keys(self) -> None:
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Payment gateway keys are not configured")

    def create_order(self, amount: float, receipt: str, notes: Optional[dict] = None) -> dict:
        """Create an order; ``amount`` is in major units and sent in paise."""
        self._require_keys()
        payload = {
            "amount": int(round(amount * 100)),
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            with httpx.Client(timeout=10.0, transport=self._transport) as http:
                resp = http.post(f"{self.base_url}/orders", json=payload, auth=(self.key_id, self.key_secret))
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Gateway rejected order for %s: %s %s", receipt, e.response.status_code, e.response.text[:200])
            raise PaymentGatewayError("Payment gateway rejected the order")
        except httpx.HTTPError as e:
            logger.error("Gateway unreachable creating order for %s: %s", receipt, e)
            raise PaymentGatewayError("Payment gateway is unavailable")
        return resp.json()

    def signature_for(self, order_id: str, payment_id: str) -> str:
        self._require_keys()
        message = f"{order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(self.signature_for(order_id, payment_id), signature or "")


def get_gateway() -> PaymentGateway:
    settings = get_settings()
    return PaymentGateway(
        settings.RAZORPAY_KEY_ID,
        settings.RAZORPAY_KEY_SECRET,
        settings.RAZORPAY_BASE_URL,
        currency=settings.CURRENCY,
    )


def _check_payer(invoice: dict, user: CurrentUser) -> None:
    if not can_view_invoice(invoice, user):
        raise PermissionDeniedError("You can only pay your own invoices")


def start_payment(invoice_id: str, user: CurrentUser) -> dict:
    invoice = get_invoice(invoice_id)
    _check_payer(invoice, user)
    if invoice["status"] == InvoiceStatus.paid.value:
        raise ConflictError("Invoice is already paid")

    gateway = get_gateway()
    order = gateway.create_order(invoice["total"], invoice_id, notes={"complaint_id": invoice.get("ticket_id") or ""})
    created = order.get("created_at")
    create_document("paymentorder", {
        "gateway_order_id": order["id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "receipt": order.get("receipt"),
        "status": order.get("status", "created"),
        "created_at_gateway": datetime.fromtimestamp(created, timezone.utc).isoformat() if created else None,
        "invoice_id": invoice_id,
        "complaint_id": invoice.get("ticket_id"),
        "customer_id": user.id,
    })
    logger.info("Payment order %s created for invoice %s", order["id"], invoice_id)
    return {
        "order_id": order["id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "key_id": gateway.key_id,
        "invoice_id": invoice_id,
    }


def _find_order(order_id: str) -> dict:
    orders = get_documents("paymentorder", {"gateway_order_id": order_id}, limit=1)
    if not orders:
        raise NotFoundError("Payment order not found")
    return orders[0]


def confirm_payment(order_id: str, payment_id: str, signature: str, user: CurrentUser) -> str:
    """Verify a checkout and, in one batch, record the capture and mark the invoice paid."""
    order = _find_order(order_id)
    _check_payer(get_invoice(order["invoice_id"]), user)
    if order.get("status") == "paid":
        raise ConflictError("Payment order has already been settled")
    if not get_gateway().verify_signature(order_id, payment_id, signature):
        logger.warning("Signature mismatch for payment %s on order %s", payment_id, order_id)
        raise ValidationError("Payment signature verification failed")

    payment = Payment(
        complaint_id=order.get("complaint_id"),
        invoice_id=order["invoice_id"],
        customer_id=user.id,
        amount=order["amount"] / 100,
        currency=order["currency"],
        status="captured",
        gateway_order_id=order_id,
        gateway_payment_id=payment_id,
        gateway_signature=signature,
    )
    batch = WriteBatch()
    batch.update("paymentorder", order["id"], {"status": "paid"}, where={"status": {"$ne": "paid"}})
    mark_invoice_paid(order["invoice_id"], batch=batch)
    payment_id_db = batch.set("payment", payment)
    batch.commit()
    logger.info("Payment %s captured for invoice %s", payment_id, order["invoice_id"])
    return payment_id_db


def record_failure(order_id: str, payment_id: Optional[str], error_code: Optional[str],
                   error_description: Optional[str], user: CurrentUser) -> str:
    order = _find_order(order_id)
    _check_payer(get_invoice(order["invoice_id"]), user)
    payment = Payment(
        complaint_id=order.get("complaint_id"),
        invoice_id=order["invoice_id"],
        customer_id=user.id,
        amount=order["amount"] / 100,
        currency=order["currency"],
        status="failed",
        gateway_order_id=order_id,
        gateway_payment_id=payment_id,
        error_code=error_code,
        error_description=error_description,
    )
    logger.warning("Payment failed on order %s: %s %s", order_id, error_code, error_description)
    return create_document("payment", payment)
