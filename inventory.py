import logging
from typing import Iterable, List, Optional

from auth import CurrentUser
from database import WriteBatch, create_document, get_document, get_documents, now_iso, oid, update_document
from errors import NotFoundError, ValidationError
from notifications import ADMIN_INBOX, notify
from schemas import AdjustmentMode, InventoryPart, ServiceItem, StockAdjustment

logger = logging.getLogger(__name__)

# Upper bound on writes per batch, matching the managed store's batch limit
BATCH_LIMIT = 500

PARTS = "inventorypart"
SERVICES = "serviceitem"


def list_parts(category: Optional[str] = None) -> List[dict]:
    filt = {"category": category} if category else {}
    return get_documents(PARTS, filt, sort=[("name", 1)])


def list_services() -> List[dict]:
    return get_documents(SERVICES, sort=[("name", 1)])


def get_part(part_id: str) -> dict:
    part = get_document(PARTS, part_id)
    if part is None:
        raise NotFoundError("Part not found")
    return part


def find_part_by_sku(sku: str) -> Optional[dict]:
    docs = get_documents(PARTS, {"part_number": sku}, limit=1)
    return docs[0] if docs else None


def add_part(part: InventoryPart) -> str:
    part_id = create_document(PARTS, part)
    logger.info("Added part %s (%s)", part.part_number, part_id)
    return part_id


def update_part(part_id: str, fields: dict) -> None:
    fields = {k: v for k, v in fields.items() if v is not None}
    if not fields:
        raise ValidationError("Nothing to update")
    if update_document(PARTS, part_id, fields) == 0:
        raise NotFoundError("Part not found")


def add_service(service: ServiceItem) -> str:
    return create_document(SERVICES, service)


def _batch_upsert(collection_name: str, to_add: Iterable, to_update: Iterable[dict]) -> int:
    ops = [("add", item) for item in to_add] + [("update", item) for item in to_update]
    for start in range(0, len(ops), BATCH_LIMIT):
        batch = WriteBatch()
        for kind, item in ops[start:start + BATCH_LIMIT]:
            if kind == "add":
                batch.set(collection_name, item)
            else:
                fields = dict(item)
                item_id = fields.pop("id", None)
                if not item_id:
                    raise ValidationError("Items to update must carry an id")
                batch.update(collection_name, oid(item_id), fields)
        batch.commit()
    logger.info("Batch wrote %d %s documents", len(ops), collection_name)
    return len(ops)


def batch_upsert_parts(to_add: List[InventoryPart], to_update: List[dict]) -> int:
    return _batch_upsert(PARTS, to_add, to_update)


def batch_upsert_services(to_add: List[ServiceItem], to_update: List[dict]) -> int:
    return _batch_upsert(SERVICES, to_add, to_update)


def adjust_stock(part_id: str, quantity: int, reason: str, mode: AdjustmentMode, user: CurrentUser) -> dict:
    """Set, add to or remove from a part's stock and log the adjustment."""
    if quantity < 0:
        raise ValidationError("Quantity must not be negative")
    part = get_part(part_id)
    old = int(part.get("stock", 0))
    if mode == AdjustmentMode.set:
        new = quantity
    elif mode == AdjustmentMode.add:
        new = old + quantity
    else:
        new = old - quantity
    if new < 0:
        raise ValidationError(f"Cannot remove {quantity} units, only {old} in stock")

    log = StockAdjustment(
        part_id=part_id,
        part_name=part["name"],
        part_number=part["part_number"],
        adjusted_by=user.name or user.email or user.id,
        adjusted_by_user_id=user.id,
        adjustment_mode=mode,
        adjustment_type="IN" if new > old else "OUT",
        quantity_change=abs(new - old),
        old_quantity=old,
        new_quantity=new,
        reason=reason,
        timestamp=now_iso(),
    )
    batch = WriteBatch()
    batch.update(PARTS, part_id, {"stock": new})
    log_id = batch.set("stockadjustment", log)
    batch.commit()
    logger.info("Stock of %s adjusted %d -> %d by %s (%s)", part["part_number"], old, new, user.id, reason)

    if new <= part.get("min_stock_level", 0) < old:
        notify(ADMIN_INBOX, "Low stock", f"{part['name']} ({part['part_number']}) is down to {new} units",
               type="warning")
    return {"id": log_id, "old_quantity": old, "new_quantity": new}


def list_adjustments(part_id: Optional[str] = None) -> List[dict]:
    filt = {"part_id": part_id} if part_id else {}
    return get_documents("stockadjustment", filt, sort=[("timestamp", -1)])


def low_stock_parts() -> List[dict]:
    return [p for p in list_parts() if p.get("stock", 0) <= p.get("min_stock_level", 0)]


def purchase_indent() -> dict:
    """Reorder list for low-stock parts with its total value at selling price."""
    items = []
    for part in low_stock_parts():
        reorder_qty = max(10, part.get("min_stock_level", 0) * 2 - part.get("stock", 0))
        items.append({
            "part_id": part["id"],
            "part_number": part["part_number"],
            "name": part["name"],
            "stock": part.get("stock", 0),
            "min_stock_level": part.get("min_stock_level", 0),
            "price": part["price"],
            "reorder_qty": reorder_qty,
            "line_total": round(part["price"] * reorder_qty, 2),
        })
    return {"items": items, "total": round(sum(i["line_total"] for i in items), 2)}
