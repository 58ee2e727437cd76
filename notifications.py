import logging
from typing import List, Optional

from database import create_document, get_documents, update_document
from errors import NotFoundError
from schemas import Notification

logger = logging.getLogger(__name__)

ADMIN_INBOX = "admin"


def notify(user_id: str, title: str, message: str, type: str = "info",
           related_complaint_id: Optional[str] = None) -> str:
    notif = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_complaint_id=related_complaint_id,
    )
    notif_id = create_document("notification", notif)
    logger.debug("Notification %s -> %s: %s", notif_id, user_id, title)
    return notif_id


def list_notifications(user_id: Optional[str] = None, unread_only: bool = False) -> List[dict]:
    filt = {}
    if user_id:
        filt["user_id"] = user_id
    if unread_only:
        filt["is_read"] = False
    return get_documents("notification", filt, sort=[("created_at", -1)])


def mark_notification(notification_id: str, is_read: bool = True) -> None:
    if update_document("notification", notification_id, {"is_read": is_read}) == 0:
        raise NotFoundError("Notification not found")
