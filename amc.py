import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from auth import CurrentUser
from database import create_document, get_db, get_documents, now_utc, update_document
from errors import NotFoundError, ValidationError
from schemas import AMC_PLANS, Amc, AmcStatus, Role

logger = logging.getLogger(__name__)

PLAN_NAMES = {plan["name"] for plan in AMC_PLANS}


def list_amcs(user: CurrentUser) -> List[dict]:
    filt = {} if user.role == Role.admin else {"customer_id": user.id}
    return get_documents("amc", filt, sort=[("start_date", -1)])


def add_amc(contract: Amc) -> str:
    if contract.plan_name not in PLAN_NAMES:
        raise ValidationError(f"Unknown AMC plan '{contract.plan_name}'")
    if contract.end_date[:10] <= contract.start_date[:10]:
        raise ValidationError("AMC end date must be after the start date")
    amc_id = create_document("amc", contract)
    logger.info("AMC %s (%s) sold for %s", amc_id, contract.plan_name, contract.vehicle_number)
    return amc_id


def update_amc_status(amc_id: str, status: AmcStatus) -> None:
    if update_document("amc", amc_id, {"status": status.value}) == 0:
        raise NotFoundError("AMC not found")


def expire_lapsed(today: Optional[date] = None) -> int:
    """Mark active contracts whose end date has passed as Expired."""
    today = today or datetime.now(timezone.utc).date()
    result = get_db()["amc"].update_many(
        {"status": AmcStatus.active.value, "end_date": {"$lt": today.isoformat()}},
        {"$set": {"status": AmcStatus.expired.value, "updated_at": now_utc()}},
    )
    if result.modified_count:
        logger.info("Expired %d lapsed AMC contracts", result.modified_count)
    return result.modified_count
