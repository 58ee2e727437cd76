import calendar
import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from auth import CurrentUser
from database import WriteBatch, create_document, get_document, get_documents, now_iso
from errors import ConflictError, NotFoundError, PermissionDeniedError
from schemas import AttendanceRecord, Role

logger = logging.getLogger(__name__)


def _scope(user: CurrentUser) -> dict:
    return {} if user.role == Role.admin else {"technician_id": user.id}


def clock_in(technician_id: str, technician_name: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    open_records = get_documents("attendance", {
        "technician_id": technician_id,
        "clock_out_time": None,
    }, limit=1)
    if open_records:
        raise ConflictError(f"{technician_name} is already clocked in")
    record = AttendanceRecord(
        technician_id=technician_id,
        technician_name=technician_name,
        clock_in_time=now.isoformat(),
        clock_out_time=None,
        date=now.date().isoformat(),
    )
    record_id = create_document("attendance", record)
    logger.info("%s clocked in (%s)", technician_name, record_id)
    return record_id


def clock_out(record_id: str, user: CurrentUser) -> None:
    record = get_document("attendance", record_id)
    if record is None:
        raise NotFoundError("Attendance record not found")
    if user.role != Role.admin and record["technician_id"] != user.id:
        raise PermissionDeniedError("Cannot clock out another employee")
    batch = WriteBatch()
    batch.update("attendance", record_id, {"clock_out_time": now_iso()}, where={"clock_out_time": None})
    batch.commit()
    logger.info("%s clocked out (%s)", record["technician_name"], record_id)


def records_for_month(year: int, month: int, user: CurrentUser) -> List[dict]:
    last_day = calendar.monthrange(year, month)[1]
    filt = {
        "date": {"$gte": date(year, month, 1).isoformat(), "$lte": date(year, month, last_day).isoformat()},
        **_scope(user),
    }
    return get_documents("attendance", filt, sort=[("date", 1), ("clock_in_time", 1)])


def todays_records(user: CurrentUser, today: Optional[date] = None) -> List[dict]:
    today = today or datetime.now(timezone.utc).date()
    return get_documents("attendance", {"date": today.isoformat(), **_scope(user)},
                         sort=[("clock_in_time", -1)])


def daily_report(employees: List[dict], records: List[dict], today: Optional[date] = None) -> Dict:
    """Present / Absent / Weekend roll-up for one day."""
    today = today or datetime.now(timezone.utc).date()
    is_weekend = today.weekday() >= 5
    by_person = {}
    for record in records:
        by_person.setdefault(record["technician_id"], record)

    details = []
    for emp in employees:
        record = by_person.get(emp["id"])
        if record:
            status = "Present"
        elif is_weekend:
            status = "Weekend"
        else:
            status = "Absent"
        details.append({
            "id": emp["id"],
            "name": emp.get("name"),
            "role": emp.get("role"),
            "status": status,
            "clock_in_time": record["clock_in_time"] if record else None,
        })

    present = sum(1 for d in details if d["status"] == "Present")
    absent = sum(1 for d in details if d["status"] == "Absent")
    efficiency = present / len(employees) * 100 if employees else 0
    return {
        "date": today.isoformat(),
        "present": present,
        "absent": absent,
        "on_leave": 0,
        "efficiency": round(efficiency, 1),
        "details": details,
    }
