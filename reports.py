"""Workshop dashboard and technician productivity figures."""

from collections import OrderedDict
from typing import Dict, List

from accounting import parse_ts
from schemas import ComplaintStatus as S

DONE = {S.resolved.value, S.closed.value}
IN_SERVICE = {S.in_progress.value, S.technician_assigned.value, S.estimate_approved.value}
AWAITING_SERVICE = {S.open.value, S.estimate_shared.value}


def _created(complaint: dict):
    # Tickets carry the lifecycle timestamps as ISO strings; created_at is set by the database layer
    history = complaint.get("status_history") or []
    if history:
        return parse_ts(history[0]["timestamp"])
    return parse_ts(complaint.get("created_at"))


def repair_hours(complaint: dict) -> float:
    resolved = parse_ts(complaint["resolved_at"])
    return (resolved - _created(complaint)).total_seconds() / 3600


def _completed(complaints: List[dict]) -> List[dict]:
    return [c for c in complaints if c.get("status") in DONE and c.get("resolved_at")]


def dashboard_stats(complaints: List[dict], technicians: List[dict]) -> Dict:
    completed = _completed(complaints)
    hours = [repair_hours(c) for c in completed]

    distribution = {"in_service": 0, "awaiting_service": 0, "completed": 0}
    for c in complaints:
        status = c.get("status")
        if status in IN_SERVICE:
            distribution["in_service"] += 1
        elif status in AWAITING_SERVICE:
            distribution["awaiting_service"] += 1
        elif status in DONE:
            distribution["completed"] += 1

    by_month: "OrderedDict[str, List[float]]" = OrderedDict()
    for c in sorted(completed, key=lambda c: parse_ts(c["resolved_at"])):
        month = parse_ts(c["resolved_at"]).strftime("%Y-%m")
        by_month.setdefault(month, []).append(repair_hours(c))
    trend = [
        {"month": month, "average_hours": round(sum(values) / len(values), 1)}
        for month, values in by_month.items()
    ][-6:]

    return {
        "vehicles_in_workshop": sum(1 for c in complaints if c.get("status") not in DONE),
        "open_repair_orders": sum(1 for c in complaints if c.get("status") == S.open.value),
        "avg_repair_time": round(sum(hours) / len(hours), 1) if hours else 0,
        "available_technicians": len(technicians),
        "status_distribution": distribution,
        "repair_time_trend": trend,
    }


def technician_productivity(complaints: List[dict], technicians: List[dict]) -> List[Dict]:
    """Resolved ticket count, average resolution time and priority mix per technician."""
    stats = {t["id"]: {"count": 0, "hours": 0.0, "priorities": {}} for t in technicians}
    by_name = {t.get("name"): t["id"] for t in technicians}

    for c in _completed(complaints):
        tech_id = c.get("assigned_technician_id") or by_name.get(c.get("assigned_to"))
        if tech_id not in stats:
            continue
        entry = stats[tech_id]
        entry["count"] += 1
        entry["hours"] += repair_hours(c)
        priority = c.get("priority") or "Medium"
        entry["priorities"][priority] = entry["priorities"].get(priority, 0) + 1

    rows = []
    for tech in technicians:
        entry = stats[tech["id"]]
        rows.append({
            "technician_id": tech["id"],
            "name": tech.get("name"),
            "total_tickets_resolved": entry["count"],
            "average_resolution_time": round(entry["hours"] / entry["count"], 1) if entry["count"] else 0,
            "tickets_by_priority": entry["priorities"],
        })
    rows.sort(key=lambda r: r["total_tickets_resolved"], reverse=True)
    return rows
