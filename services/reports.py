"""
Reports raised by users (complaints, suggestions, exam misprints) and routed
to a staff dashboard. Visibility and response rights live in
``permissions`` under the ``report`` kind.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import collection_name, create_document, to_object_id
from errors import NotFound
from permissions import authorize
from schemas import Report

logger = logging.getLogger(__name__)

REPORTS = collection_name(Report)
BREAKDOWNS = {"byType": "reportType", "byStatus": "status", "byPriority": "priority"}


def _visible_query(user: Dict[str, Any]) -> Dict[str, Any]:
    user_id = str(user["_id"])
    role = user.get("role")
    if role == "teacher":
        return {"$or": [{"targetDashboard": "teacher"}, {"targetUser": user_id}, {"reporter": user_id}]}
    if role == "finance":
        return {"targetDashboard": "finance"}
    if role == "admin":
        return {}
    return {"reporter": user_id}


def list_reports(db: Database, user: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    query = _visible_query(user)
    query.update({k: v for k, v in filters.items() if v is not None})
    return list(db[REPORTS].find(query).sort("created_at", -1))


def get_report(db: Database, report_id: str) -> Dict[str, Any]:
    report = db[REPORTS].find_one({"_id": to_object_id(report_id, "report id")})
    if not report:
        raise NotFound("Report not found")
    return report


def read(db: Database, user: Dict[str, Any], report_id: str, now: datetime) -> Dict[str, Any]:
    """Fetch a report, recording the first read by anyone other than its reporter."""
    report = get_report(db, report_id)
    authorize(user, "read", "report", report, "Not authorized to view this report")
    user_id = str(user["_id"])
    if report["reporter"] != user_id:
        db[REPORTS].update_one(
            {"_id": report["_id"], "readBy.user": {"$ne": user_id}},
            {"$push": {"readBy": {"user": user_id, "readAt": now}}},
        )
        report = get_report(db, report_id)
    return report


def create(db: Database, reporter: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    data = {**data, "reporter": str(reporter["_id"]), "readBy": []}
    if data.get("reportType") == "exam_misprint":
        data["targetDashboard"] = "teacher"
    report_id = create_document(db, REPORTS, Report(**data))
    logger.info("Report %s (%s) submitted by %s to %s dashboard", report_id, data["reportType"],
                data["reporter"], data["targetDashboard"])
    return get_report(db, report_id)


def respond(db: Database, user: Dict[str, Any], report_id: str, message: Optional[str], action: Optional[str],
            status: str, now: datetime) -> Dict[str, Any]:
    report = get_report(db, report_id)
    authorize(user, "respond", "report", report, "Not authorized to respond to this report")
    response = {"respondedBy": str(user["_id"]), "message": message, "action": action, "respondedAt": now}
    db[REPORTS].update_one(
        {"_id": report["_id"]},
        {"$set": {"response": response, "status": status, "updated_at": datetime.utcnow()}},
    )
    logger.info("Report %s answered by %s (%s)", report_id, response["respondedBy"], status)
    return get_report(db, report_id)


def set_status(db: Database, user: Dict[str, Any], report_id: str, status: str) -> Dict[str, Any]:
    report = get_report(db, report_id)
    authorize(user, "respond", "report", report, "Not authorized to update this report")
    db[REPORTS].update_one({"_id": report["_id"]}, {"$set": {"status": status, "updated_at": datetime.utcnow()}})
    return get_report(db, report_id)


def delete(db: Database, user: Dict[str, Any], report_id: str) -> None:
    report = get_report(db, report_id)
    authorize(user, "delete", "report", report, "Not authorized to delete this report")
    db[REPORTS].delete_one({"_id": report["_id"]})
    logger.info("Report %s deleted", report_id)


def stats(db: Database) -> Dict[str, Any]:
    out: Dict[str, Any] = {name: {} for name in BREAKDOWNS}
    out["total"] = 0
    for report in db[REPORTS].find({}, {field: 1 for field in BREAKDOWNS.values()}):
        out["total"] += 1
        for name, field in BREAKDOWNS.items():
            out[name][report[field]] = out[name].get(report[field], 0) + 1
    return out


def unread_count(db: Database, user: Dict[str, Any]) -> int:
    """Open reports this staff member has not opened yet; always 0 for other roles."""
    role = user.get("role")
    if role not in ("teacher", "finance", "admin"):
        return 0
    user_id = str(user["_id"])
    query: Dict[str, Any] = {"readBy.user": {"$ne": user_id}, "status": {"$ne": "resolved"}}
    if role == "teacher":
        query["$or"] = [{"targetDashboard": "teacher"}, {"targetUser": user_id}]
    elif role == "finance":
        query["targetDashboard"] = "finance"
    return db[REPORTS].count_documents(query)
