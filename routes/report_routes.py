from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_roles
from database import get_db, serialize_doc, serialize_list
from schemas import Attachment, Dashboard, Priority, ReportStatus, ReportType
from services import reports
from services.school_calendar import get_now

router = APIRouter(prefix="/reports", tags=["Reports"])


class ReportCreate(BaseModel):
    reportType: ReportType
    targetDashboard: Dashboard = "general"
    targetUser: Optional[str] = None
    relatedExam: Optional[str] = None
    subject: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    attachments: List[Attachment] = Field(default_factory=list)
    priority: Priority = "medium"


class RespondPayload(BaseModel):
    message: Optional[str] = None
    action: Optional[str] = None
    status: ReportStatus = "resolved"


class StatusPayload(BaseModel):
    status: ReportStatus


@router.get("")
def list_reports(reportType: Optional[ReportType] = None, status: Optional[ReportStatus] = None,
                 priority: Optional[Priority] = None, targetDashboard: Optional[Dashboard] = None,
                 db: Database = Depends(get_db), user=Depends(require_roles())):
    docs = reports.list_reports(db, user, {
        "reportType": reportType, "status": status, "priority": priority, "targetDashboard": targetDashboard,
    })
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.get("/unread/count")
def unread_count(db: Database = Depends(get_db), user=Depends(require_roles())):
    return {"success": True, "unreadCount": reports.unread_count(db, user)}


@router.get("/admin/stats")
def report_stats(db: Database = Depends(get_db), user=Depends(require_roles("admin"))):
    return {"success": True, "data": reports.stats(db)}


@router.get("/{report_id}")
def get_report(report_id: str, db: Database = Depends(get_db), now: datetime = Depends(get_now),
               user=Depends(require_roles())):
    return {"success": True, "data": serialize_doc(reports.read(db, user, report_id, now))}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_report(payload: ReportCreate, db: Database = Depends(get_db), user=Depends(require_roles())):
    doc = reports.create(db, user, payload.model_dump())
    return {"success": True, "message": "Report submitted successfully", "data": serialize_doc(doc)}


@router.put("/{report_id}/respond")
def respond(report_id: str, payload: RespondPayload, db: Database = Depends(get_db),
            now: datetime = Depends(get_now), user=Depends(require_roles())):
    doc = reports.respond(db, user, report_id, payload.message, payload.action, payload.status, now)
    return {"success": True, "message": "Response submitted successfully", "data": serialize_doc(doc)}


@router.put("/{report_id}/status")
def update_status(report_id: str, payload: StatusPayload, db: Database = Depends(get_db),
                  user=Depends(require_roles())):
    doc = reports.set_status(db, user, report_id, payload.status)
    return {"success": True, "message": f"Report status updated to {payload.status}", "data": serialize_doc(doc)}


@router.delete("/{report_id}")
def delete_report(report_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    reports.delete(db, user, report_id)
    return {"success": True, "message": "Report deleted successfully"}
