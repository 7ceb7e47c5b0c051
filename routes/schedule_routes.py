from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_roles
from database import get_db, serialize_doc, serialize_list
from schemas import AttendanceStatus, RecurringPattern, ScheduleStatus, ScheduleType
from services import schedules
from services.school_calendar import as_local, get_now

router = APIRouter(prefix="/schedules", tags=["Schedules"])

CLOCK = r"^([01]\d|2[0-3]):[0-5]\d$"


class ScheduleCreate(BaseModel):
    teacher: Optional[str] = None
    course: str
    level: str
    unit: Optional[dict] = None
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    date: datetime
    startTime: str = Field(..., pattern=CLOCK)
    endTime: str = Field(..., pattern=CLOCK)
    venue: str = Field(..., min_length=1)
    type: ScheduleType = "lecture"
    recurringPattern: RecurringPattern = "none"
    recurringEndDate: Optional[datetime] = None
    notes: Optional[str] = None


class ScheduleUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[datetime] = None
    startTime: Optional[str] = Field(None, pattern=CLOCK)
    endTime: Optional[str] = Field(None, pattern=CLOCK)
    venue: Optional[str] = None
    type: Optional[ScheduleType] = None
    status: Optional[ScheduleStatus] = None
    notes: Optional[str] = None


class AttendancePayload(BaseModel):
    studentId: str
    status: AttendanceStatus


class CancelPayload(BaseModel):
    reason: Optional[str] = None


@router.get("")
def list_schedules(teacher: Optional[str] = None, course: Optional[str] = None, level: Optional[str] = None,
                   date: Optional[datetime] = None, status: Optional[ScheduleStatus] = None,
                   type: Optional[ScheduleType] = None, db: Database = Depends(get_db),
                   user=Depends(require_roles())):
    docs = schedules.list_schedules(db, user, {
        "teacher": teacher, "course": course, "level": level, "status": status, "type": type,
    }, as_local(date))
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.get("/timetable")
def weekly_timetable(week: Optional[datetime] = None, db: Database = Depends(get_db),
                     now: datetime = Depends(get_now), user=Depends(require_roles())):
    table = schedules.timetable(db, user, as_local(week), now)
    days = {day: serialize_list(items) for day, items in table["days"].items()}
    return {"success": True, "week": table["week"], "data": days}


@router.get("/{schedule_id}")
def get_schedule(schedule_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    return {"success": True, "data": serialize_doc(schedules.get_schedule(db, schedule_id))}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_schedule(payload: ScheduleCreate, db: Database = Depends(get_db),
                    user=Depends(require_roles("teacher", "admin"))):
    data = payload.model_dump()
    data["date"] = as_local(data["date"])
    data["recurringEndDate"] = as_local(data["recurringEndDate"])
    doc = schedules.create_schedule(db, user, data)
    return {"success": True, "message": "Schedule created successfully", "data": serialize_doc(doc)}


@router.put("/{schedule_id}")
def update_schedule(schedule_id: str, payload: ScheduleUpdate, db: Database = Depends(get_db),
                    user=Depends(require_roles("teacher", "admin"))):
    changes = payload.model_dump()
    changes["date"] = as_local(changes["date"])
    doc = schedules.update_schedule(db, user, schedule_id, changes)
    return {"success": True, "message": "Schedule updated successfully", "data": serialize_doc(doc)}


@router.delete("/{schedule_id}")
def delete_schedule(schedule_id: str, db: Database = Depends(get_db),
                    user=Depends(require_roles("teacher", "admin"))):
    schedules.delete_schedule(db, user, schedule_id)
    return {"success": True, "message": "Schedule deleted successfully"}


@router.post("/{schedule_id}/attendance")
def mark_attendance(schedule_id: str, payload: AttendancePayload, db: Database = Depends(get_db),
                    now: datetime = Depends(get_now), user=Depends(require_roles("teacher"))):
    doc = schedules.mark_attendance(db, user, schedule_id, payload.studentId, payload.status, now)
    return {"success": True, "message": "Attendance marked successfully", "data": serialize_doc(doc)}


@router.post("/{schedule_id}/cancel")
def cancel_schedule(schedule_id: str, payload: CancelPayload, db: Database = Depends(get_db),
                    user=Depends(require_roles("teacher", "admin"))):
    doc = schedules.cancel(db, user, schedule_id, payload.reason)
    return {"success": True, "message": "Schedule cancelled successfully", "data": serialize_doc(doc)}
