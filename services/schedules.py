"""
Class timetable: lectures, labs and other sessions per course and level,
with attendance taken by the owning teacher.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import collection_name, create_document, to_object_id
from errors import AuthorizationFailure, ConflictFailure, NotFound, ValidationFailure
from permissions import authorize
from schemas import Attendee, Schedule
from services.school_calendar import DAY_NAMES

logger = logging.getLogger(__name__)

SCHEDULES = collection_name(Schedule)
SCHOOL_DAYS = DAY_NAMES[:5]
CONFLICT_MESSAGE = "Schedule conflict detected. Teacher or venue is already booked at this time."


def _day_bounds(moment: datetime):
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def _scope(actor: Dict[str, Any]) -> Dict[str, Any]:
    if actor.get("role") == "teacher":
        return {"teacher": str(actor["_id"])}
    if actor.get("role") == "student":
        return {"course": actor.get("course"), "level": actor.get("level")}
    return {}


def list_schedules(db: Database, actor: Dict[str, Any], filters: Dict[str, Any],
                   on_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
    query = _scope(actor)
    query.update({k: v for k, v in filters.items() if v is not None})
    if on_date:
        start, end = _day_bounds(on_date)
        query["date"] = {"$gte": start, "$lt": end}
    return list(db[SCHEDULES].find(query).sort([("date", 1), ("startTime", 1)]))


def timetable(db: Database, actor: Dict[str, Any], week: Optional[datetime], now: datetime) -> Dict[str, Any]:
    """Monday to Friday of the week containing ``week`` (default: this week)."""
    day, _ = _day_bounds(week or now)
    monday = day - timedelta(days=day.weekday())
    query = _scope(actor)
    query["date"] = {"$gte": monday, "$lt": monday + timedelta(days=5)}

    days: Dict[str, List[Dict[str, Any]]] = {name: [] for name in SCHOOL_DAYS}
    for schedule in db[SCHEDULES].find(query).sort([("date", 1), ("startTime", 1)]):
        days[DAY_NAMES[schedule["date"].weekday()]].append(schedule)
    return {"week": monday.strftime("%Y-%m-%d"), "days": days}


def get_schedule(db: Database, schedule_id: str) -> Dict[str, Any]:
    schedule = db[SCHEDULES].find_one({"_id": to_object_id(schedule_id, "schedule id")})
    if not schedule:
        raise NotFound("Schedule not found")
    return schedule


def find_conflict(db: Database, data: Dict[str, Any], exclude_id=None) -> Optional[Dict[str, Any]]:
    """Another live session on the same day whose time overlaps, for the same teacher or venue."""
    start, end = _day_bounds(data["date"])
    query: Dict[str, Any] = {
        "date": {"$gte": start, "$lt": end},
        "status": {"$ne": "cancelled"},
        "startTime": {"$lt": data["endTime"]},
        "endTime": {"$gt": data["startTime"]},
        "$or": [{"teacher": data["teacher"]}, {"venue": data["venue"]}],
    }
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db[SCHEDULES].find_one(query)


def create_schedule(db: Database, actor: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    if actor.get("role") == "teacher":
        data["teacher"] = str(actor["_id"])
        if data.get("course") not in [str(c) for c in actor.get("assignedCourses", [])]:
            raise AuthorizationFailure("You are not assigned to this course")
    elif not data.get("teacher"):
        raise ValidationFailure("teacher is required")
    if data["startTime"] >= data["endTime"]:
        raise ValidationFailure("endTime must be after startTime")
    if find_conflict(db, data):
        raise ConflictFailure(CONFLICT_MESSAGE)

    schedule_id = create_document(db, SCHEDULES, Schedule(**data))
    logger.info("Schedule %s (%s) created for teacher %s on %s %s-%s", schedule_id, data["title"],
                data["teacher"], data["date"].date(), data["startTime"], data["endTime"])
    return get_schedule(db, schedule_id)


def update_schedule(db: Database, actor: Dict[str, Any], schedule_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    schedule = get_schedule(db, schedule_id)
    authorize(actor, "mutate", "schedule", schedule, "Not authorized to update this schedule")
    changes = {k: v for k, v in changes.items() if v is not None}

    merged = {**schedule, **changes}
    if merged["startTime"] >= merged["endTime"]:
        raise ValidationFailure("endTime must be after startTime")
    if {"date", "startTime", "endTime", "venue"} & changes.keys() and find_conflict(db, merged, schedule["_id"]):
        raise ConflictFailure(CONFLICT_MESSAGE)

    changes["updated_at"] = datetime.utcnow()
    db[SCHEDULES].update_one({"_id": schedule["_id"]}, {"$set": changes})
    return get_schedule(db, schedule_id)


def delete_schedule(db: Database, actor: Dict[str, Any], schedule_id: str) -> None:
    schedule = get_schedule(db, schedule_id)
    authorize(actor, "mutate", "schedule", schedule, "Not authorized to delete this schedule")
    db[SCHEDULES].delete_one({"_id": schedule["_id"]})
    logger.info("Schedule %s deleted", schedule_id)


def mark_attendance(db: Database, actor: Dict[str, Any], schedule_id: str, student_id: str, status: str,
                    now: datetime) -> Dict[str, Any]:
    schedule = get_schedule(db, schedule_id)
    authorize(actor, "mutate", "schedule", schedule, "Not authorized to mark attendance for this schedule")

    attendees = list(schedule.get("attendees") or [])
    entry = Attendee(student=student_id, status=status, markedAt=now).model_dump()
    position = next((i for i, a in enumerate(attendees) if a["student"] == student_id), None)
    if position is None:
        attendees.append(entry)
    else:
        attendees[position] = entry

    db[SCHEDULES].update_one(
        {"_id": schedule["_id"]},
        {"$set": {"attendees": attendees, "updated_at": datetime.utcnow()}},
    )
    return get_schedule(db, schedule_id)


def cancel(db: Database, actor: Dict[str, Any], schedule_id: str, reason: Optional[str]) -> Dict[str, Any]:
    schedule = get_schedule(db, schedule_id)
    authorize(actor, "mutate", "schedule", schedule, "Not authorized to cancel this schedule")
    db[SCHEDULES].update_one(
        {"_id": schedule["_id"]},
        {"$set": {"status": "cancelled", "cancelReason": reason, "updated_at": datetime.utcnow()}},
    )
    logger.info("Schedule %s cancelled: %s", schedule_id, reason)
    return get_schedule(db, schedule_id)
