from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_roles
from database import get_db, serialize_doc, serialize_list
from schemas import Priority, TargetAudience
from services import announcements
from services.school_calendar import as_local, get_now

router = APIRouter(prefix="/announcements", tags=["Announcements"])


class AnnouncementCreate(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    priority: Priority = "medium"
    targetAudience: TargetAudience = Field(default_factory=TargetAudience)
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    status: Literal["draft", "published"] = "published"


class AnnouncementUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    priority: Optional[Priority] = None
    targetAudience: Optional[TargetAudience] = None
    validUntil: Optional[datetime] = None
    status: Optional[Literal["draft", "published", "archived"]] = None


@router.get("")
def list_announcements(priority: Optional[Priority] = None, db: Database = Depends(get_db),
                       now: datetime = Depends(get_now), user=Depends(require_roles())):
    docs = announcements.list_for_user(db, user, now, priority)
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.get("/unread/count")
def unread_count(db: Database = Depends(get_db), now: datetime = Depends(get_now), user=Depends(require_roles())):
    return {"success": True, "unreadCount": announcements.unread_count(db, user, now)}


@router.get("/{announcement_id}")
def get_announcement(announcement_id: str, db: Database = Depends(get_db), now: datetime = Depends(get_now),
                     user=Depends(require_roles())):
    doc = announcements.read(db, user, announcement_id, now)
    return {"success": True, "data": serialize_doc(doc)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_announcement(payload: AnnouncementCreate, db: Database = Depends(get_db),
                        now: datetime = Depends(get_now), user=Depends(require_roles("admin", "teacher"))):
    data = payload.model_dump()
    data["validFrom"] = as_local(data["validFrom"])
    data["validUntil"] = as_local(data["validUntil"])
    doc = announcements.create(db, user, data, now)
    return {"success": True, "message": "Announcement created successfully", "data": serialize_doc(doc)}


@router.put("/{announcement_id}")
def update_announcement(announcement_id: str, payload: AnnouncementUpdate, db: Database = Depends(get_db),
                        user=Depends(require_roles())):
    changes = payload.model_dump()
    changes["validUntil"] = as_local(changes["validUntil"])
    doc = announcements.update(db, user, announcement_id, changes)
    return {"success": True, "message": "Announcement updated successfully", "data": serialize_doc(doc)}


@router.put("/{announcement_id}/archive")
def archive_announcement(announcement_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    announcements.archive(db, user, announcement_id)
    return {"success": True, "message": "Announcement archived successfully"}


@router.delete("/{announcement_id}")
def delete_announcement(announcement_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    announcements.delete(db, user, announcement_id)
    return {"success": True, "message": "Announcement deleted successfully"}
