import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import collection_name, create_document, to_object_id
from errors import AuthorizationFailure, NotFound
from permissions import authorize
from schemas import Announcement

logger = logging.getLogger(__name__)

ANNOUNCEMENTS = collection_name(Announcement)
FEED_LIMIT = 50


def audience_query(user: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Published, currently valid announcements addressed to this user."""
    user_id = str(user["_id"])
    targets: List[Dict[str, Any]] = [
        {"targetAudience.roles": "all"},
        {"targetAudience.roles": user.get("role")},
        {"targetAudience.specificUsers": user_id},
    ]
    if user.get("role") == "student":
        if user.get("course"):
            targets.append({"targetAudience.courses": user["course"]})
        if user.get("level"):
            targets.append({"targetAudience.levels": user["level"]})
    return {
        "status": "published",
        "validFrom": {"$lte": now},
        "$and": [
            {"$or": [{"validUntil": {"$gte": now}}, {"validUntil": None}]},
            {"$or": targets},
        ],
    }


def list_for_user(db: Database, user: Dict[str, Any], now: datetime, priority: str = None) -> List[Dict[str, Any]]:
    query = audience_query(user, now)
    if priority:
        query["priority"] = priority
    return list(db[ANNOUNCEMENTS].find(query).sort("created_at", -1).limit(FEED_LIMIT))


def unread_count(db: Database, user: Dict[str, Any], now: datetime) -> int:
    query = audience_query(user, now)
    query["readBy.user"] = {"$ne": str(user["_id"])}
    return db[ANNOUNCEMENTS].count_documents(query)


def get_announcement(db: Database, announcement_id: str) -> Dict[str, Any]:
    announcement = db[ANNOUNCEMENTS].find_one({"_id": to_object_id(announcement_id, "announcement id")})
    if not announcement:
        raise NotFound("Announcement not found")
    return announcement


def read(db: Database, user: Dict[str, Any], announcement_id: str, now: datetime) -> Dict[str, Any]:
    """Fetch an announcement and record the first read by this user."""
    announcement = get_announcement(db, announcement_id)
    user_id = str(user["_id"])
    db[ANNOUNCEMENTS].update_one(
        {"_id": announcement["_id"], "readBy.user": {"$ne": user_id}},
        {"$push": {"readBy": {"user": user_id, "readAt": now}}},
    )
    return get_announcement(db, announcement_id)


def check_audience(author: Dict[str, Any], target_audience: Optional[Dict[str, Any]]) -> None:
    roles = (target_audience or {}).get("roles")
    if author.get("role") == "teacher" and roles and "student" not in roles:
        raise AuthorizationFailure("Teachers can only send announcements to students")


def create(db: Database, author: Dict[str, Any], data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    check_audience(author, data.get("targetAudience"))

    data = {**data, "createdBy": str(author["_id"]), "readBy": []}
    data["validFrom"] = data.get("validFrom") or now
    announcement_id = create_document(db, ANNOUNCEMENTS, Announcement(**data))
    logger.info("Announcement %s created by %s", announcement_id, data["createdBy"])
    return get_announcement(db, announcement_id)


def update(db: Database, user: Dict[str, Any], announcement_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    announcement = get_announcement(db, announcement_id)
    authorize(user, "mutate", "announcement", announcement, "Not authorized to update this announcement")
    changes = {k: v for k, v in changes.items() if v is not None}
    if "targetAudience" in changes:
        check_audience(user, changes["targetAudience"])
    changes["updated_at"] = datetime.utcnow()
    db[ANNOUNCEMENTS].update_one({"_id": announcement["_id"]}, {"$set": changes})
    return get_announcement(db, announcement_id)


def archive(db: Database, user: Dict[str, Any], announcement_id: str) -> None:
    update(db, user, announcement_id, {"status": "archived"})
    logger.info("Announcement %s archived", announcement_id)


def delete(db: Database, user: Dict[str, Any], announcement_id: str) -> None:
    announcement = get_announcement(db, announcement_id)
    authorize(user, "mutate", "announcement", announcement, "Not authorized to delete this announcement")
    db[ANNOUNCEMENTS].delete_one({"_id": announcement["_id"]})
    logger.info("Announcement %s deleted", announcement_id)
