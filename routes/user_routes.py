from typing import Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from pymongo.database import Database

from auth import require_roles
from database import collection_name, get_db, get_documents, serialize_doc, serialize_list, to_object_id
from errors import NotFound
from routes.auth_routes import RegisterPayload, create_user
from schemas import User

router = APIRouter(prefix="/users", tags=["Users"])

USERS = collection_name(User)


class StatusPayload(BaseModel):
    status: Literal["active", "suspended", "graduated", "inactive"]


@router.post("", status_code=status.HTTP_201_CREATED)
def add_user(payload: RegisterPayload, db: Database = Depends(get_db), user=Depends(require_roles("admin"))):
    created = create_user(db, payload)
    return {"success": True, "data": serialize_doc(created)}


@router.get("")
def list_users(role: Optional[str] = None, course: Optional[str] = None, level: Optional[str] = None,
               db: Database = Depends(get_db), user=Depends(require_roles("admin"))):
    filt = {}
    if role: filt["role"] = role
    if course: filt["course"] = course
    if level: filt["level"] = level
    docs = get_documents(db, USERS, filt, sort=[("lastName", 1)])
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.get("/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db), user=Depends(require_roles("admin"))):
    doc = db[USERS].find_one({"_id": to_object_id(user_id, "user id")})
    if not doc:
        raise NotFound("User not found")
    return {"success": True, "data": serialize_doc(doc)}


@router.put("/{user_id}/status")
def set_status(user_id: str, payload: StatusPayload, db: Database = Depends(get_db),
               user=Depends(require_roles("admin"))):
    res = db[USERS].update_one({"_id": to_object_id(user_id, "user id")}, {"$set": {"status": payload.status}})
    if res.matched_count == 0:
        raise NotFound("User not found")
    return {"success": True, "message": f"User status set to {payload.status}"}
