from fastapi import APIRouter, Depends, status
from pymongo.database import Database

from auth import require_roles
from database import collection_name, create_document, get_db, serialize_doc, serialize_list, to_object_id
from errors import ConflictFailure, NotFound
from schemas import Course

router = APIRouter(prefix="/courses", tags=["Courses"])

COURSES = collection_name(Course)


@router.post("", status_code=status.HTTP_201_CREATED)
def add_course(payload: Course, db: Database = Depends(get_db), user=Depends(require_roles("admin"))):
    if db[COURSES].find_one({"code": payload.code}):
        raise ConflictFailure("Course code already exists")
    cid = create_document(db, COURSES, payload)
    return {"success": True, "data": serialize_doc(db[COURSES].find_one({"_id": to_object_id(cid)}))}


@router.get("")
def list_courses(db: Database = Depends(get_db), user=Depends(require_roles())):
    docs = list(db[COURSES].find().sort("name", 1))
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.get("/{course_id}")
def get_course(course_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    doc = db[COURSES].find_one({"_id": to_object_id(course_id, "course id")})
    if not doc:
        raise NotFound("Course not found")
    return {"success": True, "data": serialize_doc(doc)}
