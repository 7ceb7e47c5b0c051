from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_roles
from database import get_db, serialize_doc, serialize_list
from schemas import ExamStatus, ExamType
from services import exam_ledger
from services.school_calendar import as_local, get_now

router = APIRouter(prefix="/exams", tags=["Exams"])


class ExamCreate(BaseModel):
    title: str = Field(..., min_length=1)
    course: str
    level: str
    unit: Optional[dict] = None
    teacher: Optional[str] = None
    examType: ExamType
    term: Optional[str] = None
    totalMarks: float = Field(100, gt=0)
    passMark: float = 50
    date: datetime
    duration: int = 120
    venue: Optional[str] = None
    instructions: Optional[str] = None


class ExamUpdate(BaseModel):
    title: Optional[str] = None
    totalMarks: Optional[float] = Field(None, gt=0)
    passMark: Optional[float] = None
    date: Optional[datetime] = None
    duration: Optional[int] = None
    venue: Optional[str] = None
    instructions: Optional[str] = None
    status: Optional[ExamStatus] = None


class ResultEntry(BaseModel):
    studentId: str
    score: float = Field(..., ge=0)
    remarks: Optional[str] = None


class ResultsPayload(BaseModel):
    results: List[ResultEntry] = Field(..., min_length=1)


class MisprintPayload(BaseModel):
    issue: str


class ResolvePayload(BaseModel):
    resolution: str
    newScore: Optional[float] = Field(None, ge=0)


@router.get("")
def list_exams(course: Optional[str] = None, level: Optional[str] = None, teacher: Optional[str] = None,
               examType: Optional[ExamType] = None, term: Optional[str] = None, status: Optional[ExamStatus] = None,
               db: Database = Depends(get_db), user=Depends(require_roles())):
    docs = exam_ledger.list_exams(db, user, {
        "course": course, "level": level, "teacher": teacher,
        "examType": examType, "term": term, "status": status,
    })
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_exam(payload: ExamCreate, db: Database = Depends(get_db), now: datetime = Depends(get_now),
                user=Depends(require_roles("teacher", "admin"))):
    data = payload.model_dump()
    data["date"] = as_local(data["date"])
    exam = exam_ledger.create_exam(db, user, data, now)
    return {"success": True, "message": "Exam created successfully", "data": serialize_doc(exam)}


@router.get("/student/{student_id}")
def student_results(student_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    docs = exam_ledger.student_results(db, user, student_id)
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.get("/{exam_id}")
def get_exam(exam_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    exam = exam_ledger.get_exam(db, exam_id)
    exam["results"] = exam_ledger.visible_results(exam, user)
    return {"success": True, "data": serialize_doc(exam)}


@router.put("/{exam_id}")
def update_exam(exam_id: str, payload: ExamUpdate, db: Database = Depends(get_db),
                user=Depends(require_roles("teacher", "admin"))):
    changes = payload.model_dump()
    changes["date"] = as_local(changes["date"])
    exam = exam_ledger.update_exam(db, user, exam_id, changes)
    return {"success": True, "message": "Exam updated successfully", "data": serialize_doc(exam)}


@router.post("/{exam_id}/results")
def add_results(exam_id: str, payload: ResultsPayload, db: Database = Depends(get_db),
                now: datetime = Depends(get_now), user=Depends(require_roles("teacher", "admin"))):
    entries = [r.model_dump() for r in payload.results]
    exam = exam_ledger.upsert_results(db, user, exam_id, entries, now)
    return {"success": True, "message": "Results added successfully", "data": serialize_doc(exam)}


@router.post("/{exam_id}/publish")
def publish_results(exam_id: str, db: Database = Depends(get_db), now: datetime = Depends(get_now),
                    user=Depends(require_roles("teacher", "admin"))):
    exam = exam_ledger.publish(db, user, exam_id, now)
    return {"success": True, "message": "Results published successfully", "data": serialize_doc(exam)}


@router.post("/{exam_id}/report-misprint")
def report_misprint(exam_id: str, payload: MisprintPayload, db: Database = Depends(get_db),
                    now: datetime = Depends(get_now), user=Depends(require_roles("student"))):
    misprint = exam_ledger.report_misprint(db, user, exam_id, payload.issue, now)
    return {"success": True, "message": "Misprint reported successfully", "data": serialize_doc(misprint)}


@router.put("/{exam_id}/resolve-misprint/{misprint_id}")
def resolve_misprint(exam_id: str, misprint_id: str, payload: ResolvePayload, db: Database = Depends(get_db),
                     now: datetime = Depends(get_now), user=Depends(require_roles("teacher", "admin"))):
    result = exam_ledger.resolve_misprint(db, user, exam_id, misprint_id, payload.resolution, now, payload.newScore)
    return {"success": True, "message": "Misprint resolved successfully", "data": serialize_doc(result)}
