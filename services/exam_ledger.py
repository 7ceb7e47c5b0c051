"""
Exam result ledger: per-student scores, grades, publication and misprint
disputes. Ownership rules are checked through ``permissions.authorize``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import collection_name, create_document, to_object_id
from errors import AuthorizationFailure, NotFound, ValidationFailure
from permissions import authorize
from schemas import Exam, ExamResult, Misprint
from services.school_calendar import current_term

logger = logging.getLogger(__name__)

EXAMS = collection_name(Exam)

GRADE_BANDS = [(80, "A"), (70, "B"), (60, "C"), (50, "D"), (40, "E")]

TRANSITIONS = {
    "scheduled": {"ongoing", "cancelled"},
    "ongoing": {"completed", "cancelled"},
    "completed": {"marked", "cancelled"},
    "marked": {"published", "cancelled"},
    "published": {"cancelled"},
    "cancelled": set(),
}
# reached only through upsert_results and publish
RESULT_STATUSES = {"marked", "published"}


def calculate_grade(percentage: float) -> str:
    for floor, grade in GRADE_BANDS:
        if percentage >= floor:
            return grade
    return "F"


def score_fields(score: float, total_marks: float) -> Dict[str, Any]:
    percentage = score / total_marks * 100
    return {"score": score, "percentage": percentage, "grade": calculate_grade(percentage)}


def get_exam(db: Database, exam_id: str) -> Dict[str, Any]:
    exam = db[EXAMS].find_one({"_id": to_object_id(exam_id, "exam id")})
    if not exam:
        raise NotFound("Exam not found")
    return exam


def _save(db: Database, exam: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    changes["updated_at"] = datetime.utcnow()
    db[EXAMS].update_one({"_id": exam["_id"]}, {"$set": changes})
    return db[EXAMS].find_one({"_id": exam["_id"]})


def create_exam(db: Database, actor: Dict[str, Any], data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    data = dict(data)
    if actor.get("role") == "teacher":
        data["teacher"] = str(actor["_id"])
        if data.get("course") not in [str(c) for c in actor.get("assignedCourses", [])]:
            raise AuthorizationFailure("You are not assigned to this course")
    elif not data.get("teacher"):
        raise ValidationFailure("teacher is required")
    data["term"] = data.get("term") or f"{current_term(now)} {now.year}"
    data.setdefault("status", "scheduled")
    data["results"] = []

    exam_id = create_document(db, EXAMS, Exam(**data))
    logger.info("Exam %s (%s) created for course %s", exam_id, data["title"], data["course"])
    return get_exam(db, exam_id)


def update_exam(db: Database, actor: Dict[str, Any], exam_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    exam = get_exam(db, exam_id)
    authorize(actor, "mutate", "exam", exam, "Not authorized to update this exam")

    changes = {k: v for k, v in changes.items() if v is not None}
    new_status = changes.get("status")
    if new_status and new_status != exam["status"]:
        if new_status in RESULT_STATUSES:
            raise ValidationFailure(f"Exams become '{new_status}' through the results and publish actions")
        if new_status not in TRANSITIONS[exam["status"]]:
            raise ValidationFailure(f"Cannot move exam from '{exam['status']}' to '{new_status}'")
    if "totalMarks" in changes and exam.get("results"):
        raise ValidationFailure("totalMarks cannot change once results are recorded")
    return _save(db, exam, changes)


def upsert_results(db: Database, actor: Dict[str, Any], exam_id: str, entries: List[Dict[str, Any]],
                   now: datetime) -> Dict[str, Any]:
    exam = get_exam(db, exam_id)
    authorize(actor, "mutate", "result", exam, "Not authorized to add results for this exam")
    if exam["status"] == "cancelled":
        raise ValidationFailure("Cannot record results for a cancelled exam")
    if exam["status"] == "published":
        raise ValidationFailure("Results are published; corrections go through misprint resolution")

    results = list(exam.get("results") or [])
    index = {r["student"]: i for i, r in enumerate(results)}
    for entry in entries:
        student_id = str(entry["studentId"])
        fields = score_fields(float(entry["score"]), exam["totalMarks"])
        fields.update(remarks=entry.get("remarks"), markedBy=str(actor["_id"]), markedAt=now)
        if student_id in index:
            results[index[student_id]] = {**results[index[student_id]], **fields}
        else:
            results.append(ExamResult(student=student_id, **fields).model_dump())
            index[student_id] = len(results) - 1

    updated = _save(db, exam, {"results": results, "status": "marked"})
    logger.info("%d results recorded on exam %s", len(entries), exam_id)
    return updated


def publish(db: Database, actor: Dict[str, Any], exam_id: str, now: datetime) -> Dict[str, Any]:
    """Flip every result to published in a single write."""
    exam = get_exam(db, exam_id)
    authorize(actor, "mutate", "exam", exam, "Not authorized to publish results for this exam")
    if exam["status"] == "cancelled":
        raise ValidationFailure("Cannot publish a cancelled exam")

    results = [{**r, "published": True, "publishedAt": now} for r in exam.get("results") or []]
    updated = _save(db, exam, {"results": results, "status": "published"})
    logger.info("Exam %s published with %d results", exam_id, len(results))
    return updated


def report_misprint(db: Database, student: Dict[str, Any], exam_id: str, issue: str, now: datetime) -> Dict[str, Any]:
    if not issue or not issue.strip():
        raise ValidationFailure("Please describe the issue")
    exam = get_exam(db, exam_id)
    student_id = str(student["_id"])

    results = list(exam.get("results") or [])
    position = next((i for i, r in enumerate(results) if r["student"] == student_id and r.get("published")), None)
    if position is None:
        raise NotFound("No published result found for this student")
    authorize(student, "write", "misprint", results[position])

    misprint = Misprint(id=str(ObjectId()), reportedBy=student_id, issue=issue.strip(), reportedAt=now).model_dump()
    results[position] = {**results[position], "misprints": list(results[position].get("misprints") or []) + [misprint]}
    _save(db, exam, {"results": results})
    logger.info("Misprint %s reported on exam %s by %s", misprint["id"], exam_id, student_id)
    return misprint


def resolve_misprint(db: Database, actor: Dict[str, Any], exam_id: str, misprint_id: str, resolution: str,
                     now: datetime, new_score: Optional[float] = None) -> Dict[str, Any]:
    exam = get_exam(db, exam_id)
    authorize(actor, "mutate", "result", exam, "Not authorized to resolve misprints for this exam")

    results = list(exam.get("results") or [])
    for i, result in enumerate(results):
        misprints = list(result.get("misprints") or [])
        for j, misprint in enumerate(misprints):
            if misprint["id"] != misprint_id:
                continue
            misprints[j] = {**misprint, "resolved": True, "resolvedBy": str(actor["_id"]),
                            "resolvedAt": now, "resolution": resolution}
            result = {**result, "misprints": misprints}
            if new_score is not None:
                result.update(score_fields(float(new_score), exam["totalMarks"]))
            results[i] = result
            _save(db, exam, {"results": results})
            logger.info("Misprint %s on exam %s resolved", misprint_id, exam_id)
            return result
    raise NotFound("Misprint not found")


def list_exams(db: Database, actor: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    query = {k: v for k, v in filters.items() if v is not None}
    if actor.get("role") == "student":
        query.update(course=actor.get("course"), level=actor.get("level"), status="published")
    elif actor.get("role") == "teacher":
        query["teacher"] = str(actor["_id"])
    exams = list(db[EXAMS].find(query).sort("date", -1))
    if actor.get("role") == "student":
        for exam in exams:
            exam["results"] = visible_results(exam, actor)
    return exams


def visible_results(exam: Dict[str, Any], actor: Dict[str, Any]) -> List[Dict[str, Any]]:
    if actor.get("role") != "student":
        return exam.get("results") or []
    me = str(actor["_id"])
    return [r for r in exam.get("results") or [] if r["student"] == me and r.get("published")]


def student_results(db: Database, actor: Dict[str, Any], student_id: str) -> List[Dict[str, Any]]:
    authorize(actor, "read", "student", {"student": student_id}, "Not authorized to view these results")
    exams = db[EXAMS].find(
        {"results": {"$elemMatch": {"student": student_id, "published": True}}},
        {"title": 1, "examType": 1, "term": 1, "date": 1, "totalMarks": 1, "course": 1, "level": 1, "results": 1},
    ).sort("date", -1)
    out = []
    for exam in exams:
        mine = [r for r in exam["results"] if r["student"] == student_id and r.get("published")]
        if mine:
            out.append({**exam, "results": mine})
    return out
