"""
Fee ledger: one record per (student, academic year, term).

Derived fields (totalAmount, totalPaid, balance, paymentStatus) are always
produced by ``recompute_totals`` before a record is written. Writes that
depend on the stored lists go through ``_save_with_revision`` so a
concurrent writer cannot silently overwrite them.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import collection_name, create_document, to_object_id
from errors import ConflictFailure, NotFound, ValidationFailure
from schemas import Course, FeeRecord, FeeStructure, GatepassStatus, Payment, User, Waiver
from services.id_generators import generate_receipt_number
from services.school_calendar import current_academic_year, current_term

logger = logging.getLogger(__name__)

FEES = collection_name(FeeRecord)

ANCILLARY_CHARGES = {
    "registration": 2000,
    "library": 1500,
    "laboratory": 3000,
    "examination": 2500,
    "medical": 1000,
    "activity": 500,
    "other": 0,
}
DUE_AFTER = timedelta(days=30)
DEFAULT_DEFAULTER_THRESHOLD = 1000


def payment_status_for(balance: float, total_paid: float) -> str:
    if balance <= 0:
        return "overpaid" if balance < 0 else "paid"
    if total_paid > 0:
        return "partial"
    return "unpaid"


def recompute_totals(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return the derived fee fields for a record's structure, waivers and payments."""
    structure = record.get("feeStructure") or {}
    total_amount = sum(float(v or 0) for v in structure.values())
    total_amount -= sum(float(w.get("amount", 0)) for w in record.get("waivers") or [])
    total_paid = sum(float(p.get("amount", 0)) for p in record.get("payments") or [])
    balance = total_amount - total_paid
    return {
        "totalAmount": total_amount,
        "totalPaid": total_paid,
        "balance": balance,
        "paymentStatus": payment_status_for(balance, total_paid),
    }


def default_fee_structure(course: Optional[Dict[str, Any]]) -> Dict[str, float]:
    per_term = 0
    if course:
        per_term = (course.get("fees") or {}).get("perTerm", 0) or 0
    return {"tuition": per_term, **ANCILLARY_CHARGES}


def get_record(db: Database, record_id: str) -> Dict[str, Any]:
    record = db[FEES].find_one({"_id": to_object_id(record_id, "fee record id")})
    if not record:
        raise NotFound("Fee record not found")
    return record


def find_current_record(db: Database, student_id: str, now: datetime) -> Optional[Dict[str, Any]]:
    return db[FEES].find_one({
        "student": student_id,
        "academicYear": current_academic_year(now),
        "term": current_term(now),
    })


def create_record(db: Database, student: str, course: str, level: str, now: datetime,
                  academic_year: Optional[str] = None, term: Optional[str] = None,
                  fee_structure: Optional[Dict[str, float]] = None, notes: Optional[str] = None) -> Dict[str, Any]:
    academic_year = academic_year or current_academic_year(now)
    term = term or current_term(now)

    if db[FEES].find_one({"student": student, "academicYear": academic_year, "term": term}):
        raise ConflictFailure("Fee record already exists for this student and term")

    if not db[collection_name(User)].find_one({"_id": to_object_id(student, "student id"), "role": "student"}):
        raise NotFound("Student not found")

    if fee_structure is None:
        course_doc = db[collection_name(Course)].find_one({"_id": to_object_id(course, "course id")})
        fee_structure = default_fee_structure(course_doc)

    record = FeeRecord(
        student=student,
        academicYear=academic_year,
        term=term,
        course=course,
        level=level,
        feeStructure=FeeStructure(**fee_structure),
        dueDate=now + DUE_AFTER,
        notes=notes,
    ).model_dump()
    record.update(recompute_totals(record))

    record_id = create_document(db, FEES, record)
    logger.info("Fee record %s created for student %s (%s %s), total %.2f",
                record_id, student, academic_year, term, record["totalAmount"])
    return get_record(db, record_id)


def _save_with_revision(db: Database, record: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Compare-and-swap on ``revision``; a lost race is reported, never retried."""
    changes["updated_at"] = datetime.utcnow()
    result = db[FEES].update_one(
        {"_id": record["_id"], "revision": record.get("revision", 0)},
        {"$set": changes, "$inc": {"revision": 1}},
    )
    if result.matched_count == 0:
        logger.warning("Concurrent modification of fee record %s", record["_id"])
        raise ConflictFailure("Fee record was modified by another request, please retry")
    return db[FEES].find_one({"_id": record["_id"]})


def record_payment(db: Database, record_id: str, amount: float, method: str, reference_number: str,
                   received_by: str, now: datetime, notes: Optional[str] = None):
    """Append a payment and return (receipt_number, updated record)."""
    record = get_record(db, record_id)
    receipt_number = generate_receipt_number(now)

    payment = Payment(
        amount=amount,
        paymentMethod=method,
        referenceNumber=reference_number,
        receiptNumber=receipt_number,
        receivedBy=received_by,
        paymentDate=now,
        notes=notes,
    ).model_dump()
    payments = list(record.get("payments") or []) + [payment]

    changes = {"payments": payments}
    changes.update(recompute_totals({**record, "payments": payments}))
    updated = _save_with_revision(db, record, changes)

    logger.info("Payment %s of %.2f recorded on fee record %s, balance %.2f (%s)",
                receipt_number, amount, record_id, updated["balance"], updated["paymentStatus"])
    return receipt_number, updated


def apply_waiver(db: Database, record_id: str, amount: float, reason: str,
                 approved_by: str, now: datetime) -> Dict[str, Any]:
    if not reason:
        raise ValidationFailure("A waiver reason is required")
    record = get_record(db, record_id)

    waiver = Waiver(amount=amount, reason=reason, approvedBy=approved_by, approvedDate=now).model_dump()
    waivers = list(record.get("waivers") or []) + [waiver]

    changes = {"waivers": waivers}
    changes.update(recompute_totals({**record, "waivers": waivers}))
    updated = _save_with_revision(db, record, changes)

    logger.info("Waiver of %.2f applied to fee record %s by %s", amount, record_id, approved_by)
    return updated


def set_gatepass_override(db: Database, record_id: str, allowed: bool, reason: str, updated_by: str,
                          now: datetime, allowed_until: Optional[datetime] = None) -> Dict[str, Any]:
    record = get_record(db, record_id)
    status = GatepassStatus(
        allowed=allowed,
        allowedUntil=allowed_until if allowed else None,
        reason=reason,
        updatedBy=updated_by,
        lastUpdated=now,
    ).model_dump()
    db[FEES].update_one(
        {"_id": record["_id"]},
        {"$set": {"gatepassStatus": status, "updated_at": datetime.utcnow()}},
    )
    logger.info("Gatepass override on fee record %s set to %s by %s", record_id,
                "allowed" if allowed else "denied", updated_by)
    return get_record(db, record_id)


def override_active(record: Dict[str, Any], now: datetime) -> bool:
    status = record.get("gatepassStatus") or {}
    if not status.get("allowed"):
        return False
    until = status.get("allowedUntil")
    return until is None or until >= now


# Read-only queries, recomputed per request

def list_records(db: Database, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    query = {k: v for k, v in filters.items() if v is not None}
    return list(db[FEES].find(query).sort("created_at", -1))


def student_summary(db: Database, student_id: str) -> Dict[str, Any]:
    records = list(db[FEES].find({"student": student_id}).sort([("academicYear", -1), ("term", -1)]))
    return {
        "totalFees": sum(r.get("totalAmount", 0) for r in records),
        "totalPaid": sum(r.get("totalPaid", 0) for r in records),
        "totalBalance": sum(r.get("balance", 0) for r in records),
        "records": records,
    }


def defaulters_report(db: Database, now: datetime, minimum_balance: float = DEFAULT_DEFAULTER_THRESHOLD,
                      course: Optional[str] = None, level: Optional[str] = None) -> Dict[str, Any]:
    query: Dict[str, Any] = {
        "balance": {"$gte": minimum_balance},
        "academicYear": current_academic_year(now),
        "term": current_term(now),
    }
    if course:
        query["course"] = course
    if level:
        query["level"] = level

    defaulters = list(db[FEES].find(query).sort("balance", -1))
    _attach_students(db, defaulters)
    return {
        "totalDefaulters": len(defaulters),
        "totalOutstanding": sum(d.get("balance", 0) for d in defaulters),
        "defaulters": defaulters,
    }


def collection_report(db: Database, start: Optional[datetime] = None, end: Optional[datetime] = None,
                      method: Optional[str] = None) -> Dict[str, Any]:
    total = 0.0
    by_method: Dict[str, float] = {}
    daily: Dict[str, float] = {}

    for record in db[FEES].find({}, {"payments": 1}):
        for payment in record.get("payments", []):
            paid_at = payment.get("paymentDate")
            if start and paid_at < start:
                continue
            if end and paid_at > end:
                continue
            if method and payment.get("paymentMethod") != method:
                continue
            amount = float(payment.get("amount", 0))
            total += amount
            by_method[payment["paymentMethod"]] = by_method.get(payment["paymentMethod"], 0) + amount
            day = paid_at.strftime("%Y-%m-%d")
            daily[day] = daily.get(day, 0) + amount

    return {
        "totalCollection": total,
        "collectionByMethod": by_method,
        "dailyCollection": daily,
        "period": {
            "start": start.isoformat() if start else "All time",
            "end": end.isoformat() if end else "Current",
        },
    }


def _attach_students(db: Database, records: List[Dict[str, Any]]) -> None:
    ids = {r["student"] for r in records}
    if not ids:
        return
    users = db[collection_name(User)].find(
        {"_id": {"$in": [to_object_id(i) for i in ids]}},
        {"firstName": 1, "lastName": 1, "admissionNumber": 1, "email": 1, "phoneNumber": 1},
    )
    by_id = {str(u["_id"]): u for u in users}
    for r in records:
        r["studentInfo"] = by_id.get(r["student"])
