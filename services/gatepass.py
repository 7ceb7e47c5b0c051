"""
Gate-pass verification.

A pass is issued at the gate (``verify``) or by the student
(``self_service_receipt``) and is valid for two hours. States:

    verified -> used      gate staff confirmed passage
    verified -> expired   detected lazily when the pass is read or used
    denied                recorded for audit, never changes

Operating-hours and unpaid-fee rejections are returned as ``Decision``
values, not raised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import full_name
from database import collection_name, create_document, serialize_doc, to_object_id
from errors import ConflictFailure, NotFound
from permissions import authorize
from schemas import DuplicateAttempt, FeeSnapshot, GatepassClaim, GatepassRecord, User
from services import fee_ledger
from services.id_generators import generate_receipt_number, generate_verification_code
from services.school_calendar import day_name, format_long_date, format_time, operating_status

logger = logging.getLogger(__name__)

PASSES = collection_name(GatepassRecord)
CLAIMS = collection_name(GatepassClaim)
USERS = collection_name(User)

PASS_VALIDITY = timedelta(hours=2)
DUPLICATE_MESSAGE = "A gatepass was already issued within the last 2 hours"
STATUSES = ("verified", "denied", "expired", "used")


@dataclass
class Decision:
    outcome: str  # closed | no_fee_record | verified | denied | existing
    message: str
    gatepass: Optional[Dict[str, Any]] = None
    student: Optional[Dict[str, Any]] = None

    @property
    def verified(self) -> bool:
        return self.outcome == "verified"


def _money(amount: float) -> str:
    amount = float(amount or 0)
    return f"{amount:.0f}" if amount.is_integer() else f"{amount:.2f}"


# overpaid students are cleared too, not only "paid"
def _cleared(fee: Dict[str, Any]) -> bool:
    return fee.get("paymentStatus") in ("paid", "overpaid")


def find_recent_verified(db: Database, student_id: str, now: datetime) -> Optional[Dict[str, Any]]:
    return db[PASSES].find_one({
        "student": student_id,
        "verificationTime": {"$gte": now - PASS_VALIDITY},
        "verificationStatus": "verified",
    })


def _log_duplicate_attempt(db: Database, gatepass: Dict[str, Any], denied_by: str, now: datetime) -> None:
    attempt = DuplicateAttempt(attemptTime=now, deniedBy=denied_by, reason=DUPLICATE_MESSAGE).model_dump()
    db[PASSES].update_one({"_id": gatepass["_id"]}, {"$push": {"duplicateAttempts": attempt}})
    logger.warning("Duplicate gatepass attempt for student %s (active code %s)",
                   gatepass["student"], gatepass["verificationCode"])


def _claim_slot(db: Database, student_id: str, code: str, now: datetime) -> None:
    """Atomically take the student's single active-pass slot."""
    try:
        db[CLAIMS].find_one_and_update(
            {"_id": student_id, "claimedAt": {"$lte": now - PASS_VALIDITY}},
            {"$set": {"verificationCode": code, "claimedAt": now}},
            upsert=True,
        )
    except DuplicateKeyError:
        raise ConflictFailure(DUPLICATE_MESSAGE)


def _release_slot(db: Database, gatepass: Dict[str, Any]) -> None:
    db[CLAIMS].delete_one({"_id": gatepass["student"], "verificationCode": gatepass["verificationCode"]})


def _issue(db: Database, student: Dict[str, Any], fee: Dict[str, Any], verified_by: str, status: str,
           message: str, now: datetime, allowed_until: Optional[datetime] = None) -> Dict[str, Any]:
    student_id = str(student["_id"])
    code = generate_verification_code()
    record = GatepassRecord(
        student=student_id,
        admissionNumber=student.get("admissionNumber") or "",
        verificationCode=code,
        receiptNumber=generate_receipt_number(now),
        verifiedBy=verified_by,
        verificationTime=now,
        verificationDay=day_name(now),
        verificationStatus=status,
        paymentStatus=fee["paymentStatus"],
        feeDetails=FeeSnapshot(
            totalAmount=fee["totalAmount"],
            paidAmount=fee["totalPaid"],
            balance=fee["balance"],
            allowedUntil=allowed_until,
        ),
        message=message,
        expiryTime=now + PASS_VALIDITY,
    )

    if status == "verified":
        _claim_slot(db, student_id, code, now)
    try:
        record_id = create_document(db, PASSES, record)
    except DuplicateKeyError:
        if status == "verified":
            _release_slot(db, {"student": student_id, "verificationCode": code})
        raise

    logger.info("Gatepass %s issued for %s: %s", code, record.admissionNumber, status)
    return db[PASSES].find_one({"_id": to_object_id(record_id)})


def verify(db: Database, admission_number: str, operator_id: str, now: datetime) -> Decision:
    hours = operating_status(now)
    if not hours.is_open:
        return Decision("closed", hours.message)

    student = db[USERS].find_one({"admissionNumber": admission_number.strip().upper(), "role": "student"})
    if not student:
        raise NotFound("Student not found with this admission number")
    student_id = str(student["_id"])

    recent = find_recent_verified(db, student_id, now)
    if recent:
        _log_duplicate_attempt(db, recent, operator_id, now)
        raise ConflictFailure(DUPLICATE_MESSAGE, details={"gatepass": serialize_doc(recent)})

    fee = fee_ledger.find_current_record(db, student_id, now)
    if not fee:
        return Decision("no_fee_record", "No fee record found for current term")

    name = full_name(student)
    allowed_until = None
    if _cleared(fee):
        status = "verified"
        message = f"{name} has been verified at {format_time(now)}"
    elif (fee.get("gatepassStatus") or {}).get("allowed"):
        status = "verified"
        allowed_until = fee["gatepassStatus"].get("allowedUntil")
        if allowed_until and allowed_until < now:
            status = "denied"
            message = "Gatepass permission has expired"
        else:
            until = format_long_date(allowed_until) if allowed_until else "end of term"
            message = f"{name} has been verified, allowed until {until}"
    else:
        status = "denied"
        message = f"{name} - Verification denied: Unpaid fees (Balance: KES {_money(fee['balance'])})"

    gatepass = _issue(db, student, fee, operator_id, status, message, now, allowed_until)
    student_info = {
        "id": student_id,
        "name": name,
        "admissionNumber": student.get("admissionNumber"),
        "course": student.get("course"),
        "level": student.get("level"),
    }
    return Decision(status, message, gatepass=gatepass, student=student_info)


def self_service_receipt(db: Database, student: Dict[str, Any], now: datetime) -> Decision:
    hours = operating_status(now)
    if not hours.is_open:
        return Decision("closed", hours.message)

    student_id = str(student["_id"])
    recent = find_recent_verified(db, student_id, now)
    if recent and now < recent["expiryTime"]:
        return Decision("existing", "You already have an active security receipt", gatepass=recent)

    fee = fee_ledger.find_current_record(db, student_id, now)
    if not fee:
        return Decision("no_fee_record", "No fee record found for current term")

    if fee["paymentStatus"] == "unpaid" and not fee_ledger.override_active(fee, now):
        logger.info("Self-service receipt refused for %s: unpaid fees", student.get("admissionNumber"))
        return Decision("denied", "You are not authorized to generate a security receipt due to unpaid fees")

    allowed_until = (fee.get("gatepassStatus") or {}).get("allowedUntil")
    gatepass = _issue(db, student, fee, student_id, "verified",
                      f"Security receipt generated for {full_name(student)}", now, allowed_until)
    return Decision("verified", "Security receipt generated successfully", gatepass=gatepass)


def _expire(db: Database, gatepass: Dict[str, Any]) -> None:
    db[PASSES].update_one(
        {"_id": gatepass["_id"], "verificationStatus": "verified"},
        {"$set": {"verificationStatus": "expired", "updated_at": datetime.utcnow()}},
    )
    _release_slot(db, gatepass)
    logger.info("Gatepass %s expired", gatepass["verificationCode"])


def mark_used(db: Database, code: str, now: datetime) -> Dict[str, Any]:
    gatepass = db[PASSES].find_one({"verificationCode": code.upper(), "verificationStatus": "verified"})
    if not gatepass:
        raise NotFound("Valid gatepass not found")

    if gatepass.get("usedAt"):
        raise ConflictFailure("This gatepass has already been used",
                              details={"usedAt": gatepass["usedAt"].isoformat()})

    if now > gatepass["expiryTime"]:
        _expire(db, gatepass)
        raise ConflictFailure("This gatepass has expired")

    result = db[PASSES].update_one(
        {"_id": gatepass["_id"], "verificationStatus": "verified", "usedAt": None},
        {"$set": {"usedAt": now, "verificationStatus": "used", "updated_at": datetime.utcnow()}},
    )
    if result.modified_count == 0:
        raise ConflictFailure("This gatepass has already been used")
    _release_slot(db, gatepass)
    logger.info("Gatepass %s used", gatepass["verificationCode"])
    return db[PASSES].find_one({"_id": gatepass["_id"]})


def get_receipt(db: Database, code: str, actor: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    gatepass = db[PASSES].find_one({"verificationCode": code.upper()})
    if not gatepass:
        raise NotFound("Receipt not found")
    authorize(actor, "read", "gatepass", gatepass, "Not authorized to view this receipt")

    if now > gatepass["expiryTime"]:
        if gatepass["verificationStatus"] == "verified":
            _expire(db, gatepass)
        raise ConflictFailure("This receipt has expired")
    return gatepass


def history(db: Database, actor: Dict[str, Any], student: Optional[str] = None,
            on_date: Optional[datetime] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if student:
        query["student"] = student
    if actor.get("role") == "student":
        query["student"] = str(actor["_id"])
    if status:
        query["verificationStatus"] = status
    if on_date:
        start = on_date.replace(hour=0, minute=0, second=0, microsecond=0)
        query["verificationTime"] = {"$gte": start, "$lt": start + timedelta(days=1)}
    return list(db[PASSES].find(query).sort("verificationTime", -1).limit(100))


def today(db: Database, now: datetime) -> Dict[str, Any]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    passes = list(db[PASSES].find(
        {"verificationTime": {"$gte": start, "$lt": start + timedelta(days=1)}}
    ).sort("verificationTime", -1))
    stats = {
        "total": len(passes),
        "verified": sum(1 for p in passes if p["verificationStatus"] == "verified"),
        "denied": sum(1 for p in passes if p["verificationStatus"] == "denied"),
        "used": sum(1 for p in passes if p.get("usedAt")),
        "pending": sum(1 for p in passes if p["verificationStatus"] == "verified" and not p.get("usedAt")),
    }
    return {"date": start.strftime("%a %b %d %Y"), "stats": stats, "passes": passes}


def stats(db: Database, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if start or end:
        rng: Dict[str, Any] = {}
        if start:
            rng["$gte"] = start
        if end:
            rng["$lte"] = end
        query["verificationTime"] = rng

    overall = {s: 0 for s in STATUSES}
    overall["total"] = 0
    daily: Dict[str, Dict[str, int]] = {}
    for p in db[PASSES].find(query, {"verificationStatus": 1, "verificationTime": 1}):
        status = p["verificationStatus"]
        overall[status] += 1
        overall["total"] += 1
        day = p["verificationTime"].strftime("%Y-%m-%d")
        entry = daily.setdefault(day, {**{s: 0 for s in STATUSES}, "total": 0})
        entry[status] += 1
        entry["total"] += 1

    return {"overall": overall, "daily": dict(sorted(daily.items(), reverse=True))}
