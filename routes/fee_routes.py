from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_roles
from database import get_db, serialize_doc, serialize_list
from permissions import authorize
from schemas import FeeStructure, PaymentMethod, PaymentStatus
from services import fee_ledger
from services.school_calendar import as_local, get_now

router = APIRouter(prefix="/fees", tags=["Fees"])


class FeeCreate(BaseModel):
    student: str
    academicYear: Optional[str] = None
    term: Optional[str] = None
    course: str
    level: str
    feeStructure: Optional[FeeStructure] = None
    notes: Optional[str] = None


class PaymentPayload(BaseModel):
    amount: float
    paymentMethod: PaymentMethod
    referenceNumber: str
    notes: Optional[str] = None


class WaiverPayload(BaseModel):
    amount: float
    reason: str = Field(..., min_length=1)


class GatepassPayload(BaseModel):
    allowed: bool
    allowedUntil: Optional[datetime] = None
    reason: str


@router.get("")
def list_fees(student: Optional[str] = None, academicYear: Optional[str] = None, term: Optional[str] = None,
              paymentStatus: Optional[PaymentStatus] = None, course: Optional[str] = None,
              db: Database = Depends(get_db), user=Depends(require_roles())):
    if user["role"] == "student":
        student = str(user["_id"])
    docs = fee_ledger.list_records(db, {
        "student": student, "academicYear": academicYear, "term": term,
        "paymentStatus": paymentStatus, "course": course,
    })
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_fee(payload: FeeCreate, db: Database = Depends(get_db), now: datetime = Depends(get_now),
               user=Depends(require_roles("finance", "admin"))):
    record = fee_ledger.create_record(
        db,
        student=payload.student,
        course=payload.course,
        level=payload.level,
        now=now,
        academic_year=payload.academicYear,
        term=payload.term,
        fee_structure=payload.feeStructure.model_dump() if payload.feeStructure else None,
        notes=payload.notes,
    )
    return {"success": True, "message": "Fee record created successfully", "data": serialize_doc(record)}


@router.get("/reports/defaulters")
def defaulters(minimumBalance: float = fee_ledger.DEFAULT_DEFAULTER_THRESHOLD, course: Optional[str] = None,
               level: Optional[str] = None, db: Database = Depends(get_db), now: datetime = Depends(get_now),
               user=Depends(require_roles("finance", "admin"))):
    report = fee_ledger.defaulters_report(db, now, minimumBalance, course, level)
    report["defaulters"] = serialize_list(report["defaulters"])
    return {"success": True, "data": report}


@router.get("/reports/collection")
def collection(startDate: Optional[datetime] = None, endDate: Optional[datetime] = None,
               paymentMethod: Optional[PaymentMethod] = None, db: Database = Depends(get_db),
               user=Depends(require_roles("finance", "admin"))):
    report = fee_ledger.collection_report(db, as_local(startDate), as_local(endDate), paymentMethod)
    return {"success": True, "data": report}


@router.get("/student/{student_id}")
def student_fees(student_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    authorize(user, "read", "fee", {"student": student_id}, "Not authorized to view these fee records")
    summary = fee_ledger.student_summary(db, student_id)
    summary["records"] = serialize_list(summary["records"])
    return {"success": True, "count": len(summary["records"]), "data": summary}


@router.get("/{fee_id}")
def get_fee(fee_id: str, db: Database = Depends(get_db), user=Depends(require_roles())):
    record = fee_ledger.get_record(db, fee_id)
    authorize(user, "read", "fee", record, "Not authorized to view this fee record")
    return {"success": True, "data": serialize_doc(record)}


@router.post("/{fee_id}/payment")
def record_payment(fee_id: str, payload: PaymentPayload, db: Database = Depends(get_db),
                   now: datetime = Depends(get_now), user=Depends(require_roles("finance", "admin"))):
    receipt_number, record = fee_ledger.record_payment(
        db, fee_id, payload.amount, payload.paymentMethod, payload.referenceNumber,
        received_by=str(user["_id"]), now=now, notes=payload.notes,
    )
    return {
        "success": True,
        "message": "Payment recorded successfully",
        "receiptNumber": receipt_number,
        "data": serialize_doc(record),
    }


@router.post("/{fee_id}/waiver")
def apply_waiver(fee_id: str, payload: WaiverPayload, db: Database = Depends(get_db),
                 now: datetime = Depends(get_now), user=Depends(require_roles("admin"))):
    record = fee_ledger.apply_waiver(db, fee_id, payload.amount, payload.reason, str(user["_id"]), now)
    return {"success": True, "message": "Fee waiver applied successfully", "data": serialize_doc(record)}


@router.put("/{fee_id}/gatepass")
def set_gatepass(fee_id: str, payload: GatepassPayload, db: Database = Depends(get_db),
                 now: datetime = Depends(get_now), user=Depends(require_roles("finance", "admin"))):
    record = fee_ledger.set_gatepass_override(
        db, fee_id, payload.allowed, payload.reason, str(user["_id"]), now, as_local(payload.allowedUntil)
    )
    return {
        "success": True,
        "message": f"Gatepass {'allowed' if payload.allowed else 'denied'} successfully",
        "data": serialize_doc(record),
    }
