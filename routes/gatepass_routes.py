from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import require_roles
from database import get_db, serialize_doc, serialize_list
from errors import error_response
from schemas import VerificationStatus
from services import gatepass
from services.school_calendar import as_local, get_now

router = APIRouter(prefix="/gatepass", tags=["Gatepass"])

# decisions that are refused before any pass is written
REFUSAL_STATUS = {"closed": 400, "no_fee_record": 400}


class VerifyPayload(BaseModel):
    admissionNumber: str = Field(..., min_length=1)


def receipt_payload(record):
    return {
        "number": record["receiptNumber"],
        "code": record["verificationCode"],
        "validUntil": record["expiryTime"].isoformat(),
    }


@router.post("/verify")
def verify_student(payload: VerifyPayload, db: Database = Depends(get_db), now: datetime = Depends(get_now),
                   user=Depends(require_roles("gatepass", "admin"))):
    decision = gatepass.verify(db, payload.admissionNumber, str(user["_id"]), now)
    if decision.outcome in REFUSAL_STATUS:
        return error_response(REFUSAL_STATUS[decision.outcome], decision.message)
    return {
        "success": decision.verified,
        "message": decision.message,
        "data": {
            "gatepass": serialize_doc(decision.gatepass),
            "student": decision.student,
            "receipt": receipt_payload(decision.gatepass) if decision.verified else None,
        },
    }


@router.post("/student-receipt")
def student_receipt(db: Database = Depends(get_db), now: datetime = Depends(get_now),
                    user=Depends(require_roles("student"))):
    decision = gatepass.self_service_receipt(db, user, now)
    if decision.outcome in REFUSAL_STATUS:
        return error_response(REFUSAL_STATUS[decision.outcome], decision.message)
    if decision.outcome == "denied":
        return error_response(403, decision.message)

    record = decision.gatepass
    data = {
        "receiptNumber": record["receiptNumber"],
        "code": record["verificationCode"],
        "expiryTime": record["expiryTime"].isoformat(),
    }
    if decision.outcome == "existing":
        return {"success": True, "message": decision.message, "data": data}
    data["validFor"] = "2 hours"
    return JSONResponse(status_code=201, content={"success": True, "message": decision.message, "data": data})


@router.post("/use/{code}")
def use_gatepass(code: str, db: Database = Depends(get_db), now: datetime = Depends(get_now),
                 user=Depends(require_roles("gatepass", "admin"))):
    record = gatepass.mark_used(db, code, now)
    return {"success": True, "message": "Gatepass marked as used successfully", "data": serialize_doc(record)}


@router.get("/receipt/{code}")
def get_receipt(code: str, db: Database = Depends(get_db), now: datetime = Depends(get_now),
                user=Depends(require_roles())):
    record = gatepass.get_receipt(db, code, user, now)
    return {"success": True, "data": serialize_doc(record)}


@router.get("/history")
def gatepass_history(student: Optional[str] = None, date: Optional[datetime] = None,
                     status: Optional[VerificationStatus] = None, db: Database = Depends(get_db),
                     user=Depends(require_roles())):
    docs = gatepass.history(db, user, student, as_local(date), status)
    return {"success": True, "count": len(docs), "data": serialize_list(docs)}


@router.get("/today")
def todays_verifications(db: Database = Depends(get_db), now: datetime = Depends(get_now),
                         user=Depends(require_roles("gatepass", "admin"))):
    report = gatepass.today(db, now)
    return {"success": True, "date": report["date"], "stats": report["stats"],
            "data": serialize_list(report["passes"])}


@router.get("/stats")
def gatepass_stats(startDate: Optional[datetime] = None, endDate: Optional[datetime] = None,
                   db: Database = Depends(get_db), user=Depends(require_roles("gatepass", "admin", "finance"))):
    statistics = gatepass.stats(db, as_local(startDate), as_local(endDate))
    return {
        "success": True,
        "period": {
            "start": startDate.isoformat() if startDate else "All time",
            "end": endDate.isoformat() if endDate else "Current",
        },
        "data": statistics,
    }
