from datetime import datetime, timedelta

import pytest

from errors import ConflictFailure
from services import fee_ledger, gatepass
from tests.conftest import TUESDAY_10AM


def verify(client, guard, admission="ADM001"):
    return client.post("/gatepass/verify", json={"admissionNumber": admission}, headers=guard[1])


def pay(client, finance, fee_record, amount):
    resp = client.post(f"/fees/{fee_record['id']}/payment", json={
        "amount": amount, "paymentMethod": "cash", "referenceNumber": "REF",
    }, headers=finance[1])
    assert resp.status_code == 200


def test_unpaid_student_denied(client, db, guard, fee_record):
    resp = verify(client, guard)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert "Unpaid fees" in body["message"]
    assert "60500" in body["message"]
    assert body["data"]["receipt"] is None
    assert body["data"]["gatepass"]["verificationStatus"] == "denied"
    # denied passes are kept for audit
    assert db["gatepassrecord"].count_documents({"verificationStatus": "denied"}) == 1


def test_paid_student_verified(client, guard, finance, fee_record):
    pay(client, finance, fee_record, 60500)

    body = verify(client, guard, "adm001").json()
    assert body["success"] is True
    assert body["message"] == "Jane Wanjiru has been verified at 10:00 AM"

    record = body["data"]["gatepass"]
    verified_at = datetime.fromisoformat(record["verificationTime"])
    expires_at = datetime.fromisoformat(record["expiryTime"])
    assert expires_at - verified_at == timedelta(hours=2)
    assert record["verificationDay"] == "Tuesday"
    assert len(record["verificationCode"]) == 8
    assert record["verificationCode"].isalnum() and record["verificationCode"].isupper()
    assert record["feeDetails"]["balance"] == 0

    receipt = body["data"]["receipt"]
    assert receipt["code"] == record["verificationCode"]
    assert receipt["validUntil"] == record["expiryTime"]


@pytest.mark.parametrize("moment,message", [
    (datetime(2025, 3, 8, 10, 0), "Closed on weekends"),
    (datetime(2025, 3, 9, 12, 0), "Closed on weekends"),
    (datetime(2025, 3, 4, 5, 59), "Closed - Operating hours: 6:00 AM - 5:00 PM"),
    (datetime(2025, 3, 4, 17, 0), "Closed - Operating hours: 6:00 AM - 5:00 PM"),
])
def test_outside_operating_hours(client, db, clock, guard, fee_record, moment, message):
    clock.now = moment
    resp = verify(client, guard)
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": message}
    assert db["gatepassrecord"].count_documents({}) == 0


def test_unknown_admission_number(client, guard):
    resp = verify(client, guard, "NOPE")
    assert resp.status_code == 404
    assert resp.json()["success"] is False


def test_no_fee_record_for_term(client, guard, student):
    resp = verify(client, guard)
    assert resp.status_code == 400
    assert resp.json()["message"] == "No fee record found for current term"


def test_duplicate_within_two_hours(client, db, clock, guard, finance, fee_record):
    pay(client, finance, fee_record, 60500)
    first = verify(client, guard).json()["data"]["gatepass"]

    clock.now = TUESDAY_10AM + timedelta(minutes=90)
    resp = verify(client, guard)
    assert resp.status_code == 400
    assert resp.json()["message"] == "A gatepass was already issued within the last 2 hours"
    assert resp.json()["gatepass"]["verificationCode"] == first["verificationCode"]
    stored = db["gatepassrecord"].find_one({"verificationCode": first["verificationCode"]})
    assert len(stored["duplicateAttempts"]) == 1

    clock.now = TUESDAY_10AM + timedelta(hours=2, minutes=1)
    assert verify(client, guard).json()["success"] is True


def test_used_pass_does_not_block_new_one(client, clock, guard, finance, fee_record):
    pay(client, finance, fee_record, 60500)
    code = verify(client, guard).json()["data"]["receipt"]["code"]
    assert client.post(f"/gatepass/use/{code}", headers=guard[1]).status_code == 200

    clock.now = TUESDAY_10AM + timedelta(minutes=30)
    assert verify(client, guard).json()["success"] is True


def test_mark_used(client, db, clock, guard, finance, fee_record):
    pay(client, finance, fee_record, 60500)
    code = verify(client, guard).json()["data"]["receipt"]["code"]

    clock.now = TUESDAY_10AM + timedelta(minutes=15)
    resp = client.post(f"/gatepass/use/{code.lower()}", headers=guard[1])
    assert resp.status_code == 200
    stored = db["gatepassrecord"].find_one({"verificationCode": code})
    assert stored["verificationStatus"] == "used"
    assert stored["usedAt"] == clock.now

    # used passes are no longer in the verified state
    resp = client.post(f"/gatepass/use/{code}", headers=guard[1])
    assert resp.status_code == 404


def test_mark_used_after_expiry(client, db, clock, guard, finance, fee_record):
    pay(client, finance, fee_record, 60500)
    code = verify(client, guard).json()["data"]["receipt"]["code"]

    clock.now = TUESDAY_10AM + timedelta(hours=2, seconds=1)
    resp = client.post(f"/gatepass/use/{code}", headers=guard[1])
    assert resp.status_code == 400
    assert "expired" in resp.json()["message"]

    stored = db["gatepassrecord"].find_one({"verificationCode": code})
    assert stored["verificationStatus"] == "expired"
    assert stored["usedAt"] is None


def test_already_used_is_reported(db, client, guard, finance, fee_record):
    pay(client, finance, fee_record, 60500)
    code = verify(client, guard).json()["data"]["receipt"]["code"]
    db["gatepassrecord"].update_one({"verificationCode": code}, {"$set": {"usedAt": TUESDAY_10AM}})

    resp = client.post(f"/gatepass/use/{code}", headers=guard[1])
    assert resp.status_code == 400
    assert resp.json()["message"] == "This gatepass has already been used"


def test_override_allows_partial_payer(client, guard, finance, fee_record):
    pay(client, finance, fee_record, 30000)
    client.put(f"/fees/{fee_record['id']}/gatepass", json={
        "allowed": True, "allowedUntil": "2025-03-31T00:00:00", "reason": "Installments",
    }, headers=finance[1])

    body = verify(client, guard).json()
    assert body["success"] is True
    assert body["message"] == "Jane Wanjiru has been verified, allowed until March 31, 2025"
    assert body["data"]["gatepass"]["feeDetails"]["allowedUntil"] == "2025-03-31T00:00:00"


def test_override_without_date_runs_to_end_of_term(client, guard, finance, fee_record):
    client.put(f"/fees/{fee_record['id']}/gatepass", json={"allowed": True, "reason": "Sponsor"},
               headers=finance[1])
    body = verify(client, guard).json()
    assert body["success"] is True
    assert body["message"].endswith("allowed until end of term")


def test_lapsed_override_is_denied(client, guard, finance, fee_record):
    client.put(f"/fees/{fee_record['id']}/gatepass", json={
        "allowed": True, "allowedUntil": "2025-03-01T00:00:00", "reason": "Installments",
    }, headers=finance[1])
    body = verify(client, guard).json()
    assert body["success"] is False
    assert body["message"] == "Gatepass permission has expired"
    assert body["data"]["gatepass"]["verificationStatus"] == "denied"


def test_receipt_lookup_and_lazy_expiry(client, db, clock, guard, finance, student, fee_record):
    pay(client, finance, fee_record, 60500)
    code = verify(client, guard).json()["data"]["receipt"]["code"]

    resp = client.get(f"/gatepass/receipt/{code}", headers=student[1])
    assert resp.status_code == 200
    assert resp.json()["data"]["verificationCode"] == code

    clock.now = TUESDAY_10AM + timedelta(hours=3)
    resp = client.get(f"/gatepass/receipt/{code}", headers=student[1])
    assert resp.status_code == 400
    assert resp.json()["message"] == "This receipt has expired"
    assert db["gatepassrecord"].find_one({"verificationCode": code})["verificationStatus"] == "expired"


def test_receipt_hidden_from_other_students(client, make_user, guard, finance, fee_record):
    pay(client, finance, fee_record, 60500)
    code = verify(client, guard).json()["data"]["receipt"]["code"]
    _, other_headers = make_user("student", admissionNumber="ADM009")
    assert client.get(f"/gatepass/receipt/{code}", headers=other_headers).status_code == 403
    assert client.get("/gatepass/receipt/ZZZZZZZZ", headers=other_headers).status_code == 404


def test_students_cannot_verify(client, student, fee_record):
    resp = client.post("/gatepass/verify", json={"admissionNumber": "ADM001"}, headers=student[1])
    assert resp.status_code == 403


class TestSelfServiceReceipt:
    def test_unpaid_without_override_is_denied(self, client, db, student, fee_record):
        resp = client.post("/gatepass/student-receipt", headers=student[1])
        assert resp.status_code == 403
        assert "unpaid fees" in resp.json()["message"]
        assert db["gatepassrecord"].count_documents({}) == 0

    def test_partial_payer_gets_receipt(self, client, db, student, finance, fee_record):
        pay(client, finance, fee_record, 1000)
        resp = client.post("/gatepass/student-receipt", headers=student[1])
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["validFor"] == "2 hours"
        stored = db["gatepassrecord"].find_one({"verificationCode": data["code"]})
        assert stored["verifiedBy"] == str(student[0]["_id"])
        assert stored["verificationStatus"] == "verified"

    def test_active_receipt_is_returned_again(self, client, clock, student, finance, fee_record):
        pay(client, finance, fee_record, 60500)
        first = client.post("/gatepass/student-receipt", headers=student[1]).json()["data"]

        clock.now = TUESDAY_10AM + timedelta(minutes=20)
        resp = client.post("/gatepass/student-receipt", headers=student[1])
        assert resp.status_code == 200
        assert resp.json()["message"] == "You already have an active security receipt"
        assert resp.json()["data"]["code"] == first["code"]

    def test_closed_at_night(self, client, clock, student, fee_record):
        clock.now = datetime(2025, 3, 4, 20, 0)
        resp = client.post("/gatepass/student-receipt", headers=student[1])
        assert resp.status_code == 400

    def test_unpaid_with_active_override_gets_receipt(self, client, db, student, finance, fee_record):
        client.put(f"/fees/{fee_record['id']}/gatepass", json={
            "allowed": True, "allowedUntil": "2025-03-31T00:00:00", "reason": "Sponsor letter",
        }, headers=finance[1])
        resp = client.post("/gatepass/student-receipt", headers=student[1])
        assert resp.status_code == 201
        stored = db["gatepassrecord"].find_one({"verificationCode": resp.json()["data"]["code"]})
        assert stored["paymentStatus"] == "unpaid"
        assert stored["feeDetails"]["allowedUntil"] == datetime(2025, 3, 31)

    def test_unpaid_with_lapsed_override_is_refused(self, client, db, student, finance, fee_record):
        client.put(f"/fees/{fee_record['id']}/gatepass", json={
            "allowed": True, "allowedUntil": "2025-03-03T00:00:00", "reason": "Sponsor letter",
        }, headers=finance[1])
        resp = client.post("/gatepass/student-receipt", headers=student[1])
        assert resp.status_code == 403
        assert db["gatepassrecord"].count_documents({}) == 0

    def test_no_fee_record_for_term(self, client, db, student):
        resp = client.post("/gatepass/student-receipt", headers=student[1])
        assert resp.status_code == 400
        assert resp.json()["message"] == "No fee record found for current term"
        assert db["gatepassrecord"].count_documents({}) == 0


def test_history_today_and_stats(client, clock, make_user, guard, finance, student, fee_record):
    verify(client, guard)  # denied
    pay(client, finance, fee_record, 60500)
    code = verify(client, guard).json()["data"]["receipt"]["code"]
    client.post(f"/gatepass/use/{code}", headers=guard[1])

    today = client.get("/gatepass/today", headers=guard[1]).json()
    assert today["stats"] == {"total": 2, "verified": 0, "denied": 1, "used": 1, "pending": 0}

    stats = client.get("/gatepass/stats", headers=finance[1]).json()["data"]
    assert stats["overall"]["denied"] == 1
    assert stats["overall"]["used"] == 1
    assert stats["overall"]["total"] == 2
    assert stats["daily"]["2025-03-04"]["total"] == 2

    mine = client.get("/gatepass/history", headers=student[1]).json()
    assert mine["count"] == 2
    _, other_headers = make_user("student", admissionNumber="ADM010")
    assert client.get("/gatepass/history", headers=other_headers).json()["count"] == 0


def test_claim_slot_blocks_concurrent_issue(db, student, fee_record):
    """Two verified passes for one student cannot both hold the active slot."""
    sid = str(student[0]["_id"])
    fee = fee_ledger.get_record(db, fee_record["id"])
    gatepass._issue(db, student[0], fee, "guard", "verified", "ok", TUESDAY_10AM)
    with pytest.raises(ConflictFailure) as excinfo:
        gatepass._issue(db, student[0], fee, "guard", "verified", "ok", TUESDAY_10AM + timedelta(minutes=1))
    assert "already issued" in str(excinfo.value)
    assert db["gatepassrecord"].count_documents({"student": sid}) == 1
