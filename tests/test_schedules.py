import pytest


@pytest.fixture
def teacher(make_user, course):
    return make_user("teacher", assignedCourses=[course])


def lesson(course, **overrides):
    body = {
        "course": course,
        "level": "L1",
        "title": "Anatomy lecture",
        "date": "2025-03-04T00:00:00",
        "startTime": "09:00",
        "endTime": "11:00",
        "venue": "Hall A",
    }
    body.update(overrides)
    return body


@pytest.fixture
def schedule(client, teacher, course):
    resp = client.post("/schedules", json=lesson(course), headers=teacher[1])
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_teacher_creates_own_schedule(schedule, teacher):
    assert schedule["teacher"] == str(teacher[0]["_id"])
    assert schedule["status"] == "scheduled"
    assert schedule["type"] == "lecture"


def test_unassigned_teacher_refused(client, make_user, course):
    _, headers = make_user("teacher")
    assert client.post("/schedules", json=lesson(course), headers=headers).status_code == 403


def test_students_cannot_create(client, student, course):
    assert client.post("/schedules", json=lesson(course), headers=student[1]).status_code == 403


@pytest.mark.parametrize("body,status", [
    ({"startTime": "10:00", "endTime": "12:00"}, 400),               # same teacher, overlapping
    ({"startTime": "08:00", "endTime": "12:00", "venue": "Lab 2"}, 400),  # wraps the booked slot
    ({"startTime": "11:00", "endTime": "12:00"}, 201),               # starts when the other ends
    ({"date": "2025-03-05T00:00:00"}, 201),                           # another day
])
def test_teacher_double_booking(client, teacher, course, schedule, body, status):
    resp = client.post("/schedules", json=lesson(course, **body), headers=teacher[1])
    assert resp.status_code == status


def test_venue_double_booking(client, admin, make_user, course, schedule):
    other, _ = make_user("teacher")
    body = lesson(course, teacher=str(other["_id"]), startTime="10:30", endTime="11:30")
    resp = client.post("/schedules", json=body, headers=admin[1])
    assert resp.status_code == 400
    assert "already booked" in resp.json()["message"]

    body["venue"] = "Hall B"
    assert client.post("/schedules", json=body, headers=admin[1]).status_code == 201


def test_cancelled_session_frees_the_slot(client, teacher, course, schedule):
    client.post(f"/schedules/{schedule['id']}/cancel", json={"reason": "Public holiday"}, headers=teacher[1])
    assert client.post("/schedules", json=lesson(course), headers=teacher[1]).status_code == 201


def test_end_must_follow_start(client, teacher, course):
    resp = client.post("/schedules", json=lesson(course, startTime="11:00", endTime="09:00"), headers=teacher[1])
    assert resp.status_code == 400
    resp = client.post("/schedules", json=lesson(course, startTime="9am"), headers=teacher[1])
    assert resp.status_code == 400


def test_listing_by_role(client, make_user, teacher, student, course, schedule):
    _, other_headers = make_user("student", admissionNumber="ADM002", course="elsewhere",
                                     level="L1")
    assert client.get("/schedules", headers=student[1]).json()["count"] == 1
    assert client.get("/schedules", headers=other_headers).json()["count"] == 0
    assert client.get("/schedules", headers=teacher[1]).json()["count"] == 1
    _, other_teacher = make_user("teacher")
    assert client.get("/schedules", headers=other_teacher).json()["count"] == 0

    on_day = client.get("/schedules", params={"date": "2025-03-04T00:00:00"}, headers=student[1]).json()
    assert on_day["count"] == 1
    next_day = client.get("/schedules", params={"date": "2025-03-05T00:00:00"}, headers=student[1]).json()
    assert next_day["count"] == 0


def test_weekly_timetable(client, teacher, student, course, schedule):
    client.post("/schedules", json=lesson(course, date="2025-03-07T00:00:00", title="Friday lab", type="lab"),
                headers=teacher[1])
    client.post("/schedules", json=lesson(course, date="2025-03-11T00:00:00", title="Next week"),
                headers=teacher[1])

    body = client.get("/schedules/timetable", headers=student[1]).json()
    assert body["week"] == "2025-03-03"
    assert list(body["data"]) == ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
    assert [s["title"] for s in body["data"]["Tuesday"]] == ["Anatomy lecture"]
    assert [s["title"] for s in body["data"]["Friday"]] == ["Friday lab"]

    later = client.get("/schedules/timetable", params={"week": "2025-03-12T00:00:00"}, headers=student[1]).json()
    assert later["week"] == "2025-03-10"
    assert [s["title"] for s in later["data"]["Tuesday"]] == ["Next week"]


def test_only_owner_edits(client, make_user, course, teacher, schedule):
    # assigned to the same course, but not the owner
    _, colleague = make_user("teacher", assignedCourses=[course])
    url = f"/schedules/{schedule['id']}"

    assert client.put(url, json={"venue": "Hall C"}, headers=colleague).status_code == 403
    assert client.post(f"{url}/cancel", json={}, headers=colleague).status_code == 403
    assert client.delete(url, headers=colleague).status_code == 403

    resp = client.put(url, json={"venue": "Hall C", "notes": "Bring lab coats"}, headers=teacher[1])
    assert resp.status_code == 200
    assert resp.json()["data"]["venue"] == "Hall C"
    assert client.delete(url, headers=teacher[1]).status_code == 200
    assert client.get(url, headers=teacher[1]).status_code == 404


def test_update_checks_conflicts(client, teacher, course, schedule):
    later = client.post("/schedules", json=lesson(course, startTime="13:00", endTime="14:00"),
                        headers=teacher[1]).json()["data"]
    resp = client.put(f"/schedules/{later['id']}", json={"startTime": "10:00"}, headers=teacher[1])
    assert resp.status_code == 400
    # moving a session within its own slot is not a conflict with itself
    resp = client.put(f"/schedules/{schedule['id']}", json={"endTime": "10:30"}, headers=teacher[1])
    assert resp.status_code == 200


def test_attendance(client, clock, admin, teacher, student, schedule):
    url = f"/schedules/{schedule['id']}/attendance"
    sid = str(student[0]["_id"])

    resp = client.post(url, json={"studentId": sid, "status": "late"}, headers=teacher[1])
    assert resp.status_code == 200
    resp = client.post(url, json={"studentId": sid, "status": "present"}, headers=teacher[1])
    attendees = resp.json()["data"]["attendees"]
    assert attendees == [{"student": sid, "status": "present", "markedAt": "2025-03-04T10:00:00"}]

    assert client.post(url, json={"studentId": sid, "status": "present"}, headers=admin[1]).status_code == 403


def test_cancel_records_reason(client, teacher, schedule):
    resp = client.post(f"/schedules/{schedule['id']}/cancel", json={"reason": "Lecturer unwell"},
                       headers=teacher[1])
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "cancelled"
    assert resp.json()["data"]["cancelReason"] == "Lecturer unwell"
