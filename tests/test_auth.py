import logging

from logging_config import user_id_var


def register(client, headers=None, **overrides):
    body = {
        "firstName": "Grace", "lastName": "Otieno", "email": "Grace@School.test",
        "password": "secret123", "role": "admin",
    }
    body.update(overrides)
    return client.post("/auth/register", json=body, headers=headers or {})


def test_first_registration_bootstraps_admin(client):
    resp = register(client)
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["email"] == "grace@school.test"
    assert "password_hash" not in data


def test_later_registration_needs_admin(client, finance):
    assert register(client).status_code == 403
    assert register(client, headers=finance[1]).status_code == 403


def test_admin_registers_student(client, db, admin):
    resp = register(client, headers=admin[1], email="kip@school.test", role="student", admissionNumber=" adm100 ")
    assert resp.status_code == 201
    assert resp.json()["data"]["admissionNumber"] == "ADM100"

    resp = register(client, headers=admin[1], email="kip2@school.test", role="student", admissionNumber="ADM100")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Admission number already registered"


def test_student_needs_admission_number(client, admin):
    resp = register(client, headers=admin[1], email="kip@school.test", role="student")
    assert resp.status_code == 400


def test_duplicate_email(client, admin):
    resp = register(client, headers=admin[1], email=admin[0]["email"].upper(), role="teacher")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Email already registered"


def test_login_and_me(client):
    register(client)
    resp = client.post("/auth/login", json={"email": "grace@school.test", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert resp.json()["token_type"] == "bearer"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()["data"]
    assert me["fullName"] == "Grace Otieno"
    assert me["role"] == "admin"


def test_bad_credentials(client):
    register(client)
    resp = client.post("/auth/login", json={"email": "grace@school.test", "password": "wrong-password"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_missing_or_garbage_token(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_suspended_user_is_refused(client, admin, make_user):
    user, headers = make_user("teacher")
    resp = client.put(f"/users/{user['_id']}/status", json={"status": "suspended"}, headers=admin[1])
    assert resp.status_code == 200
    resp = client.get("/auth/me", headers=headers)
    assert resp.status_code == 403
    assert "suspended" in resp.json()["message"]


def test_role_gate_message(client, student):
    resp = client.get("/users", headers=student[1])
    assert resp.status_code == 403
    assert resp.json()["message"] == "User role 'student' is not authorized to access this route"


def test_courses(client, admin, finance):
    payload = {"name": "Certificate in Pharmacy", "code": "CP", "fees": {"perTerm": 40000}}
    resp = client.post("/courses", json=payload, headers=admin[1])
    assert resp.status_code == 201
    course_id = resp.json()["data"]["id"]

    assert client.post("/courses", json=payload, headers=admin[1]).status_code == 400
    assert client.post("/courses", json=payload, headers=finance[1]).status_code == 403
    assert client.get(f"/courses/{course_id}", headers=finance[1]).json()["data"]["fees"]["perTerm"] == 40000
    assert client.get("/courses", headers=finance[1]).json()["count"] == 1


def test_request_id_header(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert resp.json()["status"] == "healthy"
    assert resp.headers["X-Request-ID"] == "abc123"


class UserIdCapture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.user_ids = []

    def emit(self, record):
        self.user_ids.append(user_id_var.get())


def test_log_records_carry_the_caller(client, finance, fee_record):
    ledger_logger = logging.getLogger("services.fee_ledger")
    capture = UserIdCapture()
    ledger_logger.addHandler(capture)
    previous = ledger_logger.level
    ledger_logger.setLevel(logging.INFO)
    try:
        client.post(f"/fees/{fee_record['id']}/payment", json={
            "amount": 100, "paymentMethod": "cash", "referenceNumber": "L1",
        }, headers=finance[1])
    finally:
        ledger_logger.removeHandler(capture)
        ledger_logger.setLevel(previous)
    assert capture.user_ids == [str(finance[0]["_id"])]


def test_indexes_ensured_on_startup(monkeypatch):
    import main
    from fastapi.testclient import TestClient

    calls = []
    monkeypatch.setattr(main, "ensure_indexes", calls.append)
    with TestClient(main.app):
        pass
    assert calls == [main.db]
