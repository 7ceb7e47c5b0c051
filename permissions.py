"""
Single capability check for every ownership rule.

    authorize(actor, "mutate", "exam", exam)

Admins bypass everything. Teachers may mutate exams and results they own or
whose course they are assigned to, and only the schedules they own. Students
may read only their own fee records, gate passes and results, and may write
only misprint reports against their own result. Announcements belong to
their author. Reports are visible to their reporter, their target user and
the staff of their target dashboard; only the latter two may respond.
"""

from typing import Any, Dict, Optional

from errors import AuthorizationFailure

TEACHING_KINDS = ("exam", "result", "schedule")
STUDENT_OWNED_KINDS = ("fee", "gatepass", "result", "student")


def _id(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _report_allowed(actor_id: Optional[str], role: Optional[str], action: str, report: Dict[str, Any]) -> bool:
    is_reporter = _id(report.get("reporter")) == actor_id
    if action == "delete":
        return is_reporter
    if action == "read" and is_reporter:
        return True
    if _id(report.get("targetUser")) == actor_id:
        return True
    return role in ("teacher", "finance") and report.get("targetDashboard") == role


def is_allowed(actor: Dict[str, Any], action: str, kind: str, resource: Optional[Dict[str, Any]] = None) -> bool:
    role = actor.get("role")
    actor_id = _id(actor.get("_id"))
    resource = resource or {}

    if role == "admin":
        return True

    if kind == "announcement":
        if action == "read":
            return True
        return _id(resource.get("createdBy")) == actor_id

    if kind == "report":
        return _report_allowed(actor_id, role, action, resource)

    if role == "teacher" and kind in TEACHING_KINDS:
        if _id(resource.get("teacher")) == actor_id:
            return True
        if kind == "schedule":
            return False
        course = _id(resource.get("course"))
        return course is not None and course in [_id(c) for c in actor.get("assignedCourses", [])]

    if role == "student":
        if kind == "misprint":
            return action == "write" and _id(resource.get("student")) == actor_id
        if kind in STUDENT_OWNED_KINDS and action == "read":
            owner = resource.get("student", resource.get("_id"))
            return _id(owner) == actor_id
        return False

    if kind in STUDENT_OWNED_KINDS and action == "read":
        # staff may look up any student's records
        return True

    if role in ("finance", "gatepass") and kind in ("fee", "gatepass"):
        return True

    return False


def authorize(actor: Dict[str, Any], action: str, kind: str, resource: Optional[Dict[str, Any]] = None,
              message: str = "You are not authorized to access this resource") -> None:
    if not is_allowed(actor, action, kind, resource):
        raise AuthorizationFailure(message)
