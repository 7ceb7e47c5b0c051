"""
Database Schemas for the School Administration System

Each Pydantic model below maps to a MongoDB collection (class name lowercased).
Use these to validate data and as the source of truth for the application domain.
References to other documents are stored as id strings.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["student", "teacher", "admin", "finance", "gatepass"]
PaymentMethod = Literal["cash", "bank", "mpesa", "cheque", "card"]
PaymentStatus = Literal["unpaid", "partial", "paid", "overpaid"]
VerificationStatus = Literal["verified", "denied", "expired", "used"]
ExamType = Literal["CAT", "midterm", "final", "supplementary", "special"]
ExamStatus = Literal["scheduled", "ongoing", "completed", "marked", "published", "cancelled"]
Grade = Literal["A", "B", "C", "D", "E", "F"]
Priority = Literal["low", "medium", "high", "urgent"]


# Identities and catalogue
class User(BaseModel):
    firstName: str
    middleName: Optional[str] = None
    lastName: str
    email: str
    password_hash: str
    role: Role
    admissionNumber: Optional[str] = Field(None, description="students only, stored uppercase")
    course: Optional[str] = None
    level: Optional[str] = None
    assignedCourses: List[str] = Field(default_factory=list, description="teachers only")
    phoneNumber: Optional[str] = None
    status: Literal["active", "suspended", "graduated", "inactive"] = "active"


class CourseFees(BaseModel):
    total: float = 0
    perTerm: float = 0
    perYear: float = 0


class Course(BaseModel):
    name: str
    code: str
    description: Optional[str] = None
    fees: CourseFees = Field(default_factory=CourseFees)


# Fee ledger
class FeeStructure(BaseModel):
    tuition: float = 0
    registration: float = 0
    library: float = 0
    laboratory: float = 0
    examination: float = 0
    medical: float = 0
    activity: float = 0
    other: float = 0


class Payment(BaseModel):
    amount: float
    paymentMethod: PaymentMethod
    referenceNumber: str
    receiptNumber: str
    receivedBy: Optional[str] = None
    paymentDate: datetime
    notes: Optional[str] = None


class Waiver(BaseModel):
    amount: float
    reason: str
    approvedBy: Optional[str] = None
    approvedDate: datetime


class GatepassStatus(BaseModel):
    allowed: bool = False
    allowedUntil: Optional[datetime] = None
    reason: Optional[str] = None
    updatedBy: Optional[str] = None
    lastUpdated: Optional[datetime] = None


class Penalty(BaseModel):
    amount: float = 0
    reason: Optional[str] = None
    appliedDate: Optional[datetime] = None


class FeeRecord(BaseModel):
    student: str
    academicYear: str = Field(..., description='e.g. "2025"')
    term: str = Field(..., description='e.g. "Term 1"')
    course: str
    level: str
    feeStructure: FeeStructure = Field(default_factory=FeeStructure)
    payments: List[Payment] = Field(default_factory=list)
    waivers: List[Waiver] = Field(default_factory=list)
    totalAmount: float = 0
    totalPaid: float = 0
    balance: float = 0
    paymentStatus: PaymentStatus = "unpaid"
    dueDate: datetime
    gatepassStatus: GatepassStatus = Field(default_factory=GatepassStatus)
    penalty: Penalty = Field(default_factory=Penalty)
    notes: Optional[str] = None
    revision: int = 0


# Gate passes
class FeeSnapshot(BaseModel):
    totalAmount: float
    paidAmount: float
    balance: float
    allowedUntil: Optional[datetime] = None


class DuplicateAttempt(BaseModel):
    attemptTime: datetime
    deniedBy: Optional[str] = None
    reason: str


class GatepassRecord(BaseModel):
    student: str
    admissionNumber: str
    verificationCode: str
    receiptNumber: str
    verifiedBy: str
    verificationTime: datetime
    verificationDay: Literal["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
    verificationStatus: VerificationStatus = "verified"
    paymentStatus: PaymentStatus
    feeDetails: FeeSnapshot
    message: str
    expiryTime: datetime
    usedAt: Optional[datetime] = None
    duplicateAttempts: List[DuplicateAttempt] = Field(default_factory=list)


class GatepassClaim(BaseModel):
    """Current active pass per student; the document _id is the student id."""
    verificationCode: str
    claimedAt: datetime


# Exams
class Misprint(BaseModel):
    id: str
    reportedBy: str
    issue: str
    reportedAt: datetime
    resolved: bool = False
    resolvedBy: Optional[str] = None
    resolvedAt: Optional[datetime] = None
    resolution: Optional[str] = None


class ExamResult(BaseModel):
    student: str
    score: float = Field(..., ge=0)
    percentage: float
    grade: Grade
    remarks: Optional[str] = None
    markedBy: Optional[str] = None
    markedAt: Optional[datetime] = None
    published: bool = False
    publishedAt: Optional[datetime] = None
    misprints: List[Misprint] = Field(default_factory=list)


class Exam(BaseModel):
    title: str
    course: str
    level: str
    unit: Optional[dict] = None
    teacher: str
    examType: ExamType
    term: str = Field(..., description='e.g. "Term 1 2025"')
    totalMarks: float = Field(100, gt=0)
    passMark: float = 50
    date: datetime
    duration: int = Field(120, description="minutes")
    venue: Optional[str] = None
    instructions: Optional[str] = None
    results: List[ExamResult] = Field(default_factory=list)
    status: ExamStatus = "scheduled"


# Communications
class TargetAudience(BaseModel):
    roles: List[Literal["all", "student", "teacher", "admin", "finance", "gatepass"]] = Field(default_factory=list)
    courses: List[str] = Field(default_factory=list)
    levels: List[str] = Field(default_factory=list)
    specificUsers: List[str] = Field(default_factory=list)


class ReadReceipt(BaseModel):
    user: str
    readAt: datetime


class Announcement(BaseModel):
    title: str
    content: str
    priority: Priority = "medium"
    targetAudience: TargetAudience = Field(default_factory=TargetAudience)
    validFrom: datetime
    validUntil: Optional[datetime] = None
    status: Literal["draft", "published", "archived"] = "published"
    readBy: List[ReadReceipt] = Field(default_factory=list)
    createdBy: str


ReportType = Literal["exam_misprint", "suggestion", "complaint", "technical_issue", "other"]
Dashboard = Literal["admin", "teacher", "finance", "general"]
ReportStatus = Literal["pending", "in_review", "resolved", "rejected", "archived"]


class Attachment(BaseModel):
    filename: str
    url: str
    type: Optional[str] = None


class ReportResponse(BaseModel):
    respondedBy: str
    message: Optional[str] = None
    action: Optional[str] = Field(None, description="what was done to resolve the issue")
    respondedAt: datetime


class Report(BaseModel):
    reporter: str
    reportType: ReportType
    targetDashboard: Dashboard
    targetUser: Optional[str] = None
    relatedExam: Optional[str] = None
    subject: str
    description: str
    attachments: List[Attachment] = Field(default_factory=list, description="links only, no file storage")
    priority: Priority = "medium"
    status: ReportStatus = "pending"
    response: Optional[ReportResponse] = None
    readBy: List[ReadReceipt] = Field(default_factory=list)


# Timetable
ScheduleType = Literal["lecture", "lab", "tutorial", "exam", "assignment", "event"]
ScheduleStatus = Literal["scheduled", "ongoing", "completed", "cancelled", "postponed"]
AttendanceStatus = Literal["present", "absent", "late", "excused"]
RecurringPattern = Literal["none", "daily", "weekly", "monthly"]


class Attendee(BaseModel):
    student: str
    status: AttendanceStatus = "absent"
    markedAt: Optional[datetime] = None


class Schedule(BaseModel):
    teacher: str
    course: str
    level: str
    unit: Optional[dict] = None
    title: str
    description: Optional[str] = None
    date: datetime
    startTime: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$", description='"09:00"')
    endTime: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$", description='"11:00"')
    venue: str
    type: ScheduleType = "lecture"
    recurringPattern: RecurringPattern = "none"
    recurringEndDate: Optional[datetime] = None
    attendees: List[Attendee] = Field(default_factory=list)
    status: ScheduleStatus = "scheduled"
    notes: Optional[str] = None
    cancelReason: Optional[str] = None
