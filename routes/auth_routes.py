import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import full_name, get_current_user, hash_password, require_roles, token_for_user, verify_password
from database import collection_name, create_document, get_db, serialize_doc, to_object_id
from errors import AuthenticationFailure, AuthorizationFailure, ConflictFailure, ValidationFailure
from schemas import Role, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

USERS = collection_name(User)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegisterPayload(BaseModel):
    firstName: str
    middleName: Optional[str] = None
    lastName: str
    email: str
    password: str = Field(..., min_length=6)
    role: Role
    admissionNumber: Optional[str] = None
    course: Optional[str] = None
    level: Optional[str] = None
    assignedCourses: List[str] = Field(default_factory=list)
    phoneNumber: Optional[str] = None


class LoginPayload(BaseModel):
    email: str
    password: str


def create_user(db: Database, payload: RegisterPayload) -> Dict[str, Any]:
    email = payload.email.strip().lower()
    if db[USERS].find_one({"email": email}):
        raise ConflictFailure("Email already registered")

    admission = payload.admissionNumber.strip().upper() if payload.admissionNumber else None
    if payload.role == "student":
        if not admission:
            raise ValidationFailure("admissionNumber is required for students")
        if db[USERS].find_one({"admissionNumber": admission}):
            raise ConflictFailure("Admission number already registered")

    doc = User(
        **payload.model_dump(exclude={"password", "email", "admissionNumber"}),
        email=email,
        admissionNumber=admission,
        password_hash=hash_password(payload.password),
    )
    uid = create_document(db, USERS, doc)
    logger.info("User %s registered with role %s", uid, payload.role)
    return db[USERS].find_one({"_id": to_object_id(uid)})


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register_user(payload: RegisterPayload, db: Database = Depends(get_db),
                  user: Optional[Dict[str, Any]] = Depends(get_current_user)):
    # the very first account bootstraps the system; afterwards only admins register users
    if db[USERS].count_documents({}) > 0 and (user is None or user.get("role") != "admin"):
        raise AuthorizationFailure("Only administrators can register users")
    created = create_user(db, payload)
    return {"success": True, "data": serialize_doc(created)}


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginPayload, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"email": payload.email.strip().lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", payload.email)
        raise AuthenticationFailure("Invalid credentials")
    return TokenResponse(access_token=token_for_user(user))


@router.get("/me")
def me(user=Depends(require_roles())):
    data = serialize_doc(user)
    data["fullName"] = full_name(user)
    return {"success": True, "data": data}
