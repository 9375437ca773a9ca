from fastapi_users import schemas
from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, Literal, Optional
from datetime import date
import uuid

from ..models.user_model import UserRole


class UserRead(schemas.BaseUser[uuid.UUID]):
    full_name: Optional[str] = None
    role: UserRole


class UserCreate(schemas.BaseUserCreate):
    full_name: str
    role: UserRole = UserRole.STUDENT # Default role on creation


class UserUpdate(schemas.BaseUserUpdate):
    full_name: Optional[str] = None
    role: Optional[UserRole] = None


class LoginRequest(BaseModel):
    email: str
    password: str


LicenseClass = Literal[
    "Class 1 (Motorcycles)",
    "Class 2 (Light Vehicles)",
    "Class 3 (Heavy Vehicles)",
    "Class 4 (Passenger Vehicles)",
]

Gender = Literal["MALE", "FEMALE"]

# e.g. 12345678A12
NATIONAL_ID_PATTERN = r"^\d{8}[A-Z]\d{2}$"


class StudentRead(BaseModel):
    """Student profile with the aggregates written after each attempt."""
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    national_id: Optional[str] = None
    phone_number: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    license_class: Optional[str] = None
    date_of_birth: Optional[date] = None
    is_active: bool = True
    test_history: Dict[str, Dict[str, Any]] = {}
    test_scores: Dict[str, Dict[str, Any]] = {}


class StudentProfileUpdate(BaseModel):
    """Fields a student may change on their own profile."""
    phone_number: Optional[str] = Field(None, min_length=10)
    gender: Optional[Gender] = None
    address: Optional[str] = Field(None, min_length=5)
    license_class: Optional[LicenseClass] = None
    date_of_birth: Optional[date] = None


class StudentUpdate(StudentProfileUpdate):
    """Admin edit: everything on the profile, including identity fields."""
    name: Optional[str] = Field(None, min_length=2)
    national_id: Optional[str] = Field(None, pattern=NATIONAL_ID_PATTERN)
    is_active: Optional[bool] = None


class StudentCreate(BaseModel):
    """
    Admin creates a student: a user account with the student role plus the
    student profile, under the same id.
    """
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=8)
    national_id: str = Field(..., pattern=NATIONAL_ID_PATTERN, description="8 digits, a capital letter, 2 digits.")
    phone_number: str = Field(..., min_length=10)
    date_of_birth: date
    license_class: LicenseClass
    address: str = Field(..., min_length=5)
    gender: Gender
    is_active: bool = True

    def profile(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"email", "password"})


class StudentSummary(BaseModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    by_license_class: Dict[str, int] = {}


class NationalIdPayload(BaseModel):
    national_id: str = Field(..., pattern=r"^[a-zA-Z0-9]+$")


class VerificationResult(BaseModel):
    verified: bool
    name: Optional[str] = None
