# campbooking/schemas.py
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["student", "instructor", "admin"]
StepStatus = Literal["ok", "anomaly", "not_found", "conflict", "failed", "skipped"]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserUpsert(BaseModel):
    name: Optional[str] = None
    photo_url: Optional[str] = None


class UserOut(ORMModel):
    id: int
    email: str
    name: Optional[str] = None
    photo_url: Optional[str] = None
    role: Optional[str] = None
    total_students: Optional[int] = None


class RoleChange(BaseModel):
    role: Role


class ClassCreate(BaseModel):
    name: str = Field(min_length=1)
    image_url: Optional[str] = None
    instructor_name: Optional[str] = None
    price: float = Field(ge=0)
    available_seats: int = Field(ge=0)


class ClassUpdate(BaseModel):
    # status, counters and feedback are not authored by instructors
    name: Optional[str] = Field(default=None, min_length=1)
    image_url: Optional[str] = None
    instructor_name: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    available_seats: Optional[int] = Field(default=None, ge=0)


class ClassOut(ORMModel):
    id: int
    name: str
    image_url: Optional[str] = None
    instructor_email: str
    instructor_name: Optional[str] = None
    price: float
    status: str
    available_seats: int
    total_enrolled: Optional[int] = None
    feedback: Optional[str] = None


class StatusChange(BaseModel):
    # no transition back to pending exists
    status: Literal["approved", "rejected"]


class FeedbackIn(BaseModel):
    feedback: str


class ReservationCreate(BaseModel):
    student_email: str
    class_id: int


class ReservationOut(ORMModel):
    id: int
    student_email: str
    class_id: int
    created_at: Optional[datetime] = None


class CancelOut(BaseModel):
    deleted_count: int


class EnrollmentOut(ORMModel):
    id: int
    student_email: str
    class_id: int
    instructor_email: str
    class_name: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentIn(BaseModel):
    student_email: str
    class_id: int
    amount: float = Field(ge=0)
    transaction_id: Optional[str] = None
    date: Optional[datetime] = None


class PaymentOut(ORMModel):
    id: int
    student_email: str
    class_id: int
    amount: float
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class EnrollmentIntent(BaseModel):
    student_email: str
    class_id: int
    instructor_email: str
    class_name: Optional[str] = None


class SettlementIn(BaseModel):
    payment_record: PaymentIn
    enrollment_intent: EnrollmentIntent


class StepOut(BaseModel):
    status: StepStatus
    affected: int = 0
    detail: Optional[str] = None


class SettlementOut(BaseModel):
    ok: bool
    payment: StepOut
    enrollment: StepOut
    reservation: StepOut
    class_seats: StepOut
    instructor: StepOut
