from sqlalchemy import Column, DateTime, Float, Integer, String, Text, UniqueConstraint, func
from campbooking.database import Base

ROLES = ("student", "instructor", "admin")
CLASS_STATUSES = ("pending", "approved", "rejected")


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    photo_url = Column(String(512), nullable=True)
    # NULL means no explicit role: a plain student
    role = Column(String(20), nullable=True)
    total_students = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class ClassRecord(Base):
    __tablename__ = "classes"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    image_url = Column(String(512), nullable=True)
    instructor_email = Column(String(255), index=True, nullable=False)
    instructor_name = Column(String(255), nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default="pending", index=True)
    available_seats = Column(Integer, nullable=False, default=0)
    total_enrolled = Column(Integer, nullable=True, default=0)
    feedback = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Reservation(Base):
    __tablename__ = "selected_classes"
    id = Column(Integer, primary_key=True, index=True)
    student_email = Column(String(255), index=True, nullable=False)
    class_id = Column(Integer, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Enrollment(Base):
    __tablename__ = "enrolled_classes"
    __table_args__ = (UniqueConstraint("student_email", "class_id", name="uq_enrollment_student_class"),)
    id = Column(Integer, primary_key=True, index=True)
    student_email = Column(String(255), index=True, nullable=False)
    class_id = Column(Integer, index=True, nullable=False)
    instructor_email = Column(String(255), index=True, nullable=False)
    class_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Payment(Base):
    # append-only: rows are inserted by settlement and never updated
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, index=True)
    student_email = Column(String(255), index=True, nullable=False)
    class_id = Column(Integer, index=True, nullable=False)
    amount = Column(Float, nullable=False)
    transaction_id = Column(String(128), nullable=True)
    paid_at = Column(DateTime(timezone=True), server_default=func.now())
