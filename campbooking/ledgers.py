"""
Store access for reservations, classes, instructors and users.

Counter changes are single conditional UPDATE statements so concurrent
requests for the same class or instructor serialise in the database rather
than racing on a read-compute-write in the application.
"""
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from campbooking import models, schemas
from campbooking.auth import Principal
from campbooking.errors import Conflict, Forbidden, NotFound

logger = logging.getLogger("campbooking.ledgers")

_NO_SYNC = {"synchronize_session": False}


# --- reservations -----------------------------------------------------------

def exists(db: Session, student_email: str, class_id: int) -> bool:
    """True when the student already reserved or is enrolled in the class."""
    reserved = db.execute(
        select(models.Reservation.id).where(
            models.Reservation.student_email == student_email,
            models.Reservation.class_id == class_id,
        ).limit(1)
    ).first()
    return reserved is not None or is_enrolled(db, student_email, class_id)


def is_enrolled(db: Session, student_email: str, class_id: int) -> bool:
    row = db.execute(
        select(models.Enrollment.id).where(
            models.Enrollment.student_email == student_email,
            models.Enrollment.class_id == class_id,
        ).limit(1)
    ).first()
    return row is not None


def select_class(db: Session, student_email: str, class_id: int) -> models.Reservation:
    cls = db.get(models.ClassRecord, class_id)
    if cls is None or cls.status != "approved":
        raise NotFound("class not found")
    # check-then-insert is not atomic; a duplicate row from two racing
    # requests is harmless because settlement deletes every matching row
    if exists(db, student_email, class_id):
        raise Conflict("class already selected or enrolled")
    reservation = models.Reservation(student_email=student_email, class_id=class_id)
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    logger.info("Reserved class=%s for student=%s id=%s", class_id, student_email, reservation.id)
    return reservation


def cancel(db: Session, reservation_id: int, principal: Principal) -> int:
    """Delete the caller's reservation; 0 when it is already gone."""
    reservation = db.get(models.Reservation, reservation_id)
    if reservation is None:
        return 0
    if reservation.student_email != principal.subject_email:
        raise Forbidden("forbidden access")
    result = db.execute(
        delete(models.Reservation).where(models.Reservation.id == reservation_id).execution_options(**_NO_SYNC)
    )
    db.commit()
    logger.info("Cancelled reservation id=%s deleted=%s", reservation_id, result.rowcount)
    return result.rowcount


def delete_matching_reservations(db: Session, student_email: str, class_id: int) -> int:
    result = db.execute(
        delete(models.Reservation)
        .where(models.Reservation.student_email == student_email, models.Reservation.class_id == class_id)
        .execution_options(**_NO_SYNC)
    )
    return result.rowcount


def reservations_for(db: Session, student_email: str) -> List[models.Reservation]:
    q = select(models.Reservation).where(models.Reservation.student_email == student_email)
    return list(db.scalars(q.order_by(models.Reservation.id)))


def enrollments_for(db: Session, student_email: str) -> List[models.Enrollment]:
    q = select(models.Enrollment).where(models.Enrollment.student_email == student_email)
    return list(db.scalars(q.order_by(models.Enrollment.id)))


def payments_for(db: Session, student_email: str) -> List[models.Payment]:
    q = select(models.Payment).where(models.Payment.student_email == student_email)
    return list(db.scalars(q.order_by(models.Payment.paid_at.desc(), models.Payment.id.desc())))


# --- class ledger -----------------------------------------------------------

def get_class(db: Session, class_id: int) -> models.ClassRecord:
    cls = db.get(models.ClassRecord, class_id)
    if cls is None:
        raise NotFound("class not found")
    return cls


def claim_seat(db: Session, class_id: int) -> int:
    """Atomically take one seat and count one enrollment.

    Raises Conflict when no seat is left; the caller owns the commit.
    """
    result = db.execute(
        update(models.ClassRecord)
        .where(models.ClassRecord.id == class_id, models.ClassRecord.available_seats > 0)
        .values(
            available_seats=models.ClassRecord.available_seats - 1,
            total_enrolled=func.coalesce(models.ClassRecord.total_enrolled, 0) + 1,
        )
        .execution_options(**_NO_SYNC)
    )
    if result.rowcount == 0:
        if db.get(models.ClassRecord, class_id) is None:
            raise NotFound("class not found")
        raise Conflict("no seats available")
    return result.rowcount


def approved_classes(db: Session) -> List[models.ClassRecord]:
    q = select(models.ClassRecord).where(models.ClassRecord.status == "approved")
    return list(db.scalars(q.order_by(models.ClassRecord.id)))


def classes_by_instructor(db: Session, instructor_email: str) -> List[models.ClassRecord]:
    q = select(models.ClassRecord).where(models.ClassRecord.instructor_email == instructor_email)
    return list(db.scalars(q.order_by(models.ClassRecord.id)))


def create_class(db: Session, instructor_email: str, data: schemas.ClassCreate) -> models.ClassRecord:
    cls = models.ClassRecord(
        instructor_email=instructor_email,
        status="pending",
        total_enrolled=0,
        **data.model_dump(),
    )
    db.add(cls)
    db.commit()
    db.refresh(cls)
    logger.info("Created class id=%s instructor=%s status=pending", cls.id, instructor_email)
    return cls


def update_class(db: Session, class_id: int, instructor_email: str, data: schemas.ClassUpdate) -> models.ClassRecord:
    """Edit the authoring fields of the caller's own class."""
    cls = get_class(db, class_id)
    if cls.instructor_email != instructor_email:
        raise Forbidden("forbidden access")
    fields = data.model_dump(exclude_unset=True, exclude_none=True)
    if fields:
        db.execute(
            update(models.ClassRecord)
            .where(models.ClassRecord.id == class_id, models.ClassRecord.instructor_email == instructor_email)
            .values(**fields)
            .execution_options(**_NO_SYNC)
        )
        db.commit()
        db.refresh(cls)
        logger.info("Updated class id=%s fields=%s", class_id, sorted(fields))
    return cls


def set_status(db: Session, class_id: int, status: str) -> models.ClassRecord:
    """Move a pending class to approved/rejected; any other source state conflicts."""
    result = db.execute(
        update(models.ClassRecord)
        .where(models.ClassRecord.id == class_id, models.ClassRecord.status == "pending")
        .values(status=status)
        .execution_options(**_NO_SYNC)
    )
    db.commit()
    cls = get_class(db, class_id)
    db.refresh(cls)
    if result.rowcount == 0:
        raise Conflict(f"class is already {cls.status}")
    logger.info("Class id=%s status -> %s", class_id, status)
    return cls


def set_feedback(db: Session, class_id: int, feedback: str) -> models.ClassRecord:
    cls = get_class(db, class_id)
    cls.feedback = feedback
    db.commit()
    db.refresh(cls)
    logger.info("Feedback attached to class id=%s", class_id)
    return cls


# --- users / instructor ledger ----------------------------------------------

def count_student(db: Session, instructor_email: str) -> int:
    """Atomically add one to the instructor's student count; the caller commits."""
    result = db.execute(
        update(models.User)
        .where(models.User.email == instructor_email)
        .values(total_students=func.coalesce(models.User.total_students, 0) + 1)
        .execution_options(**_NO_SYNC)
    )
    if result.rowcount == 0:
        raise NotFound("instructor not found")
    return result.rowcount


def list_users(db: Session) -> List[models.User]:
    return list(db.scalars(select(models.User).order_by(models.User.id)))


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.execute(select(models.User).where(models.User.email == email)).scalar_one_or_none()


def upsert_user(db: Session, email: str, data: schemas.UserUpsert) -> models.User:
    """Create or update profile fields. Roles are only changed by change_role."""
    user = get_user_by_email(db, email)
    if user is None:
        user = models.User(email=email)
        db.add(user)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


def change_role(db: Session, user_id: int, role: str) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFound("user not found")
    user.role = role
    db.commit()
    db.refresh(user)
    logger.info("User id=%s role -> %s", user_id, role)
    return user
