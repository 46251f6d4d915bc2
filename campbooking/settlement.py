"""
Enrollment settlement: turns a confirmed payment into an enrollment.

Steps, in order:

1. append the payment to the payment ledger
2. create the enrollment
3. delete the matching reservation (missing is only an anomaly)
4. take a seat and count the enrollment on the class
5. count the student on the instructor

In ``stepwise`` mode the payment commits first and a failure there aborts
before anything else is written. The enrollment and the seat (steps 2 and
4) then commit together: a sold-out class or a rejected enrollment insert
leaves neither, and the reservation and instructor steps are skipped. The
reservation and instructor steps commit on their own. The outcome reports
each step so a failure after the payment is visible to the operator instead
of being lost. In ``atomic`` mode all five steps share one transaction and
any failure rolls every step back.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campbooking import ledgers, models, schemas
from campbooking.errors import Conflict, NotFound, PartialSettlementFailure, SettlementAborted

logger = logging.getLogger("campbooking.settlement")

STEPS = ("payment", "enrollment", "reservation", "class_seats", "instructor")


@dataclass
class StepResult:
    status: str = "skipped"
    affected: int = 0
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in ("ok", "anomaly")


@dataclass
class SettlementOutcome:
    payment: StepResult = field(default_factory=StepResult)
    enrollment: StepResult = field(default_factory=StepResult)
    reservation: StepResult = field(default_factory=StepResult)
    class_seats: StepResult = field(default_factory=StepResult)
    instructor: StepResult = field(default_factory=StepResult)

    @property
    def ok(self) -> bool:
        return all(getattr(self, name).ok for name in STEPS)

    def failed_steps(self):
        return [name for name in STEPS if not getattr(self, name).ok]

    def as_dict(self) -> Dict[str, object]:
        data = {name: asdict(getattr(self, name)) for name in STEPS}
        data["ok"] = self.ok
        return data

    def raise_for_status(self):
        """Raise Conflict for a sold-out class, PartialSettlementFailure otherwise."""
        if self.ok:
            return
        if self.class_seats.status == "conflict":
            raise Conflict("no seats available; payment recorded, contact support", outcome=self.as_dict())
        failed = ", ".join(self.failed_steps())
        raise PartialSettlementFailure(
            f"payment recorded but settlement steps failed: {failed}; contact support",
            outcome=self.as_dict(),
        )


class SettlementWorkflow:
    def __init__(self, db: Session, mode: str = "stepwise"):
        if mode not in ("stepwise", "atomic"):
            raise ValueError(f"unknown settlement mode {mode!r}")
        self.db = db
        self.mode = mode

    def settle(self, payment: schemas.PaymentIn, intent: schemas.EnrollmentIntent) -> SettlementOutcome:
        if payment.student_email != intent.student_email or payment.class_id != intent.class_id:
            raise Conflict("payment does not match the enrollment intent")
        cls = self.db.get(models.ClassRecord, intent.class_id)
        if cls is None:
            raise NotFound("class not found")
        if cls.instructor_email != intent.instructor_email:
            raise Conflict("enrollment intent names the wrong instructor")
        if ledgers.is_enrolled(self.db, intent.student_email, intent.class_id):
            raise Conflict("student is already enrolled in this class")

        # each inner tuple is one commit in stepwise mode
        groups = [
            (("payment", self._record_payment, (payment,)),),
            (
                ("enrollment", self._create_enrollment, (intent,)),
                ("class_seats", ledgers.claim_seat, (self.db, intent.class_id)),
            ),
            (("reservation", ledgers.delete_matching_reservations, (self.db, intent.student_email, intent.class_id)),),
            (("instructor", ledgers.count_student, (self.db, intent.instructor_email)),),
        ]
        if self.mode == "atomic":
            outcome = self._settle_atomic([step for group in groups for step in group])
        else:
            outcome = self._settle_stepwise(groups)

        if outcome.reservation.ok and outcome.reservation.affected == 0:
            outcome.reservation.status = "anomaly"
            outcome.reservation.detail = "no matching reservation"
            logger.warning(
                "Settlement without reservation: student=%s class=%s", intent.student_email, intent.class_id
            )
        if outcome.ok:
            logger.info(
                "Settled student=%s class=%s instructor=%s amount=%s",
                intent.student_email, intent.class_id, intent.instructor_email, payment.amount,
            )
        else:
            logger.error(
                "Partial settlement student=%s class=%s failed=%s",
                intent.student_email, intent.class_id, outcome.failed_steps(),
            )
        return outcome

    def _settle_stepwise(self, groups) -> SettlementOutcome:
        outcome = SettlementOutcome()
        for group in groups:
            results = self._commit_group(group)
            for name, result in results.items():
                setattr(outcome, name, result)
            if all(result.ok for result in results.values()):
                continue
            if "payment" in results:
                raise SettlementAborted("payment could not be recorded; nothing was settled")
            if "enrollment" in results:
                # nothing was enrolled: keep the reservation and leave the counters alone
                break
        return outcome

    def _settle_atomic(self, steps) -> SettlementOutcome:
        outcome = SettlementOutcome()
        try:
            for name, fn, args in steps:
                setattr(outcome, name, StepResult("ok", fn(*args)))
            self.db.commit()
        except (Conflict, NotFound):
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Atomic settlement rolled back")
            raise SettlementAborted("settlement rolled back; nothing was recorded") from exc
        return outcome

    def _commit_group(self, group) -> Dict[str, StepResult]:
        """Run the steps of one group and commit them together, or not at all."""
        results: Dict[str, StepResult] = {}
        for name, fn, args in group:
            result = self._run_step(name, fn, *args)
            if not result.ok:
                self.db.rollback()
                results = {done: StepResult(detail="rolled back") for done in results}
                results[name] = result
                return results
            results[name] = result
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Settlement commit failed for %s", ", ".join(results))
            return {name: StepResult("failed", detail=type(exc).__name__) for name in results}
        return results

    def _run_step(self, name: str, fn: Callable[..., int], *args) -> StepResult:
        try:
            affected = fn(*args)
        except Conflict as exc:
            return StepResult("conflict", detail=exc.message)
        except NotFound as exc:
            return StepResult("not_found", detail=exc.message)
        except SQLAlchemyError as exc:
            logger.exception("Settlement step %s failed", name)
            return StepResult("failed", detail=type(exc).__name__)
        return StepResult("ok", affected)

    def _record_payment(self, payment: schemas.PaymentIn) -> int:
        record = models.Payment(
            student_email=payment.student_email,
            class_id=payment.class_id,
            amount=payment.amount,
            transaction_id=payment.transaction_id,
        )
        if payment.date is not None:
            record.paid_at = payment.date
        self.db.add(record)
        self.db.flush()
        return 1

    def _create_enrollment(self, intent: schemas.EnrollmentIntent) -> int:
        self.db.add(models.Enrollment(**intent.model_dump()))
        self.db.flush()
        return 1
