# campbooking/main.py
from contextlib import asynccontextmanager
from typing import List, Optional
import logging

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campbooking import events, ledgers, schemas
from campbooking.auth import Capability, IdentityVerifier, JWTVerifier, Principal, get_db, require
from campbooking.config import Settings, load_settings
from campbooking.database import Database
from campbooking.errors import register_error_handlers
from campbooking.settlement import SettlementWorkflow

logger = logging.getLogger("campbooking")


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    verifier: Optional[IdentityVerifier] = None,
) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Initializing storage...")
        app.state.db.init()
        logger.info("Startup complete (settlement mode: %s).", settings.settlement_mode)
        yield
        app.state.db.shutdown()

    app = FastAPI(title="Class Booking Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database or Database(settings.database_url)
    app.state.verifier = verifier or JWTVerifier(settings.access_token_secret, settings.access_token_algorithm)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    register_routes(app)
    return app


def register_routes(app: FastAPI):
    settings: Settings = app.state.settings

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "Server Running..."

    @app.get("/health")
    def health(request: Request):
        try:
            request.app.state.db.ping()
        except (SQLAlchemyError, RuntimeError) as e:
            logger.exception("Health check failed: %s", e)
            raise HTTPException(status_code=503, detail="Database unreachable")
        return {"status": "ok"}

    # --- users ---

    @app.get("/users", response_model=List[schemas.UserOut])
    def list_users(
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.ADMIN_ONLY)),
    ):
        return ledgers.list_users(db)

    @app.put("/users/{email}", response_model=schemas.UserOut)
    def save_user(
        email: str,
        user_in: schemas.UserUpsert,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.SELF_OR_ADMIN, owner_param="email")),
    ):
        return ledgers.upsert_user(db, email, user_in)

    @app.patch("/users/{user_id}/role", response_model=schemas.UserOut)
    def change_role(
        user_id: int,
        change: schemas.RoleChange,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.ADMIN_ONLY)),
    ):
        return ledgers.change_role(db, user_id, change.role)

    # --- classes ---

    @app.get("/classes", response_model=List[schemas.ClassOut])
    def list_approved_classes(db: Session = Depends(get_db)):
        return ledgers.approved_classes(db)

    @app.get("/classes/instructor/{email}", response_model=List[schemas.ClassOut])
    def instructor_classes(
        email: str,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.INSTRUCTOR_ONLY, Capability.SELF_OR_ADMIN, owner_param="email")),
    ):
        return ledgers.classes_by_instructor(db, email)

    @app.get("/classes/{class_id}", response_model=schemas.ClassOut)
    def get_class(
        class_id: int,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.ANY_AUTHENTICATED)),
    ):
        return ledgers.get_class(db, class_id)

    @app.post("/classes", response_model=schemas.ClassOut, status_code=201)
    def create_class(
        class_in: schemas.ClassCreate,
        db: Session = Depends(get_db),
        principal: Principal = Depends(require(Capability.INSTRUCTOR_ONLY)),
    ):
        return ledgers.create_class(db, principal.subject_email, class_in)

    @app.patch("/classes/{class_id}", response_model=schemas.ClassOut)
    def update_class(
        class_id: int,
        class_in: schemas.ClassUpdate,
        db: Session = Depends(get_db),
        principal: Principal = Depends(require(Capability.INSTRUCTOR_ONLY)),
    ):
        return ledgers.update_class(db, class_id, principal.subject_email, class_in)

    @app.patch("/classes/{class_id}/status", response_model=schemas.ClassOut)
    def change_class_status(
        class_id: int,
        change: schemas.StatusChange,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.ADMIN_ONLY)),
    ):
        cls = ledgers.set_status(db, class_id, change.status)
        background_tasks.add_task(
            events.publish_event, settings.rabbitmq_url, "class.events.status", events.class_status_changed(cls)
        )
        return cls

    @app.patch("/classes/{class_id}/feedback", response_model=schemas.ClassOut)
    def attach_feedback(
        class_id: int,
        feedback_in: schemas.FeedbackIn,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.ADMIN_ONLY)),
    ):
        return ledgers.set_feedback(db, class_id, feedback_in.feedback)

    # --- reservations, enrollments, payments ---

    @app.post("/reservations", response_model=schemas.ReservationOut, status_code=201)
    def select_class(
        reservation_in: schemas.ReservationCreate,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.ANY_AUTHENTICATED)),
    ):
        return ledgers.select_class(db, reservation_in.student_email, reservation_in.class_id)

    @app.delete("/reservations/{reservation_id}", response_model=schemas.CancelOut)
    def cancel_reservation(
        reservation_id: int,
        db: Session = Depends(get_db),
        principal: Principal = Depends(require(Capability.STUDENT_ONLY)),
    ):
        return {"deleted_count": ledgers.cancel(db, reservation_id, principal)}

    @app.get("/reservations/{email}", response_model=List[schemas.ReservationOut])
    def student_reservations(
        email: str,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.SELF_OR_ADMIN, owner_param="email")),
    ):
        return ledgers.reservations_for(db, email)

    @app.get("/enrollments/{email}", response_model=List[schemas.EnrollmentOut])
    def student_enrollments(
        email: str,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.SELF_OR_ADMIN, owner_param="email")),
    ):
        return ledgers.enrollments_for(db, email)

    @app.get("/payments/{email}", response_model=List[schemas.PaymentOut])
    def payment_history(
        email: str,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.SELF_OR_ADMIN, owner_param="email")),
    ):
        return ledgers.payments_for(db, email)

    @app.post("/settlements", response_model=schemas.SettlementOut, status_code=201)
    def settle(
        settlement_in: schemas.SettlementIn,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        _: Principal = Depends(require(Capability.ANY_AUTHENTICATED)),
    ):
        workflow = SettlementWorkflow(db, mode=settings.settlement_mode)
        outcome = workflow.settle(settlement_in.payment_record, settlement_in.enrollment_intent)
        outcome.raise_for_status()
        background_tasks.add_task(
            events.publish_event,
            settings.rabbitmq_url,
            "enrollment.events.settled",
            events.enrollment_settled(settlement_in.enrollment_intent, settlement_in.payment_record, outcome),
        )
        return outcome.as_dict()


app = create_app()
