"""
Authorization gate.

Every mutating route declares the capabilities it needs; one gate function
authenticates the bearer credential, resolves the caller's stored role and
checks each capability. Decisions are never cached: the role is read fresh
on every request, so an admin role change applies to the next call.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from campbooking import models
from campbooking.database import Database
from campbooking.errors import Forbidden, Unauthenticated

logger = logging.getLogger("campbooking.auth")

ELEVATED_ROLES = ("instructor", "admin")


class Capability(str, enum.Enum):
    ANY_AUTHENTICATED = "any-authenticated"
    ADMIN_ONLY = "admin-only"
    INSTRUCTOR_ONLY = "instructor-only"
    STUDENT_ONLY = "student-only"
    SELF_OR_ADMIN = "self-or-admin"


@dataclass(frozen=True)
class Principal:
    subject_email: str
    role: str = "student"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class IdentityVerifier(Protocol):
    def verify(self, credential: str) -> str:
        """Return the subject email or raise Unauthenticated."""


class JWTVerifier:
    """Verifies HS256 bearer tokens carrying an ``email`` claim."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def verify(self, credential: str) -> str:
        if not self.secret:
            raise Unauthenticated("token verification is not configured")
        try:
            claims = jwt.decode(credential, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            raise Unauthenticated("unauthorized access") from exc
        email = claims.get("email")
        if not isinstance(email, str) or not email:
            raise Unauthenticated("unauthorized access")
        return email


def bearer_credential(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthenticated("unauthorized access")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("unauthorized access")
    return token.strip()


def resolve_role(db: Session, email: str) -> str:
    """Stored role of ``email``; unknown users and unset roles are students."""
    role = db.execute(select(models.User.role).where(models.User.email == email)).scalar_one_or_none()
    if role in ELEVATED_ROLES:
        return role
    return "student"


def check_capability(principal: Principal, capability: Capability, owner: Optional[str] = None) -> bool:
    if capability is Capability.ANY_AUTHENTICATED:
        return True
    if capability is Capability.ADMIN_ONLY:
        return principal.role == "admin"
    if capability is Capability.INSTRUCTOR_ONLY:
        return principal.role == "instructor"
    if capability is Capability.STUDENT_ONLY:
        return principal.role not in ELEVATED_ROLES
    if capability is Capability.SELF_OR_ADMIN:
        return principal.is_admin or (owner is not None and owner == principal.subject_email)
    return False


def authorize(
    authorization: Optional[str],
    verifier: IdentityVerifier,
    db: Session,
    capabilities: Sequence[Capability],
    owner: Optional[str] = None,
) -> Principal:
    email = verifier.verify(bearer_credential(authorization))
    principal = Principal(subject_email=email, role=resolve_role(db, email))
    for capability in capabilities:
        if not check_capability(principal, capability, owner):
            logger.info("Forbidden: %s (%s) lacks %s", email, principal.role, capability.value)
            raise Forbidden("forbidden access")
    return principal


def get_db(request: Request):
    database: Database = request.app.state.db
    db = database.session()
    try:
        yield db
    finally:
        db.close()


def get_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.verifier


def require(*capabilities: Capability, owner_param: Optional[str] = None):
    """Route dependency: ``Depends(require(Capability.ADMIN_ONLY))``.

    ``owner_param`` names the path parameter compared against the caller's
    email for ``SELF_OR_ADMIN``.
    """
    caps = capabilities or (Capability.ANY_AUTHENTICATED,)

    def dependency(
        request: Request,
        db: Session = Depends(get_db),
        verifier: IdentityVerifier = Depends(get_verifier),
    ) -> Principal:
        owner = request.path_params.get(owner_param) if owner_param else None
        return authorize(request.headers.get("Authorization"), verifier, db, caps, owner)

    return dependency

